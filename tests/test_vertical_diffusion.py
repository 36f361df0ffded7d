import unittest
from functools import wraps

import numpy as np

import pymultilayer
from pymultilayer.operators import (
    BottomBoundary,
    solve_tridiagonal,
    vertical_diffusion_neumann_neumann,
    vertical_diffusion_neumann_navier,
)

rng = np.random.default_rng(42)


def repeat(test_func):
    @wraps(test_func)
    def wrapper(self: unittest.TestCase, *args, **kwargs):
        for i in range(10):
            with self.subTest(repeat=i):
                test_func(self, *args, **kwargs)

    return wrapper


def for_each_layer_count(test_func):
    @wraps(test_func)
    def wrapper(self: unittest.TestCase, *args, **kwargs):
        for nl in (1, 2, 3, 10):
            with self.subTest(nl=nl):
                test_func(self, nl, *args, **kwargs)

    return wrapper


class TestTridiagonal(unittest.TestCase):
    def test_known_solution(self):
        nl = 8
        target = np.arange(1, nl + 1, dtype=float) ** 2
        a = np.full(nl, -1.0)
        b = np.full(nl, 4.0)
        c = np.full(nl, -1.0)
        a[0] = 0.0
        c[-1] = 0.0
        rhs = b * target
        rhs[1:] += a[1:] * target[:-1]
        rhs[:-1] += c[:-1] * target[1:]
        x = solve_tridiagonal(a, b.copy(), c, rhs.copy())
        np.testing.assert_allclose(x, target, rtol=0.0, atol=1e-10)

    def test_many_columns(self):
        nl, ncol = 6, 5
        target = rng.random((nl, ncol))
        a = -rng.random((nl, ncol))
        c = -rng.random((nl, ncol))
        b = 2.5 + rng.random((nl, ncol))
        rhs = b * target
        rhs[1:] += a[1:] * target[:-1]
        rhs[:-1] += c[:-1] * target[1:]
        out = np.empty_like(rhs)
        result = solve_tridiagonal(a, b, c, rhs, out=out)
        self.assertIs(result, out)
        np.testing.assert_allclose(out, target, rtol=1e-12, atol=1e-12)

    def test_single_layer(self):
        x = solve_tridiagonal(
            np.zeros(1), np.array([2.0]), np.zeros(1), np.array([3.0])
        )
        self.assertEqual(x[0], 1.5)


class TestColumnDiffusion(unittest.TestCase):
    DT = 0.1
    D = 0.5

    @for_each_layer_count
    @repeat
    def test_neumann_conservation(self, nl: int):
        h = 0.1 + rng.random(nl)
        s = rng.random(nl)
        dst, dsb = rng.normal(), rng.normal()
        integral = (h * s).sum()
        vertical_diffusion_neumann_neumann(h, s, self.DT, self.D, dst, dsb)
        expected = integral + self.DT * self.D * (dst - dsb)
        self.assertAlmostEqual((h * s).sum(), expected, places=12)

    @for_each_layer_count
    def test_uniform_is_fixed_point(self, nl: int):
        h = 0.1 + rng.random(nl)
        s = np.full(nl, 2.5)
        vertical_diffusion_neumann_neumann(h, s, self.DT, self.D, 0.0, 0.0)
        np.testing.assert_allclose(s, 2.5, rtol=1e-13)

        s = np.full(nl, 2.5)
        vertical_diffusion_neumann_navier(h, s, self.DT, self.D, 0.0, 2.5, 0.3)
        np.testing.assert_allclose(s, 2.5, rtol=1e-13)

    @for_each_layer_count
    @repeat
    def test_variance_does_not_increase(self, nl: int):
        h = 0.1 + rng.random(nl)
        s = rng.normal(size=nl)
        mean = (h * s).sum() / h.sum()
        variance = (h * (s - mean) ** 2).sum()
        vertical_diffusion_neumann_neumann(h, s, self.DT, self.D, 0.0, 0.0)
        self.assertLessEqual(
            (h * (s - mean) ** 2).sum(), variance * (1 + 1e-12) + 1e-15
        )

    def test_single_layer_neumann(self):
        h, s0 = 0.4, 1.2
        s = np.array([s0])
        vertical_diffusion_neumann_neumann(
            np.array([h]), s, self.DT, self.D, 0.7, 0.2
        )
        self.assertAlmostEqual(s[0], s0 + self.DT * self.D * (0.7 - 0.2) / h)

    def test_single_layer_navier(self):
        for lambda_b in (0.0, 0.05, 1.0):
            with self.subTest(lambda_b=lambda_b):
                h, s0, s_b = 0.4, 1.2, -0.3
                s = np.array([s0])
                vertical_diffusion_neumann_navier(
                    np.array([h]), s, self.DT, self.D, 0.0, s_b, lambda_b
                )
                k = 3.0 * self.D * self.DT / (h * (h + 3.0 * lambda_b))
                self.assertAlmostEqual(s[0], (s0 + k * s_b) / (1.0 + k))

    def test_surface_flux_enters_top(self):
        h = np.ones(3)
        s = np.zeros(3)
        vertical_diffusion_neumann_neumann(h, s, 0.1, 1.0, 1.0, 0.0)
        self.assertGreater(s[2], s[1])
        self.assertGreater(s[1], s[0])
        self.assertGreaterEqual(s[0], 0.0)

    def test_no_slip_bottom(self):
        h = np.ones(3)
        s = np.ones(3)
        vertical_diffusion_neumann_navier(h, s, 0.1, 1.0, 0.0, 0.0, 0.0)
        self.assertGreater(s[2], s[1])
        self.assertGreater(s[1], s[0])
        self.assertGreater(s[0], 0.0)
        self.assertLess(s[2], 1.0)

    def test_many_columns(self):
        nl, ncol = 5, 7
        h = 0.1 + rng.random((nl, ncol))
        s = rng.random((nl, ncol))
        s_b = rng.random(ncol)
        s_ref = s.copy()
        vertical_diffusion_neumann_navier(h, s, self.DT, self.D, 0.0, s_b, 0.1)
        for icol in range(ncol):
            column = s_ref[:, icol].copy()
            vertical_diffusion_neumann_navier(
                h[:, icol], column, self.DT, self.D, 0.0, s_b[icol], 0.1
            )
            np.testing.assert_allclose(s[:, icol], column, rtol=1e-13)


class TestVerticalDiffusion(unittest.TestCase):
    def create_domain(self, **kwargs) -> pymultilayer.domain.Domain:
        return pymultilayer.domain.create_cartesian(
            5,
            4,
            6,
            1.0,
            H=2.0,
            logger=pymultilayer.parallel.get_logger(level="ERROR"),
            **kwargs
        )

    def test_grid_conservation(self):
        domain = self.create_domain()
        T = domain.T
        var = T.array(z=pymultilayer.CENTERS, fill=0.0)
        var.values[...] = rng.random(var.shape)
        integral = (var.values * T.hn.values).sum(axis=0)
        vdif = pymultilayer.operators.VerticalDiffusion(T, BottomBoundary.NEUMANN)
        vdif(10.0, 0.01, var)
        np.testing.assert_allclose(
            (var.values * T.hn.values).sum(axis=0), integral, rtol=1e-12
        )

    def test_grid_matches_column(self):
        domain = self.create_domain()
        T = domain.T
        var = T.array(z=pymultilayer.CENTERS, fill=0.0)
        var.values[...] = rng.random(var.shape)
        u_b = T.array(fill=0.0)
        u_b.values[...] = rng.random(u_b.shape)
        ref = var.values.copy()
        vdif = pymultilayer.operators.VerticalDiffusion(T, BottomBoundary.NAVIER)
        vdif(10.0, 0.01, var, dst=0.1, s_b=u_b, lambda_b=0.2)
        for j, i in domain.columns():
            column = ref[:, j, i].copy()
            vertical_diffusion_neumann_navier(
                T.hn.values[:, j, i], column, 10.0, 0.01, 0.1, u_b.values[j, i], 0.2
            )
            np.testing.assert_allclose(var.values[:, j, i], column, rtol=1e-13)

    def test_dry_and_land_columns_unchanged(self):
        mask = np.ones((4, 5))
        mask[0, 0] = 0
        domain = self.create_domain(mask=mask)
        T = domain.T
        T.hn.values[2, 3, 4] = 0.0
        domain.update_depth()
        var = T.array(z=pymultilayer.CENTERS, fill=0.0)
        var.values[...] = rng.random(var.shape)
        ref = var.values.copy()
        vdif = pymultilayer.operators.VerticalDiffusion(T)
        vdif(10.0, 0.1, var, dst=1.0)
        np.testing.assert_array_equal(var.values[:, 0, 0], ref[:, 0, 0])
        np.testing.assert_array_equal(var.values[:, 3, 4], ref[:, 3, 4])
        self.assertFalse(np.array_equal(var.values[:, 1, 1], ref[:, 1, 1]))


if __name__ == "__main__":
    unittest.main()
