import unittest

import numpy as np

import pymultilayer

rng = np.random.default_rng(1)


class TestHorizontalDiffusion(unittest.TestCase):
    DT = 0.1
    D = 0.5

    def create_domain(self, **kwargs) -> pymultilayer.domain.Domain:
        kwargs.setdefault("H", 1.0)
        return pymultilayer.domain.create_cartesian(
            8, 6, 3, 1.0, logger=pymultilayer.parallel.get_logger(level="ERROR"), **kwargs
        )

    def test_uniform_field_unchanged(self):
        for H in (1.0, 1.0 + 0.05 * np.arange(8)[np.newaxis, :] * np.ones((6, 1))):
            with self.subTest(sloping=np.ndim(H) > 0):
                domain = self.create_domain(H=H)
                var = domain.T.array(z=pymultilayer.CENTERS, fill=3.0)
                hdif = pymultilayer.operators.HorizontalDiffusion(domain.T)
                hdif(var, self.D, self.DT)
                np.testing.assert_allclose(var.values, 3.0, rtol=1e-14)

    def test_flat_layers_laplacian(self):
        domain = self.create_domain(periodic_x=True, periodic_y=True)
        T = domain.T
        var = T.array(z=pymultilayer.CENTERS, fill=0.0)
        var.values[...] = rng.random(var.shape)
        s = var.values.copy()
        laplacian = (
            np.roll(s, 1, axis=2)
            + np.roll(s, -1, axis=2)
            + np.roll(s, 1, axis=1)
            + np.roll(s, -1, axis=1)
            - 4.0 * s
        )
        hdif = pymultilayer.operators.HorizontalDiffusion(T)
        hdif(var, self.D, self.DT)
        np.testing.assert_allclose(
            var.values, s + self.DT * self.D * laplacian, rtol=1e-12, atol=1e-14
        )

        # flat layers in a periodic domain: the total is conserved
        self.assertAlmostEqual(var.values.sum(), s.sum(), places=10)

    def test_no_diffusivity(self):
        domain = self.create_domain()
        var = domain.T.array(z=pymultilayer.CENTERS, fill=0.0)
        var.values[...] = rng.random(var.shape)
        ref = var.values.copy()
        hdif = pymultilayer.operators.HorizontalDiffusion(domain.T)
        hdif(var, 0.0, self.DT)
        np.testing.assert_array_equal(var.values, ref)

    def test_dry_cells_unchanged(self):
        domain = self.create_domain()
        T = domain.T
        T.hn.values[1, 2, 3] = 0.0
        domain.update_depth()
        var = T.array(z=pymultilayer.CENTERS, fill=0.0)
        var.values[...] = rng.random(var.shape)
        ref = var.values.copy()
        hdif = pymultilayer.operators.HorizontalDiffusion(T)
        hdif(var, self.D, self.DT)
        self.assertEqual(var.values[1, 2, 3], ref[1, 2, 3])
        self.assertTrue(np.isfinite(var.values).all())

    def test_surface_gradient(self):
        domain = self.create_domain()
        T = domain.T
        var = T.array(z=pymultilayer.CENTERS, fill=1.0)
        dst = T.array(fill=0.0)
        dst.values[...] = 0.1
        hdif = pymultilayer.operators.HorizontalDiffusion(T)
        hdif(var, self.D, self.DT, dst)
        self.assertTrue(np.isfinite(var.values).all())

    def test_slope_correction(self):
        nx, ny, nz, Delta = 8, 6, 3, 2.0
        jj, ii = np.meshgrid(np.arange(ny), np.arange(nx), indexing="ij")
        H = 1.0 + 0.1 * ii + 0.02 * ii ** 2 + 0.03 * jj ** 2
        domain = pymultilayer.domain.create_cartesian(
            nx, ny, nz, Delta, H=H, logger=pymultilayer.parallel.get_logger(level="ERROR")
        )
        T = domain.T
        T.hn.values[...] *= 1.0 + 0.2 * rng.random(T.hn.shape)
        domain.update_depth()
        var = T.array(z=pymultilayer.CENTERS, fill=0.0)
        var.values[...] = rng.random(var.shape)
        dst = T.array(fill=0.0)
        dst.values[...] = rng.normal(size=dst.shape)
        s = var.values.copy()
        ds = dst.values.copy()
        h = T.hn.values
        zb = T.zb.values

        hdif = pymultilayer.operators.HorizontalDiffusion(T)
        hdif(var, self.D, self.DT, dst)

        C = (3, 3)
        for l in range(nz):
            d2s = 0.0
            d2sz = 0.0
            for dj, di in ((0, 1), (1, 0)):
                P = (C[0] + dj, C[1] + di)
                M = (C[0] - dj, C[1] - di)
                hP, hC, hM = h[l][P], h[l][C], h[l][M]
                zP, zC, zM = (zb[X] + h[:l, X[0], X[1]].sum() for X in (P, C, M))
                d2s += s[l][P] - 2.0 * s[l][C] + s[l][M]
                if l < nz - 1:
                    d2sz += (s[l][P] - s[l][M] - s[l + 1][P] + s[l + 1][M]) * (hP - hM) / 4.0
                    d2sz += (s[l][C] - s[l + 1][C]) * (hP - 2.0 * hC + hM) / 2.0
                    if l > 0:
                        d2sz -= (
                            s[l + 1][P] - s[l + 1][M] - s[l - 1][P] + s[l - 1][M]
                        ) * (zP - zM) / 4.0
                        d2sz -= (s[l + 1][C] - s[l - 1][C]) * (zP - 2.0 * zC + zM) / 2.0
                else:
                    d2sz += (-ds[P] * hP + ds[M] * hM) * (hP - hM) / 4.0
                    d2sz += -ds[C] * hC * (hP - 2.0 * hC + hM) / 2.0
                    d2sz -= (
                        s[l][P] + ds[P] * hP - s[l][M] - ds[M] * hM
                        - s[l - 1][P] + s[l - 1][M]
                    ) * (zP - zM) / 4.0
                    d2sz -= (s[l][C] + ds[P] * hP - s[l - 1][C]) * (zP - 2.0 * zC + zM) / 2.0
            with self.subTest(layer=l):
                self.assertGreater(abs(d2sz), 1e-6)
                expected = s[l][C] + self.DT * self.D * (d2s + d2sz / h[l][C]) / Delta ** 2
                np.testing.assert_allclose(var.values[l][C], expected, rtol=1e-12)

    def test_max_diffusive_timestep(self):
        domain = pymultilayer.domain.create_cartesian(
            4, 4, 1, 2.0, logger=pymultilayer.parallel.get_logger(level="ERROR")
        )
        self.assertEqual(domain.max_diffusive_timestep(0.5), 2.0)
        self.assertEqual(domain.max_diffusive_timestep(0.0), np.inf)


if __name__ == "__main__":
    unittest.main()
