import enum
from typing import Optional, Union

import numpy as np
from numpy.typing import ArrayLike

from . import core
from . import domain
from .constants import CENTERS, MAX_SLOPE


class BottomBoundary(enum.IntEnum):
    NEUMANN = 1  #: prescribed flux at the bottom
    NAVIER = 2  #: Navier slip, discretised to third order
    DEFAULT = NAVIER


def solve_tridiagonal(
    a: np.ndarray,
    b: np.ndarray,
    c: np.ndarray,
    rhs: np.ndarray,
    out: Optional[np.ndarray] = None,
) -> np.ndarray:
    """Solve the tridiagonal system with lower, principal and upper diagonals
    ``a``, ``b``, ``c`` with the Thomas algorithm. The first axis runs over layers;
    any further axes are independent columns that are solved simultaneously.
    ``b`` and ``rhs`` are overwritten during the forward elimination.
    """
    nl = b.shape[0]
    for l in range(1, nl):
        b[l] -= a[l] * c[l - 1] / b[l - 1]
        rhs[l] -= a[l] * rhs[l - 1] / b[l - 1]
    if out is None:
        out = np.empty_like(rhs)
    out[nl - 1] = rhs[nl - 1] / b[nl - 1]
    for l in range(nl - 2, -1, -1):
        out[l] = (rhs[l] - c[l] * out[l + 1]) / b[l]
    return out


def _interior_system(h: np.ndarray, s: np.ndarray, dt: float, D: float):
    # implicit diffusion of the thickness-weighted value hs
    a = np.zeros_like(h)
    b = np.empty_like(h)
    c = np.zeros_like(h)
    rhs = s * h
    a[1:-1] = -2.0 * D * dt / (h[:-2] + h[1:-1])
    c[1:-1] = -2.0 * D * dt / (h[1:-1] + h[2:])
    b[1:-1] = h[1:-1] - a[1:-1] - c[1:-1]
    return a, b, c, rhs


def vertical_diffusion_neumann_neumann(
    h: ArrayLike,
    s: np.ndarray,
    dt: float,
    D: float,
    dst: ArrayLike,
    dsb: ArrayLike,
) -> np.ndarray:
    """Diffuse ``s`` vertically with a prescribed gradient ``dst`` at the surface
    and a prescribed gradient ``dsb`` at the bottom.

    Args:
        h: layer thicknesses at the end of the time step, bottom layer first.
            Shape ``(nl,)`` for a single column or ``(nl, ...)`` for many.
        s: values to diffuse, same shape as ``h``; updated in place
        dt: time step (s)
        D: diffusivity (m2 s-1)
        dst: surface gradient of ``s`` (scalar or one value per column)
        dsb: bottom gradient of ``s`` (scalar or one value per column)

    Returns:
        ``s``
    """
    h = np.asarray(h, dtype=float)
    nl = h.shape[0]
    a, b, c, rhs = _interior_system(h, s, dt, D)

    # Surface: ghost value s_nl = s_nl-1 + dst h_nl-1
    if nl > 1:
        a[nl - 1] = -2.0 * D * dt / (h[nl - 2] + h[nl - 1])
        b[nl - 1] = h[nl - 1] - a[nl - 1]
    rhs[nl - 1] += D * dt * dst

    # Bottom: prescribed gradient
    h_above = h[1] if nl > 1 else h[0]
    c[0] = -2.0 * D * dt / (h[0] + h_above)
    b[0] = h[0] - c[0]
    rhs[0] -= D * dt * dsb

    if nl == 1:
        b[0] += c[0]
        rhs[0] += (-c[0] * h[0] - D * dt) * dst

    return solve_tridiagonal(a, b, c, rhs, out=s)


def vertical_diffusion_neumann_navier(
    h: ArrayLike,
    s: np.ndarray,
    dt: float,
    D: float,
    dst: ArrayLike,
    s_b: ArrayLike,
    lambda_b: ArrayLike,
) -> np.ndarray:
    """Diffuse ``s`` vertically with a prescribed gradient ``dst`` at the surface
    and the Navier slip condition ``s = s_b + lambda_b ds/dz`` at the bottom.

    Note that the coupling between the two upper layers uses the thickness of the
    top layer only, unlike :func:`vertical_diffusion_neumann_neumann`, which uses
    the mean thickness of both layers.

    Args:
        h: layer thicknesses at the end of the time step, bottom layer first.
            Shape ``(nl,)`` for a single column or ``(nl, ...)`` for many.
        s: values to diffuse, same shape as ``h``; updated in place
        dt: time step (s)
        D: diffusivity (m2 s-1)
        dst: surface gradient of ``s`` (scalar or one value per column)
        s_b: bottom value of ``s`` (scalar or one value per column)
        lambda_b: slip length (m); 0 for no-slip

    Returns:
        ``s``
    """
    h = np.asarray(h, dtype=float)
    nl = h.shape[0]
    a, b, c, rhs = _interior_system(h, s, dt, D)

    if nl > 1:
        a[nl - 1] = -2.0 * D * dt / h[nl - 1]
        b[nl - 1] = h[nl - 1] - a[nl - 1]
    rhs[nl - 1] += D * dt * dst

    # Third-order discretisation of the Navier slip condition
    h0 = h[0]
    h1 = h[1] if nl > 1 else h[0]
    den = h0 * (h0 + h1) ** 2 + 2.0 * lambda_b * (
        3.0 * h0 * h1 + 2.0 * h0 ** 2 + h1 ** 2
    )
    b[0] = h0 + 2.0 * dt * D * (
        1.0 / (h0 + h1) + (h1 ** 2 + 3.0 * h0 * h1 + 3.0 * h0 ** 2) / den
    )
    c[0] = -2.0 * dt * D * (1.0 / (h0 + h1) + h0 ** 2 / den)
    rhs[0] += 2.0 * dt * D * s_b * (h1 ** 2 + 3.0 * h0 * h1 + 2.0 * h0 ** 2) / den

    if nl == 1:
        b[0] += c[0]
        rhs[0] += (-c[0] * h[0] - D * dt) * dst

    return solve_tridiagonal(a, b, c, rhs, out=s)


BoundaryValue = Union[float, ArrayLike, core.Array]


class VerticalDiffusion:
    def __init__(
        self,
        grid: domain.Grid,
        bottom: BottomBoundary = BottomBoundary.DEFAULT,
        dry: Optional[float] = None,
    ):
        """Implicit vertical diffusion of a layered field, solved for all water
        columns of the grid at once. Columns in which any layer is dry are left
        untouched.

        Args:
            grid: grid on which the diffused fields are defined
            bottom: type of bottom boundary condition
            dry: thickness (m) at or below which a layer is considered dry.
                Defaults to the threshold of the domain.
        """
        self.grid = grid
        self.bottom = BottomBoundary(bottom)
        self.dry = grid.domain.dry if dry is None else dry

    def __call__(
        self,
        timestep: float,
        diffusivity: float,
        var: core.Array,
        dst: BoundaryValue = 0.0,
        dsb: BoundaryValue = 0.0,
        s_b: BoundaryValue = 0.0,
        lambda_b: BoundaryValue = 0.0,
    ):
        """Diffuse the interior of ``var`` in place. Layer thicknesses are taken
        from the grid and must already be valid for the end of the time step.

        Args:
            timestep: time step (s)
            diffusivity: diffusivity (m2 s-1)
            var: field to diffuse
            dst: surface gradient
            dsb: bottom gradient (only used with :attr:`BottomBoundary.NEUMANN`)
            s_b: bottom value (only used with :attr:`BottomBoundary.NAVIER`)
            lambda_b: bottom slip length (m) (only used with
                :attr:`BottomBoundary.NAVIER`)
        """
        assert var.grid is self.grid and var.z == CENTERS
        h = self.grid.hn.values
        wet = (self.grid.mask.values != 0) & (h > self.dry).all(axis=0)
        h = h[:, wet]
        s = var.values[:, wet]

        def column_values(value: BoundaryValue):
            if isinstance(value, core.Array):
                assert value.grid is self.grid and not value.z
                value = value.values
            value = np.asarray(value, dtype=float)
            return value if value.ndim == 0 else value[wet]

        if self.bottom == BottomBoundary.NEUMANN:
            vertical_diffusion_neumann_neumann(
                h, s, timestep, diffusivity, column_values(dst), column_values(dsb)
            )
        else:
            vertical_diffusion_neumann_navier(
                h,
                s,
                timestep,
                diffusivity,
                column_values(dst),
                column_values(s_b),
                column_values(lambda_b),
            )
        var.values[:, wet] = s


class HorizontalDiffusion:
    def __init__(self, grid: domain.Grid, dry: Optional[float] = None):
        """Explicit horizontal diffusion of a layered field, including the terms
        that arise from the slope of the layer interfaces. As the scheme is
        explicit, the time step must not exceed
        :meth:`pymultilayer.domain.Domain.max_diffusive_timestep`.

        Args:
            grid: grid on which the diffused fields are defined
            dry: thickness (m) at or below which a cell is not updated.
                Defaults to the threshold of the domain.
        """
        self.grid = grid
        self.dry = grid.domain.dry if dry is None else dry

    def __call__(
        self,
        var: core.Array,
        diffusivity: float,
        timestep: float,
        dst: Optional[core.Array] = None,
    ):
        """Diffuse the interior of ``var`` in place.

        Args:
            var: field to diffuse
            diffusivity: diffusivity (m2 s-1). Nothing is done if this is not
                positive.
            timestep: time step (s)
            dst: surface gradient of ``var``. Defaults to 0.
        """
        assert var.grid is self.grid and var.z == CENTERS
        assert dst is None or (dst.grid is self.grid and not dst.z)
        if diffusivity <= 0.0:
            return

        grid = self.grid
        var.update_halos()
        if dst is None:
            dst = np.zeros(var.all_values.shape[1:])
        else:
            dst.update_halos()
            dst = dst.all_values
        s = var.all_values
        h = grid.hn.all_values
        zb = grid.zb.all_values
        nl = s.shape[0]
        C = grid.interior()

        d2s = np.zeros(var.shape)
        d2sz = np.zeros(var.shape)
        for di, dj in ((1, 0), (0, 1)):
            P = grid.interior(di, dj)
            M = grid.interior(-di, -dj)
            d2s += s[M] - 2.0 * s[C] + s[P]

            # zl: elevation of the lower interface of the current layer
            zl = zb.copy()
            for l in range(nl):
                hP, hC, hM = h[l][P], h[l][C], h[l][M]
                dh = (hP - hM) / 4.0
                d2h = (hP - 2.0 * hC + hM) / 2.0
                dz = (zl[P] - zl[M]) / 4.0
                d2z = (zl[P] - 2.0 * zl[C] + zl[M]) / 2.0
                if l < nl - 1:
                    b = (s[l][P] - s[l][M] - s[l + 1][P] + s[l + 1][M]) * dh
                    b += (s[l][C] - s[l + 1][C]) * d2h
                    if l > 0:
                        b -= (s[l + 1][P] - s[l + 1][M] - s[l - 1][P] + s[l - 1][M]) * dz
                        b -= (s[l + 1][C] - s[l - 1][C]) * d2z
                else:
                    # the surface gradient replaces the layer above
                    b = (-dst[P] * hP + dst[M] * hM) * dh
                    b += (-dst[C] * hC) * d2h
                    if l > 0:
                        b -= (
                            s[l][P] + dst[P] * hP - s[l][M] - dst[M] * hM
                            - s[l - 1][P] + s[l - 1][M]
                        ) * dz
                        b -= (s[l][C] + dst[P] * hP - s[l - 1][C]) * d2z
                d2sz[l] += b
                zl += h[l]

        hC = h[C]
        wet = hC > self.dry
        with np.errstate(divide="ignore", invalid="ignore"):
            increment = (
                timestep * diffusivity * (d2s + d2sz / hC) / grid.domain.Delta ** 2
            )
        var.values[wet] += increment[wet]


def pressure_gradient(
    dom: domain.Domain,
    phi: core.Array,
    ha_x: core.Array,
    ha_y: core.Array,
    phi_surface: Optional[core.Array] = None,
    max_slope: float = MAX_SLOPE,
    dry: Optional[float] = None,
):
    """Add the pressure gradient term ``-grad(h phi) + [phi grad z]`` of every layer
    to the thickness-weighted acceleration at the faces. ``phi`` is defined on layer
    interfaces: layer ``l`` holds the value at its lower interface. The value at
    the upper interface of the top layer is ``phi_surface`` (0 if not provided).
    Halos of ``phi`` and ``phi_surface`` must be up to date.

    Args:
        dom: domain
        phi: pressure on the lower interface of every layer (m2 s-2)
        ha_x: acceleration at U points (m2 s-2), incremented in place
        ha_y: acceleration at V points (m2 s-2), incremented in place
        phi_surface: pressure at the free surface (m2 s-2)
        max_slope: maximum slope of layer interfaces
        dry: face thickness (m) at or below which the acceleration is not
            changed. Defaults to the threshold of the domain.
    """
    T = dom.T
    dry = dom.dry if dry is None else dry
    assert phi.grid is T and phi.z == CENTERS
    assert ha_x.grid is dom.U and ha_x.z == CENTERS
    assert ha_y.grid is dom.V and ha_y.z == CENTERS
    assert phi_surface is None or (phi_surface.grid is T and not phi_surface.z)

    h = T.hn.all_values
    zb = T.zb.all_values
    p = phi.all_values
    Delta = dom.Delta
    for face, ha, (di, dj) in ((dom.U, ha_x, (1, 0)), (dom.V, ha_y, (0, 1))):
        L = T.interior()
        R = T.interior(di, dj)
        F = face.interior()
        hf = face.hn.all_values
        a = ha.all_values
        dz = zb[R] - zb[L]
        for l in range(h.shape[0]):
            hL, hR = h[l][L], h[l][R]
            slope = Delta * np.clip(dz / Delta, -max_slope, max_slope)
            pg = (hL - slope) * p[l][L] - (hR + slope) * p[l][R]
            if l < h.shape[0] - 1 or phi_surface is not None:
                above = p[l + 1] if l < h.shape[0] - 1 else phi_surface.all_values
                slope = Delta * np.clip((dz + hR - hL) / Delta, -max_slope, max_slope)
                pg += (hL + slope) * above[L] - (hR - slope) * above[R]
            wet = hf[l][F] > dry
            with np.errstate(divide="ignore", invalid="ignore"):
                pg *= hf[l][F] / (Delta * (hR + hL))
            a[l][F] += np.where(wet, pg, 0.0)
            dz += hR - hL
