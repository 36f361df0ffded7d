from typing import Optional, Tuple
import logging

import numpy as np

from . import core
from . import domain
from . import operators
from . import parallel
from .constants import CENTERS, MAX_SLOPE, SURFACE_STRESS_ITERATIONS


class ViscousSurface:
    def __init__(self, dom: domain.Domain, logger: Optional[logging.Logger] = None):
        """Coupling of the viscous stress to the free surface: the normal stress
        enters the momentum equations as a pressure deviation, the tangential
        stress sets the vertical gradient of the horizontal velocity at the surface.

        Args:
            dom: domain
            logger: target for log messages
        """
        self.domain = dom
        self.logger = logger or dom.root_logger.getChild("viscous_surface")
        T = dom.T

        #: pressure deviation due to the viscous normal stress at the surface
        self.phi_nu = T.array(
            name="phi_nu",
            units="m2 s-2",
            long_name="viscous pressure deviation",
            z=CENTERS,
            fill=0.0,
        )
        self._phi_nu_surface = T.array(fill=0.0)

        #: vertical gradient of the velocity at the surface from the tangential stress
        self.du_nu_x = T.array(
            name="du_nu_x",
            units="s-1",
            long_name="surface gradient of velocity in x-direction",
            fill=0.0,
        )
        self.du_nu_y = T.array(
            name="du_nu_y",
            units="s-1",
            long_name="surface gradient of velocity in y-direction",
            fill=0.0,
        )

    def _directions(self):
        T = self.domain.T
        for di, dj in ((1, 0), (0, 1)):
            yield T.interior(di, dj), T.interior(-di, -dj)

    def _surface_slopes(self):
        eta = self.domain.T.eta.all_values
        for P, M in self._directions():
            etax = (eta[P] - eta[M]) / (2.0 * self.domain.Delta)
            yield P, M, etax

    def normal_stress(
        self,
        nu: float,
        u: core.Array,
        v: core.Array,
        dut_x: core.Array,
        dut_y: core.Array,
        ha_x: core.Array,
        ha_y: core.Array,
        max_slope: float = MAX_SLOPE,
        dry: Optional[float] = None,
    ):
        """Compute the pressure deviation :attr:`phi_nu` that results from the
        viscous normal stress at the surface and add its gradient to the
        thickness-weighted acceleration at the faces.

        Args:
            nu: kinematic viscosity (m2 s-1). Nothing is done if this is 0.
            u: velocity in x-direction at cell centers (m s-1)
            v: velocity in y-direction at cell centers (m s-1)
            dut_x: surface gradient of ``u`` (s-1)
            dut_y: surface gradient of ``v`` (s-1)
            ha_x: acceleration at U points (m2 s-2), incremented in place
            ha_y: acceleration at V points (m2 s-2), incremented in place
            max_slope: maximum slope of layer interfaces
            dry: face thickness (m) at or below which the acceleration is not
                changed. Defaults to the threshold of the domain.
        """
        if nu == 0.0:
            return
        dom = self.domain
        Delta = dom.Delta
        h = dom.T.hn.all_values[-1]
        phi0 = np.zeros(dom.T.eta.shape)
        for (P, M, etax), velocity, dut in zip(
            self._surface_slopes(), (u, v), (dut_x, dut_y)
        ):
            velocity.update_halos()
            dut.update_halos()
            top = velocity.all_values[-1]
            d = dut.all_values
            phi0 -= (
                nu
                * 2.0
                * (1.0 + etax ** 2)
                / (1.0 - etax ** 2)
                * (top[P] - top[M] + 0.5 * h[P] * d[P] - 0.5 * h[M] * d[M])
                / (2.0 * Delta)
            )
        phi0[dom.T.mask.values == 0] = 0.0

        # hydrostatic: the surface value applies to every interface below
        self.phi_nu.values[...] = phi0
        self._phi_nu_surface.values[...] = phi0
        self.phi_nu.update_halos()
        self._phi_nu_surface.update_halos()
        operators.pressure_gradient(
            dom,
            self.phi_nu,
            ha_x,
            ha_y,
            phi_surface=self._phi_nu_surface,
            max_slope=max_slope,
            dry=dry,
        )

    def tangential_stress(
        self,
        u: core.Array,
        v: core.Array,
        w: Optional[core.Array],
        dut_x: core.Array,
        dut_y: core.Array,
        niter: int = SURFACE_STRESS_ITERATIONS,
        tolerance: Optional[float] = None,
    ) -> Tuple[core.Array, core.Array]:
        """Determine the surface gradient of the horizontal velocity for which the
        tangential viscous stress at the free surface vanishes. The implicit
        relation is solved with Jacobi iterations that start from 0.

        Args:
            u: velocity in x-direction at cell centers (m s-1)
            v: velocity in y-direction at cell centers (m s-1)
            w: vertical velocity at cell centers (m s-1), or None if absent
            dut_x: surface gradient of ``u`` (s-1), set on return
            dut_y: surface gradient of ``v`` (s-1), set on return
            niter: maximum number of iterations
            tolerance: if provided, stop as soon as the largest change during an
                iteration drops below this value (s-1)

        Returns:
            the new surface gradients in x- and y-direction
        """
        dom = self.domain
        T = dom.T
        Delta = dom.Delta
        h = T.hn.all_values[-1]
        C = T.interior()
        water = T.mask.values != 0
        if w is not None:
            w.update_halos()

        for (P, M, etax), velocity, du_nu, dut, name in zip(
            self._surface_slopes(),
            (u, v),
            (self.du_nu_x, self.du_nu_y),
            (dut_x, dut_y),
            "xy",
        ):
            velocity.update_halos()
            top = velocity.all_values[-1]
            slope = etax / (1.0 - etax ** 2)

            explicit = 4.0 * (top[P] - top[M]) / (2.0 * Delta) * slope + (
                h[P] * top[P] - (h[P] + h[C]) * top[C] + h[C] * top[M]
            ) / (2.0 * Delta ** 2)
            if w is not None:
                wtop = w.all_values[-1]
                explicit -= (wtop[P] - wtop[M]) / (2.0 * Delta)
            alpha = 0.25 * h[P] ** 2 / Delta ** 2 + slope * h[P] / Delta
            beta = 0.25 * h[P] * h[C] / Delta ** 2
            gamma = 0.25 * h[C] * h[M] / Delta ** 2 - slope * h[M] / Delta
            explicit = np.where(water, explicit, 0.0)
            alpha = np.where(water, alpha, 0.0)
            beta = np.where(water, beta, 0.0)
            gamma = np.where(water, gamma, 0.0)

            du = du_nu.all_values
            du[...] = 0.0
            change = np.inf
            for iteration in range(niter):
                new = explicit + alpha * du[P] + gamma * du[M] - beta * du[C]
                if tolerance is not None:
                    local_change = np.abs(new - du[C]).max() if new.size else 0.0
                    change = float(parallel.Max(dom.tiling, local_change)())
                du[C] = new
                du_nu.update_halos()
                if tolerance is not None and change < tolerance:
                    break
            self.logger.debug(
                "Surface gradient in %s-direction: %i iterations, last change %s"
                % (name, iteration + 1 if niter > 0 else 0, change)
            )
            dut.all_values[...] = du

        return self.du_nu_x, self.du_nu_y
