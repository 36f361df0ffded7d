from typing import Optional, Tuple, Union
import functools
import logging

import numpy as np

from . import core
from . import config
from . import debug
from . import domain
from . import operators
from . import viscous_surface
from .constants import DRY, MAX_SLOPE, SURFACE_STRESS_ITERATIONS
from .operators import BottomBoundary

Pair = Tuple[float, float]


def log_exceptions(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except Exception as e:
            logger = getattr(self, "logger", None)
            domain = getattr(self, "domain", None)
            if logger is None or domain is None or domain.tiling.n == 1:
                raise
            logger.exception(str(e), stack_info=True, stacklevel=3)
            domain.tiling.comm.Abort(1)

    return wrapper


def _pair(value: Union[float, Pair], name: str) -> Pair:
    if np.ndim(value) == 0:
        return (float(value), float(value))
    if len(value) != 2:
        raise Exception("%s must have 2 values (x, y), but has %i" % (name, len(value)))
    return (float(value[0]), float(value[1]))


class ViscositySettings:
    def __init__(
        self,
        nu: float = 0.0,
        horizontal_diffusion: bool = False,
        surface_coupling: bool = True,
        bottom: Union[BottomBoundary, str] = BottomBoundary.NAVIER,
        lambda_b: Union[float, Pair] = 0.0,
        u_b: Union[float, Pair] = 0.0,
        dub: Union[float, Pair] = 0.0,
        dut: Union[float, Pair] = 0.0,
        dry: float = DRY,
        max_slope: float = MAX_SLOPE,
        surface_iterations: int = SURFACE_STRESS_ITERATIONS,
        surface_tolerance: Optional[float] = None,
    ):
        """Settings for the viscous sub-step of the momentum equations.
        Settings with an x and a y component accept a single value for both.

        Args:
            nu: kinematic viscosity (m2 s-1)
            horizontal_diffusion: also diffuse velocity horizontally
            surface_coupling: couple the viscous stress to the free surface
            bottom: bottom boundary condition for the velocity
            lambda_b: slip length at the bottom (m), for the Navier condition
            u_b: velocity at the bottom (m s-1), for the Navier condition
            dub: vertical gradient of velocity at the bottom (s-1), for the
                Neumann condition
            dut: initial vertical gradient of velocity at the surface (s-1)
            dry: thickness (m) at or below which a layer is considered dry
            max_slope: maximum slope of layer interfaces
            surface_iterations: number of iterations for the surface gradient
                of velocity
            surface_tolerance: if provided, iterations for the surface gradient
                of velocity stop as soon as the largest change drops below this
                value (s-1)
        """
        nu = float(nu)
        dry = float(dry)
        max_slope = float(max_slope)
        surface_iterations = int(surface_iterations)
        if surface_tolerance is not None:
            surface_tolerance = float(surface_tolerance)
        if nu < 0.0:
            raise Exception("Viscosity nu is %s but must be >= 0" % nu)
        if dry < 0.0:
            raise Exception("Dry threshold is %s but must be >= 0" % dry)
        if max_slope <= 0.0:
            raise Exception("Maximum slope is %s but must be > 0" % max_slope)
        if surface_iterations < 0:
            raise Exception(
                "Number of surface iterations is %i but must be >= 0"
                % surface_iterations
            )
        if surface_tolerance is not None and surface_tolerance <= 0.0:
            raise Exception(
                "Surface tolerance is %s but must be > 0" % surface_tolerance
            )
        if isinstance(bottom, str):
            try:
                bottom = BottomBoundary[bottom.upper()]
            except KeyError:
                raise Exception(
                    "Unknown bottom boundary condition %s. Valid options: %s"
                    % (bottom, ", ".join(b.name.lower() for b in BottomBoundary))
                )
        self.nu = nu
        self.horizontal_diffusion = bool(horizontal_diffusion)
        self.surface_coupling = bool(surface_coupling)
        self.bottom = BottomBoundary(bottom)
        self.lambda_b = _pair(lambda_b, "lambda_b")
        if min(self.lambda_b) < 0.0:
            raise Exception("Slip length lambda_b is %s but must be >= 0" % (self.lambda_b,))
        self.u_b = _pair(u_b, "u_b")
        self.dub = _pair(dub, "dub")
        self.dut = _pair(dut, "dut")
        self.dry = dry
        self.max_slope = max_slope
        self.surface_iterations = surface_iterations
        self.surface_tolerance = surface_tolerance

    @classmethod
    def from_config(
        cls, node: config.Node, logger: Optional[logging.Logger] = None
    ) -> "ViscositySettings":
        """Create settings from a configuration node. Unknown keys raise an
        exception.
        """
        settings = cls(
            nu=node.get_setting("nu", 0.0, logger),
            horizontal_diffusion=node.get_setting("horizontal_diffusion", False, logger),
            surface_coupling=node.get_setting("surface_coupling", True, logger),
            bottom=node.get_setting("bottom", "navier", logger),
            lambda_b=node.get_pair("lambda_b", 0.0, logger),
            u_b=node.get_pair("u_b", 0.0, logger),
            dub=node.get_pair("dub", 0.0, logger),
            dut=node.get_pair("dut", 0.0, logger),
            dry=node.get_setting("dry", DRY, logger),
            max_slope=node.get_setting("max_slope", MAX_SLOPE, logger),
            surface_iterations=node.get_setting(
                "surface_iterations", SURFACE_STRESS_ITERATIONS, logger
            ),
            surface_tolerance=node.get_setting("surface_tolerance", None, logger),
        )
        unused = node.check()
        if unused:
            raise Exception("Unknown viscosity settings: %s" % ", ".join(unused))
        return settings

    def __repr__(self) -> str:
        return "ViscositySettings(%s)" % ", ".join(
            "%s=%r" % item for item in vars(self).items()
        )


class Viscosity:
    def __init__(self, settings: Optional[ViscositySettings] = None):
        """Viscous sub-step of the momentum equations: coupling to the free surface,
        implicit vertical diffusion and optional explicit horizontal diffusion of
        the velocity.

        Args:
            settings: settings; defaults are used if not provided
        """
        self.settings = settings or ViscositySettings()

    def initialize(self, dom: domain.Domain, logger: Optional[logging.Logger] = None):
        self.domain = dom
        self.logger = logger or dom.root_logger.getChild("viscosity")
        s = self.settings
        self.logger.info("Settings: %s" % (s,))

        T = dom.T
        self.dut_x = T.array(
            name="dut_x",
            units="s-1",
            long_name="vertical gradient of velocity in x-direction at surface",
            fill=s.dut[0],
        )
        self.dut_y = T.array(
            name="dut_y",
            units="s-1",
            long_name="vertical gradient of velocity in y-direction at surface",
            fill=s.dut[1],
        )
        self._dup = T.array(fill=0.0)

        self.vertical_diffusion = operators.VerticalDiffusion(
            T, bottom=s.bottom, dry=s.dry
        )
        self.horizontal_diffusion = operators.HorizontalDiffusion(T, dry=s.dry)
        self.surface = viscous_surface.ViscousSurface(
            dom, logger=self.logger.getChild("surface")
        )

        if s.horizontal_diffusion:
            dom.max_diffusive_timestep(s.nu)

    def _apply_acceleration(
        self,
        timestep: float,
        u: core.Array,
        v: core.Array,
        ha_x: core.Array,
        ha_y: core.Array,
        sign: float,
    ):
        # average of the thickness-weighted acceleration at the two adjacent faces
        dom = self.domain
        for velocity, ha, face, (di, dj) in (
            (u, ha_x, dom.U, (-1, 0)),
            (v, ha_y, dom.V, (0, -1)),
        ):
            ha.update_halos()
            C = face.interior()
            B = face.interior(di, dj)
            hf = face.hn.all_values
            a = ha.all_values
            velocity.values[...] += (
                sign
                * timestep
                * (a[B] + a[C])
                / (hf[B] + hf[C] + self.settings.dry)
            )

    @log_exceptions
    def advance(
        self,
        timestep: float,
        u: core.Array,
        v: core.Array,
        ha_x: core.Array,
        ha_y: core.Array,
        w: Optional[core.Array] = None,
        check_finite: bool = False,
    ) -> bool:
        """Advance the viscous terms of the velocity by one time step. Layer
        thicknesses must be valid for the end of the time step.

        Args:
            timestep: time step (s)
            u: velocity in x-direction at cell centers (m s-1), updated in place
            v: velocity in y-direction at cell centers (m s-1), updated in place
            ha_x: acceleration at U points (m2 s-2); the contribution of the
                normal stress at the surface is added
            ha_y: acceleration at V points (m2 s-2); the contribution of the
                normal stress at the surface is added
            w: vertical velocity at cell centers (m s-1), if available
            check_finite: verify that the velocity is finite afterwards

        Returns:
            False if ``check_finite`` is set and non-finite values were found,
            True otherwise
        """
        s = self.settings
        if s.surface_coupling and s.nu > 0.0:
            self.surface.normal_stress(
                s.nu, u, v, self.dut_x, self.dut_y, ha_x, ha_y,
                max_slope=s.max_slope,
                dry=s.dry,
            )
            self.surface.tangential_stress(
                u,
                v,
                w,
                self.dut_x,
                self.dut_y,
                niter=s.surface_iterations,
                tolerance=s.surface_tolerance,
            )

        if s.nu > 0.0:
            # The acceleration of the previous step is included in the velocity
            # while it is diffused, and removed afterwards.
            self._apply_acceleration(timestep, u, v, ha_x, ha_y, 1.0)
            for i, (velocity, dut) in enumerate(((u, self.dut_x), (v, self.dut_y))):
                self.vertical_diffusion(
                    timestep,
                    s.nu,
                    velocity,
                    dst=dut,
                    dsb=s.dub[i],
                    s_b=s.u_b[i],
                    lambda_b=s.lambda_b[i],
                )
            if s.horizontal_diffusion:
                for velocity, dut in ((u, self.dut_x), (v, self.dut_y)):
                    self._dup.all_values[...] = dut.all_values
                    self.horizontal_diffusion(velocity, s.nu, timestep, self._dup)
            self._apply_acceleration(timestep, u, v, ha_x, ha_y, -1.0)
            u.update_halos()
            v.update_halos()

        if check_finite:
            valid = True
            for field in (u, v, self.dut_x, self.dut_y):
                valid = debug.check_finite(field, self.logger) and valid
            return valid
        return True
