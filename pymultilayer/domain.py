from typing import Iterator, MutableMapping, Optional, Tuple
import logging

import numpy as np
from numpy.typing import ArrayLike

from . import core
from . import parallel
from .constants import FILL_VALUE, CENTERS, DRY


class Grid:
    """Horizontal grid with halos. Each :class:`Domain` has a grid at cell centers
    (``T``) and grids at the faces in x-direction (``U``, between ``T`` points
    i and i+1) and y-direction (``V``, between ``T`` points j and j+1).
    """

    _array_args = {
        "mask": dict(attrs=dict(_time_varying=False), fill_value=0),
        "H": dict(
            units="m", long_name="water depth at rest", attrs=dict(_time_varying=False)
        ),
        "zb": dict(
            units="m", long_name="bottom elevation", attrs=dict(_time_varying=False)
        ),
        "D": dict(
            units="m",
            long_name="water depth",
            attrs=dict(standard_name="sea_floor_depth_below_sea_surface"),
        ),
        "eta": dict(
            units="m",
            long_name="free surface elevation",
            attrs=dict(standard_name="sea_surface_height_above_mean_sea_level"),
        ),
        "hn": dict(
            units="m",
            long_name="layer thickness",
            attrs=dict(standard_name="cell_thickness"),
        ),
    }
    domain: "Domain"

    def __init__(self, domain: "Domain", postfix: str, ioffset: int, joffset: int):
        self.domain = domain
        self.postfix = postfix
        self.ioffset = ioffset
        self.joffset = joffset
        self.nx, self.ny, self.nz = domain.nx, domain.ny, domain.nz
        self.halo = domain.halo

        # coordinates of the interior points; ioffset/joffset in units of half cells
        tiling = domain.tiling
        i = np.arange(tiling.xoffset, tiling.xoffset + self.nx)
        j = np.arange(tiling.yoffset, tiling.yoffset + self.ny)
        x = (i + 0.5 * (1 + ioffset)) * domain.Delta
        y = (j + 0.5 * (1 + joffset)) * domain.Delta
        self.x, self.y = np.meshgrid(x, y)

        self.mask = self._setup_array("mask", dtype=int)
        self.hn = self._setup_array("hn", z=CENTERS, fill=0.0)
        self._land: Optional[np.ndarray] = None

    def _setup_array(self, name: str, **kwargs) -> core.Array:
        kwargs.update(self._array_args[name])
        return self.array(name=name + self.postfix, **kwargs)

    def interior(self, di: int = 0, dj: int = 0) -> tuple:
        """Return the slice of :attr:`core.Array.all_values` that covers the interior,
        shifted by ``di`` points in x-direction and ``dj`` points in y-direction.
        Shifts may not exceed the halo width.
        """
        if abs(di) > self.halo or abs(dj) > self.halo:
            raise IndexError(
                "Offset (%i, %i) exceeds halo width %i" % (di, dj, self.halo)
            )
        return (
            Ellipsis,
            slice(self.halo + dj, self.halo + dj + self.ny),
            slice(self.halo + di, self.halo + di + self.nx),
        )

    def array(self, *args, **kwargs) -> core.Array:
        return core.Array.create(self, *args, **kwargs)

    def update_land(self):
        self.mask.update_halos()
        self._land = self.mask.all_values == 0


class Domain:
    def __init__(
        self,
        nx: int,
        ny: int,
        nz: int,
        Delta: float,
        H: ArrayLike = 1.0,
        mask: ArrayLike = 1,
        tiling: Optional[parallel.Tiling] = None,
        logger: Optional[logging.Logger] = None,
        dry: float = DRY,
        periodic_x: bool = False,
        periodic_y: bool = False,
    ):
        """Create a Cartesian domain with uniform grid spacing and ``nz`` layers of
        equal thickness that span the water column from the bottom (at depth ``H``)
        to a flat free surface at elevation 0.

        Args:
            nx: number of tracer points in x-direction (global domain)
            ny: number of tracer points in y-direction (global domain)
            nz: number of vertical layers
            Delta: grid spacing (m)
            H: water depth at rest (m), scalar or array with shape ``(ny, nx)``
            mask: mask (0: land, 1: water), scalar or array with shape ``(ny, nx)``
            tiling: subdomain decomposition. If not provided, the domain is handled
                by a single process.
            logger: target for log messages
            dry: thickness (m) at or below which a cell is considered dry
            periodic_x: the domain is periodic in x-direction (only used if
                ``tiling`` is not provided)
            periodic_y: the domain is periodic in y-direction (only used if
                ``tiling`` is not provided)
        """
        if nx <= 0:
            raise Exception("Number of x points is %i but must be > 0" % nx)
        if ny <= 0:
            raise Exception("Number of y points is %i but must be > 0" % ny)
        if nz <= 0:
            raise Exception("Number of z points is %i but must be > 0" % nz)
        if Delta <= 0.0:
            raise Exception("Grid spacing is %s but must be > 0" % Delta)

        # Loggers
        if logger is None:
            logger = parallel.get_logger()
        self.root_logger: logging.Logger = logger
        self.logger: logging.Logger = self.root_logger.getChild("domain")

        if tiling is None:
            tiling = parallel.Tiling(1, 1, periodic_x=periodic_x, periodic_y=periodic_y)
        if tiling.nx_glob is None:
            tiling.set_extent(nx, ny)
        tiling.report(self.root_logger.getChild("parallel"))
        self.tiling = tiling

        #: collection of all model fields
        self.fields: MutableMapping[str, core.Array] = {}

        self.nx, self.ny, self.nz = tiling.nx_sub, tiling.ny_sub, nz
        self.halo = 2
        self.Delta = Delta
        self.dry = dry
        self.logger.info(
            "Domain size (T grid): %i x %i (%i cells), %i layers, spacing %s m"
            % (nx, ny, nx * ny, nz, Delta)
        )

        self.T = Grid(self, "t", 0, 0)
        self.U = Grid(self, "u", 1, 0)
        self.V = Grid(self, "v", 0, 1)

        local = (
            slice(tiling.yoffset, tiling.yoffset + self.ny),
            slice(tiling.xoffset, tiling.xoffset + self.nx),
        )

        def subdomain_values(value: ArrayLike, name: str) -> np.ndarray:
            value = np.asarray(value)
            if value.ndim == 0:
                return value
            if value.shape != (ny, nx):
                raise Exception(
                    "%s has shape %s, but must be scalar or have shape %s"
                    % (name, value.shape, (ny, nx))
                )
            return value[local]

        T = self.T
        T.mask.values[...] = subdomain_values(mask, "mask") != 0
        T.update_land()
        self.U.mask.all_values[:, :-1] = T.mask.all_values[:, :-1] * T.mask.all_values[:, 1:]
        self.V.mask.all_values[:-1, :] = T.mask.all_values[:-1, :] * T.mask.all_values[1:, :]
        self.U.mask.all_values[:, -1] = 0
        self.V.mask.all_values[-1, :] = 0
        self.U._land = self.U.mask.all_values == 0
        self.V._land = self.V.mask.all_values == 0

        T.H = T._setup_array("H", fill=FILL_VALUE)
        T.H.values[...] = subdomain_values(H, "H")
        T.H.update_halos()
        T.H.all_values[T._land] = FILL_VALUE
        T.zb = T._setup_array("zb")
        T.zb.all_values[...] = np.where(T._land, 0.0, -T.H.all_values)
        T.D = T._setup_array("D")
        T.eta = T._setup_array("eta")

        # Equidistant layers between the bottom and a flat surface
        T.hn.all_values[...] = np.where(T._land, 0.0, T.H.all_values / nz)
        self.update_depth()

    def update_depth(self):
        """Update total water depth, free surface elevation and the layer thickness
        at the faces (U, V grids) from the layer thickness at cell centers.
        This must be called whenever ``T.hn`` changes.
        """
        T = self.T
        T.hn.update_halos()
        h = T.hn.all_values
        h.sum(axis=0, out=T.D.all_values)
        T.eta.all_values[...] = T.zb.all_values + T.D.all_values

        hu, hv = self.U.hn.all_values, self.V.hn.all_values
        hu[..., :-1] = 0.5 * (h[..., :-1] + h[..., 1:])
        hv[..., :-1, :] = 0.5 * (h[..., :-1, :] + h[..., 1:, :])
        hu[..., self.U._land] = 0.0
        hv[..., self.V._land] = 0.0

    def columns(self) -> Iterator[Tuple[int, int]]:
        """Iterate over the interior water columns, yielding indices ``(j, i)`` into
        :attr:`core.Array.values`
        """
        for j, i in zip(*np.nonzero(self.T.mask.values)):
            yield int(j), int(i)

    def max_diffusive_timestep(self, diffusivity: float, log: bool = True) -> float:
        """Return the largest time step for which explicit horizontal diffusion with
        the given diffusivity (m2 s-1) is stable
        """
        if diffusivity <= 0.0:
            return np.inf
        maxdt = self.Delta ** 2 / (4.0 * diffusivity)
        if log:
            self.logger.info(
                "Maximum time step for horizontal diffusion with diffusivity %s: %.3f s"
                % (diffusivity, maxdt)
            )
        return maxdt


def create_cartesian(
    nx: int, ny: int, nz: int, Delta: float, **kwargs
) -> Domain:
    """Create Cartesian domain with uniform grid spacing.

    Args:
        nx: number of tracer points in x-direction
        ny: number of tracer points in y-direction
        nz: number of vertical layers
        Delta: grid spacing (m)
        **kwargs: additional arguments passed to :class:`Domain`
    """
    return Domain(nx, ny, nz, Delta, **kwargs)
