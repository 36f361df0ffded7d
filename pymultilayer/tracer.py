from typing import Optional, List, Sequence

import numpy as np

from .constants import CENTERS
from . import core
from . import domain
from . import operators
from .operators import BottomBoundary


class Tracer(core.Array):
    __slots__ = ("diffusivity", "surface_flux", "bottom_flux")

    def __init__(
        self,
        grid: domain.Grid,
        data: Optional[np.ndarray] = None,
        diffusivity: float = 0.0,
        surface_flux: Optional[core.Array] = None,
        bottom_flux: Optional[core.Array] = None,
        **kwargs,
    ):
        """A layered scalar that is diffused vertically and, optionally,
        horizontally

        Args:
            grid: the grid on which the tracer is defined
            data: a NumPy array that will hold the values of the tracer.
                If not provided, a new one filled with zeros will be created.
            diffusivity: diffusivity (m2 s-1)
            surface_flux: vertical gradient of the tracer at the surface.
                Defaults to 0.
            bottom_flux: vertical gradient of the tracer at the bottom.
                Defaults to 0.
            **kwargs: keyword arguments to be passed to :class:`pymultilayer.core.Array`
        """
        super().__init__(grid=grid, **kwargs)
        if data is None:
            data = np.zeros_like(grid.hn.all_values)
        self.wrap_ndarray(data)
        assert self.z == CENTERS

        if diffusivity < 0.0:
            raise Exception(
                "Diffusivity of %s is %s but must be >= 0" % (self.name, diffusivity)
            )
        assert surface_flux is None or (
            surface_flux.grid is self.grid and not surface_flux.z
        )
        assert bottom_flux is None or (
            bottom_flux.grid is self.grid and not bottom_flux.z
        )
        self.diffusivity: float = diffusivity
        self.surface_flux: Optional[core.Array] = surface_flux
        self.bottom_flux: Optional[core.Array] = bottom_flux


class TracerCollection(Sequence[Tracer]):
    def __init__(
        self,
        grid: domain.Grid,
        horizontal_diffusion: bool = False,
        dry: Optional[float] = None,
    ):
        self.logger = grid.domain.root_logger.getChild("tracers")
        self.logger.info(f"Horizontal diffusion: {horizontal_diffusion}")

        self.grid: domain.Grid = grid
        self.horizontal_diffusion = horizontal_diffusion
        self._tracers: List[Tracer] = []
        self._vertical_diffusion = operators.VerticalDiffusion(
            grid, bottom=BottomBoundary.NEUMANN, dry=dry
        )
        self._horizontal_diffusion = operators.HorizontalDiffusion(grid, dry=dry)

    def __getitem__(self, index: int) -> Tracer:
        return self._tracers[index]

    def __len__(self) -> int:
        return len(self._tracers)

    def add(self, name: str, **kwargs) -> Tracer:
        """Add a tracer that will be subject to diffusion.

        Args:
            name: short name for the tracer (letters, digits, underscores only)
            **kwargs: keyword arguments to be passed to :class:`Tracer`

        Returns:
            tracer instance
        """
        tracer = Tracer(grid=self.grid, name=name, **kwargs)
        self._tracers.append(tracer)
        if self.horizontal_diffusion and tracer.diffusivity > 0.0:
            self.grid.domain.max_diffusive_timestep(tracer.diffusivity)
        return tracer

    def advance(self, timestep: float):
        """Diffuse all tracers over one time step. Layer thicknesses must be valid
        for the end of the time step.
        """
        for tracer in self._tracers:
            if tracer.diffusivity == 0.0:
                continue
            self._vertical_diffusion(
                timestep,
                tracer.diffusivity,
                tracer,
                dst=0.0 if tracer.surface_flux is None else tracer.surface_flux,
                dsb=0.0 if tracer.bottom_flux is None else tracer.bottom_flux,
            )
            if self.horizontal_diffusion:
                self._horizontal_diffusion(
                    tracer, tracer.diffusivity, timestep, tracer.surface_flux
                )
            tracer.update_halos()
