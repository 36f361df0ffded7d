from typing import Optional, Union, Tuple, Literal, Mapping, Any, TYPE_CHECKING

import numpy as np
from numpy.typing import DTypeLike, ArrayLike
import xarray

from . import parallel
from .constants import CENTERS

if TYPE_CHECKING:
    from . import domain


class Array:
    """Field on a horizontal grid, backed by a NumPy array that includes halos
    (:attr:`all_values`). The interior (excluding halos) is available as
    :attr:`values`. Fields are either 2D or defined at the centers of all layers.
    """

    __slots__ = (
        "grid",
        "all_values",
        "values",
        "_xarray",
        "_dist",
        "_name",
        "attrs",
        "_fill_value",
        "_ma",
    )
    grid: "domain.Grid"

    def __init__(
        self,
        grid: "domain.Grid",
        name: Optional[str] = None,
        units: Optional[str] = None,
        long_name: Optional[str] = None,
        fill_value: Optional[Union[float, int]] = None,
        attrs: Mapping[str, Any] = {},
    ):
        assert (
            fill_value is None or np.ndim(fill_value) == 0
        ), "fill_value must be a scalar value"
        self.grid = grid
        self._xarray: Optional[xarray.DataArray] = None
        self._dist: Optional[parallel.DistributedArray] = None
        self._name = name
        self.attrs = dict(attrs)
        if units:
            self.attrs["units"] = units
        if long_name:
            self.attrs["long_name"] = long_name
        self._fill_value = fill_value
        self._ma = None
        self.all_values: Optional[np.ndarray] = None
        self.values: Optional[np.ndarray] = None

    def wrap_ndarray(self, data: np.ndarray, register: bool = True):
        """Use the provided NumPy array (which must include halos) as storage"""
        assert data.shape[-2:] == (
            self.grid.ny + 2 * self.grid.halo,
            self.grid.nx + 2 * self.grid.halo,
        ), "Array shape %s does not match grid %s" % (data.shape, self.grid.postfix)
        assert data.ndim == 2 or data.shape[0] == self.grid.nz
        self.all_values = data
        halo = self.grid.halo
        self.values = data[..., halo:-halo, halo:-halo]
        if self._fill_value is not None:
            # Cast fill value to dtype of the array
            self._fill_value = np.array(self._fill_value, dtype=data.dtype)
        if register:
            self.register()

    def register(self):
        if self._name is not None:
            fields = self.grid.domain.fields
            if self._name in fields:
                raise Exception(
                    "A field with name '%s' has already been registered"
                    " with the field manager." % self._name
                )
            fields[self._name] = self

    def __repr__(self) -> str:
        return "<Array %s%s %s>" % (self._name or "", self.grid.postfix, self.shape)

    def _distributed(self) -> parallel.DistributedArray:
        if self._dist is None:
            self._dist = parallel.DistributedArray(
                self.grid.domain.tiling, self.all_values, self.grid.halo
            )
        return self._dist

    def update_halos(self, group: parallel.Neighbor = parallel.Neighbor.ALL):
        """Fill halos with values from neighboring subdomains, or by zero-gradient
        extrapolation at the edge of the global domain
        """
        self._distributed().update_halos(group)

    def compare_halos(self, group: parallel.Neighbor = parallel.Neighbor.ALL) -> bool:
        return self._distributed().compare_halos(group)

    def global_sum(self, where: Optional["Array"] = None) -> np.ndarray:
        if where is None:
            local_sum = self.values.sum()
        else:
            local_sum = self.values.sum(where=where.values)
        return parallel.Sum(self.grid.domain.tiling, local_sum)()

    def global_max(self) -> np.ndarray:
        return parallel.Max(self.grid.domain.tiling, self.values.max())()

    @staticmethod
    def create(
        grid: "domain.Grid",
        fill: Optional[ArrayLike] = None,
        z: Literal[False, CENTERS] = False,
        dtype: DTypeLike = None,
        register: bool = True,
        **kwargs
    ) -> "Array":
        """Create a new :class:`Array`

        Args:
            grid: grid associated with the new array
            fill: value to set the new array to
            z: vertical dimension of the new array.
                ``False`` for a 2D array, ``CENTERS`` for an array defined at the
                layer centers.
            dtype: data type
            register: whether to register the array with the domain's field
                collection (only done for named arrays)
            **kwargs: additional keyword arguments passed to :class:`Array`
        """
        ar = Array(grid=grid, **kwargs)
        if fill is None and ar.fill_value is not None:
            fill = ar.fill_value
        if fill is not None:
            fill = np.asarray(fill)
        if dtype is None:
            dtype = float if fill is None else fill.dtype
        shape = [grid.ny + 2 * grid.halo, grid.nx + 2 * grid.halo]
        if z:
            shape.insert(0, grid.nz)
        data = np.empty(shape, dtype=dtype)
        if fill is not None:
            data[...] = fill
        ar.wrap_ndarray(data, register=register)
        return ar

    def fill(self, value):
        """Set array to specified value, while respecting the mask: masked points are
        set to :attr:`fill_value`
        """
        self.all_values[...] = value
        if self.fill_value is not None:
            self.all_values[..., self.grid._land] = self.fill_value

    @property
    def ma(self) -> np.ma.MaskedArray:
        """Masked array representation that combines the data and the mask associated
        with the array's native grid
        """
        if self._ma is None:
            mask = self.grid.mask.values == 0
            self._ma = np.ma.array(self.values, mask=np.broadcast_to(mask, self.shape))
        return self._ma

    @property
    def shape(self) -> Tuple[int]:
        """Shape excluding halos"""
        return self.values.shape

    @property
    def ndim(self) -> int:
        """Number of dimensions"""
        return self.values.ndim

    @property
    def z(self):
        """Vertical dimension: ``False`` if the array has no vertical dimension,
        ``CENTERS`` for layer centers.
        """
        return CENTERS if self.ndim == 3 else False

    @property
    def dtype(self) -> DTypeLike:
        """Data type"""
        return self.values.dtype

    @property
    def name(self) -> Optional[str]:
        """Name"""
        return self._name

    @property
    def units(self) -> Optional[str]:
        """Units"""
        return self.attrs.get("units")

    @property
    def long_name(self) -> Optional[str]:
        """Long name"""
        return self.attrs.get("long_name")

    @property
    def fill_value(self) -> Optional[Union[int, float]]:
        """Fill value"""
        return self._fill_value

    def as_xarray(self, mask: bool = False) -> xarray.DataArray:
        """Return this array wrapped in an :class:`xarray.DataArray` that includes
        coordinates and can be used for plotting
        """
        if self._xarray is not None and not mask:
            return self._xarray
        attrs = {}
        for key in ("units", "long_name"):
            value = getattr(self, key)
            if value is not None:
                attrs[key] = value
        postfix = self.grid.postfix
        coords = {
            "x" + postfix: self.grid.x[0, :],
            "y" + postfix: self.grid.y[:, 0],
        }
        dims = ("y" + postfix, "x" + postfix)
        if self.z:
            dims = ("z",) + dims
        values = self.values if not mask else self.ma
        _xarray = xarray.DataArray(
            values, coords=coords, dims=dims, attrs=attrs, name=self.name
        )
        if not mask:
            self._xarray = _xarray
        return _xarray

    xarray = property(as_xarray)
