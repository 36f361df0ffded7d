from typing import Optional, Tuple, Union, List
import logging
import enum

from mpi4py import MPI
import numpy as np

Waitall = MPI.Request.Waitall
Startall = MPI.Prequest.Startall


def _iterate_rankmap(rankmap):
    for irow in range(rankmap.shape[0]):
        for icol in range(rankmap.shape[1]):
            yield irow, icol, rankmap[irow, icol]


def get_logger(
    level: Union[int, str] = logging.INFO, comm=MPI.COMM_WORLD
) -> logging.Logger:
    """Return the package logger. Rank 0 writes to the console; if more than one
    process is active, every rank also writes to its own log file.
    """
    logger = logging.getLogger("pymultilayer")
    logger.setLevel(level)
    if not logger.handlers:
        if comm.rank == 0:
            logger.addHandler(logging.StreamHandler())
        if comm.size > 1:
            file_handler = logging.FileHandler(
                "pymultilayer-%04i.log" % comm.rank, mode="w"
            )
            file_handler.setFormatter(logging.Formatter("%(asctime)s - %(message)s"))
            logger.addHandler(file_handler)
        if not logger.handlers:
            logger.addHandler(logging.NullHandler())
    return logger


class Tiling:
    def __init__(
        self,
        nrow: Optional[int] = None,
        ncol: Optional[int] = None,
        map: Optional[np.ndarray] = None,
        comm=MPI.COMM_WORLD,
        periodic_x: bool = False,
        periodic_y: bool = False,
    ):
        """Division of the horizontal domain into rectangular subdomains, one per
        MPI process.

        Args:
            nrow: number of subdomain rows
            ncol: number of subdomain columns
            map: rank of every subdomain (-1 for unused subdomains). Must be
                provided if ``nrow`` and ``ncol`` are not.
            comm: MPI communicator
            periodic_x: the domain is periodic in x-direction
            periodic_y: the domain is periodic in y-direction
        """
        if nrow is None or ncol is None:
            assert map is not None, (
                "If the number of rows and column in the subdomain decomposition is"
                " not provided, the rank map must be provided instead."
            )
            self.map = np.asarray(map)
        else:
            self.map = np.arange(nrow * ncol).reshape(nrow, ncol)
        self.nrow, self.ncol = self.map.shape

        def find_neighbor(i: int, j: int) -> int:
            if periodic_x:
                j = j % self.ncol
            if periodic_y:
                i = i % self.nrow
            if i >= 0 and i < self.nrow and j >= 0 and j < self.ncol:
                return int(self.map[i, j])
            return -1

        self.comm = comm
        self.rank: int = self.comm.rank
        self.n = (self.map != -1).sum()
        if self.n != self.comm.size:
            raise Exception(
                "Number of active subdomains (%i) does not match size of MPI"
                " communicator (%i). Map: %s" % (self.n, self.comm.size, self.map)
            )

        self.periodic_x = periodic_x
        self.periodic_y = periodic_y

        # Determine own row and column in subdomain decomposition
        for self.irow, self.icol, r in _iterate_rankmap(self.map):
            if r == self.rank:
                break

        self.top = find_neighbor(self.irow + 1, self.icol)
        self.bottom = find_neighbor(self.irow - 1, self.icol)
        self.left = find_neighbor(self.irow, self.icol - 1)
        self.right = find_neighbor(self.irow, self.icol + 1)
        self.topleft = find_neighbor(self.irow + 1, self.icol - 1)
        self.topright = find_neighbor(self.irow + 1, self.icol + 1)
        self.bottomleft = find_neighbor(self.irow - 1, self.icol - 1)
        self.bottomright = find_neighbor(self.irow - 1, self.icol + 1)

        self.nx_glob = None

    def set_extent(self, nx_glob: int, ny_glob: int):
        """Set extent of the global domain. Subdomains have identical extent, so
        the global extent must be divisible by the number of subdomain columns and
        rows.

        Args:
            nx_glob: x extent of the global domain
            ny_glob: y extent of the global domain
        """
        assert self.nx_glob is None, "Domain extent has already been set."
        if nx_glob % self.ncol or ny_glob % self.nrow:
            raise Exception(
                "Global domain %i x %i cannot be divided into %i x %i equal subdomains"
                % (nx_glob, ny_glob, self.ncol, self.nrow)
            )
        self.nx_glob, self.ny_glob = nx_glob, ny_glob
        self.nx_sub, self.ny_sub = nx_glob // self.ncol, ny_glob // self.nrow
        self.xoffset = self.icol * self.nx_sub
        self.yoffset = self.irow * self.ny_sub

    def report(self, logger: logging.Logger):
        """Write information about the subdomain decompositon to the log.
        Log messages are suppressed if the decompositon only has one subdomain.
        """
        if self.nrow > 1 or self.ncol > 1:
            logger.info(
                "Using subdomain decomposition %i x %i (%i active nodes)"
                % (self.nrow, self.ncol, self.n)
            )
            logger.info(
                "I am rank %i at subdomain row %i, column %i, with offset x=%i, y=%i"
                % (self.rank, self.irow, self.icol, self.xoffset, self.yoffset)
            )


@enum.unique
class Neighbor(enum.IntEnum):
    # Specific neighbors
    BOTTOMLEFT = 1
    BOTTOM = 2
    BOTTOMRIGHT = 3
    LEFT = 4
    RIGHT = 5
    TOPLEFT = 6
    TOP = 7
    TOPRIGHT = 8

    # Groups of neighbors (for update_halos command)
    ALL = 0
    TOP_AND_BOTTOM = 9
    LEFT_AND_RIGHT = 10


GROUP2PARTS = {
    Neighbor.TOP_AND_BOTTOM: (Neighbor.TOP, Neighbor.BOTTOM),
    Neighbor.LEFT_AND_RIGHT: (Neighbor.LEFT, Neighbor.RIGHT),
}

# Neighbor whose halo we fill, matching neighbor that fills ours,
# and (y, x) direction of that neighbor
_DIRECTIONS = (
    (Neighbor.BOTTOMLEFT, Neighbor.TOPRIGHT, (-1, -1)),
    (Neighbor.BOTTOM, Neighbor.TOP, (-1, 0)),
    (Neighbor.BOTTOMRIGHT, Neighbor.TOPLEFT, (-1, 1)),
    (Neighbor.LEFT, Neighbor.RIGHT, (0, -1)),
    (Neighbor.RIGHT, Neighbor.LEFT, (0, 1)),
    (Neighbor.TOPLEFT, Neighbor.BOTTOMRIGHT, (1, -1)),
    (Neighbor.TOP, Neighbor.BOTTOM, (1, 0)),
    (Neighbor.TOPRIGHT, Neighbor.BOTTOMLEFT, (1, 1)),
)


def _halo_slices(
    direction: int, halo: int
) -> Tuple[slice, slice, slice]:
    """Return slices (along one axis) for the halo on the given side (-1, 0, 1),
    for the interior strip sent to the neighbor on that side, and for the
    outermost interior row/column used for zero-gradient filling.
    """
    if direction == -1:
        return slice(None, halo), slice(halo, 2 * halo), slice(halo, halo + 1)
    elif direction == 1:
        return slice(-halo, None), slice(-2 * halo, -halo), slice(-halo - 1, -halo)
    return slice(halo, -halo), slice(halo, -halo), slice(halo, -halo)


class DistributedArray:
    """Halo exchange for a NumPy array whose last two dimensions (y, x) include
    halos of width ``halo``. Halos that border another subdomain are received from
    it; halos at the edge of the global domain are filled by copying the nearest
    interior value (zero gradient).
    """

    __slots__ = ["rank", "group2task", "halo2name"]

    def __init__(self, tiling: Tiling, field: np.ndarray, halo: int):
        self.rank = tiling.rank
        self.group2task: List[
            Tuple[
                List[MPI.Prequest],
                List[MPI.Prequest],
                List[Tuple[np.ndarray, np.ndarray]],
                List[Tuple[np.ndarray, np.ndarray]],
                List[Tuple[np.ndarray, np.ndarray]],
            ]
        ] = [([], [], [], [], []) for _ in range(max(Neighbor) + 1)]
        self.halo2name = {}

        def groups(tag: Neighbor):
            return [Neighbor.ALL, tag] + [
                group for (group, parts) in GROUP2PARTS.items() if tag in parts
            ]

        for recvtag, sendtag, (dy, dx) in _DIRECTIONS:
            name = recvtag.name.lower()
            neighbor = getattr(tiling, name)
            outer_y, inner_y, edge_y = _halo_slices(dy, halo)
            outer_x, inner_x, edge_x = _halo_slices(dx, halo)
            outer = field[..., outer_y, outer_x]
            self.halo2name[id(outer)] = name
            if neighbor == -1:
                edge = field[..., edge_y, edge_x]
                for group in groups(recvtag):
                    self.group2task[group][4].append((outer, edge))
                continue
            inner = field[..., inner_y, inner_x]
            assert inner.shape == outer.shape
            inner_cache, outer_cache = np.empty_like(inner), np.empty_like(outer)
            send_req = tiling.comm.Send_init(inner_cache, neighbor, sendtag)
            recv_req = tiling.comm.Recv_init(outer_cache, neighbor, recvtag)
            for group in groups(sendtag):
                send_reqs, _, send_data, _, _ = self.group2task[group]
                send_reqs.append(send_req)
                send_data.append((inner, inner_cache))
            for group in groups(recvtag):
                _, recv_reqs, _, recv_data, _ = self.group2task[group]
                recv_reqs.append(recv_req)
                recv_data.append((outer, outer_cache))

    def _start(self, group: Neighbor):
        task = self.group2task[group]
        send_reqs, recv_reqs, send_data, _, _ = task
        Startall(recv_reqs)
        for inner, cache in send_data:
            cache[...] = inner
        Startall(send_reqs)
        return task

    def update_halos(self, group: Neighbor = Neighbor.ALL):
        send_reqs, recv_reqs, _, recv_data, edges = self._start(group)
        Waitall(recv_reqs)
        for outer, cache in recv_data:
            outer[...] = cache
        Waitall(send_reqs)
        for outer, edge in edges:
            outer[...] = edge

    def compare_halos(self, group: Neighbor = Neighbor.ALL) -> bool:
        send_reqs, recv_reqs, _, recv_data, _ = self._start(group)
        Waitall(recv_reqs)
        match = True
        for outer, cache in recv_data:
            if not np.array_equal(outer, cache, equal_nan=True):
                logging.getLogger("pymultilayer").error(
                    "Rank %i: mismatch in %s halo! Maximum absolute difference: %s"
                    % (self.rank, self.halo2name[id(outer)], np.abs(outer - cache).max())
                )
                match = False
        Waitall(send_reqs)
        return match


class Sum:
    """Sum over all subdomains, available on every rank"""

    def __init__(self, tiling: Tiling, field: np.ndarray):
        self.comm = tiling.comm
        self.shape = np.shape(field)
        self.field = np.atleast_1d(np.asarray(field))
        self.result = np.empty_like(self.field)

    def __call__(self) -> np.ndarray:
        self.comm.Allreduce(self.field, self.result, op=MPI.SUM)
        return self.result.reshape(self.shape)


class Max(Sum):
    """Maximum over all subdomains, available on every rank"""

    def __call__(self) -> np.ndarray:
        self.comm.Allreduce(self.field, self.result, op=MPI.MAX)
        return self.result.reshape(self.shape)
