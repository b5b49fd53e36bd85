from typing import Tuple, List
import logging
import enum

from mpi4py import MPI
import numpy as np


def get_logger(level=logging.INFO, comm=MPI.COMM_WORLD) -> logging.Logger:
    """Configure the root logger: messages go to the console from the first
    process only and, if there are multiple processes, to one log file per
    process."""
    handlers: List[logging.Handler] = []
    if comm.rank == 0:
        handlers.append(logging.StreamHandler())
    if comm.size > 1:
        file_handler = logging.FileHandler("icar-%04i.log" % comm.rank, mode="w")
        file_handler.setFormatter(logging.Formatter("%(asctime)s - %(message)s"))
        handlers.append(file_handler)
    logging.basicConfig(level=level, handlers=handlers, force=True)

    return logging.getLogger()


class Tiling:
    """Arrangement of cooperating processes ("images") in a two-dimensional process
    grid. Row ``irow`` counts from south to north, column ``icol`` from west to east;
    ranks are assigned row by row, starting at the south-west corner.

    The rank of each of the eight neighbors is available as attribute ``left``,
    ``right``, ``bottom``, ``top``, ``bottomleft``, ``bottomright``, ``topleft``
    and ``topright``; it is -1 where the subdomain lies on the edge of the global
    domain.
    """

    @staticmethod
    def create(nx: int, ny: int, comm=MPI.COMM_WORLD) -> "Tiling":
        """Create a process grid for the communicator, choosing the number of rows
        and columns that makes the subdomains of a ``nx`` x ``ny`` domain as close to
        square as possible.

        Args:
            nx: number of points of the global domain in x-direction
            ny: number of points of the global domain in y-direction
            comm: MPI communicator
        """
        best = None
        for ncol in range(1, comm.size + 1):
            if comm.size % ncol != 0:
                continue
            nrow = comm.size // ncol
            if ncol > nx or nrow > ny:
                continue
            aspect = (nx / ncol) / (ny / nrow)
            cost = max(aspect, 1.0 / aspect)
            if best is None or cost < best[0]:
                best = (cost, nrow, ncol)
        if best is None:
            raise Exception(
                "Cannot divide domain of %i x %i points over %i processes"
                % (nx, ny, comm.size)
            )
        _, nrow, ncol = best
        return Tiling(nrow, ncol, comm=comm)

    def __init__(self, nrow: int, ncol: int, comm=MPI.COMM_WORLD):
        self.nrow = nrow
        self.ncol = ncol
        self.comm = comm
        self.rank: int = self.comm.rank
        if nrow * ncol != self.comm.size:
            raise Exception(
                "Process grid %i x %i has %i subdomains, but the communicator"
                " has %i processes" % (nrow, ncol, nrow * ncol, self.comm.size)
            )
        self.irow, self.icol = divmod(self.rank, ncol)

        self.top = self.neighbor(1, 0)
        self.bottom = self.neighbor(-1, 0)
        self.left = self.neighbor(0, -1)
        self.right = self.neighbor(0, 1)
        self.topleft = self.neighbor(1, -1)
        self.topright = self.neighbor(1, 1)
        self.bottomleft = self.neighbor(-1, -1)
        self.bottomright = self.neighbor(-1, 1)

    def neighbor(self, drow: int, dcol: int) -> int:
        """Rank of the subdomain ``drow`` rows north and ``dcol`` columns east of
        this one, or -1 if that lies outside the process grid"""
        irow, icol = self.irow + drow, self.icol + dcol
        if 0 <= irow < self.nrow and 0 <= icol < self.ncol:
            return irow * self.ncol + icol
        return -1

    def report(self, logger: logging.Logger):
        """Write information about the process grid to the log.
        Log messages are suppressed if there is only one process.
        """
        if self:
            logger.info(
                "Using process grid %i x %i (%i images)"
                % (self.ncol, self.nrow, self.comm.size)
            )
            logger.info(
                "I am rank %i at process grid row %i, column %i"
                % (self.rank, self.irow, self.icol)
            )

    def __bool__(self) -> bool:
        """Return True if the current subdomain has any neighbors, False otherwise."""
        return self.nrow * self.ncol > 1

    def wrap(self, *args, **kwargs) -> "DistributedArray":
        return DistributedArray(self, *args, **kwargs)


@enum.unique
class Neighbor(enum.IntEnum):
    BOTTOMLEFT = 1
    BOTTOM = 2
    BOTTOMRIGHT = 3
    LEFT = 4
    RIGHT = 5
    TOPLEFT = 6
    TOP = 7
    TOPRIGHT = 8


class DistributedArray:
    """Halo exchange for an array that spans the memory extent of a subdomain.

    The halo on each side has its own width (zero where the subdomain lies on the
    edge of the global domain). Interior cells adjacent to a halo are sent to the
    neighbor on that side; the neighbor's matching cells are received into the halo.
    Exchange is split into :meth:`send` and :meth:`retrieve` so that multiple arrays
    can have their messages in flight at the same time. Every process must call
    :meth:`send` on an array before it calls :meth:`retrieve` on it, and must treat
    its arrays in the same order as all other processes.
    """

    __slots__ = [
        "rank",
        "comm",
        "send_reqs",
        "recv_reqs",
        "send_data",
        "recv_data",
    ]

    def __init__(
        self, tiling: Tiling, field: np.ndarray, halos: Tuple[int, int, int, int]
    ):
        """
        Args:
            tiling: process grid
            field: array to exchange halos for. Its last two dimensions must be y, x.
            halos: width of the halo at the west, east, south and north side
        """
        self.rank = tiling.rank
        self.comm = tiling.comm
        self.send_reqs = []
        self.recv_reqs = []
        self.send_data: List[Tuple[np.ndarray, np.ndarray]] = []
        self.recv_data: List[Tuple[np.ndarray, np.ndarray]] = []

        def add_task(
            recvtag: Neighbor, sendtag: Neighbor, outer: np.ndarray, inner: np.ndarray,
        ):
            name = recvtag.name.lower()
            neighbor = getattr(tiling, name)
            assert inner.shape == outer.shape, (
                "Rank %i: shape of %s halo %s does not match that of interior %s"
                % (self.rank, name, outer.shape, inner.shape)
            )
            if neighbor != -1 and outer.size > 0:
                inner_cache, outer_cache = np.empty_like(inner), np.empty_like(outer)
                self.send_reqs.append(
                    self.comm.Send_init(inner_cache, neighbor, int(sendtag))
                )
                self.recv_reqs.append(
                    self.comm.Recv_init(outer_cache, neighbor, int(recvtag))
                )
                self.send_data.append((inner, inner_cache))
                self.recv_data.append((outer, outer_cache))

        west, east, south, north = halos
        ny, nx = field.shape[-2:]
        assert (
            nx - west - east >= max(west, east)
            and ny - south - north >= max(south, north)
        ), ("Subdomain with shape %s is too small for halos %s" % ((ny, nx), halos))

        # Halo, interior strips adjacent to the halo, and interior, along each axis
        x_halo_lo, x_halo_hi = slice(0, west), slice(nx - east, nx)
        x_in_lo, x_in_hi = slice(west, 2 * west), slice(nx - 2 * east, nx - east)
        x_all = slice(west, nx - east)
        y_halo_lo, y_halo_hi = slice(0, south), slice(ny - north, ny)
        y_in_lo, y_in_hi = slice(south, 2 * south), slice(ny - 2 * north, ny - north)
        y_all = slice(south, ny - north)

        add_task(
            Neighbor.BOTTOMLEFT,
            Neighbor.TOPRIGHT,
            field[..., y_halo_lo, x_halo_lo],
            field[..., y_in_lo, x_in_lo],
        )
        add_task(
            Neighbor.BOTTOM,
            Neighbor.TOP,
            field[..., y_halo_lo, x_all],
            field[..., y_in_lo, x_all],
        )
        add_task(
            Neighbor.BOTTOMRIGHT,
            Neighbor.TOPLEFT,
            field[..., y_halo_lo, x_halo_hi],
            field[..., y_in_lo, x_in_hi],
        )
        add_task(
            Neighbor.LEFT,
            Neighbor.RIGHT,
            field[..., y_all, x_halo_lo],
            field[..., y_all, x_in_lo],
        )
        add_task(
            Neighbor.RIGHT,
            Neighbor.LEFT,
            field[..., y_all, x_halo_hi],
            field[..., y_all, x_in_hi],
        )
        add_task(
            Neighbor.TOPLEFT,
            Neighbor.BOTTOMRIGHT,
            field[..., y_halo_hi, x_halo_lo],
            field[..., y_in_hi, x_in_lo],
        )
        add_task(
            Neighbor.TOP,
            Neighbor.BOTTOM,
            field[..., y_halo_hi, x_all],
            field[..., y_in_hi, x_all],
        )
        add_task(
            Neighbor.TOPRIGHT,
            Neighbor.BOTTOMLEFT,
            field[..., y_halo_hi, x_halo_hi],
            field[..., y_in_hi, x_in_hi],
        )

    def send(self):
        """Post receives for all halos, then copy the interior strips and start
        sending them to the neighbors. Returns without waiting."""
        for req in self.recv_reqs:
            req.Start()
        for inner, cache in self.send_data:
            cache[...] = inner
        for req in self.send_reqs:
            req.Start()

    def retrieve(self, no_sync: bool = False):
        """Wait for the halos sent by all neighbors and copy them into the array.

        Args:
            no_sync: skip the barrier that precedes the wait. Only use this if all
                processes are known to have synchronized at this point already, e.g.,
                by an earlier call to :meth:`retrieve` without ``no_sync``.
        """
        if not no_sync:
            self.comm.Barrier()
        for req in self.recv_reqs:
            req.Wait()
        for outer, cache in self.recv_data:
            outer[...] = cache
        for req in self.send_reqs:
            req.Wait()

    def exchange(self):
        self.send()
        self.retrieve()
