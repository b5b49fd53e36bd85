"""In-memory stand-in for an MPI communicator, for testing several subdomains
within a single Python process.

Only the part of the mpi4py communicator interface used by
:class:`pyicar.parallel.DistributedArray` is provided. Messages are delivered
through a mailbox shared by all ranks of a :class:`LocalWorld`; a send copies
its buffer when started, a receive takes the oldest matching message when waited
on. All ranks must therefore start their sends before any rank waits on its
receives, exactly the ordering that real MPI requires to avoid deadlock.
"""

import collections

import numpy as np


class Request:
    def __init__(self, start=None, wait=None):
        self._start = start
        self._wait = wait

    def Start(self):
        if self._start is not None:
            self._start()

    def Wait(self):
        if self._wait is not None:
            self._wait()


class LocalWorld:
    def __init__(self, size: int):
        self.size = size
        self.mailbox = collections.defaultdict(collections.deque)
        self.barriers = 0

    def comm(self, rank: int) -> "LocalComm":
        assert 0 <= rank < self.size
        return LocalComm(self, rank)

    def pending(self) -> int:
        """Number of messages sent but not yet received"""
        return sum(len(q) for q in self.mailbox.values())


class LocalComm:
    def __init__(self, world: LocalWorld, rank: int):
        self.world = world
        self.rank = rank
        self.size = world.size

    def Get_rank(self) -> int:
        return self.rank

    def Get_size(self) -> int:
        return self.size

    def Barrier(self):
        self.world.barriers += 1

    def Send_init(self, buf: np.ndarray, dest: int, tag: int) -> Request:
        key = (self.rank, dest, tag)

        def start():
            self.world.mailbox[key].append(np.array(buf, copy=True))

        return Request(start=start)

    def Recv_init(self, buf: np.ndarray, source: int, tag: int) -> Request:
        key = (source, self.rank, tag)

        def wait():
            queue = self.world.mailbox[key]
            if not queue:
                raise Exception(
                    "Rank %i: no message from rank %i with tag %i"
                    % (self.rank, source, tag)
                )
            buf[...] = queue.popleft()

        return Request(wait=wait)
