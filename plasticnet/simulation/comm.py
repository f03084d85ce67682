"""Collective communication between cooperating ranks.

The runner only needs three collectives: a barrier before timing starts,
an all-gather for the per-step spike exchange, and a sum-reduction of the
synapse counts at the end of the run. Three backends provide them:

    SerialCommunicator   a single rank; every collective is immediate.
    ThreadCommunicator   N ranks on N threads of one process, each owning
                         its own network. No state is shared between ranks
                         except through the collectives.
    MPICommunicator      one rank per MPI process, via mpi4py.

Every backend can abort: a rank that hits a fatal construction error must
not leave its peers blocked at a later collective.
"""

import threading

from plasticnet.errors import CollectiveAborted, PlasticnetError
from plasticnet.utils import configure, get_logger

LOG = get_logger("simulation.comm")


class Communicator:
    """Interface of a collective communication handle."""
    rank = 0
    size = 1

    def barrier(self):
        raise NotImplementedError

    def allgather(self, obj):
        """Return the list of every rank's obj, in rank order."""
        raise NotImplementedError

    def reduce_sum(self, value, root=0):
        """Sum value over ranks; the result at root, None elsewhere."""
        raise NotImplementedError

    def abort(self, code):
        """Abort every rank with the given exit code."""
        raise NotImplementedError


class SerialCommunicator(Communicator):
    """Single-rank communicator."""

    def barrier(self):
        pass

    def allgather(self, obj):
        return [obj]

    def reduce_sum(self, value, root=0):
        return value

    def abort(self, code):
        LOG.error("Aborting with code %d", code)
        raise CollectiveAborted(f"Aborted with code {code}", code)


class ThreadGroup:
    """Shared rendezvous point for a group of thread ranks.

    Parameters
    ----------
    size : int
        Number of ranks.
    """

    def __init__(self, size):
        if size < 1:
            raise ValueError(f"Need at least one rank, got {size}")
        self.size = size
        self._barrier = threading.Barrier(size)
        self._slots = [None] * size
        self.abort_code = None

    def communicators(self):
        return [ThreadCommunicator(self, rank) for rank in range(self.size)]

    def run(self, target, *args, **kwargs):
        """Run target(comm, *args, **kwargs) on every rank; return results.

        If a rank raises, the barrier is broken so that no peer blocks, and
        the first error that did not merely report a peer's abort is
        re-raised here after all threads have finished.
        """
        results = [None] * self.size
        errors = [None] * self.size

        def work(comm):
            configure(rank=comm.rank)
            try:
                results[comm.rank] = target(comm, *args, **kwargs)
            except BaseException as exc:
                errors[comm.rank] = exc
                self._barrier.abort()

        threads = [threading.Thread(target=work, args=(comm,),
                                    name=f"rank-{comm.rank}")
                   for comm in self.communicators()]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        raised = [exc for exc in errors if exc is not None]
        if raised:
            primary = [exc for exc in raised
                       if not isinstance(exc, CollectiveAborted)]
            raise (primary or raised)[0]
        return results


class ThreadCommunicator(Communicator):
    """One rank of a ThreadGroup."""

    def __init__(self, group, rank):
        self.group = group
        self.rank = rank
        self.size = group.size

    def _wait(self):
        try:
            self.group._barrier.wait()
        except threading.BrokenBarrierError:
            raise CollectiveAborted(
                f"rank {self.rank}: a peer rank aborted",
                self.group.abort_code) from None

    def barrier(self):
        self._wait()

    def allgather(self, obj):
        self.group._slots[self.rank] = obj
        self._wait()
        gathered = list(self.group._slots)
        # Second rendezvous: nobody overwrites a slot before all have read.
        self._wait()
        return gathered

    def reduce_sum(self, value, root=0):
        gathered = self.allgather(value)
        if self.rank != root:
            return None
        total = gathered[0]
        for part in gathered[1:]:
            total = total + part
        return total

    def abort(self, code):
        LOG.error("Aborting all %d ranks with code %d", self.size, code)
        self.group.abort_code = code
        self.group._barrier.abort()
        raise CollectiveAborted(f"rank {self.rank} aborted with code {code}",
                                code)


class MPICommunicator(Communicator):
    """Communicator over an mpi4py intra-communicator.

    Parameters
    ----------
    comm : mpi4py.MPI.Comm, optional
        Defaults to MPI.COMM_WORLD.
    """

    def __init__(self, comm=None):
        try:
            import mpi4py
        except ImportError as exc:
            raise PlasticnetError(
                "MPI execution requires mpi4py (pip install plasticnet[mpi])"
            ) from exc
        mpi4py.rc.errors = "fatal"
        from mpi4py import MPI

        self._MPI = MPI
        self.comm = comm if comm is not None else MPI.COMM_WORLD
        self.rank = self.comm.Get_rank()
        self.size = self.comm.Get_size()
        LOG.info("MPI backend: rank %d of %d", self.rank, self.size)

    def barrier(self):
        self.comm.barrier()

    def allgather(self, obj):
        return self.comm.allgather(obj)

    def reduce_sum(self, value, root=0):
        return self.comm.reduce(value, op=self._MPI.SUM, root=root)

    def abort(self, code):
        LOG.error("Aborting MPI job with code %d", code)
        self.comm.Abort(code)
