# Copyright 2024 The mcstats Authors - All rights reserved.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Sum-reduction of results computed by independent workers.

A reducer is the transport used to merge results. Reducing a result is a
collective operation made of three phases:

1. *pre-commit*: every result converts its statistics back to sum form and
   registers its buffers with :meth:`AbstractReducer.reduce`;
2. *commit*: :meth:`AbstractReducer.commit` sums all registered buffers over
   all workers onto the root. This is the only blocking step, and it only
   returns once every worker has called it. A commit cannot be cancelled;
3. *post-commit*: the root converts the summed buffers back to mean form,
   normalising with the global sample count, while all other workers release
   their results.

Registering the buffers of several results before a single commit allows to
merge them with a single rendezvous (see :func:`reduce_results`).
"""

import abc
import logging
import threading
from dataclasses import dataclass

import numpy as np

from mcstats.errors import ReductionFailedError
from mcstats.utils import config, mpi

from ._core import check_valid

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReducerSetup:
    """Description of the position of a worker within a reduction."""

    rank: int
    """Index of this worker."""
    size: int
    """Number of workers taking part in the reduction."""
    is_root: bool
    """Whether this worker holds the result of the reduction."""


class AbstractReducer(abc.ABC):
    """Abstract base class of all transports used to merge results."""

    @abc.abstractmethod
    def get_setup(self) -> ReducerSetup:
        """Returns the position of this worker within the reduction."""

    @abc.abstractmethod
    def reduce(self, buffer: np.ndarray):
        """Registers `buffer` to be sum-reduced in place by the next commit."""

    @abc.abstractmethod
    def commit(self):
        """Sum-reduces all registered buffers among all workers. Blocks until
        all workers have called it.

        Raises:
            ReductionFailedError: if the transport failed. The registered
                buffers are then left untouched.
        """

    @abc.abstractmethod
    def get_max(self, value: int) -> int:
        """Returns the maximum of `value` over all workers (collective)."""

    def discard(self):
        """Forgets the buffers registered since the last commit."""


def _pack(buffers) -> np.ndarray:
    # All registered buffers are summed through one contiguous float64 buffer,
    # so that a commit is a single collective. Counts are exact up to 2**53.
    parts = []
    for buffer in buffers:
        if np.iscomplexobj(buffer):
            parts.append(np.ascontiguousarray(buffer).reshape(-1).view(np.float64))
        else:
            parts.append(np.asarray(buffer, dtype=np.float64).reshape(-1))
    if not parts:
        return np.zeros(0, dtype=np.float64)
    return np.concatenate(parts)


def _unpack(flat, buffers):
    offset = 0
    for buffer in buffers:
        n = buffer.size * (2 if np.iscomplexobj(buffer) else 1)
        chunk = flat[offset : offset + n]
        if np.iscomplexobj(buffer):
            buffer[...] = chunk.view(np.complex128).reshape(buffer.shape)
        elif np.issubdtype(buffer.dtype, np.integer):
            buffer[...] = np.rint(chunk).astype(buffer.dtype).reshape(buffer.shape)
        else:
            buffer[...] = chunk.reshape(buffer.shape)
        offset += n


class _QueuedReducer(AbstractReducer):
    # Base of the reducers deferring all work to `commit`.

    def __init__(self):
        self._queue = []

    def reduce(self, buffer):
        if not isinstance(buffer, np.ndarray):
            raise TypeError("Only numpy arrays can be reduced in place.")
        self._queue.append(buffer)

    def discard(self):
        self._queue = []

    def commit(self):
        buffers, self._queue = self._queue, []
        if config.mcstats_debug:
            logger.debug(
                "%s: committing %d buffers (%d elements)",
                type(self).__name__,
                len(buffers),
                sum(b.size for b in buffers),
            )
        flat = _pack(buffers)
        flat = self._sum_to_root(flat)
        if self.get_setup().is_root:
            _unpack(flat, buffers)

    @abc.abstractmethod
    def _sum_to_root(self, flat: np.ndarray) -> np.ndarray:
        pass


class SerialReducer(_QueuedReducer):
    """Reducer for a single worker: the reduction is the identity."""

    def get_setup(self):
        return ReducerSetup(rank=0, size=1, is_root=True)

    def _sum_to_root(self, flat):
        return flat

    def get_max(self, value):
        return value


class MPIReducer(_QueuedReducer):
    """Sum-reduction among the ranks of an MPI communicator, through mpi4py.

    All buffers registered before a commit are reduced with a single
    `MPI_Reduce` onto the root rank.
    """

    def __init__(self, comm=None, root: int = 0):
        """
        Args:
            comm: the mpi4py intra-communicator to use. Defaults to a
                duplicate of `COMM_WORLD` reserved to mcstats.
            root: the rank which holds the results of the reductions.
        """
        if not mpi.mpi_available:
            raise RuntimeError(
                "MPIReducer requires mpi4py. "
                "Install it with `pip install mcstats[mpi]`."
            )
        super().__init__()
        if comm is None:
            comm = mpi.MPI_py_comm
        if comm.Is_inter():
            raise ValueError(
                "Unable to use in-place reductions on an intercommunicator."
            )
        if not 0 <= root < comm.Get_size():
            raise ValueError(
                f"Invalid root rank {root} for a communicator of size "
                f"{comm.Get_size()}."
            )

        self._comm = comm
        self._root = root

    @property
    def comm(self):
        return self._comm

    @property
    def root(self) -> int:
        return self._root

    def get_setup(self):
        rank = self._comm.Get_rank()
        return ReducerSetup(
            rank=rank, size=self._comm.Get_size(), is_root=rank == self._root
        )

    def _sum_to_root(self, flat):
        MPI = mpi.MPI
        try:
            if self._comm.Get_rank() == self._root:
                self._comm.Reduce(MPI.IN_PLACE, flat, op=MPI.SUM, root=self._root)
            else:
                self._comm.Reduce(flat, None, op=MPI.SUM, root=self._root)
        except MPI.Exception as err:
            raise ReductionFailedError(str(err)) from err
        return flat

    def get_max(self, value):
        MPI = mpi.MPI
        try:
            return self._comm.allreduce(value, op=MPI.MAX)
        except MPI.Exception as err:
            raise ReductionFailedError(str(err)) from err


class ThreadReducerGroup:
    """Rendezvous point for reductions among workers running in the threads
    of a single process.

    Every worker obtains its own reducer with :meth:`reducer`, and all of them
    must take part in every commit.

    Example::

        group = ThreadReducerGroup(4)

        def work(rank):
            acc = VarAcc()
            ...
            res = acc.finalize()
            res.reduce(group.reducer(rank))
            return res

        with ThreadPoolExecutor(4) as pool:
            results = list(pool.map(work, range(4)))
        # only results[0] is valid and holds the merged statistics
    """

    def __init__(self, n_workers: int, root: int = 0):
        if n_workers < 1:
            raise ValueError(f"n_workers must be at least 1, got {n_workers}.")
        if not 0 <= root < n_workers:
            raise ValueError(f"Invalid root {root} for {n_workers} workers.")
        self.n_workers = n_workers
        self.root = root
        self._barrier = threading.Barrier(n_workers)
        self._slots = [None] * n_workers

    def reducer(self, rank: int) -> "ThreadReducer":
        """Returns the reducer of the worker `rank`."""
        if not 0 <= rank < self.n_workers:
            raise ValueError(f"Invalid rank {rank} for {self.n_workers} workers.")
        return ThreadReducer(self, rank)

    def abort(self):
        """Breaks the rendezvous: all pending and future commits fail with
        :class:`~mcstats.errors.ReductionFailedError`."""
        self._barrier.abort()

    def _wait(self):
        try:
            self._barrier.wait()
        except threading.BrokenBarrierError as err:
            raise ReductionFailedError("the rendezvous was aborted") from err

    def _exchange(self, rank, value, combine, to_all=False):
        # deposit, wait for everybody, combine, wait until everybody has read
        self._slots[rank] = value
        self._wait()
        result = None
        if to_all or rank == self.root:
            try:
                result = combine(self._slots)
            except ReductionFailedError:
                self._barrier.abort()
                raise
        self._wait()
        return result


class ThreadReducer(_QueuedReducer):
    """Reducer of a single worker of a :class:`ThreadReducerGroup`."""

    def __init__(self, group: ThreadReducerGroup, rank: int):
        super().__init__()
        self._group = group
        self._rank = rank

    def get_setup(self):
        return ReducerSetup(
            rank=self._rank,
            size=self._group.n_workers,
            is_root=self._rank == self._group.root,
        )

    def _sum_to_root(self, flat):
        total = self._group._exchange(self._rank, flat.copy(), _sum_flat)
        return total if total is not None else flat

    def get_max(self, value):
        return self._group._exchange(self._rank, value, max, to_all=True)


def _sum_flat(slots):
    sizes = {slot.size for slot in slots}
    if len(sizes) != 1:
        raise ReductionFailedError(
            f"the workers registered buffers of different sizes {sorted(sizes)}"
        )
    return np.sum(slots, axis=0)


def default_reducer() -> AbstractReducer:
    """Returns a :class:`MPIReducer` when running under MPI with more than one
    rank, and a :class:`SerialReducer` otherwise."""
    if mpi.mpi_available and mpi.n_nodes > 1:
        return MPIReducer()
    return SerialReducer()


def reduce_results(results, reducer=None):
    """
    Merges several results with those of all other workers, through a single
    commit of the reducer.

    All workers must call this function collectively, with the same sequence
    of results (of the same types and sizes). Afterwards only the root holds
    valid, merged results.

    Args:
        results: an iterable of results.
        reducer: the reducer to use. Defaults to :func:`default_reducer`.

    Raises:
        FinalizedAccumulatorError: if any of the results is invalid. Nothing
            is registered with the reducer in this case.
        ReductionFailedError: if the transport failed. The results are then
            left as they were before the call.
    """
    if reducer is None:
        reducer = default_reducer()
    results = list(results)
    for res in results:
        check_valid(res)

    pending = []
    try:
        for res in results:
            res._pre_commit(reducer)
            pending.append(res)
        reducer.commit()
    except Exception:
        # no partially reduced result may be left behind
        reducer.discard()
        for res in pending:
            res._abort_commit()
        raise
    setup = reducer.get_setup()
    for res in results:
        res._post_commit(setup)
    if config.mcstats_debug:
        logger.debug(
            "reduced %d results on rank %d/%d", len(results), setup.rank, setup.size
        )


class Reducible:
    """Mixin for results which can be merged among workers.

    Subclasses implement the three phases of a reduction, `_pre_commit`,
    `_post_commit` and `_abort_commit` (restoring the state preceding
    `_pre_commit` after a failed commit).
    """

    def reduce(self, reducer=None, *, pre_commit=True, post_commit=True):
        """
        Merges this result with the corresponding results of all other workers
        through a sum-reduction.

        All workers must call this method collectively. Afterwards, only the
        worker for which the reducer reports `is_root` holds the merged
        result, while the results of all other workers are invalid.

        The reduction can be split into its two halves, to reduce several
        results through a single commit of the reducer: call this method with
        `post_commit=False` on all results, then `reducer.commit()`, then call
        it with `pre_commit=False` on all results. :func:`reduce_results` does
        exactly this.

        Args:
            reducer: the :class:`AbstractReducer` to use. Defaults to
                :func:`default_reducer`.
            pre_commit: whether to register the buffers with the reducer.
            post_commit: whether to convert back the reduced buffers.

        Raises:
            FinalizedAccumulatorError: if this result is invalid.
            ReductionFailedError: if the transport failed.
        """
        if reducer is None:
            reducer = default_reducer()

        if pre_commit and post_commit:
            reduce_results([self], reducer)
            return
        if pre_commit:
            self._pre_commit(reducer)
        if post_commit:
            self._post_commit(reducer.get_setup())
