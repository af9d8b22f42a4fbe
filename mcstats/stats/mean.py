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

"""Accumulator of the mean of a stream of vector-valued samples.

The classes in this module also define the life cycle shared by all
accumulators and results:

* accumulators are created empty and fed samples with :meth:`MeanAcc.add`.
  While accumulating, the statistics are stored as plain sums;
* :meth:`MeanAcc.result` returns a copy of the statistics converted to
  mean form, leaving the accumulator untouched;
* :meth:`MeanAcc.finalize` moves the storage of the accumulator into the
  returned result, leaving the accumulator invalid;
* results can be merged among several workers with :meth:`MeanResult.reduce`.
"""

import numpy as np

from mcstats.errors import SizeMismatchError

from ._core import Bundle, check_valid, join_path, maybe_item
from .computed import as_computed
from .reducer import Reducible
from .strategy import Strategy, as_strategy


class MeanData:
    """Storage of the first moment of a stream of samples.

    While accumulating, `data` holds the sum of the samples. After
    :meth:`convert_to_mean` it holds their mean. The number of samples is
    kept in a one-element buffer, so that it can be reduced in place.
    """

    def __init__(self, size: int, strategy: Strategy):
        self.strategy = strategy
        self.data = np.zeros(size, dtype=strategy.dtype)
        self.count_buffer = np.zeros(1, dtype=np.int64)

    @property
    def size(self) -> int:
        return self.data.shape[0]

    @property
    def count(self) -> int:
        return int(self.count_buffer[0])

    @count.setter
    def count(self, value: int):
        self.count_buffer[0] = value

    def buffers(self) -> list[np.ndarray]:
        """The numeric buffers to be sum-reduced among workers."""
        return [self.data, self.count_buffer]

    def add(self, value):
        self.data += value
        self.count_buffer[0] += 1

    def reset(self):
        self.data.fill(0)
        self.count = 0

    def copy(self):
        other = type(self).__new__(type(self))
        other.strategy = self.strategy
        for name, value in vars(self).items():
            if isinstance(value, np.ndarray):
                setattr(other, name, value.copy())
        return other

    def convert_to_mean(self):
        if self.count == 0:
            self.data.fill(np.nan)
        else:
            self.data /= self.count

    def convert_to_sum(self):
        if self.count == 0:
            self.data.fill(0)
        else:
            self.data *= self.count

    def serialize(self, archive, path):
        archive.write(join_path(path, "size"), np.asarray(self.size))
        archive.write(join_path(path, "count"), np.asarray(self.count))
        archive.write(join_path(path, "mean"), self.data)

    def deserialize(self, archive, path):
        size = int(archive.read(join_path(path, "size")))
        if size != self.size:
            raise SizeMismatchError(self.size, size)
        mean = archive.read(join_path(path, "mean"))
        if mean.shape[0] != size:
            raise SizeMismatchError(size, mean.shape[0])
        self.count = int(archive.read(join_path(path, "count")))
        self.data[...] = mean


class MeanResult(Reducible):
    """Mean of a stream of samples, as returned by :meth:`MeanAcc.result` and
    :meth:`MeanAcc.finalize`."""

    _data_type = MeanData

    def __init__(self, store=None):
        self._store = store

    @property
    def valid(self) -> bool:
        """False if the data of this result has been released."""
        return self._store is not None

    @property
    def strategy(self) -> Strategy:
        check_valid(self)
        return self._store.strategy

    @property
    def size(self) -> int:
        """Number of components of the samples."""
        check_valid(self)
        return self._store.size

    @property
    def count(self) -> int:
        """Number of samples (complete batches) in the result."""
        check_valid(self)
        return self._store.count

    def mean(self) -> np.ndarray:
        """Sample mean."""
        check_valid(self)
        return self._store.data.copy()

    def _pre_commit(self, reducer):
        check_valid(self)
        self._store.convert_to_sum()
        for buffer in self._store.buffers():
            reducer.reduce(buffer)

    def _abort_commit(self):
        if self.valid:
            self._store.convert_to_mean()

    def _post_commit(self, setup):
        if setup.is_root:
            self._store.convert_to_mean()
        else:
            self._store = None

    def serialize(self, archive, path: str = ""):
        """Writes the result to `archive` under `path`."""
        check_valid(self)
        self._store.serialize(archive, path)

    @classmethod
    def deserialize(cls, archive, path: str = "", *, strategy=None):
        """Reads a result written by :meth:`serialize` from `archive`."""
        size = int(archive.read(join_path(path, "size")))
        store = cls._data_type(size, as_strategy(strategy))
        store.deserialize(archive, path)
        return cls(store)

    def to_dict(self):
        check_valid(self)
        return {"Mean": maybe_item(self.mean()), "Count": self.count}

    def to_compound(self):
        return "Mean", self.to_dict()

    def __repr__(self):
        if not self.valid:
            return f"{type(self).__name__}(<released>)"
        return f"{type(self).__name__}(size={self.size}, count={self.count})"


class MeanAcc:
    """Accumulator for the mean of a stream of vector-valued samples.

    Samples are averaged in batches of `batch_size` before they enter the
    statistics, so that `count` is the number of complete batches.
    """

    _data_type = MeanData
    _result_type = MeanResult

    def __init__(self, size: int = 1, batch_size: int = 1, *, strategy=None):
        """
        Constructs an empty accumulator.

        Args:
            size: number of components of the samples.
            batch_size: number of consecutive samples averaged into one
                (default 1).
            strategy: the :class:`~mcstats.stats.strategy.Strategy` fixing the
                data type and the variance convention (default
                :class:`~mcstats.stats.RealVar`).
        """
        if size < 0:
            raise ValueError(f"size must be non-negative, got {size}.")
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}.")

        self._size = int(size)
        self._strategy = as_strategy(strategy)
        self._bundle = Bundle(self._size, int(batch_size), self._strategy.dtype)
        self._store = self._data_type(self._size, self._strategy)

    @property
    def valid(self) -> bool:
        """False if :meth:`finalize` has been called."""
        return self._store is not None

    @property
    def size(self) -> int:
        """Number of components of the samples."""
        return self._size

    @property
    def batch_size(self) -> int:
        return self._bundle.batch_size

    @property
    def strategy(self) -> Strategy:
        return self._strategy

    @property
    def count(self) -> int:
        """Number of complete batches accumulated so far."""
        check_valid(self)
        return self._store.count

    def reset(self):
        """Discards all accumulated data, making the accumulator valid again."""
        self._bundle.reset()
        if self.valid:
            self._store.reset()
        else:
            self._store = self._data_type(self._size, self._strategy)

    def add(self, source):
        """
        Adds a sample to the accumulator.

        Args:
            source: a :class:`~mcstats.stats.Computed` quantity, a scalar or a
                one-dimensional array of length `size`.

        Returns:
            The accumulator itself.

        Raises:
            FinalizedAccumulatorError: if the accumulator has been finalized.
            SizeMismatchError: if the sample does not have `size` components.
        """
        self._push(source)
        return self

    def _push(self, source):
        # returns the mean of the batch completed by `source`, if any
        check_valid(self)
        source = as_computed(source)
        if source.size != self._size:
            raise SizeMismatchError(self._size, source.size)

        source.add_to(self._bundle.sum)
        self._bundle.count += 1

        if self._bundle.is_full:
            return self._add_bundle()
        return None

    def _add_bundle(self):
        value = self._bundle.mean()
        self._store.add(value)
        self._bundle.reset()
        return value

    def result(self):
        """Returns a result holding a copy of the current statistics."""
        check_valid(self)
        store = self._store.copy()
        store.convert_to_mean()
        return self._result_type(store)

    def finalize(self):
        """Moves the accumulated statistics into a result and invalidates the
        accumulator."""
        check_valid(self)
        store, self._store = self._store, None
        store.convert_to_mean()
        return self._result_type(store)

    def __repr__(self):
        state = f"count={self._store.count}" if self.valid else "<finalized>"
        return (
            f"{type(self).__name__}(size={self._size}, "
            f"batch_size={self.batch_size}, strategy={self._strategy}, {state})"
        )
