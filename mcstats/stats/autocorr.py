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

import logging

import numpy as np

from mcstats.errors import LevelOutOfRangeError
from mcstats.utils import config

from ._core import check_valid, format_result, join_path, maybe_item
from .reducer import Reducible
from .strategy import Strategy, as_strategy
from .variance import VarAcc, VarData, VarResult

logger = logging.getLogger(__name__)


class AutocorrAcc:
    r"""
    Accumulator for the integrated autocorrelation time.

    The integrated autocorrelation time :math:`\tau` of a time series is defined
    as the large-:math:`n` limit of

    .. math::

        1 + 2\tau = n \frac{\sigma^2(n)}{\sigma^2(1)},

    where :math:`\sigma^2(n)` is the variance of the means of batches of
    :math:`n` consecutive elements of the series. The squared error of the
    mean of :math:`N` correlated samples is then

    .. math::

        \epsilon^2 = (1 + 2\tau) \frac{\sigma^2(1)}{N},

    which amounts to replacing :math:`N` with the number of uncorrelated
    samples. For a finite series, a tradeoff must be made between the validity
    of the first equation, which improves with :math:`n`, and the statistical
    uncertainty on :math:`\tau`, which improves with :math:`N/n`.

    The accumulator builds a hierarchy of variance estimates (levels) for
    batches of increasing size: level 0 averages batches of `batch_size`
    samples, and every following level averages `granularity` batches of the
    previous one. Levels are added as soon as the previous one completes its
    first batch, so that for `N` samples of size `k` the accumulator uses
    :math:`O(k \log N)` memory and :math:`O(k N \log\log N)` time.
    """

    def __init__(
        self,
        size: int = 1,
        batch_size: int = 1,
        granularity: int = 2,
        *,
        strategy=None,
    ):
        """
        Constructs an empty accumulator.

        Args:
            size: number of components of the samples.
            batch_size: number of samples averaged into one by level 0.
            granularity: factor by which the batch size grows from one level
                to the next.
            strategy: the variance :class:`~mcstats.stats.strategy.Strategy`
                (default :class:`~mcstats.stats.RealVar`).
        """
        if size < 0:
            raise ValueError(f"size must be non-negative, got {size}.")
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}.")
        if granularity < 2:
            raise ValueError(f"granularity must be at least 2, got {granularity}.")

        self._size = int(size)
        self._batch_size = int(batch_size)
        self._granularity = int(granularity)
        self._strategy = as_strategy(strategy)
        self.reset()

    @property
    def valid(self) -> bool:
        """False if :meth:`finalize` has been called."""
        return len(self._levels) > 0

    @property
    def size(self) -> int:
        return self._size

    @property
    def granularity(self) -> int:
        return self._granularity

    @property
    def strategy(self) -> Strategy:
        return self._strategy

    @property
    def count(self) -> int:
        """Number of samples added so far."""
        check_valid(self)
        return self._count

    @property
    def nlevel(self) -> int:
        """Number of levels of the hierarchy."""
        check_valid(self)
        return len(self._levels)

    def level(self, i: int) -> VarAcc:
        """Returns the accumulator of level `i`."""
        check_valid(self)
        return self._levels[i]

    def batch_size(self, level: int = 0) -> int:
        """Number of samples averaged in a batch of the given level."""
        return self._batch_size * self._granularity**level

    def reset(self):
        """Discards all accumulated data, making the accumulator valid again."""
        self._count = 0
        self._levels = [VarAcc(self._size, self._batch_size, strategy=self._strategy)]

    def _add_level(self):
        self._levels.append(
            VarAcc(self._size, self._granularity, strategy=self._strategy)
        )
        if config.mcstats_debug:
            logger.debug(
                "AutocorrAcc: added level %d (batch size %d) after %d samples",
                len(self._levels) - 1,
                self.batch_size(len(self._levels) - 1),
                self._count,
            )

    def add(self, source):
        """
        Adds a sample to the accumulator.

        The sample enters level 0. Whenever a level completes a batch, the
        mean of the batch is added to the next level as a new sample.

        Args:
            source: a :class:`~mcstats.stats.Computed` quantity, a scalar or a
                one-dimensional array of length `size`.

        Returns:
            The accumulator itself.
        """
        check_valid(self)
        value = self._levels[0]._push(source)
        self._count += 1
        i = 0
        while value is not None:
            i += 1
            if i == len(self._levels):
                self._add_level()
            value = self._levels[i]._push(value)
        return self

    def result(self) -> "AutocorrResult":
        """Returns a result holding a copy of the current statistics."""
        check_valid(self)
        return AutocorrResult(
            [level.result() for level in self._levels],
            self._batch_size,
            self._granularity,
        )

    def finalize(self) -> "AutocorrResult":
        """Moves the accumulated statistics into a result and invalidates the
        accumulator."""
        check_valid(self)
        levels, self._levels = self._levels, []
        return AutocorrResult(
            [level.finalize() for level in levels],
            self._batch_size,
            self._granularity,
        )

    def __repr__(self):
        state = f"count={self._count}, nlevel={self.nlevel}" if self.valid else "<finalized>"
        return (
            f"AutocorrAcc(size={self._size}, batch_size={self._batch_size}, "
            f"granularity={self._granularity}, strategy={self._strategy}, {state})"
        )


class AutocorrResult(Reducible):
    """Result of an :class:`AutocorrAcc`: the variance estimates of all levels
    of the binning hierarchy."""

    def __init__(self, levels, batch_size: int = 1, granularity: int = 2):
        self._levels = list(levels)
        self._batch_size = batch_size
        self._granularity = granularity
        self._nlevel_local = len(self._levels)

    @property
    def valid(self) -> bool:
        """False if the data of this result has been released."""
        return len(self._levels) > 0

    @property
    def strategy(self) -> Strategy:
        check_valid(self)
        return self._levels[0].strategy

    @property
    def size(self) -> int:
        check_valid(self)
        return self._levels[0].size

    @property
    def count(self) -> int:
        """Number of complete batches of level 0."""
        check_valid(self)
        return self._levels[0].count

    @property
    def nlevel(self) -> int:
        check_valid(self)
        return len(self._levels)

    @property
    def granularity(self) -> int:
        return self._granularity

    def level(self, i: int) -> VarResult:
        """Returns the variance result of level `i`."""
        check_valid(self)
        return self._levels[i]

    def batch_size(self, level: int = 0) -> int:
        """Number of samples averaged in a batch of the given level."""
        return self._batch_size * self._granularity**level

    def mean(self) -> np.ndarray:
        """Sample mean."""
        check_valid(self)
        return self._levels[0].mean()

    def var(self) -> np.ndarray:
        """Bias-corrected sample variance of the unbinned (level 0) series."""
        check_valid(self)
        return self._levels[0].var()

    def find_level(self, min_samples: int | None = None) -> int:
        """
        Returns the coarsest level holding at least `min_samples` samples.

        Args:
            min_samples: the reliability threshold. Defaults to the value of the
                flag `MCSTATS_AUTOCORR_MIN_SAMPLES` (256).

        Raises:
            ValueError: if `min_samples` is smaller than 2.
            LevelOutOfRangeError: if no level holds enough samples.
        """
        check_valid(self)
        if min_samples is None:
            min_samples = config.mcstats_autocorr_min_samples
        elif min_samples < 2:
            raise ValueError(
                f"min_samples must be at least 2 to estimate a variance, got "
                f"{min_samples}."
            )

        # counts decrease with the level
        for i in reversed(range(len(self._levels))):
            if self._levels[i].count >= min_samples:
                return i
        raise LevelOutOfRangeError(min_samples, [lvl.count for lvl in self._levels])

    def tau(self, min_samples: int | None = None) -> np.ndarray:
        """
        Integrated autocorrelation time of every component, in units of
        level-0 batches.

        Components without fluctuations have a vanishing autocorrelation time.

        Args:
            min_samples: see :meth:`find_level`.

        Raises:
            LevelOutOfRangeError: if no level holds `min_samples` samples.
        """
        lvl = self.find_level(min_samples)
        var0 = self._levels[0].var()
        varn = self._levels[lvl].var()
        n = self.batch_size(lvl) / self.batch_size(0)

        ratio = np.ones_like(var0)
        np.divide(n * varn, var0, out=ratio, where=var0 != 0)
        return 0.5 * (ratio - 1)

    def stderror(self, min_samples: int | None = None) -> np.ndarray:
        """
        Standard error of the mean, corrected for autocorrelations.

        This is the standard error of the level selected by :meth:`find_level`.
        When `count` is a multiple of the number `n` of level-0 batches binned
        by that level, it equals `sqrt((1 + 2 tau) var / count)`. Otherwise the
        incomplete batch is left out, and the standard error is smaller than
        that expression by the factor `sqrt(n * (count // n) / count)`, that
        is by a relative difference of at most `(count % n) / count`.

        Args:
            min_samples: see :meth:`find_level`.

        Raises:
            LevelOutOfRangeError: if no level holds `min_samples` samples.
        """
        return self._levels[self.find_level(min_samples)].stderror()

    def _pre_commit(self, reducer):
        check_valid(self)
        # All workers must register the same buffers, so they agree on the
        # number of levels first and pad the missing ones with empty levels.
        nlevel = reducer.get_max(len(self._levels))
        self._nlevel_local = len(self._levels)
        while len(self._levels) < nlevel:
            store = VarData(self.size, self.strategy)
            store.convert_to_mean()
            self._levels.append(VarResult(store))

        done = 0
        try:
            for level in self._levels:
                level._pre_commit(reducer)
                done += 1
        except Exception:
            for level in self._levels[:done]:
                level._abort_commit()
            del self._levels[self._nlevel_local :]
            raise

    def _abort_commit(self):
        for level in self._levels:
            level._abort_commit()
        # drop the empty levels added to match the other workers
        del self._levels[self._nlevel_local :]

    def _post_commit(self, setup):
        for level in self._levels:
            level._post_commit(setup)
        if not setup.is_root:
            self._levels = []

    def serialize(self, archive, path: str = ""):
        """Writes the result to `archive` under `path`: the number of levels,
        the batch sizes, and the variance result of every level."""
        check_valid(self)
        archive.write(join_path(path, "nlevel"), np.asarray(len(self._levels)))
        archive.write(join_path(path, "batch_size"), np.asarray(self._batch_size))
        archive.write(join_path(path, "granularity"), np.asarray(self._granularity))
        for i, level in enumerate(self._levels):
            level.serialize(archive, join_path(path, f"level/{i}"))

    @classmethod
    def deserialize(cls, archive, path: str = "", *, strategy=None):
        """Reads a result written by :meth:`serialize` from `archive`."""
        nlevel = int(archive.read(join_path(path, "nlevel")))
        levels = [
            VarResult.deserialize(
                archive, join_path(path, f"level/{i}"), strategy=strategy
            )
            for i in range(nlevel)
        ]
        return cls(
            levels,
            int(archive.read(join_path(path, "batch_size"))),
            int(archive.read(join_path(path, "granularity"))),
        )

    def _tau_and_error(self):
        try:
            return self.tau(), self.stderror()
        except LevelOutOfRangeError:
            nan = np.full(self.strategy.column_shape(self.size), np.nan)
            return nan, nan

    def to_dict(self):
        check_valid(self)
        tau, error = self._tau_and_error()
        return {
            "Mean": maybe_item(self.mean()),
            "Variance": maybe_item(self.var()),
            "Sigma": maybe_item(error),
            "TauCorr": maybe_item(tau),
            "Count": self.count,
        }

    def to_compound(self):
        return "Mean", self.to_dict()

    def __repr__(self):
        if not self.valid:
            return "AutocorrResult(<released>)"
        tau, error = self._tau_and_error()
        extra = f", τ={float(tau[0]):.1f}" if tau.shape == (1,) else ""
        return format_result(
            "AutocorrResult", self.mean(), error, self.var(), self.count, extra
        )
