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

import numpy as np

from ._core import check_valid, format_result, join_path, maybe_item
from .mean import MeanAcc, MeanData, MeanResult
from .strategy import Strategy, elementwise, var_column


class VarData(MeanData):
    """Storage of the first and (elementwise) second moments of a stream of
    samples.

    While accumulating, `data` holds the sum of the samples and `data2` the
    sum of their squares. In mean form, `data` holds the mean and `data2` the
    bias-corrected variance,

    .. math::

        \\sigma^2 = \\frac{\\sum_i x_i^2 - N \\bar x^2}{N - 1}.

    The variance is undefined (NaN) for less than two samples.
    """

    _moment_key = "var"

    def __init__(self, size: int, strategy: Strategy):
        super().__init__(size, strategy)
        self.data2 = np.zeros(self._moment_shape(size), dtype=self._moment_dtype())

    def _moment_shape(self, size):
        return self.strategy.var_shape(size)

    def _moment_dtype(self):
        return self.strategy.var_dtype

    def _outer(self, x, y):
        return elementwise(self.strategy, x, y)

    def buffers(self) -> list[np.ndarray]:
        return [self.data, self.data2, self.count_buffer]

    def add(self, value):
        self.data += value
        self.data2 += self._outer(value, value)
        self.count_buffer[0] += 1

    def reset(self):
        super().reset()
        self.data2.fill(0)

    def convert_to_mean(self):
        n = self.count
        if n == 0:
            self.data.fill(np.nan)
            self.data2.fill(np.nan)
            return

        self.data /= n
        if n == 1:
            self.data2.fill(np.nan)
        else:
            self.data2 -= n * self._outer(self.data, self.data)
            self.data2 /= n - 1

    def convert_to_sum(self):
        n = self.count
        if n == 0:
            self.data.fill(0)
            self.data2.fill(0)
            return

        if n == 1:
            self.data2[...] = self._outer(self.data, self.data)
        else:
            self.data2 *= n - 1
            self.data2 += n * self._outer(self.data, self.data)
        self.data *= n

    def serialize(self, archive, path):
        super().serialize(archive, path)
        archive.write(join_path(path, self._moment_key), self.data2)

    def deserialize(self, archive, path):
        super().deserialize(archive, path)
        self.data2[...] = archive.read(join_path(path, self._moment_key))


class VarResult(MeanResult):
    """Mean and variance of a stream of samples, as returned by
    :meth:`VarAcc.result` and :meth:`VarAcc.finalize`."""

    _data_type = VarData

    def var(self) -> np.ndarray:
        """Bias-corrected sample variance.

        For :class:`~mcstats.stats.EllipticVar` this has shape `(size, 2)`,
        holding the variances of the real and imaginary parts.
        """
        check_valid(self)
        return var_column(self._store.strategy, self._store.data2).copy()

    def stderror(self) -> np.ndarray:
        """Standard error of the mean, `sqrt(var / count)`, assuming
        uncorrelated samples."""
        check_valid(self)
        with np.errstate(divide="ignore", invalid="ignore"):
            return np.sqrt(self.var() / self._store.count)

    def to_dict(self):
        jsd = super().to_dict()
        jsd["Variance"] = maybe_item(self.var())
        jsd["Sigma"] = maybe_item(self.stderror())
        return jsd

    def __repr__(self):
        if not self.valid:
            return super().__repr__()
        return format_result(
            type(self).__name__, self.mean(), self.stderror(), self.var(), self.count
        )


class VarAcc(MeanAcc):
    """Accumulator for the mean and variance of a stream of vector-valued
    samples.

    Uses O(size) memory and O(size) operations per sample.

    Example::

        acc = VarAcc(size=2)
        for x in samples:
            acc.add(x)
        res = acc.finalize()
        print(res.mean(), res.stderror())
    """

    _data_type = VarData
    _result_type = VarResult
