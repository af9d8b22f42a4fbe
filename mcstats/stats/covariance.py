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

from ._core import check_valid, maybe_item
from .variance import VarAcc, VarData, VarResult
from .strategy import cov_diagonal, outer, var_column


class CovData(VarData):
    """Storage of the first moment and the full second moment matrix of a
    stream of samples.

    Same as :class:`~mcstats.stats.variance.VarData`, but `data2` holds the
    sum of outer products while accumulating, and the bias-corrected
    covariance matrix in mean form.
    """

    _moment_key = "cov"

    def _moment_shape(self, size):
        return self.strategy.cov_shape(size)

    def _moment_dtype(self):
        return self.strategy.cov_dtype

    def _outer(self, x, y):
        return outer(self.strategy, x, y)


class CovResult(VarResult):
    """Mean and covariance of a stream of samples, as returned by
    :meth:`CovAcc.result` and :meth:`CovAcc.finalize`."""

    _data_type = CovData

    def cov(self) -> np.ndarray:
        """Bias-corrected sample covariance matrix.

        The matrix is real symmetric for :class:`~mcstats.stats.RealVar`,
        complex hermitian for :class:`~mcstats.stats.CircularVar`, and made of
        real 2x2 blocks (shape `(size, size, 2, 2)`) for
        :class:`~mcstats.stats.EllipticVar`.
        """
        check_valid(self)
        return self._store.data2.copy()

    def var(self) -> np.ndarray:
        check_valid(self)
        strategy = self._store.strategy
        return var_column(strategy, cov_diagonal(strategy, self._store.data2)).copy()

    def to_dict(self):
        jsd = super().to_dict()
        jsd["Covariance"] = maybe_item(self.cov())
        return jsd


class CovAcc(VarAcc):
    """Accumulator for the mean and full covariance matrix of a stream of
    vector-valued samples.

    Uses O(size²) memory and O(size²) operations per sample.
    """

    _data_type = CovData
    _result_type = CovResult
