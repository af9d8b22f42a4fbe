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

from .autocorr import AutocorrAcc, AutocorrResult
from .strategy import CircularVar, RealVar


def statistics(
    data, batch_size: int = 1, granularity: int = 2, *, strategy=None
) -> AutocorrResult:
    r"""
    Returns statistics of a given array (or matrix, see below) containing a
    stream of data. This is particularly useful to analyze Markov Chain data,
    but it can be used also for other type of time series.

    Args:
        data (vector or matrix): The input data. It can be real or complex valued.
            * if a vector, it is assumed that this is a time series of scalars;
            * if a matrix, the rows :code:`data[i]` are the successive samples
              of a time series of vectors with :code:`data.shape[1]` components.
        batch_size: number of samples averaged by the first binning level.
        granularity: growth factor of the batch size between binning levels.
        strategy: the variance strategy. Defaults to
            :class:`~mcstats.stats.CircularVar` for complex data and to
            :class:`~mcstats.stats.RealVar` otherwise.

    Returns:
        AutocorrResult:
        The mean (:code:`.mean()`, :code:`["Mean"]`), the variance
        (:code:`.var()`, :code:`["Variance"]`), the error of the mean corrected
        for autocorrelations (:code:`.stderror()`, :code:`["Sigma"]`) and the
        integrated autocorrelation time (:code:`.tau()`, :code:`["TauCorr"]`)
        of the series. The dictionary-style fields are available through
        :code:`to_dict()`.
    """
    data = np.asarray(data)
    if data.ndim == 1:
        data = data.reshape(-1, 1)
    elif data.ndim != 2:
        raise ValueError(
            f"statistics expects a vector or a matrix, got an array of shape "
            f"{data.shape}."
        )

    if strategy is None:
        strategy = CircularVar() if np.iscomplexobj(data) else RealVar()

    acc = AutocorrAcc(
        data.shape[1], batch_size, granularity, strategy=strategy
    )
    for sample in data:
        acc.add(sample)
    return acc.finalize()
