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

from .strategy import (
    Strategy,
    RealVar,
    CircularVar,
    EllipticVar,
    as_strategy,
    outer,
    elementwise,
    cov_diagonal,
    var_column,
)
from .computed import (
    Computed,
    ValueAdapter,
    ArrayAdapter,
    CallbackAdapter,
    as_computed,
)

from .mean import MeanAcc, MeanResult
from .variance import VarAcc, VarResult
from .covariance import CovAcc, CovResult
from .autocorr import AutocorrAcc, AutocorrResult

from .reducer import (
    ReducerSetup,
    AbstractReducer,
    SerialReducer,
    MPIReducer,
    ThreadReducerGroup,
    ThreadReducer,
    default_reducer,
    reduce_results,
)
from .archive import AbstractArchive, DictArchive

from .mc_stats import statistics

from mcstats.utils import _hide_submodules

_hide_submodules(__name__)
