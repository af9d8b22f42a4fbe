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

import os
import warnings
from textwrap import dedent

from .config_flags import config

try:
    from mpi4py import MPI

    mpi_available = True

    # We do not use COMM_WORLD directly, so that reductions issued by mcstats
    # can never desync with collectives issued by user code.
    MPI_py_comm = MPI.COMM_WORLD.Create(MPI.COMM_WORLD.Get_group())

    n_nodes = MPI_py_comm.Get_size()
    rank = MPI_py_comm.Get_rank()

except ImportError:
    mpi_available = False
    MPI_py_comm = None
    n_nodes = 1
    rank = 0

    class FakeMPI:
        COMM_WORLD = None

    MPI = FakeMPI()

    # Try to detect if we are running under MPI and warn that mpi4py is not installed
    if config.FLAGS["MCSTATS_MPI_WARNING"]:
        _MPI_ENV_VARIABLES = [
            "OMPI_COMM_WORLD_SIZE",
            "I_MPI_HYDRA_HOST_FILE",
            "MPI_LOCALRANKID",
            "PMI_SIZE",
        ]
        for varname in _MPI_ENV_VARIABLES:
            if varname in os.environ:
                warnings.warn(
                    dedent(
                        """
                    MPI WARNING: It seems you might be running Python with MPI, but mpi4py,
                    which mcstats requires to reduce results across MPI ranks, is missing
                    or cannot be loaded, so MPI support is disabled.

                    Every MPI rank will execute the same code independently and
                    results will not be merged.

                    To enable MPI support, install the `mpi` extra (`pip install mcstats[mpi]`).

                    To disable this warning, set the environment variable `MCSTATS_MPI_WARNING=0`
                    """
                    )
                )
                break
