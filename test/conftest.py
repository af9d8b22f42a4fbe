import numpy as np
import pytest


@pytest.fixture
def _mpi_size(request):
    """
    Fixture returning the number of MPI nodes detected by mcstats
    """

    import mcstats

    return mcstats.utils.mpi.n_nodes


@pytest.fixture
def _mpi_rank(request):
    """
    Fixture returning the MPI rank detected by mcstats
    """

    import mcstats

    return mcstats.utils.mpi.rank


@pytest.fixture
def _mpi_comm(request):
    """
    Fixture returning the MPI communicator used by mcstats
    """

    from mcstats.utils.mpi import MPI_py_comm

    return MPI_py_comm


@pytest.fixture
def rng():
    """Seeded random generator, so that statistical tests are reproducible."""
    return np.random.default_rng(1234)


@pytest.fixture
def restore_config():
    """Restores the runtime flags modified by a test."""
    import mcstats

    names = ["MCSTATS_DEBUG", "MCSTATS_AUTOCORR_MIN_SAMPLES"]
    saved = {name: mcstats.config.FLAGS[name] for name in names}
    yield mcstats.config
    for name, value in saved.items():
        mcstats.config.update(name, value)
