import numpy as np
import pytest

from mcstats.errors import FinalizedAccumulatorError, LevelOutOfRangeError
from mcstats.stats import (
    AutocorrAcc,
    AutocorrResult,
    CircularVar,
    EllipticVar,
    VarResult,
)


def _accumulate(data, **kwargs):
    data = np.asarray(data)
    if data.ndim == 1:
        data = data.reshape(-1, 1)
    acc = AutocorrAcc(data.shape[1], **kwargs)
    for x in data:
        acc.add(x)
    return acc


def _ar1(rng, n, phi):
    noise = rng.normal(size=n)
    x = np.empty(n)
    x[0] = noise[0] / np.sqrt(1 - phi**2)
    for i in range(1, n):
        x[i] = phi * x[i - 1] + noise[i]
    return x


def test_small_scenario():
    acc = _accumulate([1.0, 3.0, 5.0, 7.0])
    assert acc.count == 4

    res = acc.finalize()
    assert isinstance(res, AutocorrResult)
    assert res.count == 4
    np.testing.assert_allclose(res.mean(), [4.0])
    np.testing.assert_allclose(res.var(), [20.0 / 3.0])

    # level 1 holds the means of consecutive pairs
    assert res.level(1).count == 2
    np.testing.assert_allclose(res.level(1).mean(), [4.0])
    np.testing.assert_allclose(res.level(1).var(), [8.0])
    assert res.level(2).count == 1

    assert res.find_level(2) == 1
    np.testing.assert_allclose(res.tau(min_samples=2), [0.7])
    np.testing.assert_allclose(res.stderror(min_samples=2), [2.0])


def test_levels_are_created_lazily():
    acc = AutocorrAcc(1, batch_size=2, granularity=3)
    assert acc.nlevel == 1

    acc.add(1.0)
    assert acc.nlevel == 1
    acc.add(1.0)
    # level 0 completed its first batch
    assert acc.nlevel == 2
    assert acc.level(1).batch_size == 3

    for _ in range(4):
        acc.add(1.0)
    assert acc.level(0).count == 3
    assert acc.level(1).count == 1
    assert acc.nlevel == 3

    assert acc.batch_size(0) == 2
    assert acc.batch_size(2) == 18


def test_batch_size_counts():
    acc = _accumulate(np.arange(10.0), batch_size=2)
    assert acc.count == 10

    res = acc.result()
    assert res.count == 5
    assert res.batch_size(1) == 4
    np.testing.assert_allclose(res.mean(), [4.5])


def test_constant_stream():
    acc = AutocorrAcc(2)
    for _ in range(2**10):
        acc.add([0.75, -1.5])
    res = acc.finalize()

    np.testing.assert_array_equal(res.var(), [0.0, 0.0])
    np.testing.assert_array_equal(res.tau(min_samples=2), [0.0, 0.0])
    np.testing.assert_array_equal(res.stderror(min_samples=2), [0.0, 0.0])


def test_iid_real(rng):
    res = _accumulate(rng.normal(size=(2**15, 2))).finalize()
    assert np.all(np.abs(res.tau(min_samples=128)) < 0.3)


@pytest.mark.parametrize("strategy", [CircularVar(), EllipticVar()])
def test_iid_complex(strategy, rng):
    n = 2**15
    data = rng.normal(size=(n, 2)) + 1j * rng.normal(scale=2.0, size=(n, 2))
    res = _accumulate(data, strategy=strategy).finalize()

    tau = res.tau(min_samples=128)
    assert tau.shape == strategy.column_shape(2)
    assert np.all(np.abs(tau) < 0.3)


def test_correlated_series(rng):
    # for an AR(1) process 1 + 2 tau = (1 + phi) / (1 - phi)
    phi = 0.9
    x = _ar1(rng, 2**16, phi)
    res = _accumulate(x).finalize()

    tau = res.tau(min_samples=512)[0]
    assert 5.5 < tau < 11.5

    naive = np.sqrt(res.var() / res.count)
    assert res.stderror(min_samples=512)[0] > 3 * naive[0]


def test_stderror_matches_tau(rng):
    n = 2**10
    res = _accumulate(rng.normal(size=(n, 3))).finalize()

    tau = res.tau(min_samples=16)
    np.testing.assert_allclose(
        res.stderror(min_samples=16), np.sqrt((1 + 2 * tau) * res.var() / n)
    )


def test_circular_error_is_sum_of_elliptic_errors(rng):
    n = 2**12
    data = rng.normal(size=(n, 2)) + 1j * rng.normal(size=(n, 2))
    circ = _accumulate(data, strategy=CircularVar()).finalize()
    ell = _accumulate(data, strategy=EllipticVar()).finalize()

    np.testing.assert_allclose(
        circ.stderror(min_samples=32) ** 2,
        np.sum(ell.stderror(min_samples=32) ** 2, axis=-1),
    )


def test_default_min_samples(restore_config):
    res = _accumulate(np.arange(600.0)).finalize()
    # 600 // 2 = 300 >= 256 but 600 // 4 = 150 < 256
    assert res.find_level() == 1

    restore_config.mcstats_autocorr_min_samples = 100
    assert res.find_level() == 2


def test_level_out_of_range():
    res = _accumulate([1.0, 2.0, 3.0]).finalize()

    with pytest.raises(LevelOutOfRangeError) as excinfo:
        res.tau(min_samples=10)
    assert excinfo.value.min_samples == 10
    assert isinstance(excinfo.value, IndexError)

    with pytest.raises(LevelOutOfRangeError):
        res.stderror(min_samples=10)

    # the summary is still available, with missing fields
    d = res.to_dict()
    assert d["Mean"] == pytest.approx(2.0)
    assert np.isnan(d["TauCorr"])
    assert np.isnan(d["Sigma"])


def test_finalize_and_reset():
    acc = _accumulate([1.0, 2.0, 3.0, 4.0])
    res = acc.finalize()
    assert not acc.valid
    assert isinstance(res.level(0), VarResult)

    with pytest.raises(FinalizedAccumulatorError):
        acc.add(1.0)
    with pytest.raises(FinalizedAccumulatorError):
        acc.result()
    with pytest.raises(FinalizedAccumulatorError):
        acc.nlevel

    acc.reset()
    assert acc.valid
    assert acc.count == 0
    assert acc.nlevel == 1


def test_reset_restores_empty_state(rng):
    acc = _accumulate(rng.normal(size=37))
    acc.reset()
    for x in [1.0, 3.0, 5.0, 7.0]:
        acc.add(x)

    res = acc.result()
    assert res.nlevel == 4
    np.testing.assert_allclose(res.tau(min_samples=2), [0.7])


def test_result_is_a_snapshot():
    acc = _accumulate([1.0, 3.0])
    res = acc.result()
    acc.add(5.0).add(7.0)

    assert res.count == 2
    assert acc.result().count == 4


@pytest.mark.parametrize(
    "kwargs", [{"batch_size": 0}, {"granularity": 1}, {"size": -2}]
)
def test_invalid_arguments(kwargs):
    with pytest.raises(ValueError):
        AutocorrAcc(**kwargs)


def test_repr(rng):
    res = _accumulate(rng.normal(size=1024)).finalize()
    assert "τ=" in repr(res)
    assert "AutocorrAcc" in repr(AutocorrAcc())


@pytest.mark.parametrize("min_samples", [0, 1, -4])
def test_min_samples_too_small(min_samples):
    res = _accumulate([1.0, 3.0, 5.0, 7.0]).finalize()

    with pytest.raises(ValueError):
        res.find_level(min_samples)
    with pytest.raises(ValueError):
        res.tau(min_samples=min_samples)
    with pytest.raises(ValueError):
        res.stderror(min_samples=min_samples)


@pytest.mark.parametrize("n", [1000, 777])
def test_stderror_with_incomplete_batches(n, rng):
    res = _accumulate(rng.normal(size=(n, 2))).finalize()

    lvl = res.find_level(16)
    binned = res.batch_size(lvl)
    assert n % binned != 0

    tau = res.tau(min_samples=16)
    ratio = res.stderror(min_samples=16) / np.sqrt((1 + 2 * tau) * res.var() / n)
    np.testing.assert_allclose(ratio, np.sqrt(binned * (n // binned) / n))
    assert np.all(ratio >= 1 - (n % binned) / n)
    assert np.all(ratio <= 1)
