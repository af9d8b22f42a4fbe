from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from mcstats.errors import FinalizedAccumulatorError, ReductionFailedError
from mcstats.stats import (
    AutocorrAcc,
    CircularVar,
    CovAcc,
    EllipticVar,
    MeanAcc,
    SerialReducer,
    ThreadReducerGroup,
    VarAcc,
    default_reducer,
    reduce_results,
)


def _accumulate(acc, data):
    for x in data:
        acc.add(x)
    return acc


def _run_workers(n_workers, work):
    with ThreadPoolExecutor(n_workers) as pool:
        futures = [pool.submit(work, rank) for rank in range(n_workers)]
        return [f.result(timeout=30) for f in futures]


def _results_or_errors(n_workers, work):
    with ThreadPoolExecutor(n_workers) as pool:
        futures = [pool.submit(work, rank) for rank in range(n_workers)]
        return [f.exception(timeout=30) or f.result() for f in futures]


def test_serial_reducer_is_identity():
    acc = _accumulate(VarAcc(2), [[1.0, 2.0], [3.0, 5.0], [2.0, 2.0]])
    expected = acc.result()
    res = acc.finalize()

    res.reduce(SerialReducer())
    assert res.valid
    np.testing.assert_allclose(res.mean(), expected.mean())
    np.testing.assert_allclose(res.var(), expected.var())
    assert res.count == 3


def test_default_reducer():
    from mcstats.utils import mpi

    if mpi.n_nodes == 1:
        assert isinstance(default_reducer(), SerialReducer)
        res = VarAcc().add(1.0).finalize()
        res.reduce()
        assert res.valid


@pytest.mark.parametrize("acc_type", [MeanAcc, VarAcc, CovAcc])
@pytest.mark.parametrize("strategy", [None, CircularVar(), EllipticVar()])
def test_thread_reduction(acc_type, strategy, rng):
    n_workers = 4
    data = rng.normal(size=(4 * 25, 3))
    if strategy is not None:
        data = data + 1j * rng.normal(size=(4 * 25, 3))
    chunks = np.array_split(data, n_workers)

    group = ThreadReducerGroup(n_workers)

    def work(rank):
        res = _accumulate(acc_type(3, strategy=strategy), chunks[rank]).finalize()
        res.reduce(group.reducer(rank))
        return res

    results = _run_workers(n_workers, work)
    expected = _accumulate(acc_type(3, strategy=strategy), data).finalize()

    assert results[0].valid
    assert not any(res.valid for res in results[1:])
    assert results[0].count == 100
    np.testing.assert_allclose(results[0].mean(), expected.mean())
    if acc_type is not MeanAcc:
        np.testing.assert_allclose(results[0].var(), expected.var())
    if acc_type is CovAcc:
        np.testing.assert_allclose(results[0].cov(), expected.cov())

    with pytest.raises(FinalizedAccumulatorError):
        results[1].mean()


def test_thread_reduction_other_root(rng):
    data = rng.normal(size=(30, 1))
    chunks = np.array_split(data, 3)
    group = ThreadReducerGroup(3, root=2)

    def work(rank):
        res = _accumulate(VarAcc(), chunks[rank]).finalize()
        res.reduce(group.reducer(rank))
        return res

    results = _run_workers(3, work)
    assert [res.valid for res in results] == [False, False, True]
    np.testing.assert_allclose(results[2].var(), data.var(axis=0, ddof=1))


def test_reduction_with_degenerate_workers():
    # one worker saw no samples and one saw a single sample
    chunks = [[1.0, 2.0, 3.0], [], [4.0]]
    group = ThreadReducerGroup(3)

    def work(rank):
        res = _accumulate(VarAcc(), chunks[rank]).finalize()
        res.reduce(group.reducer(rank))
        return res

    res = _run_workers(3, work)[0]
    assert res.count == 4
    np.testing.assert_allclose(res.mean(), [2.5])
    np.testing.assert_allclose(res.var(), [np.var([1.0, 2.0, 3.0, 4.0], ddof=1)])


def test_autocorr_reduction_with_different_depths(rng):
    # the workers build hierarchies of different depth
    chunks = [rng.normal(size=64), rng.normal(size=5), rng.normal(size=17)]
    group = ThreadReducerGroup(3)

    def work(rank):
        res = _accumulate(AutocorrAcc(), chunks[rank]).finalize()
        res.reduce(group.reducer(rank))
        return res

    results = _run_workers(3, work)
    res = results[0]
    assert not results[1].valid
    assert res.nlevel == _accumulate(AutocorrAcc(), chunks[0]).nlevel

    data = np.concatenate(chunks)
    assert res.count == data.size
    np.testing.assert_allclose(res.mean(), [data.mean()])
    np.testing.assert_allclose(res.var(), [data.var(ddof=1)])
    # level 1 holds the pair means of every worker
    assert res.level(1).count == 32 + 2 + 8


def test_reduce_results_single_commit(rng):
    group = ThreadReducerGroup(2)
    data = rng.normal(size=(2, 40, 2))

    def work(rank):
        var = _accumulate(VarAcc(2), data[rank]).finalize()
        cov = _accumulate(CovAcc(2), data[rank]).finalize()
        corr = _accumulate(AutocorrAcc(2), data[rank]).finalize()
        reduce_results([var, cov, corr], group.reducer(rank))
        return var, cov, corr

    (var, cov, corr), (var1, _, _) = _run_workers(2, work)
    flat = data.reshape(80, 2)

    assert not var1.valid
    np.testing.assert_allclose(var.var(), flat.var(axis=0, ddof=1))
    np.testing.assert_allclose(cov.cov(), np.cov(flat, rowvar=False))
    np.testing.assert_allclose(corr.var(), flat.var(axis=0, ddof=1))


def test_split_phases(rng):
    group = ThreadReducerGroup(2)
    data = rng.normal(size=(2, 10))

    def work(rank):
        reducer = group.reducer(rank)
        a = _accumulate(VarAcc(), data[rank]).finalize()
        b = _accumulate(MeanAcc(), 2 * data[rank]).finalize()
        a.reduce(reducer, post_commit=False)
        b.reduce(reducer, post_commit=False)
        reducer.commit()
        a.reduce(reducer, pre_commit=False)
        b.reduce(reducer, pre_commit=False)
        return a, b

    (a, b), _ = _run_workers(2, work)
    np.testing.assert_allclose(a.mean(), [data.mean()])
    np.testing.assert_allclose(b.mean(), [2 * data.mean()])


def test_aborted_reduction_restores_results():
    group = ThreadReducerGroup(2)
    res = _accumulate(VarAcc(), [1.0, 2.0, 4.0]).finalize()
    expected_mean, expected_var = res.mean(), res.var()

    group.abort()
    with pytest.raises(ReductionFailedError):
        res.reduce(group.reducer(0))

    assert res.valid
    np.testing.assert_allclose(res.mean(), expected_mean)
    np.testing.assert_allclose(res.var(), expected_var)
    assert res.count == 3


def test_mismatched_buffers_fail_on_all_workers():
    group = ThreadReducerGroup(2)

    def work(rank):
        res = _accumulate(VarAcc(rank + 1), [np.ones(rank + 1)] * 3).finalize()
        res.reduce(group.reducer(rank))
        return res

    outcomes = _results_or_errors(2, work)
    assert all(isinstance(o, ReductionFailedError) for o in outcomes)


def test_reduce_invalid_result():
    other = VarAcc().add(1.0).finalize()
    other._store = None
    with pytest.raises(FinalizedAccumulatorError):
        other.reduce(SerialReducer())


def test_group_arguments():
    with pytest.raises(ValueError):
        ThreadReducerGroup(0)
    with pytest.raises(ValueError):
        ThreadReducerGroup(2, root=2)
    with pytest.raises(ValueError):
        ThreadReducerGroup(2).reducer(5)

    setup = ThreadReducerGroup(3, root=1).reducer(1).get_setup()
    assert setup.is_root
    assert setup.size == 3


@pytest.mark.parametrize("n_workers", [2, 5])
def test_identical_workers(n_workers, rng):
    data = rng.normal(size=(33, 2))
    group = ThreadReducerGroup(n_workers)

    def work(rank):
        res = _accumulate(AutocorrAcc(2), data).finalize()
        res.reduce(group.reducer(rank))
        return res

    results = _run_workers(n_workers, work)
    local = _accumulate(AutocorrAcc(2), data).finalize()

    assert results[0].count == n_workers * local.count
    np.testing.assert_allclose(results[0].mean(), local.mean())
    assert not any(res.valid for res in results[1:])


class _FailingReducer(SerialReducer):
    """Serial reducer whose commit fails, pretending other workers hold
    deeper hierarchies."""

    def __init__(self, error=ReductionFailedError):
        super().__init__()
        self.error = error

    def get_max(self, value):
        return value + 3

    def commit(self):
        raise self.error("lost connection")


def test_invalid_result_leaves_others_untouched():
    good = VarAcc().add(1.0).add(2.0).add(4.0).finalize()
    bad = VarAcc().add(1.0).finalize()
    bad._store = None
    reducer = SerialReducer()

    with pytest.raises(FinalizedAccumulatorError):
        reduce_results([good, bad], reducer)

    assert good.valid
    np.testing.assert_allclose(good.mean(), [7.0 / 3.0])
    np.testing.assert_allclose(good.var(), [7.0 / 3.0])

    # nothing stays registered with the reducer
    reduce_results([good], reducer)
    np.testing.assert_allclose(good.mean(), [7.0 / 3.0])
    assert good.count == 3


@pytest.mark.parametrize("error", [ReductionFailedError, RuntimeError])
def test_failed_commit_restores_autocorr_result(error, rng):
    res = _accumulate(AutocorrAcc(2), rng.normal(size=(2, 2))).finalize()
    nlevel = res.nlevel
    mean, var = res.mean(), res.var()
    other = _accumulate(VarAcc(2), rng.normal(size=(5, 2))).finalize()

    with pytest.raises(error):
        reduce_results([other, res], _FailingReducer(error))

    assert res.nlevel == nlevel
    np.testing.assert_allclose(res.mean(), mean)
    np.testing.assert_allclose(res.var(), var)
    assert res.count == 2
    assert other.valid
    assert other.count == 5
