import numpy as np
import pytest

from medkit.inference.crossfit import crossfit_passes, make_partition


@pytest.mark.parametrize("n", [3, 9, 10, 11, 101, 1000])
def test_partition_covers_every_row_once(n):
    blocks = make_partition(n, np.random.default_rng(0))
    allrows = np.concatenate(blocks)
    assert allrows.size == n
    np.testing.assert_array_equal(np.sort(allrows), np.arange(n))
    stepsize = int(np.ceil(n / 3))
    assert blocks[0].size == stepsize
    assert blocks[1].size == stepsize
    assert blocks[2].size == n - 2 * stepsize


@pytest.mark.parametrize("n", [0, 1, 2])
def test_partition_rejects_empty_blocks(n):
    with pytest.raises(ValueError):
        make_partition(n, np.random.default_rng(0))


def test_partition_of_four_rows_keeps_three_blocks():
    blocks = make_partition(4, np.random.default_rng(0))
    assert [b.size for b in blocks] == [2, 1, 1]
    np.testing.assert_array_equal(np.sort(np.concatenate(blocks)), np.arange(4))
    passes = crossfit_passes(4, random_state=0)
    assert sorted(int(i) for p in passes for i in p.test) == [0, 1, 2, 3]


def test_each_row_is_tested_exactly_once():
    passes = crossfit_passes(50, random_state=1)
    tested = np.concatenate([p.test for p in passes])
    np.testing.assert_array_equal(np.sort(tested), np.arange(50))
    for p in passes:
        assert np.intersect1d(p.test, p.train).size == 0
        assert np.intersect1d(p.mu_train, p.delta_train).size == 0
        np.testing.assert_array_equal(np.sort(p.train), np.sort(np.concatenate([p.mu_train, p.delta_train])))


def test_role_rotation():
    blocks = make_partition(30, np.random.default_rng(5))
    passes = crossfit_passes(30, random_state=5)
    b1, b2, b3 = blocks
    expected = [(b1, b2, b3), (b3, b1, b2), (b2, b3, b1)]
    for p, (t, mu, delta) in zip(passes, expected):
        np.testing.assert_array_equal(p.test, t)
        np.testing.assert_array_equal(p.mu_train, mu)
        np.testing.assert_array_equal(p.delta_train, delta)


def test_same_seed_same_folds():
    a = crossfit_passes(99, random_state=123)
    b = crossfit_passes(99, random_state=123)
    c = crossfit_passes(99, random_state=124)
    for pa, pb in zip(a, b):
        np.testing.assert_array_equal(pa.test, pb.test)
        np.testing.assert_array_equal(pa.mu_train, pb.mu_train)
    assert not all(np.array_equal(pa.test, pc.test) for pa, pc in zip(a, c))


def test_generator_is_accepted_and_global_state_untouched():
    np.random.seed(7)
    before = np.random.get_state()[1].copy()
    crossfit_passes(20, random_state=np.random.default_rng(3))
    np.testing.assert_array_equal(np.random.get_state()[1], before)


def test_few_splits_merges_mu_and_delta():
    for p in crossfit_passes(40, random_state=0, few_splits=True):
        assert p.few_splits
        np.testing.assert_array_equal(p.mu_train, p.train)
        np.testing.assert_array_equal(p.delta_train, p.train)
        assert np.intersect1d(p.test, p.fit_rows).size == 0
