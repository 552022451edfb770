import numpy as np
import pandas as pd
import pytest

from medkit.inference.scores import (
    FULL_EFFECTS,
    SINGLE_EFFECTS,
    OverTrimmingError,
    ScoreTable,
    evaluate_table,
    potential_outcome_scores,
    reduce_effects,
    trimming_mask,
)


def make_table(n=200, j=1, seed=0):
    rng = np.random.default_rng(seed)
    z = rng.integers(0, 3, size=n)
    return ScoreTable(
        row=np.arange(n),
        pass_index=np.arange(n) % 3,
        z=z,
        p_mx0=rng.uniform(0.05, 0.6, n),
        p_mxj=rng.uniform(0.05, 0.6, n),
        p_x0=rng.uniform(0.05, 0.6, n),
        p_xj=rng.uniform(0.05, 0.6, n),
        y=rng.normal(size=n) + z,
        mu_mx0=rng.normal(size=n),
        nu_0j=rng.normal(size=n),
        mu_x0=rng.normal(size=n),
        mu_mxj=rng.normal(size=n) + 1,
        nu_j0=rng.normal(size=n),
        mu_xj=rng.normal(size=n) + 1,
    )


def test_unnormalized_scores_match_formulas():
    t = make_table()
    j = 1
    po = potential_outcome_scores(t, j, normalized=False)
    dj = (t.z == j).astype(float)
    d0 = (t.z == 0).astype(float)

    yjmj = dj * (t.y - t.mu_xj) / t.p_xj + t.mu_xj
    y0m0 = d0 * (t.y - t.mu_x0) / t.p_x0 + t.mu_x0
    y0mj = d0 * t.p_mxj / (t.p_mx0 * t.p_xj) * (t.y - t.mu_mx0) + dj / t.p_xj * (t.mu_mx0 - t.nu_0j) + t.nu_0j
    yjm0 = dj * t.p_mx0 / (t.p_mxj * t.p_x0) * (t.y - t.mu_mxj) + d0 / t.p_x0 * (t.mu_mxj - t.nu_j0) + t.nu_j0

    np.testing.assert_allclose(po["yjmj"], yjmj)
    np.testing.assert_allclose(po["y0m0"], y0m0)
    np.testing.assert_allclose(po["y0mj"], y0mj)
    np.testing.assert_allclose(po["yjm0"], yjm0)


def test_normalized_weights_average_one():
    t = make_table(seed=3)
    j = 1
    # unit residuals, zero regression anchors: yjmj is the normalized weight itself
    t.y = np.ones(len(t))
    t.mu_xj = np.zeros(len(t))
    t.mu_x0 = np.zeros(len(t))
    po = potential_outcome_scores(t, j, normalized=True)
    assert po["yjmj"].mean() == pytest.approx(1.0)
    assert po["y0m0"].mean() == pytest.approx(1.0)
    assert po.loc[t.z != j, "yjmj"].abs().max() == 0.0


@pytest.mark.parametrize("j", [1, 2])
def test_normalized_scores_match_formulas(j):
    t = make_table(seed=7)
    po = potential_outcome_scores(t, j, normalized=True)
    n = len(t)
    dj = (t.z == j).astype(float)
    d0 = (t.z == 0).astype(float)

    w_j = dj / t.p_xj
    w_0 = d0 / t.p_x0
    w_0mj = d0 * t.p_mxj / (t.p_mx0 * t.p_xj)
    w_jm0 = dj * t.p_mx0 / (t.p_mxj * t.p_x0)
    c_j, c_0, c_0mj, c_jm0 = (n / w.sum() for w in (w_j, w_0, w_0mj, w_jm0))

    # the bias terms of the cross-world cells reuse c_j and c_0
    yjmj = c_j * w_j * (t.y - t.mu_xj) + t.mu_xj
    y0m0 = c_0 * w_0 * (t.y - t.mu_x0) + t.mu_x0
    y0mj = c_0mj * w_0mj * (t.y - t.mu_mx0) + c_j * w_j * (t.mu_mx0 - t.nu_0j) + t.nu_0j
    yjm0 = c_jm0 * w_jm0 * (t.y - t.mu_mxj) + c_0 * w_0 * (t.mu_mxj - t.nu_j0) + t.nu_j0

    np.testing.assert_allclose(po["yjmj"], yjmj)
    np.testing.assert_allclose(po["y0m0"], y0m0)
    np.testing.assert_allclose(po["y0mj"], y0mj)
    np.testing.assert_allclose(po["yjm0"], yjm0)
    for w, c in ((w_j, c_j), (w_0, c_0), (w_0mj, c_0mj), (w_jm0, c_jm0)):
        assert np.mean(c * w) == pytest.approx(1.0)

    plain = potential_outcome_scores(t, j, normalized=False)
    assert not np.allclose(po["y0mj"], plain["y0mj"])


def test_single_variant_skips_cross_world_cell():
    po = potential_outcome_scores(make_table(), 1, variant="single")
    assert list(po.columns) == ["yjmj", "y0mj", "y0m0"]
    ev = reduce_effects(po, variant="single")
    assert ev.labels == SINGLE_EFFECTS
    assert ev.effects.shape == (3,)


def test_reduce_effects_means_and_variances():
    po = pd.DataFrame({
        "yjmj": [3.0, 5.0, 4.0],
        "y0mj": [2.0, 2.0, 2.0],
        "y0m0": [1.0, 1.0, 1.0],
        "yjm0": [2.0, 3.0, 1.0],
    })
    ev = reduce_effects(po)
    assert ev.labels == FULL_EFFECTS
    np.testing.assert_allclose(ev.effects, [3.0, 2.0, 1.0, 2.0, 1.0, 1.0])
    total = np.array([2.0, 4.0, 3.0])
    assert ev.variances[0] == pytest.approx(np.mean((total - 3.0) ** 2))
    assert ev.variances[-1] == pytest.approx(0.0)
    assert ev.n_retained == 3
    raw = ev.raw()
    assert raw.shape == (13,)
    assert raw[-1] == 3.0


def test_decomposition_identity():
    ev, _, _ = evaluate_table(make_table(seed=11), 1, 0.0)
    e = dict(zip(ev.labels, ev.effects))
    assert e["total"] == pytest.approx(e["dir.treat"] + e["indir.control"])
    assert e["total"] == pytest.approx(e["dir.control"] + e["indir.treat"])


def test_trimming_is_monotone():
    t = make_table(n=500, seed=2)
    prev = trimming_mask(t, 0.0)
    assert prev.all()
    for tau in [0.005, 0.01, 0.02, 0.05, 0.1, 0.2]:
        cur = trimming_mask(t, tau)
        # every row kept at a larger threshold was kept at a smaller one
        assert not np.any(cur & ~prev)
        prev = cur


def test_trimming_clauses():
    t = make_table(n=4)
    t.p_mx0 = np.array([0.5, 0.5, 0.5, 0.1])
    t.p_xj = np.array([0.5, 0.05, 0.5, 0.5])
    t.p_x0 = np.array([0.5, 0.5, 0.05, 0.5])
    t.p_mxj = np.array([0.5, 0.5, 0.5, 0.5])
    np.testing.assert_array_equal(trimming_mask(t, 0.1), [True, False, False, False])


def test_everything_trimmed_raises():
    with pytest.raises(OverTrimmingError, match="No observations passed"):
        evaluate_table(make_table(), 1, 0.99)


def test_zero_weight_sum_raises_in_normalized_mode():
    t = make_table()
    t.z = np.zeros(len(t), dtype=int)
    with pytest.raises(OverTrimmingError):
        potential_outcome_scores(t, 1, normalized=True)
    po = potential_outcome_scores(t, 1, normalized=False)
    assert np.isfinite(po.to_numpy()).all()


def test_concat_and_select():
    a, b = make_table(n=5, seed=0), make_table(n=7, seed=1)
    both = ScoreTable.concat([a, b])
    assert len(both) == 12
    sub = both.select(both.z == 0)
    assert (sub.z == 0).all()
    frame = both.to_frame()
    assert list(frame.columns) == ScoreTable.columns()
