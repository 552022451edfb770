"""
Score assembly, doubly robust potential-outcome scores and their reduction.

One cross-fitting pass produces a ``ScoreTable`` holding, for every test row,
the exposure label, the four propensities, the realized outcome and the
outcome-regression predictions. Tables from the three passes are stacked,
filtered by the trimming predicate and turned into per-row pseudo-values of
the mean potential outcomes

    Y(j,M(j)), Y(j,M(0)), Y(0,M(j)), Y(0,M(0))

whose averages give the total, natural direct and natural indirect effects.
"""
from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

import numpy as np
import pandas as pd

from medkit.inference.crossfit import CrossFitPass
from medkit.inference.learners import (
    OutcomeAdapter,
    OutcomeKind,
    PropensityAdapter,
    fit_on_rows,
)

FULL_EFFECTS: Tuple[str, ...] = ("total", "dir.treat", "dir.control", "indir.treat", "indir.control", "Y(0,M(0))")
SINGLE_EFFECTS: Tuple[str, ...] = ("total", "direct", "indirect")
VARIANTS = {"full": FULL_EFFECTS, "single": SINGLE_EFFECTS}


class OverTrimmingError(RuntimeError):
    """Raised when the trimming filter leaves nothing to average over."""


class NuisanceLearners(NamedTuple):
    """Unfitted scikit-learn estimators for the three nuisance shapes."""

    propensity: Any
    outcome: Any
    nested: Any


@dataclass
class ScoreTable:
    """Per-test-row nuisance quantities of one or more cross-fitting passes.

    Column naming: ``p_mx0`` = P(Z=0|M,X), ``p_xj`` = P(Z=j|X),
    ``mu_mx0`` = E(Y|M,X,Z=0), ``mu_x0`` = E(Y|X,Z=0),
    ``nu_0j`` = E[E(Y|M,X,Z=0)|Z=j,X], ``nu_j0`` = E[E(Y|M,X,Z=j)|Z=0,X].
    ``mu_mxj`` and ``nu_j0`` are NaN in the single-path variant.
    """

    row: np.ndarray
    pass_index: np.ndarray
    z: np.ndarray
    p_mx0: np.ndarray
    p_mxj: np.ndarray
    p_x0: np.ndarray
    p_xj: np.ndarray
    y: np.ndarray
    mu_mx0: np.ndarray
    nu_0j: np.ndarray
    mu_x0: np.ndarray
    mu_mxj: np.ndarray
    nu_j0: np.ndarray
    mu_xj: np.ndarray

    def __len__(self) -> int:
        return int(self.row.shape[0])

    @classmethod
    def columns(cls) -> List[str]:
        return [f.name for f in fields(cls)]

    @classmethod
    def concat(cls, tables: List["ScoreTable"]) -> "ScoreTable":
        return cls(**{c: np.concatenate([getattr(t, c) for t in tables]) for c in cls.columns()})

    def select(self, mask: np.ndarray) -> "ScoreTable":
        mask = np.asarray(mask, dtype=bool)
        return ScoreTable(**{c: getattr(self, c)[mask] for c in self.columns()})

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({c: getattr(self, c) for c in self.columns()})


def assemble_pass(
    pass_: CrossFitPass,
    y: np.ndarray,
    z: np.ndarray,
    x: np.ndarray,
    xm: np.ndarray,
    j: int,
    kind: OutcomeKind,
    learners: NuisanceLearners,
    n_categories: int,
    variant: str = "full",
) -> ScoreTable:
    """
    Fit all nuisance models of one pass and evaluate them on its test rows.

    Propensity models and the direct regressions E(Y|X,Z) are trained on the
    full training set; E(Y|M,X,Z) on the mu rows; the nested regressions on
    the delta rows, using the mu-stage predictions as targets.
    """
    test, mu, delta, train = pass_.test, pass_.mu_train, pass_.delta_train, pass_.train
    tag = f"(pass {pass_.index + 1})"

    # Pr(Z | M, X) and Pr(Z | X) on the whole training set
    pmx = fit_on_rows(PropensityAdapter(learners.propensity, n_categories), xm, z, train, f"Pr(Z|M,X) {tag}")
    pmx.require([0, j], where=f"Pr(Z|M,X) {tag}")
    px = fit_on_rows(PropensityAdapter(learners.propensity, n_categories), x, z, train, f"Pr(Z|X) {tag}")
    px.require([0, j], where=f"Pr(Z|X) {tag}")
    pmx_te = pmx.predict(xm[test])
    px_te = px.predict(x[test])

    z_mu, z_delta, z_train = z[mu], z[delta], z[train]
    x_delta = x[delta]

    # E(Y | M, X, Z=0) on mu rows, then E[E(Y|M,X,Z=0) | Z=j, X] on delta rows
    eymx0 = fit_on_rows(OutcomeAdapter(learners.outcome, kind), xm, y, mu[z_mu == 0], f"E(Y|M,X,Z=0) {tag}")
    mu_mx0 = eymx0.predict(xm[test])
    eymx0_delta = eymx0.predict(xm[delta])
    nested_0j = fit_on_rows(
        OutcomeAdapter(learners.nested, OutcomeKind.CONTINUOUS),
        x_delta,
        eymx0_delta,
        np.flatnonzero(z_delta == j),
        f"E[E(Y|M,X,Z=0)|Z={j},X] {tag}",
    )
    nu_0j = nested_0j.predict(x[test])

    eyx0 = fit_on_rows(OutcomeAdapter(learners.outcome, kind), x, y, train[z_train == 0], f"E(Y|X,Z=0) {tag}")
    mu_x0 = eyx0.predict(x[test])

    if variant == "full":
        # E(Y | M, X, Z=j) on mu rows, then E[E(Y|M,X,Z=j) | Z=0, X] on delta rows
        eymxj = fit_on_rows(OutcomeAdapter(learners.outcome, kind), xm, y, mu[z_mu == j], f"E(Y|M,X,Z={j}) {tag}")
        mu_mxj = eymxj.predict(xm[test])
        eymxj_delta = eymxj.predict(xm[delta])
        nested_j0 = fit_on_rows(
            OutcomeAdapter(learners.nested, OutcomeKind.CONTINUOUS),
            x_delta,
            eymxj_delta,
            np.flatnonzero(z_delta == 0),
            f"E[E(Y|M,X,Z={j})|Z=0,X] {tag}",
        )
        nu_j0 = nested_j0.predict(x[test])
    else:
        mu_mxj = np.full(test.size, np.nan)
        nu_j0 = np.full(test.size, np.nan)

    eyxj = fit_on_rows(OutcomeAdapter(learners.outcome, kind), x, y, train[z_train == j], f"E(Y|X,Z={j}) {tag}")
    mu_xj = eyxj.predict(x[test])

    return ScoreTable(
        row=np.asarray(test, dtype=int),
        pass_index=np.full(test.size, pass_.index, dtype=int),
        z=np.asarray(z[test]),
        p_mx0=pmx_te[:, 0],
        p_mxj=pmx_te[:, j],
        p_x0=px_te[:, 0],
        p_xj=px_te[:, j],
        y=np.asarray(y[test], dtype=float),
        mu_mx0=mu_mx0,
        nu_0j=nu_0j,
        mu_x0=mu_x0,
        mu_mxj=mu_mxj,
        nu_j0=nu_j0,
        mu_xj=mu_xj,
    )


def trimming_mask(table: ScoreTable, trimming_threshold: float) -> np.ndarray:
    """Rows whose propensity denominators all stay at or above the threshold."""
    tau = float(trimming_threshold)
    return (
        (table.p_mx0 * table.p_xj >= tau)
        & (table.p_xj >= tau)
        & (table.p_x0 >= tau)
        & (table.p_mxj * table.p_x0 >= tau)
    )


def _ratio(indicator: np.ndarray, num: np.ndarray, den: np.ndarray) -> np.ndarray:
    # indicator * num / den, exactly 0 where the indicator is off
    out = np.zeros(indicator.shape[0], dtype=float)
    np.divide(num, den, out=out, where=indicator)
    return out


def _normalizer(weight: np.ndarray, name: str) -> float:
    total = float(np.sum(weight))
    if total == 0.0:
        raise OverTrimmingError(
            f"Normalization weight '{name}' sums to zero over the retained rows; "
            "no retained observation carries this exposure level."
        )
    return weight.shape[0] / total


def potential_outcome_scores(
    table: ScoreTable,
    j: int,
    normalized: bool = True,
    variant: str = "full",
) -> pd.DataFrame:
    """
    Doubly robust pseudo-values for the mean potential outcomes.

    Each pseudo-value is an inverse-probability weighted residual, plus a
    bias-correction term for the cross-world cells, plus the regression anchor.
    With ``normalized=True`` every weight is rescaled to average exactly one
    over the retained rows.

    Parameters
    ----------
    table : ScoreTable
        Retained rows only.
    j : int
        Exposure level compared with the reference level 0.
    normalized : bool, default True
        Use normalized (Hajek-type) instead of plain inverse-probability weights.
    variant : {"full", "single"}
        "single" skips Y(j,M(0)).

    Returns
    -------
    pd.DataFrame
        Columns ``yjmj``, ``y0mj``, ``y0m0`` and, for the full variant, ``yjm0``.
    """
    dj = table.z == j
    d0 = table.z == 0
    ones = np.ones(len(table), dtype=float)

    w_j = _ratio(dj, ones, table.p_xj)
    w_0 = _ratio(d0, ones, table.p_x0)
    w_0mj = _ratio(d0, table.p_mxj, table.p_mx0 * table.p_xj)

    if normalized:
        c_j = _normalizer(w_j, "1[Z=j]/P(Z=j|X)")
        c_0 = _normalizer(w_0, "1[Z=0]/P(Z=0|X)")
        c_0mj = _normalizer(w_0mj, "1[Z=0]P(Z=j|M,X)/(P(Z=0|M,X)P(Z=j|X))")
    else:
        c_j = c_0 = c_0mj = 1.0

    y = table.y
    out: Dict[str, np.ndarray] = {
        "yjmj": c_j * w_j * (y - table.mu_xj) + table.mu_xj,
        "y0mj": c_0mj * w_0mj * (y - table.mu_mx0) + c_j * w_j * (table.mu_mx0 - table.nu_0j) + table.nu_0j,
        "y0m0": c_0 * w_0 * (y - table.mu_x0) + table.mu_x0,
    }
    if variant == "full":
        w_jm0 = _ratio(dj, table.p_mx0, table.p_mxj * table.p_x0)
        c_jm0 = _normalizer(w_jm0, "1[Z=j]P(Z=0|M,X)/(P(Z=j|M,X)P(Z=0|X))") if normalized else 1.0
        out["yjm0"] = c_jm0 * w_jm0 * (y - table.mu_mxj) + c_0 * w_0 * (table.mu_mxj - table.nu_j0) + table.nu_j0
    return pd.DataFrame(out)


@dataclass
class EffectVector:
    """Point estimates and score variances in a fixed order."""

    labels: Tuple[str, ...]
    effects: np.ndarray
    variances: np.ndarray
    n_retained: int

    def raw(self) -> np.ndarray:
        """Effects, then variances, then the retained-row count."""
        return np.concatenate([self.effects, self.variances, [float(self.n_retained)]])


def reduce_effects(po: pd.DataFrame, variant: str = "full") -> EffectVector:
    """Average pseudo-values into effects; variance = mean squared centered contrast."""
    n = int(po.shape[0])
    if n == 0:
        raise OverTrimmingError("No observations passed the trimming filter.")

    yjmj = po["yjmj"].to_numpy()
    y0mj = po["y0mj"].to_numpy()
    y0m0 = po["y0m0"].to_numpy()

    if variant == "full":
        yjm0 = po["yjm0"].to_numpy()
        contrasts = [
            yjmj - y0m0,  # total
            yjmj - y0mj,  # direct, treated mediator
            yjm0 - y0m0,  # direct, control mediator
            yjmj - yjm0,  # indirect, treated exposure
            y0mj - y0m0,  # indirect, control exposure
            y0m0,         # baseline mean
        ]
    else:
        contrasts = [yjmj - y0m0, yjmj - y0mj, y0mj - y0m0]

    effects = np.array([c.mean() for c in contrasts], dtype=float)
    variances = np.array([np.mean((c - e) ** 2) for c, e in zip(contrasts, effects)], dtype=float)
    return EffectVector(labels=VARIANTS[variant], effects=effects, variances=variances, n_retained=n)


def evaluate_table(
    table: ScoreTable,
    j: int,
    trimming_threshold: float,
    normalized: bool = True,
    variant: str = "full",
) -> Tuple[EffectVector, pd.DataFrame, np.ndarray]:
    """Trim, score and reduce a stacked table. Returns (effects, pseudo-values, mask)."""
    mask = trimming_mask(table, trimming_threshold)
    if not np.any(mask):
        raise OverTrimmingError(
            f"No observations passed the trimming filter (trimming_threshold={trimming_threshold})."
        )
    po = potential_outcome_scores(table.select(mask), j, normalized=normalized, variant=variant)
    return reduce_effects(po, variant=variant), po, mask
