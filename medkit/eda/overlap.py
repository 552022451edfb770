"""Overlap (positivity) diagnostics for fitted mediation models.

- overlap_diagnostics(): Dict with the trimming threshold, the share of
  cross-fitted test rows failing each clause of the trimming predicate, a
  quantile summary of the four propensity columns, and a heuristic flag.
- plot_propensity_overlap(): Overlaid histograms of P(Z=j|X) and P(Z=0|X)
  for rows observed at level j vs level 0.
- plot_effects(): Forest plot of one effect across exposure categories.
"""
from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from sklearn.utils.validation import check_is_fitted

from medkit.inference.mediation import MedDML


def _clauses(model: MedDML) -> Dict[str, np.ndarray]:
    t = model.score_table_
    return {
        "P(Z=0|M,X)*P(Z=j|X)": t.p_mx0 * t.p_xj,
        "P(Z=j|X)": t.p_xj,
        "P(Z=0|X)": t.p_x0,
        "P(Z=j|M,X)*P(Z=0|X)": t.p_mxj * t.p_x0,
    }


def overlap_diagnostics(model: MedDML, threshold: Optional[float] = None) -> Dict[str, Any]:
    """Positivity summary of the cross-fitted propensities of a fitted model.

    Parameters
    ----------
    model : MedDML
        A fitted estimator.
    threshold : float, optional
        Threshold to evaluate. Defaults to the model's ``trimming_threshold``.

    Returns
    -------
    Dict[str, Any]
        Dictionary with:
        - threshold: value used
        - share_below: {clause: fraction of test rows below threshold}
        - share_trimmed: fraction of rows failing any clause
        - propensities: DataFrame of min / 1% / 5% / 50% / max per column
        - flag: heuristic boolean True if more than 2% of rows are trimmed
    """
    check_is_fitted(model, attributes=["score_table_"])
    thr = model.trimming_threshold if threshold is None else float(threshold)
    clauses = _clauses(model)
    share_below = {name: float((v < thr).mean()) for name, v in clauses.items()}
    failing = np.zeros(len(model.score_table_), dtype=bool)
    for v in clauses.values():
        failing |= v < thr
    share_trimmed = float(failing.mean())

    t = model.score_table_
    cols = {"P(Z=0|M,X)": t.p_mx0, "P(Z=j|M,X)": t.p_mxj, "P(Z=0|X)": t.p_x0, "P(Z=j|X)": t.p_xj}
    summary = pd.DataFrame(
        {
            name: [v.min(), np.quantile(v, 0.01), np.quantile(v, 0.05), np.median(v), v.max()]
            for name, v in cols.items()
        },
        index=["min", "q01", "q05", "median", "max"],
    ).T
    flag = share_trimmed > 0.02  # heuristic
    return {
        "threshold": thr,
        "share_below": share_below,
        "share_trimmed": share_trimmed,
        "propensities": summary,
        "flag": bool(flag),
    }


def plot_propensity_overlap(model: MedDML, bins: int = 30, figsize: Tuple[float, float] = (10, 4)):
    """Plot overlaid histograms of P(Z=j|X) and P(Z=0|X) for rows at level j vs level 0.

    Returns the matplotlib Figure.
    """
    check_is_fitted(model, attributes=["score_table_"])
    t = model.score_table_
    j = int(model.exposure_level)
    at_j = t.z == j
    at_0 = t.z == 0

    fig, axes = plt.subplots(1, 2, figsize=figsize)
    for ax, ps, name in ((axes[0], t.p_xj, f"P(Z={j}|X)"), (axes[1], t.p_x0, "P(Z=0|X)")):
        ax.hist(ps[at_j], bins=bins, alpha=0.5, density=True, label=f"Z={j}")
        ax.hist(ps[at_0], bins=bins, alpha=0.5, density=True, label="Z=0")
        if model.trimming_threshold > 0:
            ax.axvline(model.trimming_threshold, color="k", linestyle="--", linewidth=1)
        ax.set_xlabel(name)
        ax.set_ylabel("Density")
        ax.legend()
    fig.suptitle("Propensity overlap")
    return fig


def plot_effects(results: pd.DataFrame, effect: str = "total", figsize: Tuple[float, float] = (6, 4)):
    """Forest plot of one effect across exposure categories.

    ``results`` is the long table returned by ``mediation_by_category``.
    """
    effects = results.index.get_level_values("effect")
    if effect not in set(effects):
        raise KeyError(f"Effect '{effect}' not found. Available: {sorted(set(effects))}")
    sub = results.xs(effect, level="effect")
    pos = np.arange(sub.shape[0])
    est = sub["estimate"].to_numpy()
    err = np.vstack([est - sub["ci_lower"].to_numpy(), sub["ci_upper"].to_numpy() - est])

    fig = plt.figure(figsize=figsize)
    ax = fig.gca()
    ax.errorbar(est, pos, xerr=err, fmt="o", capsize=3)
    ax.axvline(0.0, color="grey", linestyle=":", linewidth=1)
    ax.set_yticks(pos)
    ax.set_yticklabels([str(c) for c in sub.index])
    ax.set_ylabel("Exposure category")
    ax.set_xlabel(f"{effect} (vs. category 0)")
    ax.set_title(f"{effect} effect by category")
    return fig
