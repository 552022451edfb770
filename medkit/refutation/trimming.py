"""
Sensitivity of mediation estimates to the propensity trimming threshold.
"""
from __future__ import annotations

from typing import Dict, List, Sequence

import numpy as np
import pandas as pd
from sklearn.utils.validation import check_is_fitted

from medkit.inference.mediation import MedDML
from medkit.inference.scores import (
    VARIANTS,
    OverTrimmingError,
    potential_outcome_scores,
    reduce_effects,
    trimming_mask,
)


def trim_sensitivity_curve(
    model: MedDML,
    thresholds: Sequence[float] = (0.0, 0.005, 0.01, 0.02, 0.05),
) -> pd.DataFrame:
    """
    Sensitivity of the mediation effects to the trimming threshold (no re-fit).

    For each threshold the trimming predicate is re-applied to the fitted
    model's cross-fitted score table and the effects and standard errors are
    recomputed over the retained rows.

    Parameters
    ----------
    model : MedDML
        A fitted estimator.
    thresholds : sequence of float
        Trimming thresholds in [0, 1) to evaluate.

    Returns
    -------
    pd.DataFrame
        Columns: ['trim_threshold','n_retained','pct_trimmed'] followed by one
        ``<effect>`` / ``<effect>_se`` pair per effect. Thresholds that leave
        no usable rows report NaN effects.
    """
    check_is_fitted(model, attributes=["score_table_"])
    table = model.score_table_
    labels = VARIANTS[model.variant]
    n = len(table)
    rows: List[Dict[str, float]] = []

    for thr in thresholds:
        tau = float(thr)
        if not (0.0 <= tau < 1.0):
            raise ValueError(f"trimming thresholds must be in [0, 1), got {thr}.")
        mask = trimming_mask(table, tau)
        n_ret = int(mask.sum())
        row: Dict[str, float] = {
            "trim_threshold": tau,
            "n_retained": n_ret,
            "pct_trimmed": float(100.0 * (n - n_ret) / n) if n > 0 else float("nan"),
        }
        try:
            po = potential_outcome_scores(
                table.select(mask), int(model.exposure_level),
                normalized=model.normalized, variant=model.variant,
            )
            effects = reduce_effects(po, variant=model.variant)
        except OverTrimmingError:
            est = np.full(len(labels), np.nan)
            se = np.full(len(labels), np.nan)
        else:
            est = effects.effects
            se = np.sqrt(effects.variances / effects.n_retained)
        for label, e, s in zip(labels, est, se):
            row[label] = float(e)
            row[f"{label}_se"] = float(s)
        rows.append(row)

    return pd.DataFrame(rows)
