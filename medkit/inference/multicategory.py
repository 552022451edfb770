"""
Loop the mediation estimator over every non-reference exposure level.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import pandas as pd
from scipy.stats import norm

from medkit.data.mediationdata import MediationData
from medkit.inference.mediation import MedDML, arrays_to_data


def mediation_by_category(
    y=None,
    z=None,
    m=None,
    x=None,
    *,
    data: Optional[MediationData] = None,
    levels: Optional[Sequence[int]] = None,
    level: float = 0.95,
    **config: Any,
) -> pd.DataFrame:
    """
    Fit :class:`MedDML` for each exposure level j = 1..K-1 against level 0.

    Parameters
    ----------
    y, z, m, x : array-like, optional
        Outcome, exposure labels, mediators and confounders. Ignored when
        ``data`` is given.
    data : MediationData, optional
        Data container to use instead of raw arrays.
    levels : sequence of int, optional
        Subset of non-reference levels to estimate. Defaults to all of them.
    level : float, default 0.95
        Confidence level of the Wald intervals.
    **config
        Keyword arguments forwarded to :class:`MedDML`.

    Returns
    -------
    pd.DataFrame
        Indexed by (category, effect) with columns estimate, std_error,
        p_value, ci_lower, ci_upper and n_trimmed.
    """
    if data is None:
        if any(v is None for v in (y, z, m, x)):
            raise ValueError("Pass either data=MediationData or all of y, z, m and x.")
        data = arrays_to_data(y, z, m, x)
    n_categories = data.n_categories

    if levels is None:
        levels = range(1, n_categories)
    if not (0.0 < level < 1.0):
        raise ValueError("level must be in (0,1)")
    crit = norm.ppf(0.5 + level / 2.0)

    frames: List[pd.DataFrame] = []
    for j in levels:
        model = MedDML(data, int(j), **config).fit()
        res = model.summary_[["estimate", "std_error", "p_value"]].copy()
        res["ci_lower"] = res["estimate"] - crit * res["std_error"]
        res["ci_upper"] = res["estimate"] + crit * res["std_error"]
        res["n_trimmed"] = model.n_trimmed_
        res.index = pd.MultiIndex.from_product([[int(j)], res.index], names=["category", "effect"])
        frames.append(res)
    if not frames:
        raise ValueError("No non-reference exposure level to estimate.")
    return pd.concat(frames)


def effect_table(results: pd.DataFrame, effect: str = "total", digits: int = 3) -> pd.DataFrame:
    """
    One effect across categories, formatted for reporting.

    Returns a DataFrame indexed by category with columns estimate, se,
    "CI" (``"[lo, hi]"`` strings) and p.value.
    """
    effects = results.index.get_level_values("effect")
    if effect not in set(effects):
        raise KeyError(f"Effect '{effect}' not found. Available: {sorted(set(effects))}")
    sub = results.xs(effect, level="effect")
    ci = [
        f"[{lo:.{digits}f}, {hi:.{digits}f}]"
        for lo, hi in zip(sub["ci_lower"].to_numpy(), sub["ci_upper"].to_numpy())
    ]
    out: Dict[str, Any] = {
        "estimate": sub["estimate"].round(digits).to_numpy(),
        "se": sub["std_error"].round(digits).to_numpy(),
        "CI": ci,
        "p.value": sub["p_value"].round(digits).to_numpy(),
    }
    return pd.DataFrame(out, index=sub.index)
