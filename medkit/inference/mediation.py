"""
Cross-fitted DML estimator of natural direct and indirect effects consuming MediationData.

For one non-reference exposure level ``j`` the estimator contrasts the mean
potential outcomes Y(j,M(j)), Y(j,M(0)), Y(0,M(j)) and Y(0,M(0)) using
doubly robust scores built from eight (full variant) or six (single variant)
cross-fitted nuisance models.
"""
from __future__ import annotations

import warnings
from typing import Any, Dict, NamedTuple, Optional, Tuple, Union

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from scipy.stats import norm
from sklearn.base import BaseEstimator
from sklearn.utils.validation import check_is_fitted

from medkit.data.mediationdata import MediationData
from medkit.inference.crossfit import crossfit_passes
from medkit.inference.learners import (
    TYPE_MEASURES,
    OutcomeKind,
    default_outcome_learner,
    default_propensity_learner,
)
from medkit.inference.scores import (
    VARIANTS,
    NuisanceLearners,
    OverTrimmingError,
    ScoreTable,
    assemble_pass,
    evaluate_table,
)


class MediationEstimate(NamedTuple):
    effects: np.ndarray
    variances: np.ndarray
    retained_count: int


def _as_matrix(values: Any, name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.ndim == 1:
        arr = arr.reshape(-1, 1)
    if arr.ndim != 2:
        raise ValueError(f"{name} must be a vector or a 2-D matrix, got {arr.ndim} dimensions.")
    return arr


def _check_arrays(y, z, m, x) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    y = np.asarray(y, dtype=float).ravel()
    z_raw = np.asarray(z, dtype=float).ravel()
    m = _as_matrix(m, "m")
    x = _as_matrix(x, "x")

    n = y.shape[0]
    for name, arr in (("z", z_raw), ("m", m), ("x", x)):
        if arr.shape[0] != n:
            raise ValueError(f"{name} has {arr.shape[0]} rows but y has {n}.")
    for name, arr in (("y", y), ("z", z_raw), ("m", m), ("x", x)):
        if not np.all(np.isfinite(arr)):
            raise ValueError(f"{name} contains NaN or infinite values.")
    if not np.all(np.equal(np.mod(z_raw, 1), 0)):
        raise ValueError("Exposure labels must be integers.")
    return y, z_raw.astype(int), m, x


def arrays_to_data(y, z, m, x) -> MediationData:
    """Validate raw arrays and wrap them as MediationData with columns y, z, m1.., x1.."""
    y, z, m, x = _check_arrays(y, z, m, x)
    m_cols = [f"m{i + 1}" for i in range(m.shape[1])]
    x_cols = [f"x{i + 1}" for i in range(x.shape[1])]
    df = pd.concat(
        [
            pd.DataFrame({"y": y, "z": z}),
            pd.DataFrame(m, columns=m_cols),
            pd.DataFrame(x, columns=x_cols),
        ],
        axis=1,
    )
    return MediationData(df=df, outcome="y", exposure="z", mediators=m_cols, confounders=x_cols)


class MedDML(BaseEstimator):
    """Causal mediation analysis for a multi-category exposure with 3-way cross-fitting.

    Parameters
    ----------
    data : MediationData
        Data container with outcome, exposure (codes 0..K-1, 0 = reference),
        mediators and confounders.
    exposure_level : int
        Non-reference level ``j`` in 1..K-1 compared with level 0.
    ml_m : classifier, optional
        Learner for P(Z|X) and P(Z|M,X). Must support ``predict_proba``.
        Defaults to a standardized, cross-validated multinomial logit.
    ml_g : estimator, optional
        Learner for E[Y|M,X,Z] and E[Y|X,Z]. If classifier and Y is binary,
        ``predict_proba`` is used; otherwise ``predict()``. Defaults to lasso
        (continuous Y) or penalized logit (binary Y).
    ml_r : regressor, optional
        Learner for the nested regressions E[E(Y|M,X,Z=a)|Z=b,X], whose
        targets are predictions and therefore always continuous.
        Defaults to lasso.
    trimming_threshold : float, default 0.0
        Test rows where any propensity denominator falls below this value are
        excluded from every average.
    few_splits : bool, default False
        Fit first-stage and nested outcome regressions on the same training
        set instead of on two disjoint blocks.
    normalized : bool, default True
        Rescale every inverse-probability weight to average one over the
        retained rows.
    variant : {"full", "single"}, default "full"
        "full" reports both decompositions and the baseline mean;
        "single" reports total, direct and indirect only.
    type_measure : {"deviance", "class", "auc"}, default "deviance"
        Loss used to tune the default propensity learner.
    n_folds_cv : int, default 5
        Inner CV folds of the default learners.
    random_state : int, optional
        Seed for the fold permutation and the default learners.
    n_jobs : int, default 1
        Number of threads used to run the three cross-fitting passes.
    """

    def __init__(
        self,
        data: MediationData,
        exposure_level: int,
        *,
        ml_m: Any = None,
        ml_g: Any = None,
        ml_r: Any = None,
        trimming_threshold: float = 0.0,
        few_splits: bool = False,
        normalized: bool = True,
        variant: str = "full",
        type_measure: str = "deviance",
        n_folds_cv: int = 5,
        random_state: Optional[int] = None,
        n_jobs: int = 1,
    ) -> None:
        if not isinstance(data, MediationData):
            raise TypeError("data must be a MediationData instance.")
        self.data = data
        self.exposure_level = exposure_level
        self.ml_m = ml_m
        self.ml_g = ml_g
        self.ml_r = ml_r
        self.trimming_threshold = float(trimming_threshold)
        self.few_splits = bool(few_splits)
        self.normalized = bool(normalized)
        self.variant = str(variant).lower()
        self.type_measure = str(type_measure).lower()
        self.n_folds_cv = int(n_folds_cv)
        self.random_state = random_state
        self.n_jobs = n_jobs

    @classmethod
    def from_arrays(cls, y, z, m, x, exposure_level: int, **kwargs) -> "MedDML":
        """Build the estimator from an outcome vector, exposure labels and M / X matrices."""
        return cls(arrays_to_data(y, z, m, x), exposure_level, **kwargs)

    # --------- Helpers ---------
    def _check_config(self) -> None:
        if self.variant not in VARIANTS:
            raise ValueError(f"variant must be one of {sorted(VARIANTS)}, got '{self.variant}'.")
        if self.type_measure not in TYPE_MEASURES:
            raise ValueError(f"type_measure must be one of {list(TYPE_MEASURES)}, got '{self.type_measure}'.")
        if not (0.0 <= self.trimming_threshold < 1.0):
            raise ValueError("trimming_threshold must be in [0, 1).")
        if self.n_folds_cv < 2:
            raise ValueError("n_folds_cv must be at least 2.")
        k = self.data.n_categories
        j = self.exposure_level
        if isinstance(j, (bool, np.bool_)) or not float(j).is_integer() or not (1 <= int(j) <= k - 1):
            raise ValueError(f"exposure_level must be an integer in 1..{k - 1}, got {j!r}.")

    def _check_data(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        y, z, m, x = self.data.to_arrays()
        for name, arr in (("outcome", y), ("mediators", m), ("confounders", x)):
            if not np.all(np.isfinite(arr)):
                raise ValueError(f"The {name} contain infinite values.")
        return y, z, m, x

    def _learners(self, kind: OutcomeKind) -> NuisanceLearners:
        seed = self.random_state if isinstance(self.random_state, (int, np.integer)) else None
        return NuisanceLearners(
            propensity=self.ml_m if self.ml_m is not None
            else default_propensity_learner(self.type_measure, self.n_folds_cv, seed),
            outcome=self.ml_g if self.ml_g is not None
            else default_outcome_learner(kind, self.n_folds_cv, seed),
            nested=self.ml_r if self.ml_r is not None
            else default_outcome_learner(OutcomeKind.CONTINUOUS, self.n_folds_cv, seed),
        )

    def _summarize(self, effects, n_retained: int) -> None:
        se = np.sqrt(effects.variances / n_retained)
        with np.errstate(divide="ignore", invalid="ignore"):
            t_stat = np.where(se > 0, effects.effects / se, np.nan)
        pval = np.where(np.isfinite(t_stat), 2 * norm.cdf(-np.abs(t_stat)), np.nan)
        crit = norm.ppf(0.975)

        self.effects_ = effects
        self.coef_ = effects.effects
        self.variance_ = effects.variances
        self.se_ = se
        self.t_stat_ = t_stat
        self.pval_ = pval
        self.confint_ = np.column_stack([self.coef_ - crit * se, self.coef_ + crit * se])
        self.summary_ = pd.DataFrame(
            {
                "estimate": self.coef_,
                "std_error": self.se_,
                "p_value": self.pval_,
                "2.5 %": self.confint_[:, 0],
                "97.5 %": self.confint_[:, 1],
            },
            index=pd.Index(list(effects.labels), name="effect"),
        )

    # --------- API ---------
    def fit(self) -> "MedDML":
        self._check_config()
        y, z, m, x = self._check_data()
        n = y.shape[0]
        j = int(self.exposure_level)
        xm = np.column_stack([x, m])
        kind = OutcomeKind.detect(y)
        learners = self._learners(kind)
        k = self.data.n_categories

        passes = crossfit_passes(n, random_state=self.random_state, few_splits=self.few_splits)
        if self.n_jobs == 1:
            tables = [
                assemble_pass(p, y, z, x, xm, j, kind, learners, k, variant=self.variant)
                for p in passes
            ]
        else:
            tables = Parallel(n_jobs=self.n_jobs, backend="threading")(
                delayed(assemble_pass)(p, y, z, x, xm, j, kind, learners, k, variant=self.variant)
                for p in passes
            )
        table = ScoreTable.concat(tables)

        effects, po, mask = evaluate_table(
            table, j, self.trimming_threshold, normalized=self.normalized, variant=self.variant
        )
        n_retained = int(mask.sum())
        if n - n_retained > n / 2:
            warnings.warn(
                f"Trimming removed {n - n_retained} of {n} observations "
                f"(trimming_threshold={self.trimming_threshold}); estimates rest on a small, "
                "selected subsample.",
                RuntimeWarning,
                stacklevel=2,
            )

        self.outcome_kind_ = kind
        self.passes_ = passes
        self.score_table_ = table
        self.trim_mask_ = mask
        self.potential_outcomes_ = po
        self.n_obs_ = n
        self.n_retained_ = n_retained
        self.n_trimmed_ = n - n_retained
        self._summarize(effects, n_retained)
        return self

    @property
    def coef(self) -> np.ndarray:
        check_is_fitted(self, attributes=["coef_"])
        return self.coef_

    @property
    def se(self) -> np.ndarray:
        check_is_fitted(self, attributes=["se_"])
        return self.se_

    @property
    def pvalues(self) -> np.ndarray:
        check_is_fitted(self, attributes=["pval_"])
        return self.pval_

    @property
    def summary(self) -> pd.DataFrame:
        check_is_fitted(self, attributes=["summary_"])
        return self.summary_

    def confint(self, level: float = 0.95) -> pd.DataFrame:
        check_is_fitted(self, attributes=["coef_", "se_"])
        if not (0.0 < level < 1.0):
            raise ValueError("level must be in (0,1)")
        z = norm.ppf(0.5 + level / 2.0)
        return pd.DataFrame(
            {
                f"{(1 - level) / 2 * 100:.1f} %": self.coef_ - z * self.se_,
                f"{(0.5 + level / 2) * 100:.1f} %": self.coef_ + z * self.se_,
            },
            index=self.summary_.index,
        )

    def raw_vector(self) -> np.ndarray:
        """Effects, then variances, then the retained-row count."""
        check_is_fitted(self, attributes=["effects_"])
        return self.effects_.raw()


def _fit(y, z, m, x, j, **config) -> MedDML:
    return MedDML.from_arrays(y, z, m, x, j, **config).fit()


def estimate(
    y,
    z,
    m,
    x,
    j: int,
    *,
    trimming_threshold: float = 0.0,
    few_splits: bool = False,
    normalized: bool = True,
    random_state: Optional[int] = None,
    type_measure: str = "deviance",
    n_folds_cv: int = 5,
    variant: str = "full",
    ml_m: Any = None,
    ml_g: Any = None,
    ml_r: Any = None,
    n_jobs: int = 1,
) -> MediationEstimate:
    """
    Run the cross-fitting engine and return raw effects, score variances and
    the number of retained rows.

    At least three rows are required so that every cross-fitting block is
    non-empty; in practice each training role must also contain rows at
    exposure levels 0 and ``j``, which small samples rarely satisfy.

    Returns
    -------
    MediationEstimate
        ``effects`` and ``variances`` in the order of the variant's labels
        (full: total, dir.treat, dir.control, indir.treat, indir.control,
        Y(0,M(0)); single: total, direct, indirect).

    Raises
    ------
    ValueError
        On malformed inputs or configuration.
    DegenerateFoldError
        When a training role lacks rows at a required exposure level.
    OverTrimmingError
        When no row survives trimming.
    """
    model = _fit(
        y, z, m, x, j,
        trimming_threshold=trimming_threshold,
        few_splits=few_splits,
        normalized=normalized,
        random_state=random_state,
        type_measure=type_measure,
        n_folds_cv=n_folds_cv,
        variant=variant,
        ml_m=ml_m,
        ml_g=ml_g,
        ml_r=ml_r,
        n_jobs=n_jobs,
    )
    return MediationEstimate(
        effects=model.effects_.effects.copy(),
        variances=model.effects_.variances.copy(),
        retained_count=model.n_retained_,
    )


def med_dml(y, z, m, x, j: int, **config) -> Dict[str, Union[pd.DataFrame, int]]:
    """
    Effects with standard errors and p-values for exposure level ``j`` versus 0.

    Accepts the same keyword arguments as :func:`estimate`.

    Returns
    -------
    dict
        ``results``: DataFrame indexed by effect with columns estimate,
        std_error and p_value; ``trimmed``: number of rows excluded by trimming.

    Examples
    --------
    >>> from medkit.data import generate_mediation_data
    >>> df = generate_mediation_data(n=900, random_state=3)
    >>> out = med_dml(df["y"], df["z"], df[["m1", "m2"]], df.filter(like="x"), 1, random_state=0)
    >>> list(out["results"].columns)
    ['estimate', 'std_error', 'p_value']
    """
    model = _fit(y, z, m, x, j, **config)
    return {
        "results": model.summary_[["estimate", "std_error", "p_value"]].copy(),
        "trimmed": model.n_trimmed_,
    }


__all__ = ["MedDML", "MediationEstimate", "estimate", "med_dml", "OverTrimmingError"]
