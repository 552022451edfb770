"""
Synthetic cohorts for mediation analysis with a multi-category exposure.
"""

from __future__ import annotations
import numpy as np
import pandas as pd
from dataclasses import dataclass, field
from typing import Dict, Optional, List, Tuple, Any
from scipy.special import expit, softmax

from medkit.data.mediationdata import MediationData


def _sample_confounders(
    n: int,
    rng: np.random.Generator,
    confounder_specs: Optional[List[Dict[str, Any]]],
    k: int,
) -> Tuple[np.ndarray, List[str]]:
    """Draw confounders from per-column specs, or iid N(0,1) when no specs are given."""
    if confounder_specs is None:
        return rng.normal(size=(n, k)), [f"x{i+1}" for i in range(k)]

    cols, names = [], []
    for spec in confounder_specs:
        name = spec.get("name") or f"x{len(names)+1}"
        dist = str(spec.get("dist", "normal")).lower()
        if dist == "normal":
            col = rng.normal(float(spec.get("mu", 0.0)), float(spec.get("sd", 1.0)), size=n)
        elif dist == "uniform":
            col = rng.uniform(float(spec.get("a", 0.0)), float(spec.get("b", 1.0)), size=n)
        elif dist == "bernoulli":
            col = rng.binomial(1, float(spec.get("p", 0.5)), size=n).astype(float)
        else:
            raise ValueError(f"Unknown dist: {dist}")
        cols.append(col.astype(float)); names.append(name)
    X = np.column_stack(cols) if cols else np.empty((n, 0))
    return X, names


@dataclass(slots=True)
class MediationDatasetGenerator:
    """
    Generate synthetic mediation datasets with a multi-category exposure,
    controllable confounding and known natural direct/indirect effects.

    **Data model**

    - Confounders X ∈ R^k from ``confounder_specs`` (default iid N(0,1)).
    - Exposure Z ∈ {0..K-1} from a multinomial logit with category 0 as
      reference:  P(Z=c | X) ∝ exp(alpha_z[c-1] + X @ beta_z[:, c-1]).
    - Mediators M ∈ R^q:
        M = alpha_m + X @ beta_m + theta_m[Z] + ε_M,  ε_M ~ N(0, sigma_m^2),
      with theta_m[0] = 0 (rows of ``theta_m`` are levels 1..K-1).
    - Outcome with category-specific intercepts and mediator slopes:
        outcome_type = "continuous":  Y = alpha_y[Z] + X @ beta_y + M @ gamma_y[Z] + ε,
        outcome_type = "binary":      logit P(Y=1) = alpha_y[Z] + X @ beta_y + M @ gamma_y[Z].

    Parameters
    ----------
    n_categories : int, default 3
        Number of exposure levels K.
    k : int, default 5
        Number of confounders when ``confounder_specs`` is None.
    n_mediators : int, default 2
        Number of mediators q.
    alpha_z, beta_z : array-like, optional
        Exposure logit intercepts (K-1,) and confounder slopes (k, K-1).
    alpha_m, beta_m, theta_m : array-like, optional
        Mediator intercepts (q,), confounder slopes (k, q) and exposure shifts (K-1, q).
    sigma_m : float or array-like, default 1.0
        Mediator noise scale(s).
    alpha_y : array-like, optional
        Outcome intercept per exposure level (K,).
    beta_y : array-like, optional
        Confounder slopes in the outcome (k,).
    gamma_y : array-like, optional
        Mediator slopes (q,) shared by all levels, or (K, q) per level.
    sigma_y : float, default 1.0
        Outcome noise scale for continuous outcomes.
    outcome_type : {"continuous", "binary"}, default "continuous"
    confounder_specs : list of dict, optional
        ``{"name", "dist": "normal"|"uniform"|"bernoulli", ...}`` per column.
    seed : int, optional
        Random seed for reproducibility.

    Examples
    --------
    >>> gen = MediationDatasetGenerator(
    ...     n_categories=2, k=2, n_mediators=1,
    ...     theta_m=np.array([[1.0]]), gamma_y=np.array([0.8]),
    ...     alpha_y=np.array([0.0, 1.2]), seed=0)
    >>> df = gen.generate(1_000)
    >>> round(gen.oracle_effects(1)["indir.control"], 6)
    0.8
    """
    n_categories: int = 3
    k: int = 5
    n_mediators: int = 2

    alpha_z: Optional[np.ndarray] = None
    beta_z: Optional[np.ndarray] = None

    alpha_m: Optional[np.ndarray] = None
    beta_m: Optional[np.ndarray] = None
    theta_m: Optional[np.ndarray] = None
    sigma_m: Any = 1.0

    alpha_y: Optional[np.ndarray] = None
    beta_y: Optional[np.ndarray] = None
    gamma_y: Optional[np.ndarray] = None
    sigma_y: float = 1.0
    outcome_type: str = "continuous"

    confounder_specs: Optional[List[Dict[str, Any]]] = None
    seed: Optional[int] = None

    rng: np.random.Generator = field(init=False, repr=False)

    def __post_init__(self):
        self.rng = np.random.default_rng(self.seed)
        if self.confounder_specs is not None:
            self.k = len(self.confounder_specs)
        if self.n_categories < 2:
            raise ValueError("n_categories must be at least 2.")
        if self.outcome_type not in {"continuous", "binary"}:
            raise ValueError("outcome_type must be 'continuous' or 'binary'")

    # ---------- Parameter shapes ----------

    def _param(self, value, shape: Tuple[int, ...], name: str) -> np.ndarray:
        if value is None:
            return np.zeros(shape, dtype=float)
        arr = np.asarray(value, dtype=float)
        try:
            return np.broadcast_to(arr, shape).astype(float)
        except ValueError:
            raise ValueError(f"{name} has shape {arr.shape}, expected {shape}") from None

    def _theta_full(self) -> np.ndarray:
        K, q = self.n_categories, self.n_mediators
        theta = self._param(self.theta_m, (K - 1, q), "theta_m")
        return np.vstack([np.zeros((1, q)), theta])

    def _gamma_full(self) -> np.ndarray:
        return self._param(self.gamma_y, (self.n_categories, self.n_mediators), "gamma_y")

    # ---------- Structural equations ----------

    def exposure_probabilities(self, X: np.ndarray) -> np.ndarray:
        """P(Z=c | X) as an (n, K) matrix."""
        K = self.n_categories
        a = self._param(self.alpha_z, (K - 1,), "alpha_z")
        b = self._param(self.beta_z, (X.shape[1], K - 1), "beta_z")
        eta = np.column_stack([np.zeros(X.shape[0]), a + X @ b])
        return softmax(eta, axis=1)

    def _mediator_mean(self, X: np.ndarray, levels: np.ndarray) -> np.ndarray:
        q = self.n_mediators
        a = self._param(self.alpha_m, (q,), "alpha_m")
        b = self._param(self.beta_m, (X.shape[1], q), "beta_m")
        return a + X @ b + self._theta_full()[levels]

    def _outcome_location(self, X: np.ndarray, M: np.ndarray, levels: np.ndarray) -> np.ndarray:
        a = self._param(self.alpha_y, (self.n_categories,), "alpha_y")
        b = self._param(self.beta_y, (X.shape[1],), "beta_y")
        gamma = self._gamma_full()[levels]
        return a[levels] + X @ b + np.sum(M * gamma, axis=1)

    # ---------- Public API ----------

    def generate(self, n: int) -> pd.DataFrame:
        """
        Draw a synthetic dataset of size ``n``.

        Returns
        -------
        pandas.DataFrame
            Columns ``y``, ``z``, ``m1..mq`` and the confounder columns.
        """
        X, names = _sample_confounders(n, self.rng, self.confounder_specs, self.k)
        probs = self.exposure_probabilities(X)
        cum = np.cumsum(probs, axis=1)
        u = self.rng.random(n)[:, None]
        Z = np.minimum((u > cum).sum(axis=1), self.n_categories - 1)

        sigma_m = self._param(self.sigma_m, (self.n_mediators,), "sigma_m")
        M = self._mediator_mean(X, Z) + self.rng.normal(size=(n, self.n_mediators)) * sigma_m

        loc = self._outcome_location(X, M, Z)
        if self.outcome_type == "continuous":
            Y = loc + self.rng.normal(0, self.sigma_y, size=n)
        else:
            Y = self.rng.binomial(1, expit(loc)).astype(float)

        df = pd.DataFrame({"y": Y, "z": Z.astype(int)})
        for i in range(self.n_mediators):
            df[f"m{i+1}"] = M[:, i]
        for i, name in enumerate(names):
            df[name] = X[:, i]
        return df

    def potential_outcome_mean(self, a: int, b: int, X: np.ndarray, n_draws: int = 200) -> float:
        """
        E[Y(a, M(b))] averaged over the rows of ``X``.

        Closed form for continuous outcomes; for binary outcomes the mediator
        noise is integrated out by Monte Carlo with ``n_draws`` draws per row.
        """
        X = np.asarray(X, dtype=float)
        n = X.shape[0]
        mean_m = self._mediator_mean(X, np.full(n, b, dtype=int))
        levels = np.full(n, a, dtype=int)
        if self.outcome_type == "continuous":
            return float(np.mean(self._outcome_location(X, mean_m, levels)))
        sigma_m = self._param(self.sigma_m, (self.n_mediators,), "sigma_m")
        mc_rng = np.random.default_rng(None if self.seed is None else self.seed + 1)
        total = 0.0
        for _ in range(int(n_draws)):
            M = mean_m + mc_rng.normal(size=mean_m.shape) * sigma_m
            total += float(np.mean(expit(self._outcome_location(X, M, levels))))
        return total / int(n_draws)

    def oracle_effects(self, j: int, X: Optional[np.ndarray] = None, n: int = 20_000) -> Dict[str, float]:
        """
        True effects of level ``j`` against level 0.

        If ``X`` is None, a fresh confounder sample of size ``n`` approximates
        the population.
        """
        if not 1 <= int(j) < self.n_categories:
            raise ValueError(f"j must be in 1..{self.n_categories - 1}")
        if X is None:
            X, _ = _sample_confounders(n, np.random.default_rng(self.seed), self.confounder_specs, self.k)
        yjmj = self.potential_outcome_mean(j, j, X)
        yjm0 = self.potential_outcome_mean(j, 0, X)
        y0mj = self.potential_outcome_mean(0, j, X)
        y0m0 = self.potential_outcome_mean(0, 0, X)
        return {
            "total": yjmj - y0m0,
            "dir.treat": yjmj - y0mj,
            "dir.control": yjm0 - y0m0,
            "indir.treat": yjmj - yjm0,
            "indir.control": y0mj - y0m0,
            "Y(0,M(0))": y0m0,
        }

    def to_mediation_data(self, n: int) -> MediationData:
        """Generate a dataset and wrap it in a MediationData object."""
        df = self.generate(n)
        mediators = [f"m{i+1}" for i in range(self.n_mediators)]
        confounders = [c for c in df.columns if c not in {"y", "z"} and c not in mediators]
        return MediationData(df=df, outcome="y", exposure="z", mediators=mediators, confounders=confounders)


def generate_mediation_data(
    n: int = 1_000,
    n_categories: int = 3,
    k: int = 5,
    n_mediators: int = 2,
    direct_effect: float = 1.2,
    indirect_effect: float = 0.8,
    confounding: float = 0.3,
    outcome_type: str = "continuous",
    random_state: Optional[int] = 42,
    return_generator: bool = False,
):
    """
    Linear-Gaussian mediation cohort with known effects (thin wrapper around
    MediationDatasetGenerator).

    Level ``c`` shifts every mediator by ``c / (K-1)`` and the outcome intercept
    by ``direct_effect * c / (K-1)``; the mediator slopes sum to
    ``indirect_effect``. For the top level ``K-1`` the natural direct effect is
    therefore ``direct_effect``, the natural indirect effect ``indirect_effect``
    and the total effect their sum (continuous outcomes).

    ``confounding`` scales the confounder slopes in the exposure, mediator and
    outcome equations; 0 gives a randomized exposure.
    """
    K, q = int(n_categories), int(n_mediators)
    scale = np.arange(1, K) / (K - 1)
    i = np.arange(k)[:, None]
    gen = MediationDatasetGenerator(
        n_categories=K,
        k=k,
        n_mediators=q,
        alpha_z=np.zeros(K - 1),
        beta_z=confounding * np.cos(i + np.arange(K - 1)[None, :]),
        alpha_m=np.zeros(q),
        beta_m=confounding * np.sin(i + np.arange(q)[None, :] + 1.0),
        theta_m=np.repeat(scale[:, None], q, axis=1),
        sigma_m=1.0,
        alpha_y=np.concatenate([[0.0], direct_effect * scale]),
        beta_y=confounding * np.linspace(1.0, -1.0, k),
        gamma_y=np.full(q, indirect_effect / q),
        sigma_y=1.0,
        outcome_type=outcome_type,
        seed=random_state,
    )
    df = gen.generate(n)
    if return_generator:
        return df, gen
    return df
