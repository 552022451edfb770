"""
Nuisance learners used by the mediation engine.

The engine never implements a solver itself. It talks to scikit-learn
compatible estimators through two thin adapters:

- ``PropensityAdapter``: multinomial exposure model returning a probability
  matrix whose column ``k`` is P(Z=k | features).
- ``OutcomeAdapter``: scalar outcome model returning E[Y | features], using
  ``predict_proba`` for binary outcomes and ``predict`` otherwise.

Default learners are regularized and cross-validated (penalized multinomial
logit for exposures, lasso or penalized logit for outcomes) and standardize
features before fitting.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional, Sequence

import numpy as np
from sklearn.base import BaseEstimator, clone, is_classifier
from sklearn.linear_model import LassoCV, LogisticRegressionCV
from sklearn.pipeline import make_pipeline
from sklearn.preprocessing import StandardScaler
from sklearn.utils.validation import check_is_fitted


class DegenerateFoldError(ValueError):
    """Raised when a cross-fitting role lacks the rows a nuisance fit needs."""


class OutcomeKind(Enum):
    CONTINUOUS = "continuous"
    BINARY = "binary"

    @classmethod
    def detect(cls, y: np.ndarray) -> "OutcomeKind":
        """Binary iff the set of observed values is exactly {0, 1}."""
        uniq = np.unique(np.asarray(y, dtype=float))
        if uniq.shape[0] == 2 and uniq[0] == 0.0 and uniq[1] == 1.0:
            return cls.BINARY
        return cls.CONTINUOUS


# glmnet-style type.measure names -> scikit-learn scorers for the exposure model
_PROPENSITY_SCORING = {
    "deviance": "neg_log_loss",
    "class": "accuracy",
    "auc": "roc_auc_ovr",
}
TYPE_MEASURES = tuple(_PROPENSITY_SCORING)


def default_propensity_learner(
    type_measure: str = "deviance",
    n_folds_cv: int = 5,
    random_state: Optional[int] = None,
):
    """
    Penalized multinomial logistic regression with CV-tuned penalty.

    Parameters
    ----------
    type_measure : {"deviance", "class", "auc"}, default "deviance"
        Loss used to select the penalty strength.
    n_folds_cv : int, default 5
        Number of inner cross-validation folds.
    random_state : int, optional
        Seed forwarded to the solver.
    """
    key = str(type_measure).lower()
    if key not in _PROPENSITY_SCORING:
        raise ValueError(
            f"Unknown type_measure '{type_measure}'. Choose from: {sorted(_PROPENSITY_SCORING)}"
        )
    return make_pipeline(
        StandardScaler(),
        LogisticRegressionCV(
            Cs=10,
            cv=int(n_folds_cv),
            scoring=_PROPENSITY_SCORING[key],
            max_iter=2000,
            random_state=random_state,
        ),
    )


def default_outcome_learner(
    kind: OutcomeKind = OutcomeKind.CONTINUOUS,
    n_folds_cv: int = 5,
    random_state: Optional[int] = None,
):
    """Lasso for continuous targets, penalized logit for binary ones."""
    if kind is OutcomeKind.BINARY:
        return make_pipeline(
            StandardScaler(),
            LogisticRegressionCV(
                Cs=10,
                cv=int(n_folds_cv),
                scoring="neg_log_loss",
                max_iter=2000,
                random_state=random_state,
            ),
        )
    return make_pipeline(StandardScaler(), LassoCV(cv=int(n_folds_cv), max_iter=10000))


class PropensityAdapter(BaseEstimator):
    """Fit a multinomial exposure model and predict an (rows x K) probability matrix.

    Columns are aligned to the category codes 0..K-1 through the fitted
    model's ``classes_``; categories absent from the training rows get
    probability 0.
    """

    def __init__(self, learner: Any, n_categories: int) -> None:
        self.learner = learner
        self.n_categories = int(n_categories)

    def fit(self, features: np.ndarray, labels: np.ndarray) -> "PropensityAdapter":
        model = clone(self.learner)
        model.fit(features, np.asarray(labels).astype(int))
        self.model_ = model
        self.classes_ = np.asarray(model.classes_).astype(int)
        return self

    def require(self, levels: Sequence[int], where: str = "") -> None:
        """Raise DegenerateFoldError if any of ``levels`` was not seen in training."""
        check_is_fitted(self, attributes=["model_"])
        missing = [int(lv) for lv in levels if lv not in set(self.classes_.tolist())]
        if missing:
            raise DegenerateFoldError(
                f"Propensity model{' ' + where if where else ''} was trained without "
                f"exposure level(s) {missing}; the training role has no such rows."
            )

    def predict(self, features: np.ndarray) -> np.ndarray:
        check_is_fitted(self, attributes=["model_"])
        proba = np.asarray(self.model_.predict_proba(features), dtype=float)
        out = np.zeros((proba.shape[0], self.n_categories), dtype=float)
        for col, cls in enumerate(self.classes_):
            if 0 <= cls < self.n_categories:
                out[:, cls] = proba[:, col]
        return out


class OutcomeAdapter(BaseEstimator):
    """Fit a scalar outcome model and predict a float vector."""

    def __init__(self, learner: Any, kind: OutcomeKind = OutcomeKind.CONTINUOUS) -> None:
        self.learner = learner
        self.kind = kind

    def fit(self, features: np.ndarray, targets: np.ndarray) -> "OutcomeAdapter":
        model = clone(self.learner)
        model.fit(features, np.asarray(targets, dtype=float))
        self.model_ = model
        return self

    def predict(self, features: np.ndarray) -> np.ndarray:
        check_is_fitted(self, attributes=["model_"])
        model = self.model_
        if self.kind is OutcomeKind.BINARY and is_classifier(model) and hasattr(model, "predict_proba"):
            proba = np.asarray(model.predict_proba(features), dtype=float)
            classes = np.asarray(model.classes_, dtype=float)
            pos = np.flatnonzero(classes == 1.0)
            if pos.size == 0:
                return np.zeros(proba.shape[0], dtype=float)
            return proba[:, pos[0]]
        return np.asarray(model.predict(features), dtype=float).ravel()


def fit_on_rows(adapter, features: np.ndarray, targets: np.ndarray, rows: np.ndarray, what: str):
    """Fit ``adapter`` on ``features[rows]``; empty ``rows`` is a degenerate fold."""
    rows = np.asarray(rows, dtype=int)
    if rows.size == 0:
        raise DegenerateFoldError(f"No training rows available to fit {what}.")
    return adapter.fit(features[rows], targets[rows])
