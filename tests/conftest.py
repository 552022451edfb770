import itertools

import numpy as np
import pytest
from sklearn.base import BaseEstimator, ClassifierMixin, RegressorMixin
from scipy.special import softmax

# (event, model token, row ids) appended by the stub estimators below;
# the first feature column carries the original row index.
FIT_LOG = []
_TOKENS = itertools.count()


def pytest_addoption(parser):
    parser.addoption("--runslow", action="store_true", default=False, help="run repeated-simulation tests")


def pytest_configure(config):
    config.addinivalue_line("markers", "slow: repeated-simulation test, needs --runslow")


def pytest_collection_modifyitems(config, items):
    if config.getoption("--runslow"):
        return
    skip_slow = pytest.mark.skip(reason="needs --runslow")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


def _row_ids(X):
    return frozenset(np.asarray(X)[:, 0].astype(int).tolist())


class FrequencyClassifier(ClassifierMixin, BaseEstimator):
    """Predicts the training class frequencies for every row."""

    def fit(self, X, y):
        self.token_ = next(_TOKENS)
        self.classes_, counts = np.unique(np.asarray(y).astype(int), return_counts=True)
        self.freq_ = counts / counts.sum()
        FIT_LOG.append(("fit", self.token_, _row_ids(X)))
        return self

    def predict_proba(self, X):
        FIT_LOG.append(("predict", self.token_, _row_ids(X)))
        return np.tile(self.freq_, (np.asarray(X).shape[0], 1))

    def predict(self, X):
        return self.classes_[np.argmax(self.predict_proba(X), axis=1)]


class TiltedClassifier(ClassifierMixin, BaseEstimator):
    """Class probabilities softmax(tilt * class * X[:, col]) over the training classes."""

    def __init__(self, tilt=5.0, col=1):
        self.tilt = tilt
        self.col = col

    def fit(self, X, y):
        self.classes_ = np.unique(np.asarray(y).astype(int))
        return self

    def predict_proba(self, X):
        s = np.asarray(X, dtype=float)[:, self.col][:, None]
        return softmax(self.tilt * s * self.classes_[None, :], axis=1)

    def predict(self, X):
        return self.classes_[np.argmax(self.predict_proba(X), axis=1)]


class MeanRegressor(RegressorMixin, BaseEstimator):
    """Predicts the training mean."""

    def fit(self, X, y):
        self.token_ = next(_TOKENS)
        self.mean_ = float(np.mean(y))
        FIT_LOG.append(("fit", self.token_, _row_ids(X)))
        return self

    def predict(self, X):
        FIT_LOG.append(("predict", self.token_, _row_ids(X)))
        return np.full(np.asarray(X).shape[0], self.mean_)


@pytest.fixture
def fit_log():
    FIT_LOG.clear()
    yield FIT_LOG
    FIT_LOG.clear()


@pytest.fixture
def stub_learners():
    return {"ml_m": FrequencyClassifier(), "ml_g": MeanRegressor(), "ml_r": MeanRegressor()}


@pytest.fixture
def tilted_learners():
    return {"ml_m": TiltedClassifier(tilt=5.0, col=1), "ml_g": MeanRegressor(), "ml_r": MeanRegressor()}


def make_toy_arrays(n=300, n_categories=3, seed=0):
    """Random data whose first confounder column is the row index."""
    rng = np.random.default_rng(seed)
    z = np.arange(n) % n_categories
    rng.shuffle(z)
    x = np.column_stack([np.arange(n, dtype=float), rng.normal(size=n), rng.normal(size=n)])
    m = rng.normal(size=(n, 2)) + 0.5 * z[:, None]
    y = 1.0 + 0.3 * z + m.sum(axis=1) + x[:, 1] + rng.normal(size=n)
    return y, z, m, x


@pytest.fixture
def toy_arrays():
    return make_toy_arrays()
