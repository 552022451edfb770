"""
Three-way sample splitting with role rotation.

The sample is permuted once and cut into three blocks. Each of the three
passes uses one block as the test fold, one to fit the first-stage outcome
regressions ("mu" role) and one to fit the nested regressions ("delta" role):

    pass 1: test=block1, mu=block2, delta=block3
    pass 2: test=block3, mu=block1, delta=block2
    pass 3: test=block2, mu=block3, delta=block1

so every row is a test row exactly once.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

import numpy as np

# (test, mu, delta) block positions for each pass
ROTATION: Tuple[Tuple[int, int, int], ...] = ((0, 1, 2), (2, 0, 1), (1, 2, 0))


@dataclass(frozen=True)
class CrossFitPass:
    """Index sets used by one cross-fitting pass."""

    index: int
    test: np.ndarray
    mu_train: np.ndarray
    delta_train: np.ndarray
    train: np.ndarray
    few_splits: bool = False

    @property
    def fit_rows(self) -> np.ndarray:
        """All rows any nuisance model of this pass may be trained on."""
        return np.union1d(self.train, np.union1d(self.mu_train, self.delta_train))

    def __repr__(self) -> str:
        return (
            f"CrossFitPass(index={self.index}, n_test={self.test.size}, "
            f"n_mu={self.mu_train.size}, n_delta={self.delta_train.size}, "
            f"few_splits={self.few_splits})"
        )


def make_partition(n: int, rng: np.random.Generator) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Split ``range(n)`` into three disjoint blocks from one random permutation.

    ``stepsize = ceil(n / 3)``; the permutation covers ``min(3 * stepsize, n)``
    indices (which is always ``n``), blocks 1 and 2 take ``stepsize`` rows and
    block 3 takes the remainder, so it can be up to two rows shorter. When that
    remainder is empty (only ``n == 4``) the permutation is split as evenly as
    possible instead, giving blocks of 2, 1 and 1 rows.

    Raises
    ------
    ValueError
        If ``n < 3``, so that some block would be empty.
    """
    n = int(n)
    if n < 3:
        raise ValueError(
            f"Cannot split n={n} observations into three non-empty cross-fitting blocks."
        )
    stepsize = int(np.ceil(n / 3))
    nobs = min(3 * stepsize, n)
    idx = rng.permutation(nobs)
    if 2 * stepsize >= nobs:
        return tuple(np.array_split(idx, 3))
    return idx[:stepsize], idx[stepsize:2 * stepsize], idx[2 * stepsize:nobs]


def crossfit_passes(
    n: int,
    random_state: Optional[Union[int, np.random.Generator]] = None,
    few_splits: bool = False,
) -> List[CrossFitPass]:
    """
    Build the three cross-fitting passes.

    Parameters
    ----------
    n : int
        Number of observations.
    random_state : int or numpy.random.Generator, optional
        Seed (or generator) for the single permutation. The same seed always
        yields identical folds.
    few_splits : bool, default False
        If True, the mu and delta roles are both replaced by their union, so
        each nuisance target is fit once per pass on the whole training set.
        This trades the independence between first-stage and nested fits for
        larger training sets.

    Returns
    -------
    list of CrossFitPass
    """
    rng = random_state if isinstance(random_state, np.random.Generator) else np.random.default_rng(random_state)
    blocks = make_partition(n, rng)
    passes: List[CrossFitPass] = []
    for i, (t, m, d) in enumerate(ROTATION):
        test, mu, delta = blocks[t], blocks[m], blocks[d]
        train = np.concatenate([mu, delta])
        if few_splits:
            mu = train
            delta = train
        passes.append(
            CrossFitPass(index=i, test=test, mu_train=mu, delta_train=delta, train=train, few_splits=bool(few_splits))
        )
    return passes
