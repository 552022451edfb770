"""
MediationData class for storing a DataFrame together with its mediation roles.
"""

import pandas as pd
import pandas.api.types as pdtypes
import numpy as np
from typing import Union, List, Optional, Tuple
import warnings


class MediationData:
    """
    A class that wraps a pandas DataFrame and stores which columns play the
    roles of outcome, exposure, mediators and confounders. The DataFrame is
    truncated to only include those columns.

    Parameters
    ----------
    df : pd.DataFrame
        The DataFrame containing the data. Cannot contain NaN values.
    outcome : str
        Column name of the outcome Y.
    exposure : str
        Column name of the exposure Z, integer coded 0..K-1 with 0 as the
        reference level.
    mediators : Union[str, List[str]]
        Column name(s) of the potential mediators M.
    confounders : Union[str, List[str]]
        Column name(s) of the potential confounders X.

    Examples
    --------
    >>> from medkit.data import generate_mediation_data, MediationData
    >>> df = generate_mediation_data(n=500, random_state=1)
    >>> md = MediationData(
    ...     df=df,
    ...     outcome='y',
    ...     exposure='z',
    ...     mediators=['m1', 'm2'],
    ...     confounders=['x1', 'x2', 'x3'],
    ... )
    >>> md.n_categories
    3
    """

    def __init__(
            self,
            df: pd.DataFrame,
            outcome: str,
            exposure: str,
            mediators: Union[str, List[str]],
            confounders: Union[str, List[str]],
    ):
        self._outcome = outcome
        self._exposure = exposure
        self._mediators = self._unique(self._ensure_list(mediators))
        self._confounders = self._unique(self._ensure_list(confounders))

        self._validate_columns(df)

        columns_to_keep = [self._outcome, self._exposure] + self._mediators + self._confounders
        self.df = df[columns_to_keep].copy()

    @staticmethod
    def _ensure_list(value: Union[str, List[str], None]) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return list(value)

    @staticmethod
    def _unique(values: List[str]) -> List[str]:
        return list(dict.fromkeys(values))

    def _role_of(self, column_name: str) -> str:
        if column_name == self._outcome:
            return "outcome"
        if column_name == self._exposure:
            return "exposure"
        if column_name in self._mediators:
            return "mediator"
        if column_name in self._confounders:
            return "confounder"
        return "unknown"

    def _validate_columns(self, df: pd.DataFrame) -> None:
        """
        Validate column existence, numeric dtypes, non-constant columns, the
        exposure coding, and that no column plays two roles.
        """
        if not self._mediators:
            raise ValueError("At least one mediator column is required.")
        if not self._confounders:
            raise ValueError("At least one confounder column is required.")

        roles = [self._outcome, self._exposure] + self._mediators + self._confounders
        seen = set()
        for col in roles:
            if col in seen:
                raise ValueError(f"Column '{col}' is assigned to more than one role.")
            seen.add(col)

        all_columns = set(df.columns)
        for col in roles:
            if col not in all_columns:
                raise ValueError(
                    f"Column '{col}' specified as {self._role_of(col)} does not exist in the DataFrame."
                )

        if df[roles].isna().any().any():
            raise ValueError("DataFrame contains NaN values, which are not allowed.")

        for col in roles:
            if not pdtypes.is_numeric_dtype(df[col]):
                raise ValueError(
                    f"Column '{col}' specified as {self._role_of(col)} must contain only int or float values."
                )
            if df[col].std() == 0 or pd.isna(df[col].std()):
                if col in (self._outcome, self._exposure):
                    raise ValueError(
                        f"Column '{col}' specified as {self._role_of(col)} is constant (has zero variance), "
                        "which is not allowed for mediation analysis."
                    )
                warnings.warn(
                    f"Column '{col}' specified as {self._role_of(col)} is constant (has zero variance) "
                    "and carries no information for the nuisance fits.",
                    UserWarning,
                    stacklevel=3
                )

        z = df[self._exposure].to_numpy(dtype=float)
        if not np.all(np.equal(np.mod(z, 1), 0)):
            raise ValueError(f"Exposure column '{self._exposure}' must be integer coded.")
        levels = np.unique(z.astype(int))
        if levels[0] != 0 or not np.array_equal(levels, np.arange(levels.shape[0])):
            raise ValueError(
                f"Exposure column '{self._exposure}' must use the codes 0..K-1 with 0 as the "
                f"reference level; found levels {levels.tolist()}."
            )

        self._check_duplicate_rows(df[roles])

    def _check_duplicate_rows(self, df_subset: pd.DataFrame) -> None:
        num_duplicates = int(df_subset.duplicated().sum())
        if num_duplicates > 0:
            warnings.warn(
                f"Found {num_duplicates} duplicate rows out of {len(df_subset)} total rows in the DataFrame. "
                f"Duplicate rows may affect the quality of the nuisance fits. "
                f"Consider removing duplicates if they are not intentional.",
                UserWarning,
                stacklevel=3
            )

    @property
    def outcome(self) -> pd.Series:
        """The outcome column as a pandas Series."""
        return self.df[self._outcome]

    @property
    def exposure(self) -> pd.Series:
        """The exposure column as a pandas Series."""
        return self.df[self._exposure]

    @property
    def mediators(self) -> List[str]:
        """List of mediator column names."""
        return list(self._mediators)

    @property
    def confounders(self) -> List[str]:
        """List of confounder column names."""
        return list(self._confounders)

    @property
    def n_categories(self) -> int:
        return int(self.df[self._exposure].max()) + 1

    def to_arrays(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """
        Return (y, z, m, x) as numpy arrays ready for the estimator.
        """
        y = self.df[self._outcome].to_numpy(dtype=float)
        z = self.df[self._exposure].to_numpy().astype(int)
        m = self.df[self._mediators].to_numpy(dtype=float)
        x = self.df[self._confounders].to_numpy(dtype=float)
        return y, z, m, x

    def __len__(self) -> int:
        return int(self.df.shape[0])

    def __repr__(self) -> str:
        return (
            f"MediationData(df={self.df.shape}, "
            f"outcome='{self._outcome}', "
            f"exposure='{self._exposure}', "
            f"mediators={self._mediators}, "
            f"confounders={self._confounders})"
        )
