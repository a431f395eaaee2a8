"""Data contract for the input feature matrix

Samples are rows, features are columns. The matrix is validated once on
construction and then shared read-only by every stage.
"""
from dataclasses import dataclass, field
from typing import Optional, Sequence, Union

import numpy as np
import pandas as pd

from ..errors import InputError


@dataclass(frozen=True, eq=False)
class FeatureMatrix:
    """Validated, read-only numeric matrix (samples x features)"""
    values: np.ndarray
    sample_ids: tuple = field(default=())
    feature_names: tuple = field(default=())
    is_count: bool = False
    original_index: Optional[np.ndarray] = None

    def __post_init__(self):
        values = self.values
        if isinstance(values, pd.DataFrame):
            raise InputError("Use FeatureMatrix.from_dataframe for DataFrame input")

        try:
            values = np.asarray(values, dtype=float)
        except (TypeError, ValueError) as e:
            raise InputError(f"Feature matrix is not numeric: {e}") from e

        if values.ndim != 2:
            raise InputError(f"Feature matrix must be 2-D, got shape {values.shape}")
        if values.shape[0] == 0 or values.shape[1] == 0:
            raise InputError(f"Feature matrix is empty: shape {values.shape}")
        if not np.all(np.isfinite(values)):
            n_bad = int((~np.isfinite(values)).sum())
            raise InputError(f"Feature matrix contains {n_bad} missing or infinite values")
        if self.is_count and (values < 0).any():
            raise InputError("Count matrix contains negative values")

        n_samples, n_features = values.shape
        sample_ids = tuple(self.sample_ids) or tuple(range(n_samples))
        feature_names = tuple(self.feature_names) or tuple(f"feature_{j}" for j in range(n_features))
        if len(sample_ids) != n_samples:
            raise InputError(
                f"Got {len(sample_ids)} sample ids for {n_samples} matrix rows"
            )
        if len(feature_names) != n_features:
            raise InputError(
                f"Got {len(feature_names)} feature names for {n_features} matrix columns"
            )

        original_index = self.original_index
        if original_index is None:
            original_index = np.arange(n_features)
        original_index = np.array(original_index, dtype=int)
        if original_index.shape != (n_features,):
            raise InputError("original_index must hold one entry per feature")

        values = values.copy()
        values.setflags(write=False)
        original_index.setflags(write=False)

        object.__setattr__(self, "values", values)
        object.__setattr__(self, "sample_ids", sample_ids)
        object.__setattr__(self, "feature_names", feature_names)
        object.__setattr__(self, "original_index", original_index)

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame, is_count: bool = False) -> "FeatureMatrix":
        """Build from a DataFrame indexed by sample with one column per feature"""
        non_numeric = [c for c in df.columns if not pd.api.types.is_numeric_dtype(df[c])]
        if non_numeric:
            raise InputError(f"Non-numeric feature columns: {non_numeric[:5]}")
        return cls(
            values=df.to_numpy(dtype=float),
            sample_ids=tuple(df.index),
            feature_names=tuple(str(c) for c in df.columns),
            is_count=is_count,
        )

    @property
    def n_samples(self) -> int:
        return self.values.shape[0]

    @property
    def n_features(self) -> int:
        return self.values.shape[1]

    @property
    def shape(self) -> tuple:
        return self.values.shape

    def transformed(self) -> np.ndarray:
        """Values used for distances: log2(x + 1) for counts, as-is otherwise"""
        if self.is_count:
            return np.log2(self.values + 1.0)
        return self.values

    def select_features(self, columns: Union[Sequence[int], np.ndarray]) -> "FeatureMatrix":
        """
        Subset features, keeping track of their position in the original matrix

        Args:
            columns: Integer positions or boolean mask over current features

        Returns:
            New FeatureMatrix whose original_index maps back to the unfiltered input
        """
        columns = np.asarray(columns)
        if columns.dtype == bool:
            if columns.shape != (self.n_features,):
                raise InputError("Boolean feature mask has the wrong length")
            columns = np.flatnonzero(columns)
        if columns.size == 0:
            raise InputError("Feature selection removed every feature")

        return FeatureMatrix(
            values=self.values[:, columns],
            sample_ids=self.sample_ids,
            feature_names=tuple(self.feature_names[j] for j in columns),
            is_count=self.is_count,
            original_index=self.original_index[columns],
        )

    def to_dataframe(self) -> pd.DataFrame:
        """DataFrame view (copy) of the raw values"""
        return pd.DataFrame(
            np.array(self.values),
            index=list(self.sample_ids),
            columns=list(self.feature_names),
        )


def check_labels(labels: Union[Sequence[int], np.ndarray], n_samples: int, name: str = "labels") -> np.ndarray:
    """
    Validate a labeling against the sample universe

    Raises:
        InputError: wrong length, non-integer values or labels below -1
    """
    try:
        arr = np.asarray(labels, dtype=float)
    except (TypeError, ValueError) as e:
        raise InputError(f"{name} must be numeric: {e}") from e
    if arr.ndim != 1 or arr.shape[0] != n_samples:
        raise InputError(f"{name} must have length {n_samples}, got shape {arr.shape}")
    if arr.size and not np.all(np.isfinite(arr) & (np.mod(arr, 1) == 0)):
        raise InputError(f"{name} must be integers")
    arr = arr.astype(int)
    if arr.size and arr.min() < -1:
        raise InputError(f"{name} contains labels below the -1 sentinel")
    return arr
