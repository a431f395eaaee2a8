"""Differential-testing capability

The engine never models statistics itself: merging and contrast ranking hand a
Contrast to a DifferentialTester and only shape what comes back. WelchTester is
the reference provider (scipy tests, statsmodels multiplicity correction);
any object with the same ``test`` signature can be injected instead.
"""
from dataclasses import dataclass
from typing import Dict, Optional, Protocol, Tuple, runtime_checkable
import warnings

import numpy as np
import pandas as pd
from scipy.stats import f_oneway, ttest_ind
from statsmodels.stats.multitest import multipletests

from ..errors import TestProviderFailure

RESULT_COLUMNS = ['feature_index', 'statistic', 'p_value', 'adj_p_value']


@dataclass(frozen=True)
class Contrast:
    """
    Named comparison between groups of cluster labels

    kind 'F' is an omnibus test across every label in group1 (group2 empty);
    every other kind compares the pooled samples of group1 against group2.
    """
    name: str
    kind: str
    group1: Tuple[int, ...]
    group2: Tuple[int, ...] = ()
    node_id: Optional[int] = None

    @property
    def is_omnibus(self) -> bool:
        return self.kind == "F"

    def clusters(self) -> Tuple[int, ...]:
        return tuple(self.group1) + tuple(self.group2)

    def weights(self) -> Dict[int, float]:
        """Per-cluster coefficients: group1 clusters average to +1, group2 to -1"""
        if self.is_omnibus:
            raise ValueError("Omnibus contrasts have no single weight vector")
        coef = {int(c): 1.0 / len(self.group1) for c in self.group1}
        coef.update({int(c): -1.0 / len(self.group2) for c in self.group2})
        return coef

    def sample_weights(self, labels: np.ndarray) -> np.ndarray:
        """Per-sample coefficients: +1/n1 on group1, -1/n2 on group2"""
        if self.is_omnibus:
            raise ValueError("Omnibus contrasts have no single weight vector")
        labels = np.asarray(labels)
        in1 = np.isin(labels, self.group1)
        in2 = np.isin(labels, self.group2)
        weights = np.zeros(len(labels))
        if in1.any():
            weights[in1] = 1.0 / in1.sum()
        if in2.any():
            weights[in2] = -1.0 / in2.sum()
        return weights

    def to_dict(self) -> Dict[str, object]:
        return {
            'name': self.name,
            'kind': self.kind,
            'group1': list(self.group1),
            'group2': list(self.group2),
            'node_id': self.node_id,
        }


@runtime_checkable
class DifferentialTester(Protocol):
    """
    Capability: (matrix, partition, contrast) -> per-feature results

    Must return a DataFrame with RESULT_COLUMNS, one row per feature in input
    order, and raise TestProviderFailure when the contrast cannot be tested.
    """

    def test(self, X: np.ndarray, labels: np.ndarray, contrast: Contrast) -> pd.DataFrame:
        ...


class WelchTester:
    """
    Reference provider

    - Omnibus (F) contrasts: one-way ANOVA per feature across the clusters
    - Two-group contrasts: Welch's t-test per feature
    - Adjustment across features within the contrast via multipletests
    """

    def __init__(self, correction: str = "fdr_bh", min_group_size: int = 2):
        self.correction = correction
        self.min_group_size = min_group_size

    def test(self, X: np.ndarray, labels: np.ndarray, contrast: Contrast) -> pd.DataFrame:
        X = np.asarray(X, dtype=float)
        labels = np.asarray(labels)
        if X.shape[0] != len(labels):
            raise TestProviderFailure(
                f"{contrast.name}: {len(labels)} labels for {X.shape[0]} samples"
            )

        if contrast.is_omnibus:
            groups = [X[labels == c] for c in contrast.group1]
            groups = [g for g in groups if len(g) > 0]
            if len(groups) < 2:
                raise TestProviderFailure(f"{contrast.name}: F test needs at least 2 non-empty clusters")
            if sum(len(g) for g in groups) <= len(groups):
                raise TestProviderFailure(f"{contrast.name}: no residual degrees of freedom")
            with warnings.catch_warnings(), np.errstate(all="ignore"):
                warnings.simplefilter("ignore")
                statistic, p_values = f_oneway(*groups, axis=0)
        else:
            a = X[np.isin(labels, contrast.group1)]
            b = X[np.isin(labels, contrast.group2)]
            if len(a) < self.min_group_size or len(b) < self.min_group_size:
                raise TestProviderFailure(
                    f"{contrast.name}: groups of size {len(a)} and {len(b)}, "
                    f"need at least {self.min_group_size} each"
                )
            with warnings.catch_warnings(), np.errstate(all="ignore"):
                warnings.simplefilter("ignore")
                statistic, p_values = ttest_ind(a, b, axis=0, equal_var=False)

        statistic = np.atleast_1d(np.asarray(statistic, dtype=float))
        p_values = np.atleast_1d(np.asarray(p_values, dtype=float))

        # Features constant in every group carry no evidence
        undefined = ~np.isfinite(p_values)
        statistic[~np.isfinite(statistic)] = 0.0
        p_values[undefined] = 1.0

        _, adjusted, _, _ = multipletests(p_values, method=self.correction)

        return pd.DataFrame({
            'feature_index': np.arange(X.shape[1]),
            'statistic': statistic,
            'p_value': p_values,
            'adj_p_value': adjusted,
        }, columns=RESULT_COLUMNS)


def check_result(result: pd.DataFrame, n_features: int, contrast: Contrast) -> pd.DataFrame:
    """
    Validate what a tester returned

    Raises:
        TestProviderFailure: missing columns, wrong number of rows, or rows
            not in input feature order
    """
    if not isinstance(result, pd.DataFrame):
        raise TestProviderFailure(f"{contrast.name}: tester returned {type(result).__name__}")
    missing = set(RESULT_COLUMNS) - set(result.columns)
    if missing:
        raise TestProviderFailure(f"{contrast.name}: tester result lacks columns {sorted(missing)}")
    if len(result) != n_features:
        raise TestProviderFailure(
            f"{contrast.name}: tester returned {len(result)} rows for {n_features} features"
        )
    feature_index = pd.to_numeric(result['feature_index'], errors="coerce").to_numpy()
    if not np.array_equal(feature_index, np.arange(n_features)):
        raise TestProviderFailure(
            f"{contrast.name}: tester rows must list feature_index 0..{n_features - 1} in order"
        )
    return result.reset_index(drop=True)
