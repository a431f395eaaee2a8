"""Pluggable clustering strategies and per-combination feature reduction

A strategy turns a numeric matrix and one ParameterCombination into a labeling
(one integer per sample, -1 for unassigned). The sklearn-backed strategies
below only adapt library algorithms to that contract; they are selected by name
through STRATEGIES when a sweep is configured.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from typing import Dict, Optional, Protocol, Tuple, Type, runtime_checkable
import logging

import numpy as np
from scipy.stats import median_abs_deviation
from sklearn.cluster import KMeans, AgglomerativeClustering, SpectralClustering, HDBSCAN
from sklearn.decomposition import PCA
from sklearn.mixture import GaussianMixture

from ..errors import StrategyFailure, ConfigurationError

logger = logging.getLogger(__name__)


REDUCE_METHODS = ("none", "var", "mad", "pca")


@dataclass(frozen=True)
class ParameterCombination:
    """One point of the parameter grid"""
    k: Optional[int] = None
    distance: str = "euclidean"
    reduce_method: str = "none"
    n_dims: Optional[int] = None
    min_cluster_size: Optional[int] = None
    random_state: int = 42

    def __post_init__(self):
        if self.reduce_method not in REDUCE_METHODS:
            raise ConfigurationError(
                f"Unknown reduce method '{self.reduce_method}'. Valid: {REDUCE_METHODS}"
            )

    @property
    def name(self) -> str:
        parts = []
        if self.k is not None:
            parts.append(f"k={self.k}")
        if self.min_cluster_size is not None:
            parts.append(f"minSize={self.min_cluster_size}")
        parts.append(f"dist={self.distance}")
        parts.append(f"reduce={self.reduce_method}")
        if self.reduce_method != "none" and self.n_dims is not None:
            parts.append(f"dims={self.n_dims}")
        return ",".join(parts)

    def to_dict(self) -> dict:
        return asdict(self)


# ============================================================================
# FEATURE REDUCTION
# ============================================================================

def top_feature_indices(X: np.ndarray, method: str, n_dims: int) -> np.ndarray:
    """
    Indices of the n_dims most variable features, most variable first

    Ties are broken by column order so the selection is deterministic.
    """
    if method == "var":
        scores = X.var(axis=0)
    elif method == "mad":
        scores = median_abs_deviation(X, axis=0)
    else:
        raise ValueError(f"Feature ranking requires 'var' or 'mad', got '{method}'")

    n_dims = min(n_dims, X.shape[1])
    order = np.argsort(-scores, kind="stable")
    return order[:n_dims]


def reduce_features(
    X: np.ndarray,
    method: str = "none",
    n_dims: Optional[int] = None,
) -> np.ndarray:
    """
    Apply one dimensionality reduction

    Args:
        X: Data matrix (samples x features)
        method: 'none', 'var', 'mad' (top features) or 'pca' (components)
        n_dims: Features/components to keep; requests larger than the matrix are clipped

    Returns:
        Reduced matrix (a new array)
    """
    if method == "none" or n_dims is None:
        return np.array(X, dtype=float)

    if method in ("var", "mad"):
        return np.array(X[:, top_feature_indices(X, method, n_dims)], dtype=float)

    if method == "pca":
        n_components = min(n_dims, X.shape[0], X.shape[1])
        pca = PCA(n_components=n_components, svd_solver="full")
        return pca.fit_transform(X)

    raise ValueError(f"Unknown reduce method '{method}'. Valid: {REDUCE_METHODS}")


# ============================================================================
# STRATEGIES
# ============================================================================

@runtime_checkable
class ClusteringStrategy(Protocol):
    """Capability: (matrix, params) -> labeling"""
    name: str

    def cluster(self, X: np.ndarray, params: ParameterCombination) -> np.ndarray:
        ...


class SklearnStrategy(ABC):
    """Base adapter for sklearn estimators with a fit_predict method"""

    name = "base"
    needs_k = True
    supported_distances: Tuple[str, ...] = ("euclidean",)

    def cluster(self, X: np.ndarray, params: ParameterCombination) -> np.ndarray:
        """
        Cluster X with the given parameters

        Raises:
            StrategyFailure: invalid parameters or estimator error
        """
        n_samples = X.shape[0]

        if self.needs_k:
            if params.k is None:
                raise StrategyFailure(f"{self.name} requires a target cluster count")
            if params.k < 1 or params.k >= n_samples:
                raise StrategyFailure(
                    f"{self.name}: k={params.k} must be in [1, {n_samples - 1}]"
                )
        if params.distance not in self.supported_distances:
            raise StrategyFailure(
                f"{self.name} does not support distance '{params.distance}'"
            )

        try:
            labels = self._fit_predict(X, params)
        except StrategyFailure:
            raise
        except (ValueError, np.linalg.LinAlgError) as e:
            raise StrategyFailure(f"{self.name} failed for {params.name}: {e}") from e

        return np.asarray(labels, dtype=int)

    @abstractmethod
    def _fit_predict(self, X: np.ndarray, params: ParameterCombination) -> np.ndarray:
        ...


class KMeansStrategy(SklearnStrategy):
    name = "kmeans"

    def __init__(self, n_init: int = 10):
        self.n_init = n_init

    def _fit_predict(self, X, params):
        km = KMeans(n_clusters=params.k, n_init=self.n_init, random_state=params.random_state)
        return km.fit_predict(X)


class AgglomerativeStrategy(SklearnStrategy):
    """Ward linkage for euclidean distances, average linkage otherwise"""
    name = "agglomerative"
    supported_distances = ("euclidean", "manhattan", "cosine", "l1", "l2")

    def _fit_predict(self, X, params):
        linkage = "ward" if params.distance == "euclidean" else "average"
        agg = AgglomerativeClustering(
            n_clusters=params.k,
            metric=params.distance,
            linkage=linkage,
        )
        return agg.fit_predict(X)


class SpectralStrategy(SklearnStrategy):
    name = "spectral"

    def __init__(self, n_neighbors: int = 10):
        self.n_neighbors = n_neighbors

    def _fit_predict(self, X, params):
        sc = SpectralClustering(
            n_clusters=params.k,
            affinity="nearest_neighbors",
            n_neighbors=min(self.n_neighbors, X.shape[0] - 1),
            assign_labels="kmeans",
            random_state=params.random_state,
        )
        return sc.fit_predict(X)


class GaussianMixtureStrategy(SklearnStrategy):
    name = "gmm"

    def __init__(self, covariance_type: str = "diag"):
        self.covariance_type = covariance_type

    def _fit_predict(self, X, params):
        gmm = GaussianMixture(
            n_components=params.k,
            covariance_type=self.covariance_type,
            random_state=params.random_state,
        )
        return gmm.fit_predict(X)


class HDBSCANStrategy(SklearnStrategy):
    """Density clustering; noise points come back as -1"""
    name = "hdbscan"
    needs_k = False
    supported_distances = ("euclidean", "manhattan", "chebyshev", "cosine")

    def _fit_predict(self, X, params):
        if params.min_cluster_size is None or params.min_cluster_size < 2:
            raise StrategyFailure("hdbscan requires min_cluster_size >= 2")
        if params.min_cluster_size > X.shape[0]:
            raise StrategyFailure(
                f"hdbscan: min_cluster_size={params.min_cluster_size} exceeds "
                f"{X.shape[0]} samples"
            )
        algorithm = "brute" if params.distance == "cosine" else "auto"
        hdb = HDBSCAN(
            min_cluster_size=params.min_cluster_size,
            metric=params.distance,
            algorithm=algorithm,
        )
        return hdb.fit_predict(X)


STRATEGIES: Dict[str, Type[SklearnStrategy]] = {
    "kmeans": KMeansStrategy,
    "agglomerative": AgglomerativeStrategy,
    "spectral": SpectralStrategy,
    "gmm": GaussianMixtureStrategy,
    "hdbscan": HDBSCANStrategy,
}


def get_strategy(name: str, **kwargs) -> SklearnStrategy:
    """Instantiate a registered strategy by name"""
    if name not in STRATEGIES:
        raise ConfigurationError(f"Unknown strategy '{name}'. Valid: {sorted(STRATEGIES)}")
    return STRATEGIES[name](**kwargs)
