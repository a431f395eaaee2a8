"""Parameter sweep: one clustering per parameter combination

Every combination is run independently (its own reduction, its own strategy
call) so combinations can be evaluated in any order or concurrently. Results
are reassembled in combination order. A failing combination contributes an
all-unassigned labeling and a SweepFailure record; it never aborts the sweep.
"""
from concurrent.futures import ThreadPoolExecutor, ProcessPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from itertools import product
from typing import List, Optional, Sequence, Tuple
import logging

import numpy as np
import pandas as pd

from ..config.schema import SweepConfig
from ..data.contracts import FeatureMatrix, check_labels
from ..errors import InputError, ConfigurationError
from .strategies import ClusteringStrategy, ParameterCombination, reduce_features, get_strategy

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class LabelMatrix:
    """Ordered labelings over one sample universe (n_labelings x n_samples)"""
    labels: np.ndarray
    combinations: Tuple[ParameterCombination, ...] = ()

    def __post_init__(self):
        labels = np.array(self.labels, dtype=int, ndmin=2)
        if labels.ndim != 2:
            raise InputError(f"Label matrix must be 2-D, got shape {labels.shape}")
        if labels.size and labels.min() < -1:
            raise InputError("Label matrix contains labels below the -1 sentinel")
        if self.combinations and len(self.combinations) != labels.shape[0]:
            raise InputError(
                f"{len(self.combinations)} combinations for {labels.shape[0]} labelings"
            )
        labels.setflags(write=False)
        object.__setattr__(self, "labels", labels)
        object.__setattr__(self, "combinations", tuple(self.combinations))

    @classmethod
    def from_labelings(
        cls,
        labelings: Sequence[Sequence[int]],
        combinations: Sequence[ParameterCombination] = (),
    ) -> "LabelMatrix":
        """Stack labelings, checking they all share the same length"""
        if len(labelings) == 0:
            raise InputError("At least one labeling is required")
        n_samples = len(labelings[0])
        rows = [check_labels(lab, n_samples, name=f"labeling {i}") for i, lab in enumerate(labelings)]
        return cls(labels=np.vstack(rows), combinations=tuple(combinations))

    @property
    def n_labelings(self) -> int:
        return self.labels.shape[0]

    @property
    def n_samples(self) -> int:
        return self.labels.shape[1]

    def __len__(self) -> int:
        return self.n_labelings

    def labeling(self, i: int) -> np.ndarray:
        return self.labels[i]

    def assigned_counts(self) -> np.ndarray:
        """Number of non-unassigned samples per labeling"""
        return (self.labels >= 0).sum(axis=1)

    def names(self) -> List[str]:
        if self.combinations:
            return [c.name for c in self.combinations]
        return [f"labeling_{i}" for i in range(self.n_labelings)]

    def to_dataframe(self, sample_ids: Optional[Sequence] = None) -> pd.DataFrame:
        """Samples as rows, one column per labeling"""
        return pd.DataFrame(
            np.array(self.labels).T,
            index=list(sample_ids) if sample_ids is not None else None,
            columns=self.names(),
        )


@dataclass(frozen=True)
class SweepFailure:
    """A combination whose strategy call failed"""
    index: int
    combination: ParameterCombination
    message: str


@dataclass(frozen=True)
class SweepResult:
    """Label matrix plus failure records for one sweep"""
    label_matrix: LabelMatrix
    failures: Tuple[SweepFailure, ...] = field(default=())

    @property
    def n_failed(self) -> int:
        return len(self.failures)

    def summary(self) -> pd.DataFrame:
        """One row per combination: clusters found, unassigned count, error"""
        failed = {f.index: f.message for f in self.failures}
        rows = []
        for i, name in enumerate(self.label_matrix.names()):
            lab = self.label_matrix.labeling(i)
            rows.append({
                'combination': name,
                'n_clusters': len(np.unique(lab[lab >= 0])),
                'n_unassigned': int((lab < 0).sum()),
                'failed': i in failed,
                'error': failed.get(i, ""),
            })
        return pd.DataFrame(rows)


def build_parameter_grid(config: SweepConfig) -> Tuple[ParameterCombination, ...]:
    """
    Expand a sweep config into ordered parameter combinations

    The product is taken in a fixed order (cluster parameter, distance,
    reduction, dimensionality) so the grid is identical between runs. For
    reduce method 'none' the dimensionality axis is collapsed.
    """
    if config.strategy == "hdbscan":
        cluster_axis = [dict(min_cluster_size=m) for m in config.min_cluster_sizes]
    else:
        cluster_axis = [dict(k=k) for k in config.ks]

    combos = []
    seen = set()
    for cluster_params, distance, reduce_method, n_dims in product(
        cluster_axis, config.distances, config.reduce_methods, config.n_reduced_dims
    ):
        combo = ParameterCombination(
            distance=distance,
            reduce_method=reduce_method,
            n_dims=None if reduce_method == "none" else n_dims,
            random_state=config.random_state,
            **cluster_params,
        )
        if combo in seen:
            continue
        seen.add(combo)
        combos.append(combo)

    if not combos:
        raise ConfigurationError("Parameter grid is empty")
    return tuple(combos)


def run_combination(
    X: np.ndarray,
    strategy: ClusteringStrategy,
    params: ParameterCombination,
) -> np.ndarray:
    """
    Reduce X with the combination's own parameters, then cluster it

    Module-level so it can be shipped to worker processes.
    """
    X_reduced = reduce_features(X, params.reduce_method, params.n_dims)
    labels = strategy.cluster(X_reduced, params)
    return check_labels(labels, X.shape[0], name=f"labels from {params.name}")


class ParameterSweepRunner:
    """
    Run a clustering strategy over every parameter combination

    Example:
        >>> runner = ParameterSweepRunner(KMeansStrategy(), build_parameter_grid(cfg))
        >>> result = runner.run(matrix)
        >>> result.label_matrix.n_labelings == len(runner.combinations)
    """

    def __init__(
        self,
        strategy: ClusteringStrategy,
        combinations: Sequence[ParameterCombination],
        n_jobs: int = 1,
        backend: str = "thread",
        timeout: Optional[float] = None,
    ):
        """
        Args:
            strategy: Clustering capability called once per combination
            combinations: Ordered parameter grid
            n_jobs: Number of concurrent workers
            backend: 'thread' or 'process'
            timeout: Seconds to wait for one combination when n_jobs > 1
        """
        if len(combinations) == 0:
            raise ConfigurationError("At least one parameter combination is required")
        if backend not in ("thread", "process"):
            raise ConfigurationError(f"Unknown backend '{backend}'")

        self.strategy = strategy
        self.combinations = tuple(combinations)
        self.n_jobs = max(1, int(n_jobs))
        self.backend = backend
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: SweepConfig) -> "ParameterSweepRunner":
        return cls(
            strategy=get_strategy(config.strategy),
            combinations=build_parameter_grid(config),
            n_jobs=config.n_jobs,
            backend=config.backend,
        )

    def run(self, matrix: FeatureMatrix) -> SweepResult:
        """
        Run the sweep

        Args:
            matrix: Validated feature matrix (counts are log-transformed first)

        Returns:
            SweepResult with one labeling per combination, in combination order
        """
        X = matrix.transformed()
        n_samples = X.shape[0]

        logger.info(
            f"Running {self.strategy.name} over {len(self.combinations)} parameter "
            f"combinations ({n_samples} samples, n_jobs={self.n_jobs})"
        )

        if self.n_jobs == 1:
            outcomes = [self._run_one(X, params) for params in self.combinations]
        else:
            outcomes = self._run_parallel(X)

        rows = []
        failures = []
        for i, (params, outcome) in enumerate(zip(self.combinations, outcomes)):
            if isinstance(outcome, np.ndarray):
                rows.append(outcome)
            else:
                logger.warning(f"Combination {i} ({params.name}) failed: {outcome}")
                failures.append(SweepFailure(index=i, combination=params, message=outcome))
                rows.append(np.full(n_samples, -1, dtype=int))

        if failures:
            logger.warning(
                f"{len(failures)}/{len(self.combinations)} combinations failed and "
                f"were recorded as unassigned"
            )

        label_matrix = LabelMatrix(labels=np.vstack(rows), combinations=self.combinations)
        return SweepResult(label_matrix=label_matrix, failures=tuple(failures))

    def _run_one(self, X: np.ndarray, params: ParameterCombination):
        """Labels on success, error message on failure"""
        try:
            return run_combination(X, self.strategy, params)
        except Exception as e:
            return f"{type(e).__name__}: {e}"

    def _run_parallel(self, X: np.ndarray) -> list:
        executor_cls = ThreadPoolExecutor if self.backend == "thread" else ProcessPoolExecutor
        executor = executor_cls(max_workers=self.n_jobs)
        try:
            futures = [
                executor.submit(run_combination, X, self.strategy, params)
                for params in self.combinations
            ]
            outcomes = []
            for future in futures:
                try:
                    outcomes.append(future.result(timeout=self.timeout))
                except FutureTimeout:
                    future.cancel()
                    outcomes.append(f"TimeoutError: no result after {self.timeout}s")
                except Exception as e:
                    outcomes.append(f"{type(e).__name__}: {e}")
        finally:
            executor.shutdown(wait=self.timeout is None, cancel_futures=True)
        return outcomes
