"""Contrast generation and result ranking for the final clusters

Four strategies:
- F: one omnibus contrast over all clusters
- Pairs: one contrast per unordered pair of clusters, C*(C-1)/2
- OneAgainstAll: each cluster against all other clustered samples pooled, C
- Dendro: one contrast per internal node of a hierarchy over the final
  clusters (left child vs right child), C-1

Each contrast is handed to the differential tester; results are ranked by
adjusted p-value, optionally filtered, truncated and tagged with the feature's
position in the original (unfiltered) matrix.
"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from itertools import combinations
from typing import Optional, Sequence, Tuple, Union
import logging

import numpy as np
import pandas as pd

from ..config.schema import ContrastConfig
from ..data.contracts import FeatureMatrix, check_labels
from ..errors import ConfigurationError, InputError
from .hierarchy import ClusterHierarchy
from .merging import MergeResult
from .testing import Contrast, DifferentialTester, check_result

logger = logging.getLogger(__name__)

CONTRAST_TYPES = ("F", "Pairs", "OneAgainstAll", "Dendro")

TABLE_COLUMNS = [
    'contrast', 'rank', 'feature_index', 'index_in_original', 'feature',
    'statistic', 'p_value', 'adj_p_value',
]


def generate_contrasts(
    contrast_type: str,
    cluster_labels: Sequence[int],
    hierarchy: Optional[ClusterHierarchy] = None,
) -> Tuple[Contrast, ...]:
    """
    Build contrast definitions for a set of cluster labels

    Args:
        contrast_type: One of CONTRAST_TYPES
        cluster_labels: Non-negative labels of the final partition
        hierarchy: Hierarchy whose leaves are exactly cluster_labels (Dendro only)

    Returns:
        Ordered contrasts
    """
    if contrast_type not in CONTRAST_TYPES:
        raise ConfigurationError(f"Unknown contrast type '{contrast_type}'. Valid: {CONTRAST_TYPES}")

    clusters = sorted(int(c) for c in set(cluster_labels) if c >= 0)
    if len(clusters) < 2:
        raise ConfigurationError(f"Contrasts need at least 2 clusters, got {len(clusters)}")

    if contrast_type == "F":
        return (Contrast(name="F", kind="F", group1=tuple(clusters)),)

    if contrast_type == "Pairs":
        return tuple(
            Contrast(name=f"{a}-{b}", kind="Pairs", group1=(a,), group2=(b,))
            for a, b in combinations(clusters, 2)
        )

    if contrast_type == "OneAgainstAll":
        return tuple(
            Contrast(
                name=f"{c}-all",
                kind="OneAgainstAll",
                group1=(c,),
                group2=tuple(o for o in clusters if o != c),
            )
            for c in clusters
        )

    if hierarchy is None:
        raise ConfigurationError("Dendro contrasts require a hierarchy")
    if sorted(hierarchy.cluster_labels) != clusters:
        raise InputError(
            f"Hierarchy leaves {sorted(hierarchy.cluster_labels)} do not match "
            f"final clusters {clusters}"
        )
    contrasts = []
    for node in hierarchy.nodes_bottom_up():
        left, right = hierarchy.children_leaf_sets(node.node_id)
        contrasts.append(Contrast(
            name=f"node{node.node_id}",
            kind="Dendro",
            group1=left,
            group2=right,
            node_id=node.node_id,
        ))
    return tuple(contrasts)


@dataclass(frozen=True, eq=False)
class ContrastResult:
    """Ranked features for one contrast, or the failure that prevented it"""
    contrast: Contrast
    table: pd.DataFrame
    failed: bool = False
    message: str = ""


@dataclass(frozen=True, eq=False)
class ContrastReport:
    """All contrast results of one run"""
    contrast_type: str
    results: Tuple[ContrastResult, ...]

    @property
    def contrasts(self) -> Tuple[Contrast, ...]:
        return tuple(r.contrast for r in self.results)

    @property
    def failed(self) -> Tuple[ContrastResult, ...]:
        return tuple(r for r in self.results if r.failed)

    def __getitem__(self, name: str) -> ContrastResult:
        for r in self.results:
            if r.contrast.name == name:
                return r
        raise KeyError(name)

    def to_dataframe(self) -> pd.DataFrame:
        """Concatenated ranked tables of the successful contrasts"""
        tables = [r.table for r in self.results if not r.failed and len(r.table)]
        if not tables:
            return pd.DataFrame(columns=TABLE_COLUMNS)
        return pd.concat(tables, ignore_index=True)


class ContrastEngine:
    """
    Generate contrasts for a final partition and rank the tester's results

    Example:
        >>> engine = ContrastEngine(WelchTester(), number=25)
        >>> report = engine.run(matrix, merge_result, "Pairs")
        >>> report.to_dataframe().head()
    """

    def __init__(
        self,
        tester: DifferentialTester,
        number: int = 25,
        p_value: Optional[float] = None,
        n_jobs: int = 1,
    ):
        if number < 1:
            raise ConfigurationError(f"number must be >= 1, got {number}")
        self.tester = tester
        self.number = number
        self.p_value = p_value
        self.n_jobs = max(1, int(n_jobs))

    @classmethod
    def from_config(cls, config: ContrastConfig, tester: DifferentialTester) -> "ContrastEngine":
        return cls(tester=tester, number=config.number, p_value=config.p_value, n_jobs=config.n_jobs)

    def run(
        self,
        matrix: FeatureMatrix,
        partition: Union[MergeResult, Sequence[int], np.ndarray],
        contrast_type: str,
        hierarchy: Optional[ClusterHierarchy] = None,
    ) -> ContrastReport:
        """
        Generate contrasts and evaluate each one independently

        Args:
            matrix: Feature matrix (possibly feature-filtered; original_index is reported)
            partition: MergeResult or final labels (-1 samples are excluded)
            contrast_type: One of CONTRAST_TYPES
            hierarchy: Hierarchy over the final clusters (Dendro only)

        Returns:
            ContrastReport, one result per contrast in generation order
        """
        if isinstance(partition, MergeResult):
            labels = np.asarray(partition.labels)
        else:
            labels = check_labels(partition, matrix.n_samples, name="partition")
        if len(labels) != matrix.n_samples:
            raise InputError(f"Partition has {len(labels)} samples, matrix has {matrix.n_samples}")

        contrasts = generate_contrasts(contrast_type, np.unique(labels), hierarchy)
        X = matrix.transformed()

        logger.info(f"Evaluating {len(contrasts)} {contrast_type} contrasts")

        if self.n_jobs == 1 or len(contrasts) == 1:
            results = [self._evaluate(X, labels, c, matrix) for c in contrasts]
        else:
            with ThreadPoolExecutor(max_workers=self.n_jobs) as executor:
                futures = [executor.submit(self._evaluate, X, labels, c, matrix) for c in contrasts]
                results = [f.result() for f in futures]

        n_failed = sum(r.failed for r in results)
        if n_failed:
            logger.warning(f"{n_failed}/{len(results)} contrasts failed")

        return ContrastReport(contrast_type=contrast_type, results=tuple(results))

    def _evaluate(
        self,
        X: np.ndarray,
        labels: np.ndarray,
        contrast: Contrast,
        matrix: FeatureMatrix,
    ) -> ContrastResult:
        try:
            raw = check_result(self.tester.test(X, labels, contrast), X.shape[1], contrast)
        except Exception as e:
            logger.warning(f"Contrast {contrast.name} failed: {e}")
            return ContrastResult(
                contrast=contrast,
                table=pd.DataFrame(columns=TABLE_COLUMNS),
                failed=True,
                message=f"{type(e).__name__}: {e}",
            )
        return ContrastResult(contrast=contrast, table=self.rank(raw, contrast, matrix))

    def rank(self, raw: pd.DataFrame, contrast: Contrast, matrix: FeatureMatrix) -> pd.DataFrame:
        """Sort by adjusted p (ties by feature order), filter, truncate and tag"""
        table = raw.copy()
        table['feature_index'] = table['feature_index'].astype(int)
        table = table.sort_values(['adj_p_value', 'feature_index'], kind="mergesort")

        if self.p_value is not None:
            table = table[table['adj_p_value'] < self.p_value]
        table = table.head(self.number).reset_index(drop=True)

        positions = table['feature_index'].to_numpy()
        table['index_in_original'] = matrix.original_index[positions]
        table['feature'] = [matrix.feature_names[j] for j in positions]
        table['contrast'] = contrast.name
        table['rank'] = np.arange(1, len(table) + 1)
        return table[TABLE_COLUMNS]
