"""Consensus partition from the co-clustering structure of many labelings

Builds the co-clustering matrix (fraction of labelings in which two samples
share a non-negative label), clusters 1 - co-clustering hierarchically and cuts
the tree either at height 1 - combine_proportion or into a fixed number of
clusters. Clusters below combine_min_size are dissolved into -1; a sample the
cut leaves on its own is dropped under the reason 'proportion' unless
combine_min_size is 1, in which case it is kept as its own cluster.

No randomness is involved: identical label matrices and parameters give
identical consensus partitions.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Sequence, Tuple
import logging
import warnings

import numpy as np
import pandas as pd
from scipy.cluster.hierarchy import linkage, fcluster
from scipy.spatial.distance import squareform

from ..config.schema import ConsensusConfig
from ..errors import ConfigurationError, DegenerateConsensusWarning
from .sweep import LabelMatrix

logger = logging.getLogger(__name__)

# Cut heights are compared against 1 - proportion; keep exact ties grouped
_CUT_TOLERANCE = 1e-10


class UnassignedReason(str, Enum):
    """Why a sample carries a given consensus label"""
    ASSIGNED = "assigned"
    NEVER_CLUSTERED = "never_clustered"
    MIN_SIZE = "min_size"
    PROPORTION = "proportion"


def co_cluster_matrix(labels: np.ndarray) -> np.ndarray:
    """
    Fraction of labelings in which each pair of samples shares a cluster

    Args:
        labels: (n_labelings, n_samples) integer array, -1 for unassigned

    Returns:
        Read-only symmetric (n_samples, n_samples) matrix in [0, 1] with unit diagonal
    """
    labels = np.asarray(labels, dtype=int)
    if labels.ndim == 1:
        labels = labels[None, :]
    n_labelings, n_samples = labels.shape

    counts = np.zeros((n_samples, n_samples))
    for lab in labels:
        assigned = lab >= 0
        if not assigned.any():
            continue
        # One-hot membership of assigned samples; A @ A.T counts shared clusters
        _, codes = np.unique(lab[assigned], return_inverse=True)
        onehot = np.zeros((n_samples, codes.max() + 1))
        onehot[np.flatnonzero(assigned), codes] = 1.0
        counts += onehot @ onehot.T

    if n_labelings > 0:
        coclust = counts / n_labelings
    else:
        coclust = counts
    np.fill_diagonal(coclust, 1.0)
    coclust.setflags(write=False)
    return coclust


@dataclass(frozen=True, eq=False)
class ConsensusPartition:
    """Consensus labels with per-sample diagnostics"""
    labels: np.ndarray
    reasons: Tuple[UnassignedReason, ...]
    confidence: np.ndarray
    co_clustering: np.ndarray
    used_labelings: Tuple[int, ...] = ()
    params: Dict[str, object] = field(default_factory=dict)

    def __post_init__(self):
        for name in ("labels", "confidence"):
            arr = np.array(getattr(self, name))
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)

    @property
    def n_samples(self) -> int:
        return len(self.labels)

    @property
    def n_clusters(self) -> int:
        return len(self.cluster_labels)

    @property
    def cluster_labels(self) -> Tuple[int, ...]:
        return tuple(int(c) for c in np.unique(self.labels[self.labels >= 0]))

    @property
    def n_unassigned(self) -> int:
        return int((self.labels < 0).sum())

    def cluster_sizes(self) -> Dict[int, int]:
        values, counts = np.unique(self.labels, return_counts=True)
        return {int(v): int(c) for v, c in zip(values, counts)}

    def members(self, label: int) -> np.ndarray:
        return np.flatnonzero(self.labels == label)

    def to_dataframe(self, sample_ids: Optional[Sequence] = None) -> pd.DataFrame:
        return pd.DataFrame(
            {
                'label': np.array(self.labels),
                'reason': [r.value for r in self.reasons],
                'confidence': np.array(self.confidence),
            },
            index=list(sample_ids) if sample_ids is not None else None,
        )


class CoClusteringConsensus:
    """
    Extract a consensus partition from a label matrix

    Example:
        >>> consensus = CoClusteringConsensus(combine_proportion=0.7, combine_min_size=5)
        >>> partition = consensus.fit(sweep_result.label_matrix)
        >>> partition.n_clusters
    """

    def __init__(
        self,
        combine_proportion: float = 0.7,
        combine_min_size: int = 5,
        min_assigned: int = 1,
        linkage_method: str = "complete",
        n_clusters: Optional[int] = None,
    ):
        """
        Args:
            combine_proportion: Minimum co-clustering fraction to treat samples as grouped
            combine_min_size: Smaller consensus clusters are set to -1
            min_assigned: Labelings with fewer assigned samples are ignored
            linkage_method: 'complete', 'average' or 'single'
            n_clusters: Cut into this many clusters instead of using the proportion
        """
        if not 0.0 <= combine_proportion <= 1.0:
            raise ConfigurationError(f"combine_proportion must be in [0, 1], got {combine_proportion}")
        if combine_min_size < 1:
            raise ConfigurationError(f"combine_min_size must be >= 1, got {combine_min_size}")
        if linkage_method not in ("complete", "average", "single"):
            raise ConfigurationError(f"Unsupported consensus linkage '{linkage_method}'")
        if n_clusters is not None and n_clusters < 1:
            raise ConfigurationError(f"n_clusters must be >= 1, got {n_clusters}")

        self.combine_proportion = combine_proportion
        self.combine_min_size = combine_min_size
        self.min_assigned = min_assigned
        self.linkage_method = linkage_method
        self.n_clusters = n_clusters

    @classmethod
    def from_config(cls, config: ConsensusConfig) -> "CoClusteringConsensus":
        return cls(
            combine_proportion=config.combine_proportion,
            combine_min_size=config.combine_min_size,
            min_assigned=config.min_assigned,
            linkage_method=config.linkage,
            n_clusters=config.n_clusters,
        )

    def params(self) -> Dict[str, object]:
        return {
            'combine_proportion': self.combine_proportion,
            'combine_min_size': self.combine_min_size,
            'min_assigned': self.min_assigned,
            'linkage': self.linkage_method,
            'n_clusters': self.n_clusters,
        }

    def fit(self, label_matrix: LabelMatrix) -> ConsensusPartition:
        """
        Compute the consensus partition

        Args:
            label_matrix: Labelings from the parameter sweep

        Returns:
            Frozen ConsensusPartition
        """
        n_samples = label_matrix.n_samples
        if self.combine_min_size > n_samples:
            raise ConfigurationError(
                f"combine_min_size={self.combine_min_size} exceeds sample count {n_samples}"
            )

        used = np.flatnonzero(label_matrix.assigned_counts() >= self.min_assigned)
        labels_used = label_matrix.labels[used]
        coclust = co_cluster_matrix(labels_used)

        logger.info(
            f"Consensus over {len(used)}/{label_matrix.n_labelings} labelings "
            f"({n_samples} samples)"
        )

        labels = np.full(n_samples, -1, dtype=int)
        # Object array filled in place; np.full would coerce the str enum to text
        reasons = np.empty(n_samples, dtype=object)
        reasons[:] = UnassignedReason.NEVER_CLUSTERED

        ever_assigned = (labels_used >= 0).any(axis=0) if len(used) else np.zeros(n_samples, bool)
        candidates = np.flatnonzero(ever_assigned)

        if len(candidates) >= 2:
            raw = self._cut_tree(coclust[np.ix_(candidates, candidates)])
            self._assign_clusters(raw, candidates, labels, reasons)
        elif len(candidates) == 1:
            self._assign_clusters(np.ones(1, dtype=int), candidates, labels, reasons)

        confidence = np.zeros(n_samples)
        for c in np.unique(labels[labels >= 0]):
            idx = np.flatnonzero(labels == c)
            if len(idx) > 1:
                block = coclust[np.ix_(idx, idx)]
                confidence[idx] = (block.sum(axis=1) - 1.0) / (len(idx) - 1)
            else:
                confidence[idx] = 1.0

        partition = ConsensusPartition(
            labels=labels,
            reasons=tuple(UnassignedReason(r) for r in reasons),
            confidence=confidence,
            co_clustering=coclust,
            used_labelings=tuple(int(i) for i in used),
            params=self.params(),
        )

        n_found = partition.n_clusters
        logger.info(
            f"Consensus: {n_found} clusters, {partition.n_unassigned} unassigned samples"
        )
        if n_found == 0:
            warnings.warn(
                "Consensus assigned no samples to any cluster", DegenerateConsensusWarning
            )
        elif n_found == 1:
            warnings.warn("Consensus produced a single cluster", DegenerateConsensusWarning)

        return partition

    def _cut_tree(self, coclust: np.ndarray) -> np.ndarray:
        """Hierarchical clustering of 1 - co-clustering, cut into flat clusters"""
        dissimilarity = 1.0 - coclust
        np.fill_diagonal(dissimilarity, 0.0)
        condensed = squareform(np.clip(dissimilarity, 0.0, 1.0), checks=False)
        Z = linkage(condensed, method=self.linkage_method)

        if self.n_clusters is not None:
            return fcluster(Z, t=min(self.n_clusters, coclust.shape[0]), criterion="maxclust")
        threshold = 1.0 - self.combine_proportion + _CUT_TOLERANCE
        return fcluster(Z, t=threshold, criterion="distance")

    def _assign_clusters(
        self,
        raw: np.ndarray,
        candidates: np.ndarray,
        labels: np.ndarray,
        reasons: np.ndarray,
    ) -> None:
        """Apply the size rules and renumber clusters by decreasing size"""
        cluster_ids, first_seen, sizes = np.unique(raw, return_index=True, return_counts=True)
        order = sorted(range(len(cluster_ids)), key=lambda i: (-sizes[i], first_seen[i]))

        next_label = 0
        for i in order:
            members = candidates[raw == cluster_ids[i]]
            if sizes[i] < self.combine_min_size:
                # A singleton of the proportion cut co-clusters with nobody often enough
                if sizes[i] == 1 and self.n_clusters is None:
                    reasons[members] = UnassignedReason.PROPORTION
                else:
                    reasons[members] = UnassignedReason.MIN_SIZE
            else:
                labels[members] = next_label
                reasons[members] = UnassignedReason.ASSIGNED
                next_label += 1
