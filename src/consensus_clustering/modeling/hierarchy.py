"""Hierarchy over consensus clusters

One representative point per cluster (coordinate-wise median of its members,
optionally on the most variable features only), then agglomerative linkage over
the representatives. The tree is stored as an explicit node table with node ids
following the scipy linkage convention: leaves are 0..C-1, internal nodes
C..2C-2, so parent/child links are resolved once and never mutated.
"""
from dataclasses import dataclass
from typing import Dict, Iterator, Optional, Sequence, Tuple, Union
import logging

import numpy as np
import pandas as pd
from scipy.cluster.hierarchy import linkage

from ..config.schema import HierarchyConfig
from ..data.contracts import FeatureMatrix, check_labels
from ..errors import ConfigurationError, InputError
from .consensus import ConsensusPartition
from .strategies import top_feature_indices, reduce_features

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HierarchyNode:
    """Leaf (one cluster) or internal node (one merge) of the cluster tree"""
    node_id: int
    leaf_labels: Tuple[int, ...]
    height: float = 0.0
    left: Optional[int] = None
    right: Optional[int] = None
    parent: Optional[int] = None

    @property
    def is_leaf(self) -> bool:
        return self.left is None


@dataclass(frozen=True, eq=False)
class ClusterHierarchy:
    """Immutable binary tree over cluster labels"""
    nodes: Tuple[HierarchyNode, ...]
    n_leaves: int
    linkage_matrix: np.ndarray
    representatives: pd.DataFrame
    feature_index: Tuple[int, ...] = ()

    def __post_init__(self):
        Z = np.array(self.linkage_matrix, dtype=float).reshape(-1, 4)
        Z.setflags(write=False)
        object.__setattr__(self, "linkage_matrix", Z)

    @classmethod
    def from_partition(
        cls,
        matrix: FeatureMatrix,
        partition: Union[ConsensusPartition, Sequence[int], np.ndarray],
        **kwargs,
    ) -> "ClusterHierarchy":
        """Shortcut for ClusterHierarchyBuilder(**kwargs).build(matrix, partition)"""
        return ClusterHierarchyBuilder(**kwargs).build(matrix, partition)

    @property
    def cluster_labels(self) -> Tuple[int, ...]:
        return tuple(self.nodes[i].leaf_labels[0] for i in range(self.n_leaves))

    @property
    def n_internal(self) -> int:
        return len(self.nodes) - self.n_leaves

    @property
    def root(self) -> Optional[HierarchyNode]:
        if not self.nodes:
            return None
        return self.nodes[-1]

    @property
    def leaf_order(self) -> Tuple[int, ...]:
        """Cluster labels in dendrogram order"""
        return self.root.leaf_labels if self.root is not None else ()

    def node(self, node_id: int) -> HierarchyNode:
        return self.nodes[node_id]

    def leaves(self) -> Tuple[HierarchyNode, ...]:
        return self.nodes[:self.n_leaves]

    def internal_nodes(self) -> Tuple[HierarchyNode, ...]:
        return self.nodes[self.n_leaves:]

    def nodes_bottom_up(self) -> Iterator[HierarchyNode]:
        """Internal nodes by increasing merge height (children before parents)"""
        return iter(sorted(self.internal_nodes(), key=lambda n: (n.height, n.node_id)))

    def children_leaf_sets(self, node_id: int) -> Tuple[Tuple[int, ...], Tuple[int, ...]]:
        """Leaf labels below the left and right child of an internal node"""
        node = self.nodes[node_id]
        if node.is_leaf:
            raise ValueError(f"Node {node_id} is a leaf")
        return self.nodes[node.left].leaf_labels, self.nodes[node.right].leaf_labels

    def parent(self, node_id: int) -> Optional[int]:
        return self.nodes[node_id].parent

    def leaf_id(self, label: int) -> int:
        for node in self.leaves():
            if node.leaf_labels[0] == label:
                return node.node_id
        raise KeyError(f"No leaf for cluster label {label}")

    def to_linkage(self) -> np.ndarray:
        """scipy linkage matrix (copy), usable with scipy.cluster.hierarchy.dendrogram"""
        return np.array(self.linkage_matrix)

    def to_dataframe(self) -> pd.DataFrame:
        """One row per internal node, bottom-up"""
        rows = []
        for node in self.nodes_bottom_up():
            left, right = self.children_leaf_sets(node.node_id)
            rows.append({
                'node_id': node.node_id,
                'height': node.height,
                'left': list(left),
                'right': list(right),
                'parent': node.parent,
            })
        return pd.DataFrame(rows, columns=['node_id', 'height', 'left', 'right', 'parent'])


class ClusterHierarchyBuilder:
    """
    Build a ClusterHierarchy from a feature matrix and a partition

    Example:
        >>> builder = ClusterHierarchyBuilder(reduce_method="mad", n_dims=500)
        >>> hierarchy = builder.build(matrix, consensus_partition)
        >>> [n.node_id for n in hierarchy.nodes_bottom_up()]
    """

    def __init__(
        self,
        reduce_method: str = "mad",
        n_dims: Optional[int] = 500,
        linkage_method: str = "average",
        metric: str = "euclidean",
    ):
        if reduce_method not in ("none", "var", "mad", "pca"):
            raise ConfigurationError(f"Unknown reduce method '{reduce_method}'")
        if linkage_method not in ("ward", "average", "complete", "single"):
            raise ConfigurationError(f"Unsupported hierarchy linkage '{linkage_method}'")
        if linkage_method == "ward" and metric != "euclidean":
            raise ConfigurationError("ward linkage requires metric='euclidean'")

        self.reduce_method = reduce_method
        self.n_dims = n_dims
        self.linkage_method = linkage_method
        self.metric = metric

    @classmethod
    def from_config(cls, config: HierarchyConfig) -> "ClusterHierarchyBuilder":
        return cls(
            reduce_method=config.reduce_method,
            n_dims=config.n_dims,
            linkage_method=config.linkage,
            metric=config.metric,
        )

    def build(
        self,
        matrix: FeatureMatrix,
        partition: Union[ConsensusPartition, Sequence[int], np.ndarray],
    ) -> ClusterHierarchy:
        """
        Build the hierarchy over non-negative cluster labels

        Args:
            matrix: Feature matrix shared with the other stages
            partition: ConsensusPartition or any labeling (-1 samples are ignored)

        Returns:
            Frozen ClusterHierarchy with C leaves and C-1 internal nodes
        """
        if isinstance(partition, ConsensusPartition):
            labels = np.asarray(partition.labels)
        else:
            labels = check_labels(partition, matrix.n_samples, name="partition")
        if len(labels) != matrix.n_samples:
            raise InputError(
                f"Partition has {len(labels)} samples, matrix has {matrix.n_samples}"
            )

        cluster_labels = [int(c) for c in np.unique(labels[labels >= 0])]
        n_clusters = len(cluster_labels)

        X, feature_index = self._representation(matrix.transformed(), labels)
        medians = np.vstack([
            np.median(X[labels == c], axis=0) for c in cluster_labels
        ]) if n_clusters else np.empty((0, X.shape[1]))
        representatives = pd.DataFrame(medians, index=cluster_labels)

        if n_clusters < 2:
            Z = np.empty((0, 4))
        else:
            Z = linkage(medians, method=self.linkage_method, metric=self.metric)

        nodes = self._nodes_from_linkage(Z, cluster_labels)
        logger.info(
            f"Built hierarchy over {n_clusters} clusters "
            f"({len(feature_index) or X.shape[1]} dimensions, {self.linkage_method} linkage)"
        )

        return ClusterHierarchy(
            nodes=nodes,
            n_leaves=n_clusters,
            linkage_matrix=Z,
            representatives=representatives,
            feature_index=tuple(int(j) for j in feature_index),
        )

    def _representation(self, X: np.ndarray, labels: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Features used for the medians, ranked on assigned samples only"""
        assigned = labels >= 0
        if self.reduce_method == "none" or self.n_dims is None or not assigned.any():
            return X, np.arange(0)

        if self.reduce_method in ("var", "mad"):
            idx = top_feature_indices(X[assigned], self.reduce_method, self.n_dims)
            return X[:, idx], idx

        # pca: components fitted on assigned samples; unassigned rows are never used
        if assigned.sum() < 2:
            return X, np.arange(0)
        components = reduce_features(X[assigned], "pca", self.n_dims)
        reduced = np.zeros((X.shape[0], components.shape[1]))
        reduced[assigned] = components
        return reduced, np.arange(0)

    @staticmethod
    def _nodes_from_linkage(Z: np.ndarray, cluster_labels: Sequence[int]) -> Tuple[HierarchyNode, ...]:
        n = len(cluster_labels)
        parents: Dict[int, int] = {}
        for row, (a, b, _, _) in enumerate(Z):
            parents[int(a)] = n + row
            parents[int(b)] = n + row

        nodes = [
            HierarchyNode(node_id=i, leaf_labels=(int(cluster_labels[i]),), parent=parents.get(i))
            for i in range(n)
        ]
        for row, (a, b, height, _) in enumerate(Z):
            a, b = int(a), int(b)
            node_id = n + row
            nodes.append(HierarchyNode(
                node_id=node_id,
                leaf_labels=nodes[a].leaf_labels + nodes[b].leaf_labels,
                height=float(height),
                left=a,
                right=b,
                parent=parents.get(node_id),
            ))
        return tuple(nodes)
