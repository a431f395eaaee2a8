"""Bottom-up merging of hierarchy-adjacent clusters

Each internal node of the cluster hierarchy compares the samples under its left
child against those under its right child. The candidate groups of a node only
depend on the leaf sets below it, which merges further down never change, so
every node comparison is evaluated once up front and multiplicity correction
is applied either jointly over all node comparisons of the pass ('global') or
within each node ('node').

Decision rule: a node merges when its adjusted p-value is >= cutoff (exactly
equal merges) and is rejected when strictly below. A node can only merge when
each of its children is a leaf or a merged node: a rejected (or failed)
descendant keeps its groups apart for every ancestor, so such a node is still
tested but recorded as rejected. A merged node relabels both children's samples
to the lowest label among them; samples labeled -1 are never tested and never
merged.
"""
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Tuple
import logging

import numpy as np
import pandas as pd
from statsmodels.stats.multitest import multipletests

from ..config.schema import MergeConfig
from ..data.contracts import FeatureMatrix
from ..errors import ConfigurationError, InputError
from .consensus import ConsensusPartition
from .hierarchy import ClusterHierarchy
from .testing import Contrast, DifferentialTester, check_result

logger = logging.getLogger(__name__)


class NodeState(str, Enum):
    PENDING = "pending"
    TESTED = "tested"
    MERGED = "merged"
    REJECTED = "rejected"


@dataclass(frozen=True)
class MergeDecision:
    """Outcome of one candidate merge"""
    node_id: int
    left: Tuple[int, ...]
    right: Tuple[int, ...]
    height: float
    state: NodeState
    p_value: float
    adj_p_value: float
    statistic: float
    n_significant: int = 0
    failed: bool = False
    message: str = ""

    @property
    def merged(self) -> bool:
        return self.state is NodeState.MERGED


@dataclass(frozen=True, eq=False)
class MergeResult:
    """Final partition plus the ordered audit trail of merge decisions"""
    labels: np.ndarray
    decisions: Tuple[MergeDecision, ...]
    label_map: Dict[int, int]
    cutoff: float
    method: str
    preview: bool = False
    consensus_labels: np.ndarray = field(default=None)

    def __post_init__(self):
        for name in ("labels", "consensus_labels"):
            value = getattr(self, name)
            if value is None:
                continue
            arr = np.array(value)
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)

    @property
    def n_clusters(self) -> int:
        return len(np.unique(self.labels[self.labels >= 0]))

    @property
    def n_merged(self) -> int:
        return sum(d.merged for d in self.decisions)

    @property
    def merged_groups(self) -> Dict[int, Tuple[int, ...]]:
        """Final label -> consensus labels it gathers (as decided, even in preview)"""
        groups: Dict[int, List[int]] = {}
        for original, final in sorted(self.label_map.items()):
            groups.setdefault(final, []).append(original)
        return {k: tuple(v) for k, v in groups.items()}

    def decision_table(self) -> pd.DataFrame:
        columns = [
            'node_id', 'left', 'right', 'height', 'state', 'p_value',
            'adj_p_value', 'statistic', 'n_significant', 'failed', 'message',
        ]
        rows = []
        for d in self.decisions:
            rows.append({
                'node_id': d.node_id,
                'left': list(d.left),
                'right': list(d.right),
                'height': d.height,
                'state': d.state.value,
                'p_value': d.p_value,
                'adj_p_value': d.adj_p_value,
                'statistic': d.statistic,
                'n_significant': d.n_significant,
                'failed': d.failed,
                'message': d.message,
            })
        return pd.DataFrame(rows, columns=columns)


@dataclass
class _NodeTest:
    """Per-node test outcome before correction"""
    contrast: Contrast
    p_values: Optional[np.ndarray] = None
    adj_p_values: Optional[np.ndarray] = None
    statistics: Optional[np.ndarray] = None
    error: str = ""


class HierarchicalMerger:
    """
    Merge clusters whose hierarchy siblings show no evidence of difference

    Example:
        >>> merger = HierarchicalMerger(WelchTester(), cutoff=0.01, method="global")
        >>> result = merger.merge(matrix, consensus, hierarchy)
        >>> result.decision_table()
    """

    def __init__(
        self,
        tester: DifferentialTester,
        cutoff: float = 0.05,
        method: str = "global",
        correction: str = "fdr_bh",
    ):
        """
        Args:
            tester: Differential-testing capability
            cutoff: Adjusted p-value threshold; p >= cutoff merges
            method: 'global' (adjust over all node tests) or 'node' (tester's own adjustment)
            correction: multipletests method used by 'global'
        """
        if not 0.0 <= cutoff <= 1.0:
            raise ConfigurationError(f"cutoff must be in [0, 1], got {cutoff}")
        if method not in ("global", "node"):
            raise ConfigurationError(f"Unknown merge method '{method}'")

        self.tester = tester
        self.cutoff = cutoff
        self.method = method
        self.correction = correction

    @classmethod
    def from_config(cls, config: MergeConfig, tester: DifferentialTester) -> "HierarchicalMerger":
        return cls(
            tester=tester,
            cutoff=config.cutoff,
            method=config.method,
            correction=config.correction,
        )

    def merge(
        self,
        matrix: FeatureMatrix,
        partition: ConsensusPartition,
        hierarchy: ClusterHierarchy,
        preview: bool = False,
    ) -> MergeResult:
        """
        Walk the hierarchy bottom-up and decide every candidate merge

        Args:
            matrix: Feature matrix
            partition: Consensus partition the hierarchy was built on
            hierarchy: Cluster hierarchy over the partition's clusters
            preview: Compute decisions only; the returned labels are the consensus labels

        Returns:
            Frozen MergeResult
        """
        labels = np.asarray(partition.labels)
        if len(labels) != matrix.n_samples:
            raise InputError(
                f"Partition has {len(labels)} samples, matrix has {matrix.n_samples}"
            )
        if tuple(sorted(hierarchy.cluster_labels)) != partition.cluster_labels:
            raise InputError(
                f"Hierarchy leaves {sorted(hierarchy.cluster_labels)} do not match "
                f"partition clusters {list(partition.cluster_labels)}"
            )

        X = matrix.transformed()
        ordered = list(hierarchy.nodes_bottom_up())
        tests = [self._test_node(X, labels, hierarchy, node.node_id) for node in ordered]
        self._adjust(tests)

        current = {c: c for c in partition.cluster_labels}
        # Internal nodes that ended up merged; leaves always count as whole units
        merged_nodes = set()
        decisions = []
        for node, test in zip(ordered, tests):
            left, right = hierarchy.children_leaf_sets(node.node_id)
            decision = self._decide(node.node_id, left, right, node.height, test)

            blocked = [
                child for child in (node.left, node.right)
                if not hierarchy.node(child).is_leaf and child not in merged_nodes
            ]
            if decision.merged and blocked:
                decision = replace(
                    decision,
                    state=NodeState.REJECTED,
                    message=f"descendant rejected (node {', '.join(map(str, blocked))})",
                )
            decisions.append(decision)

            if decision.merged:
                merged_nodes.add(node.node_id)
                target = min(current[c] for c in left + right)
                for c in left + right:
                    current[c] = target

        n_merged = sum(d.merged for d in decisions)
        logger.info(
            f"Merging: {n_merged}/{len(decisions)} nodes merged at cutoff {self.cutoff} "
            f"({self.method}), {partition.n_clusters} -> "
            f"{len(set(current.values()))} clusters"
        )

        if preview:
            final = labels.copy()
        else:
            final = np.array([current[c] if c >= 0 else -1 for c in labels], dtype=int)

        return MergeResult(
            labels=final,
            decisions=tuple(decisions),
            label_map=dict(current),
            cutoff=self.cutoff,
            method=self.method,
            preview=preview,
            consensus_labels=labels,
        )

    def _test_node(self, X: np.ndarray, labels: np.ndarray, hierarchy: ClusterHierarchy, node_id: int) -> _NodeTest:
        left, right = hierarchy.children_leaf_sets(node_id)
        contrast = Contrast(
            name=f"node{node_id}",
            kind="Dendro",
            group1=left,
            group2=right,
            node_id=node_id,
        )
        test = _NodeTest(contrast=contrast)
        try:
            result = check_result(self.tester.test(X, labels, contrast), X.shape[1], contrast)
        except Exception as e:
            logger.warning(f"Test for node {node_id} failed, node kept unmerged: {e}")
            test.error = f"{type(e).__name__}: {e}"
            return test

        test.p_values = result['p_value'].to_numpy(dtype=float)
        test.adj_p_values = result['adj_p_value'].to_numpy(dtype=float)
        test.statistics = result['statistic'].to_numpy(dtype=float)
        return test

    def _adjust(self, tests: List[_NodeTest]) -> None:
        """Joint correction over every feature of every node test ('global')"""
        if self.method != "global":
            return
        ok = [t for t in tests if not t.error and len(t.p_values)]
        if not ok:
            return
        pooled = np.concatenate([t.p_values for t in ok])
        _, adjusted, _, _ = multipletests(pooled, method=self.correction)
        start = 0
        for t in ok:
            stop = start + len(t.p_values)
            t.adj_p_values = adjusted[start:stop]
            start = stop

    def _decide(
        self,
        node_id: int,
        left: Tuple[int, ...],
        right: Tuple[int, ...],
        height: float,
        test: _NodeTest,
    ) -> MergeDecision:
        if test.error or test.adj_p_values is None or len(test.adj_p_values) == 0:
            return MergeDecision(
                node_id=node_id, left=left, right=right, height=height,
                state=NodeState.REJECTED, p_value=np.nan, adj_p_value=np.nan,
                statistic=np.nan, failed=True, message=test.error or "no features tested",
            )

        best = int(np.argmin(test.adj_p_values))
        adj_p = float(test.adj_p_values[best])
        state = NodeState.MERGED if adj_p >= self.cutoff else NodeState.REJECTED
        return MergeDecision(
            node_id=node_id,
            left=left,
            right=right,
            height=height,
            state=state,
            p_value=float(test.p_values[best]),
            adj_p_value=adj_p,
            statistic=float(test.statistics[best]),
            n_significant=int((test.adj_p_values < self.cutoff).sum()),
        )
