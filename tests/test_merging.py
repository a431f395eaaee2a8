"""Tests for bottom-up hierarchical merging"""
import pytest
import numpy as np

from consensus_clustering.config import MergeConfig
from consensus_clustering.data import FeatureMatrix
from consensus_clustering.errors import ConfigurationError, InputError
from consensus_clustering.modeling.hierarchy import ClusterHierarchyBuilder
from consensus_clustering.modeling.merging import HierarchicalMerger, NodeState
from consensus_clustering.modeling.testing import WelchTester

TRUTH = np.repeat([0, 1, 2], 4)


@pytest.fixture
def two_clusters(make_partition):
    """Two clusters of 4 plus 2 unassigned samples"""
    rng = np.random.RandomState(1)
    values = np.vstack([rng.randn(4, 5), 5 + rng.randn(4, 5), rng.randn(2, 5)])
    matrix = FeatureMatrix(values=values)
    partition = make_partition([0] * 4 + [1] * 4 + [-1] * 2)
    hierarchy = ClusterHierarchyBuilder().build(matrix, partition)
    return matrix, partition, hierarchy


@pytest.fixture
def three_clusters(block_matrix, make_partition):
    partition = make_partition(TRUTH)
    hierarchy = ClusterHierarchyBuilder().build(block_matrix, partition)
    return block_matrix, partition, hierarchy


class TestDecisionRule:
    """Tests for the merge/reject boundary"""

    @pytest.mark.parametrize("p, merged", [
        (0.05, True),
        (np.nextafter(0.05, 0.0), False),
        (np.nextafter(0.05, 1.0), True),
        (0.0, False),
        (1.0, True),
    ])
    def test_boundary(self, two_clusters, make_tester, p, merged):
        matrix, partition, hierarchy = two_clusters
        merger = HierarchicalMerger(make_tester({"node2": p}), cutoff=0.05, method="node")

        result = merger.merge(matrix, partition, hierarchy)

        (decision,) = result.decisions
        assert decision.merged is merged
        assert decision.state is (NodeState.MERGED if merged else NodeState.REJECTED)
        assert decision.adj_p_value == p

    def test_boundary_under_global_correction(self, two_clusters, make_tester):
        matrix, partition, hierarchy = two_clusters
        merger = HierarchicalMerger(make_tester({"node2": 0.05}), cutoff=0.05, method="global")

        result = merger.merge(matrix, partition, hierarchy)

        assert result.decisions[0].adj_p_value == pytest.approx(0.05)
        assert result.decisions[0].merged

    def test_no_difference_merges(self, three_clusters, make_tester):
        matrix, partition, hierarchy = three_clusters
        merger = HierarchicalMerger(make_tester(default=1.0), cutoff=0.01)

        result = merger.merge(matrix, partition, hierarchy)

        assert all(d.merged for d in result.decisions)
        assert result.n_clusters < partition.n_clusters
        assert (result.labels == 0).all()

    def test_strong_difference_rejects(self, three_clusters, make_tester):
        matrix, partition, hierarchy = three_clusters
        merger = HierarchicalMerger(make_tester(default=1e-12), cutoff=0.05)

        result = merger.merge(matrix, partition, hierarchy)

        assert result.n_merged == 0
        np.testing.assert_array_equal(result.labels, partition.labels)


class TestMergeSemantics:
    """Tests for relabeling, exclusion and auditing"""

    def test_merged_label_is_lowest(self, three_clusters, make_tester):
        matrix, partition, hierarchy = three_clusters
        first, root = list(hierarchy.nodes_bottom_up())
        tester = make_tester({f"node{first.node_id}": 1.0, f"node{root.node_id}": 0.0})

        result = HierarchicalMerger(tester, cutoff=0.05, method="node").merge(matrix, partition, hierarchy)

        merged_labels = sorted(first.leaf_labels)
        expected = TRUTH.copy()
        expected[np.isin(TRUTH, merged_labels)] = merged_labels[0]
        np.testing.assert_array_equal(result.labels, expected)
        assert result.merged_groups[merged_labels[0]] == tuple(merged_labels)
        assert [d.merged for d in result.decisions] == [True, False]

    def test_rejected_child_blocks_ancestor_merge(self, three_clusters, make_tester):
        matrix, partition, hierarchy = three_clusters
        first, root = list(hierarchy.nodes_bottom_up())
        tester = make_tester({f"node{first.node_id}": 0.0, f"node{root.node_id}": 1.0})

        result = HierarchicalMerger(tester, cutoff=0.05, method="node").merge(matrix, partition, hierarchy)

        assert len(tester.calls) == 2
        assert [d.state for d in result.decisions] == [NodeState.REJECTED, NodeState.REJECTED]
        ancestor = result.decisions[1]
        assert ancestor.adj_p_value == 1.0
        assert not ancestor.failed
        assert "descendant rejected" in ancestor.message
        np.testing.assert_array_equal(result.labels, partition.labels)
        assert result.n_clusters == 3

    def test_unassigned_never_tested_or_merged(self, two_clusters, make_tester):
        matrix, partition, hierarchy = two_clusters
        tester = make_tester(default=1.0)

        result = HierarchicalMerger(tester, cutoff=0.05).merge(matrix, partition, hierarchy)

        for contrast, _ in tester.calls:
            assert -1 not in contrast.clusters()
        assert list(result.labels[-2:]) == [-1, -1]
        assert list(result.labels[:8]) == [0] * 8

    def test_global_correction_pools_all_nodes(self, three_clusters, make_tester):
        matrix, partition, hierarchy = three_clusters
        raw = 0.01

        per_node = HierarchicalMerger(make_tester(default=raw), cutoff=0.05, method="node",
                                      correction="bonferroni").merge(matrix, partition, hierarchy)
        pooled = HierarchicalMerger(make_tester(default=raw), cutoff=0.05, method="global",
                                    correction="bonferroni").merge(matrix, partition, hierarchy)

        # 2 nodes x 20 features adjusted together
        assert all(d.adj_p_value == pytest.approx(raw * 40) for d in pooled.decisions)
        assert pooled.n_merged == 2
        assert per_node.n_merged == 0

    def test_failed_test_recorded(self, three_clusters, make_tester):
        matrix, partition, hierarchy = three_clusters
        first, root = list(hierarchy.nodes_bottom_up())
        tester = make_tester(default=1.0, fail=[f"node{first.node_id}"])

        result = HierarchicalMerger(tester, cutoff=0.05).merge(matrix, partition, hierarchy)

        failed, other = result.decisions
        assert failed.failed
        assert failed.state is NodeState.REJECTED
        assert np.isnan(failed.adj_p_value)
        assert "TestProviderFailure" in failed.message
        assert other.state is NodeState.REJECTED
        assert not other.failed
        assert "descendant rejected" in other.message

    def test_preview_leaves_partition_untouched(self, three_clusters, make_tester):
        matrix, partition, hierarchy = three_clusters
        merger = HierarchicalMerger(make_tester(default=1.0), cutoff=0.05)

        preview = merger.merge(matrix, partition, hierarchy, preview=True)
        applied = merger.merge(matrix, partition, hierarchy)

        assert preview.preview
        np.testing.assert_array_equal(preview.labels, partition.labels)
        assert preview.decisions == applied.decisions
        assert preview.label_map == applied.label_map
        assert applied.n_clusters == 1

    def test_decision_table(self, three_clusters, make_tester):
        matrix, partition, hierarchy = three_clusters
        result = HierarchicalMerger(make_tester(default=0.5)).merge(matrix, partition, hierarchy)

        table = result.decision_table()

        assert list(table['node_id']) == [n.node_id for n in hierarchy.nodes_bottom_up()]
        assert set(table['state']) == {"merged"}

    def test_hierarchy_must_match_partition(self, block_matrix, make_partition, make_tester):
        hierarchy = ClusterHierarchyBuilder().build(block_matrix, TRUTH)
        other = make_partition(np.repeat([0, 1, -1], 4))

        with pytest.raises(InputError):
            HierarchicalMerger(make_tester()).merge(block_matrix, other, hierarchy)

    def test_single_cluster_no_decisions(self, block_matrix, make_partition, make_tester):
        partition = make_partition(np.zeros(12, dtype=int))
        hierarchy = ClusterHierarchyBuilder().build(block_matrix, partition)

        result = HierarchicalMerger(make_tester()).merge(block_matrix, partition, hierarchy)

        assert result.decisions == ()
        assert (result.labels == 0).all()

    def test_invalid_parameters(self, make_tester):
        with pytest.raises(ConfigurationError):
            HierarchicalMerger(make_tester(), cutoff=1.5)
        with pytest.raises(ConfigurationError):
            HierarchicalMerger(make_tester(), method="incremental")

    def test_from_config(self, make_tester):
        merger = HierarchicalMerger.from_config(
            MergeConfig(mergeCutoff=0.01, mergeMethod="node"), make_tester()
        )
        assert merger.cutoff == 0.01
        assert merger.method == "node"


class TestWithWelchTester:
    """Merging with the reference differential tester"""

    def test_identical_clusters_merge(self, make_partition):
        rng = np.random.RandomState(0)
        base = rng.randn(4, 10)
        values = np.vstack([base, base.copy(), base + 10.0])
        matrix = FeatureMatrix(values=values)
        partition = make_partition(TRUTH)
        hierarchy = ClusterHierarchyBuilder().build(matrix, partition)

        result = HierarchicalMerger(WelchTester(), cutoff=0.05).merge(matrix, partition, hierarchy)

        np.testing.assert_array_equal(result.labels, [0] * 8 + [2] * 4)
        assert [d.merged for d in result.decisions] == [True, False]
