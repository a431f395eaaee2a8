"""Tests for co-clustering consensus"""
import pytest
import numpy as np

from consensus_clustering.errors import ConfigurationError, DegenerateConsensusWarning
from consensus_clustering.modeling.consensus import (
    CoClusteringConsensus,
    UnassignedReason,
    co_cluster_matrix,
)
from consensus_clustering.modeling.sweep import LabelMatrix


def truth(sizes):
    return np.repeat(np.arange(len(sizes)), sizes)


class TestCoClusterMatrix:
    """Tests for the co-clustering matrix"""

    def test_perfect_blocks(self, perfect_label_matrix):
        C = co_cluster_matrix(perfect_label_matrix.labels)
        groups = truth((4, 4, 4))

        same = groups[:, None] == groups[None, :]
        np.testing.assert_array_equal(C[same], 1.0)
        np.testing.assert_array_equal(C[~same], 0.0)

    def test_unassigned_never_co_cluster(self):
        C = co_cluster_matrix(np.array([[0, 0, -1], [0, 0, 0]]))

        assert C[0, 1] == 1.0
        assert C[0, 2] == 0.5
        assert C[2, 2] == 1.0

    def test_symmetric_unit_diagonal(self):
        rng = np.random.RandomState(0)
        labels = rng.randint(-1, 4, size=(7, 15))

        C = co_cluster_matrix(labels)

        np.testing.assert_array_equal(C, C.T)
        np.testing.assert_array_equal(np.diag(C), 1.0)
        assert C.min() >= 0.0 and C.max() <= 1.0

    def test_read_only(self, perfect_label_matrix):
        C = co_cluster_matrix(perfect_label_matrix.labels)

        with pytest.raises(ValueError):
            C[0, 1] = 0.3


class TestCoClusteringConsensus:
    """Tests for consensus partition extraction"""

    def test_recovers_three_groups(self, perfect_label_matrix):
        partition = CoClusteringConsensus(combine_min_size=4).fit(perfect_label_matrix)

        np.testing.assert_array_equal(partition.labels, truth((4, 4, 4)))
        assert partition.n_clusters == 3
        assert partition.n_unassigned == 0
        assert partition.cluster_sizes() == {0: 4, 1: 4, 2: 4}
        assert set(partition.reasons) == {UnassignedReason.ASSIGNED}
        np.testing.assert_array_equal(partition.confidence, 1.0)

    def test_all_unassigned_yields_all_unassigned(self):
        lm = LabelMatrix.from_labelings([[-1] * 6] * 3)

        with pytest.warns(DegenerateConsensusWarning):
            partition = CoClusteringConsensus(combine_min_size=1).fit(lm)

        assert (partition.labels == -1).all()
        assert set(partition.reasons) == {UnassignedReason.NEVER_CLUSTERED}
        assert partition.used_labelings == ()

    def test_all_unassigned_without_filtering(self):
        lm = LabelMatrix.from_labelings([[-1] * 6] * 3)

        with pytest.warns(DegenerateConsensusWarning):
            partition = CoClusteringConsensus(combine_min_size=1, min_assigned=0).fit(lm)

        assert (partition.labels == -1).all()
        assert partition.used_labelings == (0, 1, 2)

    def test_min_size_drops_small_cluster_only(self):
        labels = truth((6, 6, 3))
        lm = LabelMatrix.from_labelings([labels, labels])

        loose = CoClusteringConsensus(combine_min_size=3).fit(lm)
        strict = CoClusteringConsensus(combine_min_size=5).fit(lm)

        assert loose.n_clusters == 3
        assert strict.n_clusters == 2
        small = np.arange(12, 15)
        assert (strict.labels[small] == -1).all()
        assert all(strict.reasons[i] is UnassignedReason.MIN_SIZE for i in small)
        np.testing.assert_array_equal(strict.labels[:12], loose.labels[:12])

    def test_proportion_threshold(self):
        base = truth((4, 4, 4))
        flipped = base.copy()
        flipped[0] = 1
        lm = LabelMatrix.from_labelings([base, base, flipped])

        strict = CoClusteringConsensus(combine_proportion=0.7, combine_min_size=3).fit(lm)
        loose = CoClusteringConsensus(combine_proportion=0.6, combine_min_size=3).fit(lm)

        # Sample 0 shares its group in only 2/3 of the labelings
        assert strict.labels[0] == -1
        assert strict.reasons[0] is UnassignedReason.PROPORTION
        assert strict.n_clusters == 3
        assert loose.labels[0] == loose.labels[1]
        assert loose.n_unassigned == 0

    def test_consistent_singleton_follows_min_size(self):
        labels = np.array([0, 0, 0, 1, 1, 1, 2])
        lm = LabelMatrix.from_labelings([labels, labels, labels])

        kept = CoClusteringConsensus(combine_min_size=1).fit(lm)
        dropped = CoClusteringConsensus(combine_min_size=2).fit(lm)

        assert kept.n_clusters == 3
        assert kept.labels[6] == 2
        assert kept.reasons[6] is UnassignedReason.ASSIGNED
        assert dropped.n_clusters == 2
        assert dropped.labels[6] == -1
        assert dropped.reasons[6] is UnassignedReason.PROPORTION

    def test_single_clustered_sample(self):
        lm = LabelMatrix.from_labelings([[-1, -1, 0, -1]] * 2)

        with pytest.warns(DegenerateConsensusWarning, match="single"):
            partition = CoClusteringConsensus(combine_min_size=1).fit(lm)

        assert list(partition.labels) == [-1, -1, 0, -1]
        assert partition.reasons == (
            UnassignedReason.NEVER_CLUSTERED,
            UnassignedReason.NEVER_CLUSTERED,
            UnassignedReason.ASSIGNED,
            UnassignedReason.NEVER_CLUSTERED,
        )

    def test_renumbered_by_decreasing_size(self):
        labels = truth((3, 5, 4))
        lm = LabelMatrix.from_labelings([labels])

        partition = CoClusteringConsensus(combine_min_size=1).fit(lm)

        assert list(partition.labels[:3]) == [2, 2, 2]
        assert list(partition.labels[3:8]) == [0] * 5
        assert list(partition.labels[8:]) == [1] * 4

    def test_never_clustered_sample(self, perfect_label_matrix):
        labels = np.array(perfect_label_matrix.labels)
        labels[:, 11] = -1
        lm = LabelMatrix(labels=labels)

        partition = CoClusteringConsensus(combine_min_size=3).fit(lm)

        assert partition.labels[11] == -1
        assert partition.reasons[11] is UnassignedReason.NEVER_CLUSTERED
        assert partition.n_clusters == 3

    def test_degenerate_labelings_filtered(self, perfect_label_matrix):
        labels = np.vstack([perfect_label_matrix.labels, np.full(12, -1)])
        lm = LabelMatrix(labels=labels)

        partition = CoClusteringConsensus(combine_min_size=4).fit(lm)

        assert partition.used_labelings == (0, 1, 2)
        np.testing.assert_array_equal(
            partition.co_clustering, co_cluster_matrix(perfect_label_matrix.labels)
        )

    def test_fixed_cluster_count(self):
        base = truth((4, 4, 4))
        coarse = np.array([0] * 8 + [1] * 4)
        lm = LabelMatrix.from_labelings([base, base, coarse])

        by_proportion = CoClusteringConsensus(combine_min_size=2).fit(lm)
        by_count = CoClusteringConsensus(combine_min_size=2, n_clusters=2).fit(lm)

        assert by_proportion.n_clusters == 3
        assert by_count.n_clusters == 2
        assert list(by_count.labels) == [0] * 8 + [1] * 4

    def test_single_cluster_warns(self):
        lm = LabelMatrix.from_labelings([[0] * 6, [1] * 6])

        with pytest.warns(DegenerateConsensusWarning, match="single"):
            partition = CoClusteringConsensus(combine_min_size=2).fit(lm)

        assert partition.n_clusters == 1

    def test_min_size_larger_than_samples(self, perfect_label_matrix):
        with pytest.raises(ConfigurationError):
            CoClusteringConsensus(combine_min_size=13).fit(perfect_label_matrix)

    def test_invalid_parameters(self):
        with pytest.raises(ConfigurationError):
            CoClusteringConsensus(combine_proportion=1.2)
        with pytest.raises(ConfigurationError):
            CoClusteringConsensus(linkage_method="ward")

    def test_deterministic(self):
        rng = np.random.RandomState(3)
        lm = LabelMatrix(labels=rng.randint(-1, 3, size=(10, 20)))
        consensus = CoClusteringConsensus(combine_proportion=0.5, combine_min_size=2)

        a = consensus.fit(lm)
        b = consensus.fit(lm)

        np.testing.assert_array_equal(a.labels, b.labels)
        np.testing.assert_array_equal(a.co_clustering, b.co_clustering)
        assert a.reasons == b.reasons

    def test_to_dataframe(self, perfect_label_matrix):
        partition = CoClusteringConsensus(combine_min_size=4).fit(perfect_label_matrix)

        df = partition.to_dataframe([f"S{i}" for i in range(12)])

        assert list(df.columns) == ['label', 'reason', 'confidence']
        assert df.loc["S5", "label"] == 1
