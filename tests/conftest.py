"""Pytest configuration and fixtures for consensus clustering tests

Provides block-structured synthetic matrices, perfect label matrices and
stub capabilities (strategies, differential testers) shared by all tests.
"""
import pytest
import numpy as np
import pandas as pd
import yaml
from sklearn.datasets import make_blobs

from consensus_clustering.data import FeatureMatrix
from consensus_clustering.errors import StrategyFailure, TestProviderFailure
from consensus_clustering.modeling.consensus import ConsensusPartition, UnassignedReason
from consensus_clustering.modeling.sweep import LabelMatrix
from consensus_clustering.modeling.testing import RESULT_COLUMNS

# Set random seed for reproducibility
np.random.seed(42)


# ============================================================================
# Data Generation
# ============================================================================

def block_values(sizes=(4, 4, 4), means=(0.0, 8.0, 20.0), n_features=20, noise=0.5, seed=0):
    """Samples in contiguous blocks, each block shifted by its mean on every feature"""
    rng = np.random.RandomState(seed)
    blocks = [
        mean + noise * rng.randn(size, n_features)
        for size, mean in zip(sizes, means)
    ]
    return np.vstack(blocks)


def block_truth(sizes=(4, 4, 4)):
    return np.repeat(np.arange(len(sizes)), sizes)


@pytest.fixture
def block_matrix():
    """12 samples in 3 well-separated groups of 4, 20 features"""
    values = block_values()
    return FeatureMatrix(
        values=values,
        sample_ids=tuple(f"S{i:02d}" for i in range(len(values))),
        feature_names=tuple(f"gene_{j}" for j in range(values.shape[1])),
    )


@pytest.fixture
def blob_matrix():
    """60 samples, 4 blob centers, 10 features"""
    X, _ = make_blobs(n_samples=60, n_features=10, centers=4,
                      cluster_std=0.5, random_state=42)
    return FeatureMatrix(values=X)


@pytest.fixture
def perfect_label_matrix():
    """3 labelings that all recover the 3 groups of 4, with permuted label names"""
    truth = block_truth()
    permutations = [(0, 1, 2), (2, 0, 1), (1, 2, 0)]
    return LabelMatrix.from_labelings([
        np.array(perm)[truth] for perm in permutations
    ])


@pytest.fixture
def make_partition():
    """Factory: ConsensusPartition with exactly the given labels"""

    def _make(labels):
        labels = np.asarray(labels, dtype=int)
        reasons = tuple(
            UnassignedReason.ASSIGNED if lab >= 0 else UnassignedReason.NEVER_CLUSTERED
            for lab in labels
        )
        return ConsensusPartition(
            labels=labels,
            reasons=reasons,
            confidence=np.ones(len(labels)),
            co_clustering=np.eye(len(labels)),
        )

    return _make


@pytest.fixture
def config_file(tmp_path, block_matrix):
    """YAML config + CSV input for end-to-end runs on block_matrix"""
    input_path = tmp_path / "matrix.csv"
    block_matrix.to_dataframe().to_csv(input_path)

    config = {
        "seed": 7,
        "verbose": False,
        "input_path": str(input_path),
        "output_dir": str(tmp_path / "out"),
        "sweep": {
            "strategy": "kmeans",
            "k": [3],
            "reduceMethod": ["none", "pca"],
            "nReducedDims": [2, 5],
        },
        "consensus": {"combineProportion": 0.7, "combineMinSize": 4},
        "hierarchy": {"reduceMethod": "mad", "ndims": 10},
        "merge": {"mergeCutoff": 0.05, "mergeMethod": "global"},
        "contrasts": {"contrastType": "OneAgainstAll", "number": 5},
    }
    path = tmp_path / "config.yaml"
    with open(path, "w") as f:
        yaml.safe_dump(config, f)
    return path


# ============================================================================
# Stub Capabilities
# ============================================================================

class StubStrategy:
    """Returns preset labelings keyed by k; raises for k in fail_ks"""
    name = "stub"

    def __init__(self, labelings, fail_ks=()):
        self.labelings = {k: np.asarray(v) for k, v in labelings.items()}
        self.fail_ks = set(fail_ks)
        self.calls = []

    def cluster(self, X, params):
        self.calls.append(params)
        if params.k in self.fail_ks:
            raise StrategyFailure(f"stub refuses k={params.k}")
        return self.labelings[params.k].copy()


class StubTester:
    """
    Returns the same p-value for every feature of a contrast

    p_values maps contrast name -> p (scalar or per-feature array); unnamed
    contrasts get `default`. Contrasts named in `fail` raise.
    """

    def __init__(self, p_values=None, default=1.0, fail=()):
        self.p_values = dict(p_values or {})
        self.default = default
        self.fail = set(fail)
        self.calls = []

    def test(self, X, labels, contrast):
        self.calls.append((contrast, np.asarray(labels).copy()))
        if contrast.name in self.fail:
            raise TestProviderFailure(f"stub cannot test {contrast.name}")
        n_features = X.shape[1]
        p = self.p_values.get(contrast.name, self.default)
        p = np.broadcast_to(np.asarray(p, dtype=float), (n_features,)).copy()
        return pd.DataFrame({
            'feature_index': np.arange(n_features),
            'statistic': -np.log10(np.clip(p, 1e-300, 1.0)),
            'p_value': p,
            'adj_p_value': p,
        }, columns=RESULT_COLUMNS)


@pytest.fixture
def stub_tester():
    return StubTester()


@pytest.fixture
def make_tester():
    """Factory for StubTester instances"""
    return StubTester


@pytest.fixture
def make_strategy():
    """Factory for StubStrategy instances"""
    return StubStrategy
