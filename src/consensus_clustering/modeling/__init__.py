"""Sweep, consensus, hierarchy, merging and contrast stages"""

from .strategies import (
    ClusteringStrategy,
    ParameterCombination,
    KMeansStrategy,
    AgglomerativeStrategy,
    SpectralStrategy,
    GaussianMixtureStrategy,
    HDBSCANStrategy,
    STRATEGIES,
    get_strategy,
    reduce_features,
)
from .sweep import LabelMatrix, SweepResult, SweepFailure, ParameterSweepRunner, build_parameter_grid
from .consensus import CoClusteringConsensus, ConsensusPartition, UnassignedReason, co_cluster_matrix
from .hierarchy import ClusterHierarchy, ClusterHierarchyBuilder, HierarchyNode
from .testing import Contrast, DifferentialTester, WelchTester
from .merging import HierarchicalMerger, MergeDecision, MergeResult, NodeState
from .contrasts import ContrastEngine, ContrastReport, ContrastResult, generate_contrasts

__all__ = [
    "ClusteringStrategy",
    "ParameterCombination",
    "KMeansStrategy",
    "AgglomerativeStrategy",
    "SpectralStrategy",
    "GaussianMixtureStrategy",
    "HDBSCANStrategy",
    "STRATEGIES",
    "get_strategy",
    "reduce_features",
    "LabelMatrix",
    "SweepResult",
    "SweepFailure",
    "ParameterSweepRunner",
    "build_parameter_grid",
    "CoClusteringConsensus",
    "ConsensusPartition",
    "UnassignedReason",
    "co_cluster_matrix",
    "ClusterHierarchy",
    "ClusterHierarchyBuilder",
    "HierarchyNode",
    "Contrast",
    "DifferentialTester",
    "WelchTester",
    "HierarchicalMerger",
    "MergeDecision",
    "MergeResult",
    "NodeState",
    "ContrastEngine",
    "ContrastReport",
    "ContrastResult",
    "generate_contrasts",
]
