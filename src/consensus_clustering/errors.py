"""Error taxonomy for the consensus clustering engine

Fatal errors (InputError, ConfigurationError) abort a run before any derived
artifact is built. Stage-local failures (StrategyFailure, TestProviderFailure)
are raised by pluggable capabilities and caught by the stage that invoked them,
which records them as structured results instead of propagating.
"""


class ConsensusClusteringError(Exception):
    """Base class for all engine errors"""


class InputError(ConsensusClusteringError, ValueError):
    """Malformed input matrix or artifact (mismatched sizes, NaN, non-numeric)"""


class ConfigurationError(ConsensusClusteringError, ValueError):
    """Contradictory or impossible parameters, detected before computation"""


class StrategyFailure(ConsensusClusteringError, RuntimeError):
    """A clustering strategy could not produce a labeling for one combination"""


class TestProviderFailure(ConsensusClusteringError, RuntimeError):
    """The differential-testing capability failed for one contrast"""

    __test__ = False  # not a pytest test class


class DegenerateConsensusWarning(UserWarning):
    """Consensus yielded a single cluster or no assigned samples"""
