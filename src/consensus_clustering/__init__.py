"""
Consensus Clustering
Ensemble clustering with co-clustering consensus and hierarchical merging
"""

__version__ = "0.1.0"

from pathlib import Path

# Package root
PACKAGE_ROOT = Path(__file__).parent

# Main API - Pipeline class and convenience function
from .pipeline import Pipeline, PipelineResult, run_pipeline
from .data import FeatureMatrix

__all__ = [
    "__version__",
    "PACKAGE_ROOT",
    # Main API
    "Pipeline",
    "PipelineResult",
    "run_pipeline",
    "FeatureMatrix",
]
