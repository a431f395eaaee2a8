"""Input data contracts"""

from .contracts import FeatureMatrix, check_labels

__all__ = ["FeatureMatrix", "check_labels"]
