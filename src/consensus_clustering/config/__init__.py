"""Configuration management with Pydantic validation"""

from .schema import (
    AppConfig,
    SweepConfig,
    ConsensusConfig,
    HierarchyConfig,
    MergeConfig,
    ContrastConfig,
    validate_against_data,
)
from .loader import load_config, save_config
from .hashing import ConfigHash

__all__ = [
    "AppConfig",
    "SweepConfig",
    "ConsensusConfig",
    "HierarchyConfig",
    "MergeConfig",
    "ContrastConfig",
    "validate_against_data",
    "load_config",
    "save_config",
    "ConfigHash",
]
