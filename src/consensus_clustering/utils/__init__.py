"""Utility functions and helpers"""

from .io import load_data, load_matrix, save_data
from .seeds import set_seed
from .timers import Timer

__all__ = ["load_data", "load_matrix", "save_data", "set_seed", "Timer"]
