"""Deterministic seeding"""
import logging
import random
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)

DEFAULT_SEED = 42


def set_seed(seed: Optional[int] = None) -> int:
    """
    Seed the global Python and NumPy generators

    Strategies get their own random_state per combination, so this only covers
    code that draws from the global generators.

    Returns:
        The seed actually used (DEFAULT_SEED when None)
    """
    seed = DEFAULT_SEED if seed is None else int(seed)
    random.seed(seed)
    np.random.seed(seed)
    logger.debug(f"Global random seed set to {seed}")
    return seed
