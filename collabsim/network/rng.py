# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# collabsim PRNG source
#
# The simulator draws every random choice through gen_range(), so any
# seeded generator that can produce uniform integers can drive it:
#   - random.Random       (stdlib, randrange)
#   - numpy Generator     (np.random.default_rng(seed), integers)

import random
from typing import Union

import numpy as np

Rng = Union[random.Random, np.random.Generator]


def gen_range(rng: Rng, low: int, high: int) -> int:
    """Uniform integer in [low, high)."""
    if high <= low:
        raise ValueError(f"Empty range: [{low}, {high})")
    if isinstance(rng, np.random.Generator):
        return int(rng.integers(low, high))
    if isinstance(rng, random.Random):
        return rng.randrange(low, high)
    raise TypeError(f"Unsupported random source: {type(rng).__name__}")


def seeded_rng(seed: int) -> random.Random:
    return random.Random(seed)
