"""Random selection between interchangeable template variants."""

from __future__ import annotations

import random
from typing import Optional


def select_variant(variant_count: int, rng: Optional[random.Random] = None) -> int:
    """Return a uniformly drawn index in ``[0, variant_count)``."""
    if variant_count < 1:
        raise ValueError(f"variant_count must be at least 1, got {variant_count}")
    if variant_count == 1:
        return 0
    source = rng if rng is not None else random
    return source.randrange(variant_count)


__all__ = ["select_variant"]
