from __future__ import annotations

from collections.abc import Sequence
from enum import Enum

from .registry import CachedEntry


class Decision(str, Enum):
    REGISTER = "register"  # not cached yet
    CONFIRM = "confirm"  # cached with the same tags; mark only
    REPLACE = "replace"  # cached with other tags; delete then register


def tags_equal(a: Sequence[str], b: Sequence[str]) -> bool:
    """Order-insensitive tag comparison; a duplicated tag never matches."""
    if len(a) != len(b):
        return False
    sa, sb = set(a), set(b)
    return len(sa) == len(a) and sa == sb


def decide(tags: Sequence[str], cached: CachedEntry | None) -> Decision:
    if cached is None:
        return Decision.REGISTER
    if tags_equal(tags, cached.tags):
        return Decision.CONFIRM
    return Decision.REPLACE
