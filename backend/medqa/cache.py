import logging
import re

from cachetools import Cache, FIFOCache

logger = logging.getLogger(__name__)

CACHE_KEY_MAX_LENGTH = 100
DEFAULT_CAPACITY = 1000

_NON_ALNUM = re.compile(r"[^a-z0-9]")
_SEPARATOR_RUNS = re.compile(r"_{2,}")


def normalize_cache_key(question: str) -> str:
    """Map a question to its lookup key.

    Questions that differ only in case, punctuation or whitespace share a key.
    """
    key = _NON_ALNUM.sub("_", question.lower())
    key = _SEPARATOR_RUNS.sub("_", key)
    return key[:CACHE_KEY_MAX_LENGTH]


class _InsertionOrderCache(FIFOCache):
    """FIFOCache where overwriting a key keeps its original insertion slot."""

    def __setitem__(self, key, value, cache_setitem=Cache.__setitem__):
        if key in self:
            cache_setitem(self, key, value)
        else:
            super().__setitem__(key, value)


class AnswerCache:
    """Bounded in-memory question -> answer store, shared by every request.

    Eviction is first-in first-out by insertion, not by access. There is no
    lock: lookups and inserts never await, so on a single event loop they
    cannot interleave with another request.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._cache: _InsertionOrderCache = _InsertionOrderCache(maxsize=capacity)

    def lookup(self, key: str) -> str | None:
        return self._cache.get(key)

    def insert(self, key: str, answer: str):
        evicted = None
        if key not in self._cache and len(self._cache) >= self._cache.maxsize:
            evicted = next(iter(self._cache))
        self._cache[key] = answer
        if evicted is not None:
            logger.debug(f"Cache full, evicted oldest key: {evicted}")

    def keys(self) -> list[str]:
        """Keys in insertion order, oldest first."""
        return list(self._cache)

    def __contains__(self, key: str) -> bool:
        return key in self._cache

    def __len__(self) -> int:
        return len(self._cache)

    @property
    def size(self) -> int:
        return len(self._cache)

    @property
    def capacity(self) -> int:
        return int(self._cache.maxsize)
