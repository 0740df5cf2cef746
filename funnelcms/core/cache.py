"""
Tag-based response cache.

Read paths for public pages are cached under one or more tags. Admin
mutations call revalidate_tag() with the tags they affect, which drops
every cached entry carrying that tag.

Tags in use:
    pages, page-<slug>, sections, page-sections-<page_id>,
    site-structure, page-slug-<slug>, and one tag per content kind
    (cta-buttons, faq-items, testimonials, timeline, ...).
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Optional, Set

from .config import Config

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    value: Any
    tags: Set[str]
    expires_at: float


@dataclass
class TaggedCache:
    """
    In-process TTL cache whose entries are indexed by tag.

    Attributes:
        ttl_seconds: Default lifetime of an entry
    """
    ttl_seconds: int = Config.CACHE_TTL_SECONDS
    _entries: Dict[str, _Entry] = field(default_factory=dict)
    _tag_index: Dict[str, Set[str]] = field(default_factory=dict)
    _lock: threading.RLock = field(default_factory=threading.RLock)

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value for key, or None if missing/expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= time.monotonic():
                self._drop(key)
                return None
            return entry.value

    def set(self, key: str, value: Any, tags: Iterable[str], ttl: Optional[int] = None):
        """Store a value under key, indexed by every tag in tags."""
        lifetime = self.ttl_seconds if ttl is None else ttl
        tag_set = set(tags)
        with self._lock:
            self._drop(key)
            self._entries[key] = _Entry(
                value=value,
                tags=tag_set,
                expires_at=time.monotonic() + lifetime
            )
            for tag in tag_set:
                self._tag_index.setdefault(tag, set()).add(key)

    def get_or_set(
        self,
        key: str,
        loader: Callable[[], Any],
        tags: Iterable[str],
        ttl: Optional[int] = None
    ) -> Any:
        """
        Return the cached value, or call loader and cache its result.

        Loader exceptions propagate and nothing is cached.
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        value = loader()
        self.set(key, value, tags, ttl)
        return value

    def revalidate_tag(self, tag: str) -> int:
        """
        Evict every entry carrying tag.

        Returns:
            Number of evicted entries
        """
        with self._lock:
            keys = self._tag_index.pop(tag, set())
            for key in list(keys):
                self._drop(key)

        if keys:
            logger.debug(f"Revalidated tag '{tag}' ({len(keys)} entries)")
        return len(keys)

    def clear(self):
        with self._lock:
            self._entries.clear()
            self._tag_index.clear()

    def _drop(self, key: str):
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        for tag in entry.tags:
            keys = self._tag_index.get(tag)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._tag_index[tag]


# Process-wide cache shared by services
cache = TaggedCache()


def revalidate_tag(tag: str) -> int:
    """Evict every entry tagged with tag from the shared cache."""
    return cache.revalidate_tag(tag)
