"""Selectors that resolved before, keyed by element description and page pattern."""

from __future__ import annotations

import hashlib
import logging
import re
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from .. import prompts
from ..utils.timing import Clock, utc_now

LOGGER = logging.getLogger(__name__)

RELIABLE_MIN_SUCCESSES = 3
RELIABLE_MIN_RATE = 80
INVALIDATE_MIN_FAILURES = 3
INVALIDATE_MAX_RATE = 50

_UUID_SEGMENT_RE = re.compile(r"/[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}")
_NUMERIC_SEGMENT_RE = re.compile(r"/\d+(?=/|$)")


def hash_description(description: str) -> str:
    """SHA-256 hex digest of the trimmed, lowercased description."""
    if not description or not description.strip():
        raise ValueError("Element description cannot be blank")
    return hashlib.sha256(description.strip().lower().encode("utf-8")).hexdigest()


def normalize_url(url: str) -> str:
    """Reduce ``url`` to a page pattern shared by pages of the same shape.

    Fragment, query and trailing slash are dropped; UUID and numeric path
    segments become ``/{id}``.
    """
    if not url or not url.strip():
        raise ValueError("URL cannot be blank")
    normalized = url.strip()
    for separator in ("#", "?"):
        index = normalized.find(separator)
        if index > 0:
            normalized = normalized[:index]
    if normalized.endswith("/") and len(normalized) > 1:
        normalized = normalized[:-1]
    normalized = _UUID_SEGMENT_RE.sub("/{id}", normalized)
    return _NUMERIC_SEGMENT_RE.sub("/{id}", normalized)


@dataclass(frozen=True, slots=True)
class CachedSelector:
    """Cache entry; a fresh entry counts as one success."""

    description_hash: str
    url_pattern: str
    selector: str
    element_description: str
    success_count: int = 1
    failure_count: int = 0
    created_at: datetime = field(default_factory=utc_now)
    last_used_at: datetime = field(default_factory=utc_now)

    def success_rate_percent(self) -> int:
        total = self.success_count + self.failure_count
        if total == 0:
            return 0
        return int(self.success_count * 100 / total)

    def is_reliable(self) -> bool:
        return self.success_count >= RELIABLE_MIN_SUCCESSES and self.success_rate_percent() >= RELIABLE_MIN_RATE

    def should_invalidate(self) -> bool:
        return self.failure_count >= INVALIDATE_MIN_FAILURES and self.success_rate_percent() < INVALIDATE_MAX_RATE


class SelectorCache:
    """In-process selector cache shared by every run of an orchestrator."""

    def __init__(self, *, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[Tuple[str, str], CachedSelector] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def find(self, description: str, url: str) -> Optional[CachedSelector]:
        key = _key(description, url)
        with self._lock:
            cached = self._entries.get(key)
        if cached is not None:
            LOGGER.debug(
                "Cache hit for description hash: %s, selector success rate: %d%%",
                key[0],
                cached.success_rate_percent(),
            )
        return cached

    def store(self, description: str, url: str, selector: str) -> CachedSelector:
        description_hash, url_pattern = _key(description, url)
        now = self._clock()
        entry = CachedSelector(
            description_hash=description_hash,
            url_pattern=url_pattern,
            selector=selector,
            element_description=description,
            created_at=now,
            last_used_at=now,
        )
        with self._lock:
            self._entries[(description_hash, url_pattern)] = entry
        LOGGER.info("Cached selector for: '%s' -> %s", prompts.truncate(description, 50), selector)
        return entry

    def record_success(self, description: str, url: str) -> None:
        key = _key(description, url)
        with self._lock:
            cached = self._entries.get(key)
            if cached is not None:
                self._entries[key] = replace(
                    cached, success_count=cached.success_count + 1, last_used_at=self._clock()
                )

    def record_failure(self, description: str, url: str) -> None:
        """Count a failure; entries that turn unreliable are dropped."""
        key = _key(description, url)
        with self._lock:
            cached = self._entries.get(key)
            if cached is None:
                return
            updated = replace(cached, failure_count=cached.failure_count + 1, last_used_at=self._clock())
            if updated.should_invalidate():
                del self._entries[key]
                LOGGER.info(
                    "Dropped cached selector %s for '%s' (success rate %d%%)",
                    updated.selector,
                    prompts.truncate(description, 50),
                    updated.success_rate_percent(),
                )
                return
            self._entries[key] = updated

    def invalidate(self, description: str, url: str) -> None:
        with self._lock:
            removed = self._entries.pop(_key(description, url), None)
        if removed is not None:
            LOGGER.info("Invalidated cache for: '%s'", prompts.truncate(description, 50))

    def cleanup_stale(self, older_than_days: int) -> int:
        """Drop entries unused for ``older_than_days``; returns how many went."""
        cutoff = self._clock() - timedelta(days=older_than_days)
        with self._lock:
            stale = [key for key, entry in self._entries.items() if entry.last_used_at < cutoff]
            for key in stale:
                del self._entries[key]
        return len(stale)


def _key(description: str, url: str) -> Tuple[str, str]:
    return hash_description(description), normalize_url(url)


__all__ = ["CachedSelector", "SelectorCache", "hash_description", "normalize_url"]
