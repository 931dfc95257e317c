"""Process-local cache backend with TTL expiry and LRU eviction."""

from __future__ import annotations

import re
import time
from collections import OrderedDict
from dataclasses import dataclass
from functools import lru_cache
from threading import Lock
from typing import Any, Callable


@dataclass(frozen=True, slots=True)
class CacheEntry:
    key: str
    value: Any
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


def _bracket_end(pattern: str, start: int) -> int:
    index = start
    while index < len(pattern):
        if pattern[index] == "\\" and index + 1 < len(pattern):
            index += 2
            continue
        if pattern[index] == "]":
            return index
        index += 1
    return -1


def _bracket_class(body: str) -> str:
    negate = body.startswith("^")
    if negate:
        body = body[1:]
    parts: list[str] = []
    index = 0
    while index < len(body):
        char = body[index]
        if char == "\\" and index + 1 < len(body):
            parts.append(re.escape(body[index + 1]))
            index += 2
        elif index + 2 < len(body) and body[index + 1] == "-":
            low, high = sorted((char, body[index + 2]))
            parts.append(f"{re.escape(low)}-{re.escape(high)}")
            index += 3
        else:
            parts.append(re.escape(char))
            index += 1
    if not parts:
        return "." if negate else "(?!)"
    return f"[{'^' if negate else ''}{''.join(parts)}]"


@lru_cache(maxsize=256)
def compile_glob(pattern: str) -> "re.Pattern[str]":
    """Compile a Redis ``MATCH`` glob.

    ``*`` and ``?`` match any run or any single character, ``[...]`` is a
    set with ``a-z`` ranges and ``^`` negation, and ``\\`` escapes the next
    character. An unterminated ``[`` is literal.
    """

    out: list[str] = []
    index = 0
    while index < len(pattern):
        char = pattern[index]
        index += 1
        if char == "*":
            out.append(".*")
        elif char == "?":
            out.append(".")
        elif char == "\\" and index < len(pattern):
            out.append(re.escape(pattern[index]))
            index += 1
        elif char == "[" and _bracket_end(pattern, index) >= 0:
            end = _bracket_end(pattern, index)
            out.append(_bracket_class(pattern[index:end]))
            index = end + 1
        else:
            out.append(re.escape(char))
    return re.compile("".join(out), re.DOTALL)


class InMemoryCacheBackend:
    """Thread-safe dict cache used in development and tests.

    ``clock`` returns seconds and defaults to :func:`time.monotonic`; tests
    inject a fake clock to step over expiry deterministically.
    """

    def __init__(
        self,
        *,
        max_entries: int = 10_000,
        clock: Callable[[], float] | None = None,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._max_entries = max_entries
        self._clock = clock or time.monotonic
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = Lock()
        self._hits = 0
        self._misses = 0
        self._expired = 0
        self._evictions = 0

    def get(self, key: str) -> Any | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(now):
                del self._entries[key]
                self._expired += 1
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.value

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        if ttl_seconds < 1:
            raise ValueError("ttl_seconds must be at least 1")
        entry = CacheEntry(key=key, value=value, expires_at=self._clock() + ttl_seconds)
        with self._lock:
            if key in self._entries:
                self._entries[key] = entry
                self._entries.move_to_end(key)
                return
            if len(self._entries) >= self._max_entries:
                self._entries.popitem(last=False)
                self._evictions += 1
            self._entries[key] = entry

    def delete_key(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def delete_matching(self, pattern: str) -> int:
        matcher = compile_glob(pattern).fullmatch
        with self._lock:
            doomed = [key for key in self._entries if matcher(key) is not None]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def is_available(self) -> bool:
        return True

    def keys(self) -> list[str]:
        """Return live keys, oldest first."""

        now = self._clock()
        with self._lock:
            return [key for key, entry in self._entries.items() if not entry.is_expired(now)]

    def snapshot(self) -> dict[str, Any]:
        """Return live ``key -> value`` pairs without touching LRU order or stats."""

        now = self._clock()
        with self._lock:
            return {
                key: entry.value
                for key, entry in self._entries.items()
                if not entry.is_expired(now)
            }

    def stats(self) -> dict[str, Any]:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "backend": "memory",
                "size": len(self._entries),
                "max_entries": self._max_entries,
                "hits": self._hits,
                "misses": self._misses,
                "expired": self._expired,
                "evictions": self._evictions,
                "hit_rate": (self._hits / lookups) if lookups else 0.0,
            }


__all__ = ["CacheEntry", "InMemoryCacheBackend", "compile_glob"]
