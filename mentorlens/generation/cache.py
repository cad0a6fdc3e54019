"""In-process cache of parsed generation responses.

Keyed by a content fingerprint of the request, so identical requests from
any user share an entry. Entries are replaced whole; a reader sees either
the old tuple or the new one, never a mix.
"""

from __future__ import annotations

import hashlib
import json
import time
from typing import Callable

from mentorlens.models import SkillLevel

DEFAULT_TTL = 24 * 60 * 60  # seconds
DEFAULT_MAX_ENTRIES = 512


def fingerprint(kind: str, payload: dict, level: SkillLevel) -> str:
    canonical = json.dumps(
        {"kind": str(kind), "level": level.value, "payload": payload},
        sort_keys=True,
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class ResponseCache:
    """Fingerprint -> sections, bounded by age and by entry count.

    Stale entries are dropped on every put; past `max_entries` the entries
    stored longest ago go first.
    """

    def __init__(
        self,
        ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ) -> None:
        self._ttl = ttl
        self._max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, tuple[float, dict]] = {}

    def get(self, key: str) -> dict | None:
        """Return the cached sections if they are still inside the freshness window."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, sections = entry
        if self._clock() - stored_at > self._ttl:
            return None
        return sections

    def put(self, key: str, sections: dict) -> None:
        now = self._clock()
        entries = {
            k: entry
            for k, entry in self._entries.items()
            if k != key and now - entry[0] <= self._ttl
        }
        entries[key] = (now, sections)
        # Insertion order is storage order
        while len(entries) > self._max_entries:
            del entries[next(iter(entries))]
        self._entries = entries

    def __len__(self) -> int:
        return len(self._entries)
