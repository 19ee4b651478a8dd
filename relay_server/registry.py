"""Time-bounded connection registries.

The relay keeps two of these: one for connections that have not finished
their handshake yet, and one for senders and receivers that hold a pairing
code. Entries expire a fixed time after insertion; reading an entry never
extends its life.
"""

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Hashable, Optional

logger = logging.getLogger("relay.registry")


@dataclass
class _Entry:
    value: Any
    expires_at: float


class TTLRegistry:
    """Bounded key → value map with per-entry expiry and a dispose hook.

    ``dispose(key, value)`` runs synchronously exactly once for every entry
    that leaves the registry by expiry, capacity eviction or replacement by a
    different value. ``delete()`` removes an entry without disposing it.

    Entries are kept in insertion order. Since every entry gets the same TTL,
    that is also expiry order, so purging stops at the first live entry.
    """

    def __init__(
        self,
        name: str,
        max_size: int,
        ttl: float,
        dispose: Optional[Callable[[Hashable, Any], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self.name = name
        self.max_size = max_size
        self.ttl = ttl
        self._dispose = dispose
        self._clock = clock
        self._entries: "OrderedDict[Hashable, _Entry]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key) -> bool:
        return self.has(key)

    def set(self, key, value):
        self.purge_expired()
        old = self._entries.pop(key, None)
        if old is not None and old.value is not value:
            self._run_dispose(key, old.value, "replaced")
        while len(self._entries) >= self.max_size:
            evicted_key, evicted = self._entries.popitem(last=False)
            logger.warning(f"[{self.name}] full ({self.max_size}), evicting {evicted_key}")
            self._run_dispose(evicted_key, evicted.value, "evicted")
        self._entries[key] = _Entry(value, self._clock() + self.ttl)

    def get(self, key):
        self.purge_expired()
        entry = self._entries.get(key)
        return entry.value if entry is not None else None

    def has(self, key) -> bool:
        self.purge_expired()
        return key in self._entries

    def delete(self, key) -> bool:
        return self._entries.pop(key, None) is not None

    def purge_expired(self) -> int:
        """Dispose every expired entry. Returns how many were removed."""
        now = self._clock()
        expired = []
        for key, entry in self._entries.items():
            if entry.expires_at > now:
                break
            expired.append(key)
        for key in expired:
            entry = self._entries.pop(key)
            logger.info(f"[{self.name}] expired {key}")
            self._run_dispose(key, entry.value, "expired")
        return len(expired)

    def _run_dispose(self, key, value, reason: str):
        if self._dispose is None:
            return
        try:
            self._dispose(key, value)
        except Exception:
            logger.exception(f"[{self.name}] dispose failed for {key} ({reason})")
