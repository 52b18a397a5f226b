"""Per-audit serialization."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field


@dataclass
class _Entry:
    lock: threading.RLock = field(default_factory=threading.RLock)
    holders: int = 0


class AuditLocks:
    """Hands out one re-entrant lock per audit id.

    Operations on the same audit (answer edits, lifecycle transitions,
    latest-version changes) run one at a time; different audits never
    contend with each other. An entry lives only while some thread holds
    or waits for it.
    """

    def __init__(self) -> None:
        self._entries: dict[str, _Entry] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    @contextmanager
    def hold(self, audit_id: str) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(audit_id)
            if entry is None:
                entry = self._entries[audit_id] = _Entry()
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._entries[audit_id]
