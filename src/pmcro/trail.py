# trail.py
# Cognitive Trail: append-only audit record of phase transitions.
#
# One trail may be shared by many concurrent runs. Every append is atomic
# under a lock, so entries from different runs can interleave but a single
# entry is never split. With a retention bound only the newest N are kept.

import json
import logging
import threading
from collections import deque
from typing import Any

from pmcro.models import Phase, TrailEntry

logger = logging.getLogger(__name__)


class CognitiveTrail:
    def __init__(self, max_entries: int | None = None) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be positive or None.")
        self._entries: deque[TrailEntry] = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    def append(self, phase: Phase, payload: dict[str, Any], run_id: str = "") -> TrailEntry:
        with self._lock:
            entry = TrailEntry(run_id=run_id, phase=phase, payload=payload)
            self._entries.append(entry)
        if logger.isEnabledFor(logging.INFO):
            logger.info("TRAIL [%s] %s: %s", phase.value, run_id, json.dumps(payload, default=str))
        return entry

    def history(self, run_id: str | None = None) -> list[TrailEntry]:
        """Snapshot in insertion order, optionally limited to one run."""
        with self._lock:
            entries = list(self._entries)
        if run_id is None:
            return entries
        return [e for e in entries if e.run_id == run_id]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def to_json(self, indent: int | None = None) -> str:
        return json.dumps(
            [e.model_dump(mode="json", by_alias=True) for e in self.history()],
            indent=indent,
        )

    @property
    def max_entries(self) -> int | None:
        return self._entries.maxlen

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
