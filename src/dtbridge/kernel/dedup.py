"""
Inbound message deduplication.

The stream transport may redeliver a callback (e.g. after a reconnect). Each
event is reduced to a dedup id and remembered for DEDUP_WINDOW_SECONDS;
repeats inside the window are dropped. Expired ids are swept on every check,
so memory stays proportional to event rate x window without a timer.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Mapping

DEDUP_WINDOW_SECONDS = 300.0


def dedup_id_for(event: Mapping[str, Any]) -> str:
    """Platform msgId, or conversation+createAt+sender when absent.

    The fallback is an approximation: two distinct messages from the same
    sender with the same createAt collapse into one.
    """
    msg_id = event.get("msgId")
    if msg_id:
        return str(msg_id)
    return f"{event.get('conversationId')}-{event.get('createAt')}-{event.get('senderStaffId')}"


class DedupCache:
    def __init__(
        self,
        *,
        window_seconds: float = DEDUP_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.window_seconds = window_seconds
        self._clock = clock
        self._seen: Dict[str, float] = {}

    def _sweep(self, now: float) -> None:
        expired = [k for k, seen_at in self._seen.items() if now - seen_at > self.window_seconds]
        for k in expired:
            del self._seen[k]

    def is_duplicate(self, dedup_id: str) -> bool:
        """True if `dedup_id` was seen within the window; otherwise record it."""
        now = self._clock()
        self._sweep(now)
        if dedup_id in self._seen:
            return True
        self._seen[dedup_id] = now
        return False

    def __len__(self) -> int:
        return len(self._seen)
