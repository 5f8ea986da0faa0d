import threading
from collections import deque
from datetime import datetime
from typing import List, Optional

from .models import ActivityEntry, EvaluationResult


class ActivityLog:
    """Recent evaluations, newest first. In memory only, capped at `limit`."""

    def __init__(self, limit: int = 50):
        self._entries = deque(maxlen=limit)
        self._lock = threading.Lock()

    def record(self, scenario: str, result: EvaluationResult, when: Optional[datetime] = None) -> ActivityEntry:
        entry = ActivityEntry(
            time=(when or datetime.now()).strftime("%H:%M:%S"),
            scenario=scenario,
            verdict=result.verdict,
            score=result.score,
            top_signal=result.top_signal,
        )
        with self._lock:
            self._entries.appendleft(entry)
        return entry

    def recent(self, n: int = 10) -> List[ActivityEntry]:
        with self._lock:
            return list(self._entries)[:max(n, 0)]

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
