from typing import List, Optional
from collections import deque

from wayfinder.domain.models.plan import QueryOutcome


class ExecutionHistory:
    """Bounded record of recent pipeline outcomes, oldest dropped first"""

    def __init__(self, max_entries: int = 100):
        self.max_entries = max_entries
        self._entries: deque = deque(maxlen=max_entries)

    def add(self, outcome: QueryOutcome) -> None:
        self._entries.append(outcome)

    def get_history(self, limit: int = 10) -> List[QueryOutcome]:
        """Most recent entries, oldest first"""
        if limit <= 0:
            return []
        return list(self._entries)[-limit:]

    def clear(self) -> None:
        self._entries.clear()

    @property
    def total(self) -> int:
        return len(self._entries)

    @property
    def successful(self) -> int:
        return sum(1 for outcome in self._entries if outcome.success)

    @property
    def last(self) -> Optional[QueryOutcome]:
        return self._entries[-1] if self._entries else None

    def __len__(self) -> int:
        return len(self._entries)
