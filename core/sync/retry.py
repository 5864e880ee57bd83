"""
Retry policy and dead-letter record for Projector writes.

The default policy makes a single attempt, so a failed write is logged,
recorded, and skipped.
"""

import asyncio
import logging
import random
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, TypeVar

from ..errors import ProjectionError

logger = logging.getLogger(__name__)

T = TypeVar('T')


class RetryPolicy:
    """Exponential backoff with a cap for per-event projection writes"""

    def __init__(
        self,
        max_attempts: int = 1,
        initial_delay: float = 0.5,
        max_delay: float = 10.0,
        backoff_factor: float = 2.0,
        jitter: bool = True
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.jitter = jitter

    def get_delay(self, attempt: int) -> float:
        """Calculate delay after the given zero-based attempt"""
        delay = self.initial_delay * (self.backoff_factor ** attempt)
        delay = min(delay, self.max_delay)

        if self.jitter:
            # Up to 20% extra
            delay += delay * 0.2 * random.random()

        return delay

    async def run(self, operation: Callable[[], Awaitable[T]], description: str = "operation") -> T:
        """
        Run ``operation`` until it succeeds or attempts are exhausted.

        Only ProjectionError is retried; the last one is re-raised.
        """
        for attempt in range(self.max_attempts):
            try:
                return await operation()
            except ProjectionError as e:
                if attempt >= self.max_attempts - 1:
                    raise
                delay = self.get_delay(attempt)
                logger.warning(
                    f"{description} failed (attempt {attempt + 1}/{self.max_attempts}), "
                    f"retrying in {delay:.2f}s: {e}"
                )
                await asyncio.sleep(delay)
        raise RuntimeError("unreachable")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_attempts": self.max_attempts,
            "initial_delay": self.initial_delay,
            "max_delay": self.max_delay,
            "backoff_factor": self.backoff_factor,
            "jitter": self.jitter
        }


@dataclass
class DeadLetter:
    """A projection that failed after all attempts"""
    document_id: Optional[str]
    operation: str
    error: str
    failed_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document_id": self.document_id,
            "operation": self.operation,
            "error": self.error,
            "failed_at": self.failed_at.isoformat()
        }


class DeadLetterLog:
    """Bounded in-memory record of failed projections, oldest dropped first"""

    def __init__(self, max_entries: int = 1000):
        self.max_entries = max_entries
        self._entries: Deque[DeadLetter] = deque(maxlen=max_entries or None)

    def record(self, document_id: Optional[str], operation: str, error: str) -> None:
        if self.max_entries == 0:
            return
        self._entries.append(DeadLetter(document_id=document_id, operation=operation, error=error))

    def entries(self) -> List[DeadLetter]:
        return list(self._entries)

    def document_ids(self) -> List[str]:
        """Distinct failed ids in first-failure order"""
        seen: Dict[str, None] = {}
        for entry in self._entries:
            if entry.document_id is not None:
                seen.setdefault(entry.document_id, None)
        return list(seen)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
