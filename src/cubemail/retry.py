from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

# Blocks for up to ``seconds``; returns True when the wait was cut short by a
# stop or wake request (``threading.Event.wait`` semantics).
Sleeper = Callable[[float], bool]


@dataclass(frozen=True)
class FixedRetryPolicy:
    """Unbounded retries separated by a constant delay."""

    interval_seconds: float

    def __post_init__(self) -> None:
        if self.interval_seconds < 0:
            raise ValueError("interval_seconds must be >= 0")

    def delay_for(self, attempt: int) -> float:
        return self.interval_seconds

    def wait(self, sleep: Sleeper, attempt: int) -> bool:
        return sleep(self.delay_for(attempt))
