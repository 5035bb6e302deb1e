from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from threading import Lock


class SignalState(Enum):
    OFF = "off"
    GREEN = "green"
    RED = "red"

    @property
    def label(self) -> str:
        return self.name


@dataclass(frozen=True)
class StateSnapshot:
    state: SignalState
    terminating: bool


class DesiredState:
    """Desired signal plus the terminating flag, guarded by one lock.

    Termination is kept apart from the colour so that a pending shutdown never
    hides which state was last requested.
    """

    def __init__(self, initial: SignalState = SignalState.OFF) -> None:
        self._lock = Lock()
        self._state = initial
        self._terminating = False

    def set_desired(self, state: SignalState) -> bool:
        with self._lock:
            if self._state is state:
                return False
            self._state = state
            return True

    def read_snapshot(self) -> StateSnapshot:
        with self._lock:
            return StateSnapshot(state=self._state, terminating=self._terminating)

    def request_termination(self) -> None:
        with self._lock:
            self._terminating = True
