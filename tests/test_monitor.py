from __future__ import annotations

import logging
from threading import Event

import pytest

from cubemail.config import AppConfig
from cubemail.mailbox import MailAuthError, MailConnectionError, MailQueryError
from cubemail.monitor import MailboxMonitor, derive_signal_state
from cubemail.retry import FixedRetryPolicy
from cubemail.state import SignalState


def _config(**overrides: object) -> AppConfig:
    values: dict[str, object] = {
        "cube": "/dev/ttyACM0",
        "addr": "imap.gmail.com:993",
        "username": "user",
        "password": "pw",
        "label": "INBOX",
        "green_if_more": 10,
        "red_if_more": 5,
        "poll_interval_seconds": 1.0,
        "error_backoff_seconds": 60.0,
    }
    values.update(overrides)
    return AppConfig(**values)  # type: ignore[arg-type]


class RecordingSink:
    def __init__(self) -> None:
        self.states: list[SignalState] = []

    def set_state(self, state: SignalState) -> None:
        self.states.append(state)


class FakeSession:
    def __init__(self, counts: list[object]) -> None:
        self._counts = list(counts)
        self.labels: list[str] = []
        self.closed = False

    def unread_count(self, label: str) -> int:
        self.labels.append(label)
        value = self._counts.pop(0)
        if isinstance(value, Exception):
            raise value
        return int(value)  # type: ignore[arg-type]

    def close(self) -> None:
        self.closed = True


class FakeConnector:
    def __init__(self, outcomes: list[object]) -> None:
        self._outcomes = list(outcomes)
        self.calls = 0

    def __call__(self) -> FakeSession:
        self.calls += 1
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome  # type: ignore[return-value]


@pytest.mark.parametrize(
    ("count", "expected"),
    [
        (0, SignalState.OFF),
        (5, SignalState.OFF),
        (6, SignalState.GREEN),
        (10, SignalState.GREEN),
        (11, SignalState.RED),
    ],
)
def test_derive_signal_state_thresholds(count: int, expected: SignalState) -> None:
    assert derive_signal_state(count, green_if_more=5, red_if_more=10) is expected


def test_derive_signal_state_boundary_is_exclusive() -> None:
    assert derive_signal_state(10, green_if_more=0, red_if_more=10) is SignalState.GREEN
    assert derive_signal_state(0, green_if_more=0, red_if_more=10) is SignalState.OFF


def test_red_takes_priority_when_thresholds_are_inverted() -> None:
    assert derive_signal_state(11, green_if_more=10, red_if_more=2) is SignalState.RED
    assert derive_signal_state(3, green_if_more=10, red_if_more=2) is SignalState.RED
    assert derive_signal_state(2, green_if_more=10, red_if_more=2) is SignalState.OFF


def test_run_once_connects_queries_and_pushes_state() -> None:
    session = FakeSession([7])
    connector = FakeConnector([session])
    sink = RecordingSink()
    monitor = MailboxMonitor(
        _config(green_if_more=5, red_if_more=10), sink, connector=connector
    )

    assert monitor.run_once() is True

    assert connector.calls == 1
    assert session.labels == ["INBOX"]
    assert sink.states == [SignalState.GREEN]
    assert monitor.connected is True
    assert monitor.last_count == 7


def test_run_once_pushes_state_even_when_unchanged() -> None:
    session = FakeSession([20, 20])
    sink = RecordingSink()
    monitor = MailboxMonitor(_config(), sink, connector=FakeConnector([session]))

    monitor.run_once()
    monitor.run_once()

    assert sink.states == [SignalState.RED, SignalState.RED]


def test_count_change_logged_once(caplog: pytest.LogCaptureFixture) -> None:
    session = FakeSession([3, 3, 3, 4, 4])
    monitor = MailboxMonitor(_config(), RecordingSink(), connector=FakeConnector([session]))
    caplog.set_level(logging.INFO, logger="cubemail.monitor")

    for _ in range(5):
        monitor.run_once()

    unread_lines = [
        record.getMessage() for record in caplog.records if "unread" in record.getMessage()
    ]
    assert unread_lines == [
        "You've got 3 unread message(s)!",
        "You've got 4 unread message(s)!",
    ]


def test_connect_failure_retains_no_connection() -> None:
    connector = FakeConnector([MailConnectionError("Unable to dial 'imap.gmail.com:993'")])
    sink = RecordingSink()
    monitor = MailboxMonitor(_config(), sink, connector=connector)

    assert monitor.run_once() is False

    assert monitor.connected is False
    assert sink.states == [SignalState.OFF]


def test_auth_failure_signals_backoff() -> None:
    monitor = MailboxMonitor(
        _config(), RecordingSink(), connector=FakeConnector([MailAuthError("bad credentials")])
    )

    assert monitor.run_once() is False
    assert monitor.connected is False


def test_query_failure_tears_down_session_and_pushes_off() -> None:
    first = FakeSession([20, MailQueryError("STATUS INBOX returned NO")])
    second = FakeSession([1])
    connector = FakeConnector([first, second])
    sink = RecordingSink()
    monitor = MailboxMonitor(_config(), sink, connector=connector)

    assert monitor.run_once() is True
    assert monitor.run_once() is False

    assert first.closed is True
    assert monitor.connected is False
    assert sink.states == [SignalState.RED, SignalState.OFF]

    assert monitor.run_once() is True
    assert connector.calls == 2
    assert sink.states[-1] is SignalState.OFF


def test_disconnect_is_idempotent_and_always_pushes_off() -> None:
    session = FakeSession([1])
    sink = RecordingSink()
    monitor = MailboxMonitor(_config(), sink, connector=FakeConnector([session]))
    monitor.run_once()

    monitor.disconnect()
    monitor.disconnect()

    assert session.closed is True
    assert sink.states == [SignalState.OFF, SignalState.OFF, SignalState.OFF]


def test_run_loop_uses_cadence_then_backoff() -> None:
    session = FakeSession([1, MailQueryError("boom")])
    connector = FakeConnector([session, MailConnectionError("down"), FakeSession([2])])
    monitor = MailboxMonitor(
        _config(poll_interval_seconds=1.0),
        RecordingSink(),
        connector=connector,
        error_retry=FixedRetryPolicy(60.0),
    )
    stop_event = Event()
    waits: list[float] = []

    def fake_sleep(seconds: float) -> bool:
        waits.append(seconds)
        if len(waits) == 4:
            stop_event.set()
            return True
        return False

    monitor.run_loop(stop_event, sleep=fake_sleep)

    assert waits == [1.0, 60.0, 60.0, 1.0]
    assert monitor.failure_count == 0


def test_run_loop_recovers_from_unexpected_errors() -> None:
    session = FakeSession([RuntimeError("parser exploded")])
    sink = RecordingSink()
    monitor = MailboxMonitor(_config(), sink, connector=FakeConnector([session]))
    stop_event = Event()
    waits: list[float] = []

    def fake_sleep(seconds: float) -> bool:
        waits.append(seconds)
        stop_event.set()
        return True

    monitor.run_loop(stop_event, sleep=fake_sleep)

    assert waits == [60.0]
    assert session.closed is True
    assert sink.states == [SignalState.OFF]
    assert monitor.failure_count == 1


def test_run_loop_exits_immediately_when_stopped() -> None:
    connector = FakeConnector([])
    monitor = MailboxMonitor(_config(), RecordingSink(), connector=connector)
    stop_event = Event()
    stop_event.set()

    monitor.run_loop(stop_event)

    assert connector.calls == 0
