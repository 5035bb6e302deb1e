from __future__ import annotations

import logging
from threading import Event
from typing import Callable, Protocol

from .config import AppConfig
from .mailbox import ImapMailbox, MailConnectionError, MailQueryError, MailSession
from .retry import FixedRetryPolicy, Sleeper
from .state import SignalState
from .style import ConsoleStyle

LOGGER = logging.getLogger(__name__)

MailConnector = Callable[[], MailSession]


class SignalSink(Protocol):
    def set_state(self, state: SignalState) -> None: ...


def derive_signal_state(count: int, *, green_if_more: int, red_if_more: int) -> SignalState:
    # Red first: with red_if_more < green_if_more a high count is still RED.
    if count > red_if_more:
        return SignalState.RED
    if count > green_if_more:
        return SignalState.GREEN
    return SignalState.OFF


def imap_connector(config: AppConfig) -> MailConnector:
    def connect() -> MailSession:
        return ImapMailbox.connect(
            config.addr,
            config.username,
            config.password,
            timeout=config.imap_timeout_seconds,
        )

    return connect


class MailboxMonitor:
    def __init__(
        self,
        config: AppConfig,
        sink: SignalSink,
        *,
        connector: MailConnector | None = None,
        style: ConsoleStyle | None = None,
        error_retry: FixedRetryPolicy | None = None,
    ) -> None:
        self._config = config
        self._sink = sink
        self._connector = connector or imap_connector(config)
        self._style = style or ConsoleStyle.plain()
        self._error_retry = error_retry or FixedRetryPolicy(config.error_backoff_seconds)
        self._session: MailSession | None = None
        self._last_count: int | None = None
        self._failure_count = 0

    @property
    def connected(self) -> bool:
        return self._session is not None

    @property
    def last_count(self) -> int | None:
        return self._last_count

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def connect(self) -> None:
        self._session = self._connector()

    def query_unread_count(self) -> int:
        if self._session is None:
            raise MailQueryError("not connected")
        return self._session.unread_count(self._config.label)

    def disconnect(self) -> None:
        self._sink.set_state(SignalState.OFF)
        session = self._session
        self._session = None
        if session is not None:
            session.close()
            LOGGER.info("Disconnected from %s", self._config.addr, extra={"category": "mail"})

    def run_once(self) -> bool:
        """One poll; returns False when the caller should back off."""
        if self._session is None:
            LOGGER.info("Connecting to %s...", self._config.addr, extra={"category": "mail"})
            try:
                self.connect()
            except MailConnectionError as exc:
                self._report_error(exc)
                self.disconnect()
                return False
            LOGGER.info("Connected!", extra={"category": "mail"})

        try:
            count = self.query_unread_count()
        except MailQueryError as exc:
            self._report_error(exc)
            self.disconnect()
            return False

        if count != self._last_count:
            self._last_count = count
            LOGGER.info(
                "You've got %s unread message(s)!",
                self._style.count(count),
                extra={"category": "mail"},
            )

        self._sink.set_state(
            derive_signal_state(
                count,
                green_if_more=self._config.green_if_more,
                red_if_more=self._config.red_if_more,
            )
        )
        return True

    def _report_error(self, exc: Exception) -> None:
        delay = self._error_retry.delay_for(self._failure_count + 1)
        LOGGER.error(
            "ERROR! %s; will now sleep for %ss",
            exc,
            delay,
            extra={"category": "mail"},
        )

    def run_loop(self, stop_event: Event, sleep: Sleeper | None = None) -> None:
        wait = sleep or stop_event.wait
        while not stop_event.is_set():
            try:
                ok = self.run_once()
            except Exception as exc:
                LOGGER.exception("Monitor error: %s", exc, extra={"category": "error"})
                self.disconnect()
                ok = False

            if ok:
                self._failure_count = 0
                interrupted = wait(self._config.poll_interval_seconds)
            else:
                self._failure_count += 1
                interrupted = self._error_retry.wait(wait, self._failure_count)
            if interrupted:
                break
        LOGGER.info("Monitor loop stopped", extra={"category": "shutdown"})
