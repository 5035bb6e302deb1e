from __future__ import annotations

import logging
import signal
from functools import partial
from threading import Event, Thread

from .config import AppConfig
from .controller import DeviceController
from .device import open_device
from .monitor import MailboxMonitor
from .retry import FixedRetryPolicy
from .style import ConsoleStyle

LOGGER = logging.getLogger(__name__)

SHUTDOWN_EXIT_CODE = 1
MAIN_TICK_SECONDS = 1.0


def build_controller(config: AppConfig, style: ConsoleStyle) -> DeviceController:
    opener = partial(
        open_device,
        baud_rate=config.device_baud_rate,
        dry_run=config.device_dry_run,
    )
    return DeviceController(
        config.cube,
        opener=opener,
        style=style,
        blink_seconds=config.blink_seconds,
        open_retry=FixedRetryPolicy(config.device_retry_seconds),
    )


class CubeMailApp:
    """Runs the monitor and controller threads and tears them down on SIGINT/SIGTERM."""

    def __init__(
        self,
        config: AppConfig,
        *,
        style: ConsoleStyle | None = None,
        controller: DeviceController | None = None,
        monitor: MailboxMonitor | None = None,
    ) -> None:
        self.config = config
        self.style = style or ConsoleStyle.for_output(config.color_output)
        self.controller = controller or build_controller(config, self.style)
        self.monitor = monitor or MailboxMonitor(config, self.controller, style=self.style)
        self._stop_event = Event()
        self._shutdown_event = Event()
        self._monitor_thread: Thread | None = None
        self._controller_thread: Thread | None = None
        self._shutdown_signal: int | None = None

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_event.is_set()

    def request_shutdown(self, signum: int | None = None, _frame: object = None) -> None:
        self._shutdown_signal = signum
        self._shutdown_event.set()

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self.request_shutdown)
        signal.signal(signal.SIGTERM, self.request_shutdown)

    def start(self) -> None:
        self._controller_thread = self.controller.start()
        self._monitor_thread = Thread(
            target=self.monitor.run_loop,
            args=(self._stop_event,),
            name="mailbox-monitor",
            daemon=True,
        )
        self._monitor_thread.start()

    def wait_for_shutdown(self, tick_seconds: float = MAIN_TICK_SECONDS) -> None:
        while not self._shutdown_event.wait(tick_seconds):
            if self._monitor_thread is not None and not self._monitor_thread.is_alive():
                LOGGER.error("Monitor thread exited unexpectedly", extra={"category": "shutdown"})
                self._shutdown_event.set()

    def shutdown(self) -> int:
        if self._shutdown_signal is not None:
            LOGGER.info(
                "Received %s, shutting down",
                signal.Signals(self._shutdown_signal).name,
                extra={"category": "shutdown"},
            )
        self._stop_event.set()
        self.controller.close()
        if self._monitor_thread is not None:
            self._monitor_thread.join(timeout=self.config.imap_timeout_seconds + 1)
            if self._monitor_thread.is_alive():
                LOGGER.warning(
                    "Monitor thread still busy; closing the mail session anyway",
                    extra={"category": "shutdown"},
                )
        self.monitor.disconnect()
        LOGGER.info("Shutdown complete", extra={"category": "shutdown"})
        print("Goodbye!")
        return SHUTDOWN_EXIT_CODE

    def run(self) -> int:
        self.install_signal_handlers()
        self.start()
        self.wait_for_shutdown()
        return self.shutdown()


def run(config: AppConfig, style: ConsoleStyle | None = None) -> int:
    return CubeMailApp(config, style=style).run()
