from __future__ import annotations

import logging
from threading import Event, Thread
from typing import Callable

from .device import DeviceError, DeviceOpenError, IndicatorDevice
from .retry import FixedRetryPolicy, Sleeper
from .state import DesiredState, SignalState
from .style import ConsoleStyle

LOGGER = logging.getLogger(__name__)

DeviceOpener = Callable[[str], IndicatorDevice]


class DeviceController:
    """Owns the cube and keeps rendering the latest desired state.

    ``set_state`` may be called from any thread. ``run`` is the render loop and
    must run on exactly one thread; ``close`` blocks until that loop has
    switched the device off, closed it and returned.
    """

    def __init__(
        self,
        address: str,
        *,
        opener: DeviceOpener,
        style: ConsoleStyle | None = None,
        blink_seconds: float = 0.1,
        open_retry: FixedRetryPolicy | None = None,
        sleep: Sleeper | None = None,
    ) -> None:
        self._address = address
        self._opener = opener
        self._style = style or ConsoleStyle.plain()
        self._blink_seconds = blink_seconds
        self._open_retry = open_retry or FixedRetryPolicy(10.0)
        self._desired = DesiredState()
        self._wake = Event()
        self._terminated = Event()
        self._sleep: Sleeper = sleep or self._wake.wait
        self._device: IndicatorDevice | None = None
        self._open_failures = 0
        self._crashed = False

    @property
    def state(self) -> SignalState:
        return self._desired.read_snapshot().state

    @property
    def device_open(self) -> bool:
        return self._device is not None

    @property
    def terminated(self) -> bool:
        return self._terminated.is_set()

    def set_state(self, state: SignalState) -> None:
        if self._desired.set_desired(state):
            LOGGER.info(
                "Cube is now %s",
                self._style.state_label(state),
                extra={"category": "state"},
            )

    def request_stop(self) -> None:
        self.set_state(SignalState.OFF)
        self._desired.request_termination()
        self._wake.set()

    def close(self, timeout: float | None = None) -> bool:
        """Stop the render loop; True only once the cube is off and closed."""
        self.request_stop()
        completed = self._terminated.wait(timeout)
        if not completed:
            LOGGER.error(
                "Cube controller did not terminate within %ss",
                timeout,
                extra={"category": "shutdown"},
            )
            return False
        if self._crashed:
            LOGGER.error(
                "Cube controller crashed; the cube may still be lit",
                extra={"category": "shutdown"},
            )
            return False
        return True

    def start(self) -> Thread:
        thread = Thread(target=self.run, name="cube-controller", daemon=True)
        thread.start()
        return thread

    def run(self) -> None:
        try:
            self._run_loop()
        except Exception:
            self._crashed = True
            LOGGER.exception("Cube controller stopped unexpectedly", extra={"category": "device"})
        finally:
            self._terminated.set()

    def _run_loop(self) -> None:
        while True:
            snapshot = self._desired.read_snapshot()
            if self._device is None:
                if snapshot.terminating:
                    LOGGER.info(
                        "Cube controller stopped before the cube was opened",
                        extra={"category": "shutdown"},
                    )
                    return
                self._try_open()
                continue

            if snapshot.terminating:
                self._shutdown_device()
                return

            try:
                self._render(self._device, snapshot.state)
            except DeviceError as exc:
                LOGGER.error(
                    "Cube command failed: %s",
                    exc,
                    extra={"category": "device"},
                )
                self._drop_device()
                self._open_retry.wait(self._sleep, 1)

    def _try_open(self) -> None:
        try:
            device = self._opener(self._address)
        except DeviceOpenError as exc:
            self._open_failures += 1
            delay = self._open_retry.delay_for(self._open_failures)
            LOGGER.warning(
                "Unable to open cube (attempt %s): %s; retrying in %ss",
                self._open_failures,
                exc,
                delay,
                extra={"category": "device"},
            )
            self._open_retry.wait(self._sleep, self._open_failures)
            return
        self._device = device
        LOGGER.info(
            "Cube opened at %s after %s failed attempt(s)",
            self._address,
            self._open_failures,
            extra={"category": "device"},
        )
        self._open_failures = 0

    def _render(self, device: IndicatorDevice, state: SignalState) -> None:
        if state is SignalState.GREEN:
            device.set_green()
            self._sleep(self._blink_seconds)
            device.off()
            self._sleep(self._blink_seconds)
        elif state is SignalState.RED:
            device.set_red()
            self._sleep(self._blink_seconds)
            device.off()
            self._sleep(self._blink_seconds)
        else:
            device.off()
            self._sleep(self._blink_seconds)

    def _shutdown_device(self) -> None:
        device = self._device
        self._device = None
        if device is None:
            return
        try:
            device.off()
        except DeviceError as exc:
            LOGGER.error(
                "Unable to switch the cube off: %s",
                exc,
                extra={"category": "shutdown"},
            )
        self._close_device(device)
        LOGGER.info("Cube switched off and closed", extra={"category": "shutdown"})

    def _drop_device(self) -> None:
        device = self._device
        self._device = None
        if device is not None:
            self._close_device(device)

    def _close_device(self, device: IndicatorDevice) -> None:
        try:
            device.close()
        except DeviceError as exc:
            LOGGER.warning("Cube close failed: %s", exc, extra={"category": "device"})
