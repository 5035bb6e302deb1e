from __future__ import annotations

import logging
from dataclasses import dataclass, field

import serial

LOGGER = logging.getLogger(__name__)

RED_COMMAND = b"r\n"
GREEN_COMMAND = b"g\n"
OFF_COMMAND = b"o\n"


class DeviceError(RuntimeError):
    """Raised when a command cannot be delivered to an open device."""


class DeviceOpenError(DeviceError):
    """Raised when the device cannot be opened (absent, busy or unplugged)."""


class IndicatorDevice:
    def set_red(self) -> None:
        raise NotImplementedError()

    def set_green(self) -> None:
        raise NotImplementedError()

    def off(self) -> None:
        raise NotImplementedError()

    def close(self) -> None:
        raise NotImplementedError()


@dataclass
class SerialCubeDevice(IndicatorDevice):
    port: serial.Serial

    def _write(self, command: bytes) -> None:
        try:
            self.port.write(command)
            self.port.flush()
        except (serial.SerialException, OSError) as exc:
            raise DeviceError(f"Write to {self.port.port} failed: {exc}") from exc

    def set_red(self) -> None:
        self._write(RED_COMMAND)

    def set_green(self) -> None:
        self._write(GREEN_COMMAND)

    def off(self) -> None:
        self._write(OFF_COMMAND)

    def close(self) -> None:
        try:
            self.port.close()
        except (serial.SerialException, OSError) as exc:
            raise DeviceError(f"Close of {self.port.port} failed: {exc}") from exc


@dataclass
class DryRunDevice(IndicatorDevice):
    address: str
    commands: list[str] = field(default_factory=list)

    def _record(self, command: str) -> None:
        self.commands.append(command)
        LOGGER.debug(
            "Dry run: %s -> %s",
            command,
            self.address,
            extra={"category": "device"},
        )

    def set_red(self) -> None:
        self._record("red")

    def set_green(self) -> None:
        self._record("green")

    def off(self) -> None:
        self._record("off")

    def close(self) -> None:
        self._record("close")


def open_device(
    address: str,
    *,
    baud_rate: int = 9600,
    timeout_seconds: float = 1.0,
    dry_run: bool = False,
) -> IndicatorDevice:
    if dry_run:
        LOGGER.info("Dry run enabled, cube commands are only logged", extra={"category": "device"})
        return DryRunDevice(address)
    try:
        port = serial.Serial(
            port=address,
            baudrate=baud_rate,
            timeout=timeout_seconds,
            write_timeout=timeout_seconds,
        )
    except (serial.SerialException, OSError, ValueError) as exc:
        raise DeviceOpenError(f"Unable to open cube '{address}': {exc}") from exc
    return SerialCubeDevice(port=port)
