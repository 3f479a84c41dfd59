"""
Serial / Bluetooth ESC/POS backend.

Requires: pyserial package
Works with thermal printers paired over Bluetooth SPP (which show up as a
serial port) or attached through a USB-serial bridge.
"""

import asyncio
import logging
import re
from typing import Callable, Optional

from kitchen_print.backends.base import DispatchBackend, DispatchError, MissingDependencyError
from kitchen_print.backends.escpos import build_payload
from kitchen_print.models import PrinterConfig, PrintJob

logger = logging.getLogger(__name__)

try:
    import serial
    from serial.tools import list_ports
    SERIAL_AVAILABLE = True
except ImportError:
    SERIAL_AVAILABLE = False
    logger.warning("pyserial package not available - SerialEscPosBackend will not function")

BLUETOOTH_PATTERN = re.compile(r"bluetooth", re.IGNORECASE)
SERIAL_PORT_PATTERN = re.compile(
    r"(COM\d+|/dev/tty(USB|ACM|S)\d+|/dev/rfcomm\d+|/dev/cu\.[\w-]+)$",
    re.IGNORECASE
)


class NoPortError(DispatchError):
    """No serial or Bluetooth port is available."""

    code = "NO_PORT"


def pick_port(ports: list) -> Optional[str]:
    """
    Choose the port to print on.

    Prefers a port whose manufacturer, description or hardware id mentions
    Bluetooth, then falls back to the first port with a serial-looking name.
    """
    for port in ports:
        descriptor = " ".join(
            str(getattr(port, attr, "") or "")
            for attr in ("manufacturer", "description", "hwid")
        )
        if BLUETOOTH_PATTERN.search(descriptor):
            return port.device

    for port in ports:
        if SERIAL_PORT_PATTERN.search(port.device or ""):
            return port.device

    return None


class SerialEscPosBackend(DispatchBackend):
    """
    Writes ESC/POS tickets to a discovered serial port.

    Config options:
        port: Fixed port to use instead of discovery (e.g. "/dev/rfcomm0")
        baud_rate: Serial speed (default 9600)
        flush_delay_sec: Pause after writing before closing (default 0.5)
        timeout_sec: Bound on the whole open+write+close sequence (default 10)
    """

    name = "serial"

    def __init__(
        self,
        tracker,
        config: Optional[dict] = None,
        list_ports_fn: Optional[Callable[[], list]] = None,
        open_port_fn: Optional[Callable[..., object]] = None
    ):
        super().__init__(tracker, config)
        self.fixed_port = self.config.get("port") or None
        self.baud_rate = int(self.config.get("baud_rate", 9600))
        self.flush_delay_sec = float(self.config.get("flush_delay_sec", 0.5))
        self._list_ports = list_ports_fn
        self._open_port = open_port_fn

    def _available(self) -> bool:
        return SERIAL_AVAILABLE or (self._list_ports is not None and self._open_port is not None)

    def discover_port(self) -> Optional[str]:
        if self.fixed_port:
            return self.fixed_port
        lister = self._list_ports or list_ports.comports
        try:
            ports = list(lister())
        except Exception as e:
            logger.error(f"Failed to list serial ports: {e}")
            return None
        return pick_port(ports)

    def _write(self, device: str, payload: bytes) -> None:
        opener = self._open_port or serial.Serial
        conn = opener(device, baudrate=self.baud_rate, write_timeout=self.timeout_sec)
        try:
            conn.write(payload)
            conn.flush()
        finally:
            conn.close()

    async def output(self, job: PrintJob, printer: Optional[PrinterConfig], title: str) -> None:
        if not self._available():
            raise MissingDependencyError(
                "Serial port module not available. Install pyserial and restart."
            )

        loop = asyncio.get_running_loop()
        device = await loop.run_in_executor(None, self.discover_port)
        if not device:
            raise NoPortError("No COM ports found for Bluetooth printer")

        payload = build_payload(title, job.items)
        logger.info(f"Writing job {job.id} ({len(payload)} bytes) to {device}")

        try:
            await loop.run_in_executor(None, self._write, device, payload)
        except OSError as e:
            raise DispatchError(f"Serial port error on {device}: {e}")

        if self.flush_delay_sec:
            await asyncio.sleep(self.flush_delay_sec)

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "available": self._available(),
            "baud_rate": self.baud_rate,
        }
