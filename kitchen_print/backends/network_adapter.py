"""
Raw TCP backend for network thermal printers (JetDirect / port 9100).
"""

import asyncio
import logging
from typing import Optional

from kitchen_print.backends.base import DispatchBackend, DispatchError
from kitchen_print.backends.escpos import build_payload
from kitchen_print.models import PrinterConfig, PrintJob

logger = logging.getLogger(__name__)


class NetworkEscPosBackend(DispatchBackend):
    """
    Sends ESC/POS tickets straight to the job's printer over TCP.

    Config options:
        connect_timeout_sec: Bound on opening the connection (default 5)
        timeout_sec: Bound on the whole connect+write+close sequence (default 10)
    """

    name = "network"

    def __init__(self, tracker, config: Optional[dict] = None):
        super().__init__(tracker, config)
        self.connect_timeout_sec = float(self.config.get("connect_timeout_sec", 5.0))

    async def output(self, job: PrintJob, printer: Optional[PrinterConfig], title: str) -> None:
        if printer is None:
            raise DispatchError(f"Printer {job.printer_id} not found", "NO_PRINTER")

        host, port = printer.ip_address, printer.port
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port),
                timeout=self.connect_timeout_sec
            )
        except asyncio.TimeoutError:
            raise DispatchError(f"Timed out connecting to {host}:{port}", "TIMEOUT")
        except OSError as e:
            raise DispatchError(f"Cannot connect to {printer.name} at {host}:{port}: {e}", "CONNECTION_ERROR")

        try:
            payload = build_payload(title, job.items)
            writer.write(payload)
            await writer.drain()
            logger.info(f"Sent job {job.id} ({len(payload)} bytes) to {host}:{port}")
        except OSError as e:
            raise DispatchError(f"Write to {host}:{port} failed: {e}", "CONNECTION_ERROR")
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as e:
                logger.debug(f"Error closing connection to {host}:{port}: {e}")
