"""
USB / OS spooler backend.

Lays the ticket out on A4 pages, renders it to PDF with Pillow and submits
it to CUPS, which handles locally attached USB printers as well as shared
queues.

Requires: pycups package and a running CUPS server
"""

import asyncio
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from io import BytesIO
from typing import Callable, Iterable, Optional

from PIL import Image, ImageDraw, ImageFont
from pypdf import PdfReader

from kitchen_print.backends.base import DispatchBackend, DispatchError, MissingDependencyError
from kitchen_print.models import PrinterConfig, PrintJob, PrintJobItem

logger = logging.getLogger(__name__)

try:
    import cups
    CUPS_AVAILABLE = True
except ImportError:
    CUPS_AVAILABLE = False
    logger.warning("pycups package not available - SpoolerPdfBackend will not function")

# Page geometry in PDF points (1/72 inch)
PAGE_WIDTH_PT = 595.28
PAGE_HEIGHT_PT = 841.89
MARGIN_PT = 50
TITLE_SIZE_PT = 18
BODY_SIZE_PT = 12
HEADER_STEP_PT = 24
LINE_STEP_PT = 16

RENDER_DPI = 150


class SpoolerUnavailableError(MissingDependencyError):
    """The spooler or its client library cannot be used. Needs operator action."""
    pass


@dataclass
class TextLine:
    text: str
    y: float  # distance from the top edge, in points
    size: float


def layout_pages(
    title: str,
    items: Iterable[PrintJobItem],
    generated_at: Optional[datetime] = None
) -> list[list[TextLine]]:
    """Place ticket lines on pages, starting a new page when one runs out of room."""
    generated_at = generated_at or datetime.now()
    pages: list[list[TextLine]] = [[]]
    y = MARGIN_PT

    def emit(text: str, size: float, step: float) -> None:
        nonlocal y
        if y + step > PAGE_HEIGHT_PT - MARGIN_PT:
            pages.append([])
            y = MARGIN_PT
        pages[-1].append(TextLine(text=text, y=y, size=size))
        y += step

    emit(title, TITLE_SIZE_PT, HEADER_STEP_PT)
    emit(f"Generated: {generated_at:%Y-%m-%d %H:%M:%S}", BODY_SIZE_PT, HEADER_STEP_PT)

    for item in items:
        emit(f"{item.quantity} x {item.name}", BODY_SIZE_PT, LINE_STEP_PT)
        if item.notes:
            emit(f"    {item.notes}", BODY_SIZE_PT, LINE_STEP_PT)

    return pages


def _font(size_px: int):
    try:
        return ImageFont.truetype("DejaVuSans.ttf", size_px)
    except OSError:
        return ImageFont.load_default()


def render_pdf(pages: list[list[TextLine]], dpi: int = RENDER_DPI) -> bytes:
    scale = dpi / 72
    size = (round(PAGE_WIDTH_PT * scale), round(PAGE_HEIGHT_PT * scale))

    images = []
    for lines in pages:
        image = Image.new("L", size, 255)
        draw = ImageDraw.Draw(image)
        for line in lines:
            draw.text(
                (MARGIN_PT * scale, line.y * scale),
                line.text,
                fill=0,
                font=_font(round(line.size * scale))
            )
        images.append(image)

    buffer = BytesIO()
    images[0].save(
        buffer,
        format="PDF",
        save_all=True,
        append_images=images[1:],
        resolution=dpi
    )
    return buffer.getvalue()


def count_pdf_pages(data: bytes) -> int:
    """Page count of a PDF, raising DispatchError if it cannot be read."""
    if not data.startswith(b"%PDF"):
        raise DispatchError("Rendered document is not a PDF", "INVALID_FORMAT")
    try:
        return len(PdfReader(BytesIO(data)).pages)
    except Exception as e:
        raise DispatchError(f"Invalid PDF: {e}", "CORRUPT_PDF")


class SpoolerPdfBackend(DispatchBackend):
    """
    Submits rendered PDF tickets to CUPS.

    Config options:
        cups_name: CUPS printer name (default: the server's default destination)
        cups_server: CUPS server address (default: localhost)
        timeout_sec: Bound on render + submit (default 30)
    """

    name = "spooler"

    def __init__(
        self,
        tracker,
        config: Optional[dict] = None,
        connection_factory: Optional[Callable[[], object]] = None
    ):
        config = {"timeout_sec": 30.0, **(config or {})}
        super().__init__(tracker, config)
        self.cups_name = self.config.get("cups_name", "")
        self.cups_server = self.config.get("cups_server", "localhost")
        self._connection_factory = connection_factory

    def _available(self) -> bool:
        return CUPS_AVAILABLE or self._connection_factory is not None

    def _connect(self):
        if self._connection_factory:
            return self._connection_factory()
        if self.cups_server != "localhost":
            cups.setServer(self.cups_server)
        return cups.Connection()

    def _submit(self, pdf: bytes, title: str) -> int:
        try:
            conn = self._connect()
        except RuntimeError as e:
            # pycups raises RuntimeError when the server is unreachable
            raise SpoolerUnavailableError(f"Cannot reach CUPS at {self.cups_server}: {e}")

        destination = self.cups_name or conn.getDefault()
        if not destination:
            raise SpoolerUnavailableError(
                "No CUPS printer configured. Set backends.spooler.cups_name or a default printer.",
                "NO_PRINTER"
            )

        # CUPS requires a file path, so we write to temp file
        with tempfile.NamedTemporaryFile(suffix=".pdf", delete=False) as f:
            f.write(pdf)
            temp_path = f.name

        try:
            return conn.printFile(destination, temp_path, title, {})
        finally:
            os.unlink(temp_path)

    async def output(self, job: PrintJob, printer: Optional[PrinterConfig], title: str) -> None:
        if not self._available():
            raise SpoolerUnavailableError(
                "Printing module not available. Install pycups and make sure CUPS is running."
            )

        loop = asyncio.get_running_loop()
        pages = layout_pages(title, job.items)
        pdf = await loop.run_in_executor(None, render_pdf, pages)

        page_count = count_pdf_pages(pdf)
        if page_count != len(pages):
            raise DispatchError(
                f"Rendered {page_count} page(s), expected {len(pages)}", "CORRUPT_PDF"
            )

        cups_job_id = await loop.run_in_executor(None, self._submit, pdf, title)
        logger.info(f"Submitted job {job.id} to CUPS as job {cups_job_id} ({page_count} page(s))")

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "available": self._available(),
            "cups_name": self.cups_name or None,
        }
