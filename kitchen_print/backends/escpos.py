"""
ESC/POS ticket payloads for thermal printers.
"""

from datetime import datetime
from typing import Iterable, Optional

from kitchen_print.models import PrintJobItem

INITIALIZE = b"\x1b\x40"
ALIGN_LEFT = b"\x1b\x61\x00"
ALIGN_CENTER = b"\x1b\x61\x01"
BOLD_ON = b"\x1b\x45\x01"
BOLD_OFF = b"\x1b\x45\x00"
DOUBLE_HEIGHT = b"\x1b\x21\x10"
NORMAL_HEIGHT = b"\x1b\x21\x00"
LINE_FEED = b"\x0a"
PARTIAL_CUT = b"\x1d\x56\x42\x00"

NAME_WIDTH = 24
QUANTITY_WIDTH = 3

# Default character table on most ESC/POS printers
ENCODING = "cp437"


def _text(value: str) -> bytes:
    return value.encode(ENCODING, errors="replace")


def format_item_line(item: PrintJobItem) -> str:
    name = item.name[:NAME_WIDTH]
    return f"{name:<{NAME_WIDTH}} x{item.quantity:>{QUANTITY_WIDTH}}"


def build_payload(
    title: str,
    items: Iterable[PrintJobItem],
    generated_at: Optional[datetime] = None
) -> bytes:
    generated_at = generated_at or datetime.now()

    parts = [
        INITIALIZE,
        ALIGN_CENTER,
        BOLD_ON,
        DOUBLE_HEIGHT,
        _text(f"{title}\n"),
        NORMAL_HEIGHT,
        BOLD_OFF,
        LINE_FEED,
        ALIGN_LEFT,
        _text(f"Generated: {generated_at:%Y-%m-%d %H:%M:%S}\n"),
        LINE_FEED,
    ]

    for item in items:
        parts.append(_text(format_item_line(item) + "\n"))
        if item.notes:
            parts.append(_text(f"  * {item.notes}\n"))

    parts += [
        LINE_FEED,
        LINE_FEED,
        ALIGN_CENTER,
        _text("\n\n-- End --\n"),
        LINE_FEED,
        PARTIAL_CUT,
    ]

    return b"".join(parts)
