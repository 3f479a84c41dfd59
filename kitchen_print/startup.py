"""
Pre-flight checks run by the CLI before the server starts.

Configuration mistakes (bad printer addresses, unknown backends, a port
that is already taken) are reported here rather than on the first order.
"""

import errno
import importlib.util
import ipaddress
import logging
import os
import socket
import sys
from pathlib import Path
from typing import Optional

from kitchen_print.config import BACKEND_TYPES, get_dispatch_config, get_server_config

logger = logging.getLogger(__name__)

ADDRESS_IN_USE = (errno.EADDRINUSE, 10048)
ACCESS_DENIED = (errno.EACCES, 10013)

OPTIONAL_MODULES = {
    "pyserial": "serial",
    "pycups": "cups",
}


def check_port_available(host: str, port: int) -> Optional[str]:
    """Return None if host:port can be bound, otherwise a description of the problem."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError as e:
            if e.errno in ADDRESS_IN_USE:
                return f"Port {port} is already in use (is another gateway running?)"
            if e.errno in ACCESS_DENIED:
                return f"No permission to bind port {port}; use a port >= 1024 or run with privileges"
            return f"Cannot bind to {host}:{port}: {e}"
    return None


def check_data_dir(data_dir: Optional[str]) -> Optional[str]:
    """Return None if the storage directory is usable (or not configured)."""
    if not data_dir:
        return None
    path = Path(data_dir)
    if path.exists() and not path.is_dir():
        return f"storage.data_dir {data_dir} is not a directory"
    parent = path if path.exists() else path.parent
    if not os.access(parent, os.W_OK):
        return f"storage.data_dir {data_dir} is not writable"
    return None


def _check_printers(printers: list, errors: list[str]) -> set:
    seen = set()
    for index, entry in enumerate(printers):
        printer_id = entry.get("id")
        label = printer_id or f"#{index}"

        if not printer_id:
            errors.append(f"Printer at index {index} has no 'id' field.")
        elif printer_id in seen:
            errors.append(f"Duplicate printer ID: '{printer_id}'")
        seen.add(printer_id)

        try:
            ipaddress.IPv4Address(str(entry.get("ip_address", "")))
        except ValueError:
            errors.append(f"Printer '{label}' has an invalid ip_address: {entry.get('ip_address')!r}")
    return seen


def validate_config(config: dict) -> tuple[list[str], list[str]]:
    """
    Check a loaded config for problems.

    Returns:
        (errors, warnings). Errors stop the server from starting.
    """
    errors: list[str] = []
    warnings: list[str] = []

    port = get_server_config(config)["port"]
    if not isinstance(port, int) or not 1 <= port <= 65535:
        errors.append(f"Invalid port: {port}. Must be between 1 and 65535.")
    elif port < 1024:
        warnings.append(f"Port {port} is a privileged port. Consider using a port >= 1024.")

    dispatch = get_dispatch_config(config)
    if dispatch["default_backend"] not in BACKEND_TYPES:
        errors.append(
            f"Unknown default backend '{dispatch['default_backend']}'. "
            f"Choose one of: {', '.join(BACKEND_TYPES)}"
        )
    if not isinstance(dispatch["max_retries"], int) or dispatch["max_retries"] < 0:
        errors.append(f"Invalid dispatch.max_retries: {dispatch['max_retries']}")

    printers = config.get("printers") or []
    if not printers:
        warnings.append("No printers in config. Add them through the API before printing orders.")
    known_ids = _check_printers(printers, errors)

    if printers:
        for mapping in config.get("mappings") or []:
            printer_id = mapping.get("printer_id")
            if printer_id and printer_id not in known_ids:
                warnings.append(
                    f"Category '{mapping.get('category_id')}' maps to unknown printer '{printer_id}'."
                )

    return errors, warnings


def missing_optional_modules() -> list[str]:
    """Distribution names of hardware libraries that are not installed."""
    return [
        dist for dist, module in OPTIONAL_MODULES.items()
        if importlib.util.find_spec(module) is None
    ]


def run_startup_checks(config: dict) -> None:
    """Log all findings; exit with status 1 if any of them is an error."""
    logger.info("Running startup checks...")

    errors, warnings = validate_config(config)

    storage_problem = check_data_dir((config.get("storage") or {}).get("data_dir"))
    if storage_problem:
        errors.append(storage_problem)

    if not errors:
        server = get_server_config(config)
        port_problem = check_port_available(server["host"], server["port"])
        if port_problem:
            errors.append(port_problem)

    missing = missing_optional_modules()
    if missing:
        warnings.append(
            f"Optional dependencies not installed: {', '.join(missing)} "
            f"(the matching backends will report MISSING_DEPENDENCY)"
        )

    for warning in warnings:
        logger.warning(f"  ! {warning}")

    if errors:
        for error in errors:
            logger.error(f"  x {error}")
        logger.error(f"{len(errors)} startup check(s) failed, not starting")
        sys.exit(1)

    logger.info(f"Startup checks passed ({len(warnings)} warning(s))")


def print_startup_banner(config: dict) -> None:
    port = get_server_config(config)["port"]
    dispatch = get_dispatch_config(config)
    data_dir = (config.get("storage") or {}).get("data_dir") or "(in memory)"

    lines = [
        "",
        "=" * 56,
        "  Kitchen Print Gateway",
        "=" * 56,
        f"  API:              http://localhost:{port}/v1",
        f"  API docs:         http://localhost:{port}/docs",
        f"  Default backend:  {dispatch['default_backend']}",
        f"  Max retries:      {dispatch['max_retries']}",
        f"  Data directory:   {data_dir}",
        "",
        "  POST /v1/print-order             route and print an order",
        "  GET  /v1/print-jobs              poll job status",
        "  POST /v1/print-jobs/{id}/retry   retry a failed job",
        "  POST /v1/print-report            print a payments report",
        "=" * 56,
        "",
    ]
    print("\n".join(lines))
