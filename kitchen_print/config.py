"""
Configuration loading and service setup.
"""

import os
import logging
from pathlib import Path
from typing import Optional

import yaml

from kitchen_print.backends import BackendRegistry
from kitchen_print.backends.network_adapter import NetworkEscPosBackend
from kitchen_print.backends.serial_adapter import SerialEscPosBackend
from kitchen_print.backends.simulated import SimulatedBackend
from kitchen_print.backends.spooler_adapter import SpoolerPdfBackend
from kitchen_print.models import CategoryPrinterMapping, PrinterConfig
from kitchen_print.queue import Dispatcher
from kitchen_print.service import PrintService
from kitchen_print.store import JobStore, MappingStore, PrinterStore, StoreError
from kitchen_print.tracker import JobTracker

logger = logging.getLogger(__name__)

# Map backend names to classes
BACKEND_TYPES = {
    "simulated": SimulatedBackend,
    "network": NetworkEscPosBackend,
    "serial": SerialEscPosBackend,
    "spooler": SpoolerPdfBackend,
}


CONFIG_ENV_VAR = "CONFIG_FILE"
SOURCE_CONFIG_DIR = Path(__file__).parent.parent / "config"


def config_candidates(config_path: Optional[str] = None) -> list[Path]:
    """
    Files load_config() tries, first match wins.

    An explicit path or the CONFIG_FILE environment variable come first,
    then local.yaml and default.yaml in ./config and in the source checkout.
    """
    explicit = config_path or os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        return [Path(explicit)]
    dirs = (Path.cwd() / "config", SOURCE_CONFIG_DIR)
    return [d / name for d in dirs for name in ("local.yaml", "default.yaml")]


def load_config(config_path: Optional[str] = None) -> dict:
    """
    Load the YAML configuration.

    Raises FileNotFoundError when an explicitly named file does not exist.
    Without one, a missing config means built-in defaults.
    """
    candidates = config_candidates(config_path)
    for path in candidates:
        if path.is_file():
            logger.info(f"Loading config from {path}")
            return yaml.safe_load(path.read_text()) or {}

    if config_path or os.environ.get(CONFIG_ENV_VAR):
        raise FileNotFoundError(f"Config file not found: {candidates[0]}")

    logger.warning("No config file found, using built-in defaults")
    return {}


def get_server_config(config: dict) -> dict:
    """Host, port, debug flag and CORS origins, with defaults filled in."""
    server = config.get("server", {})
    return {
        "host": server.get("host", "0.0.0.0"),
        "port": server.get("port", 5001),
        "debug": server.get("debug", False),
        "cors_origins": server.get("cors_origins", None),
    }


def get_dispatch_config(config: dict) -> dict:
    """Extract dispatch configuration."""
    dispatch = config.get("dispatch", {})
    return {
        "default_backend": dispatch.get("default_backend", "simulated"),
        "max_retries": dispatch.get("max_retries", 3),
        "max_pending": dispatch.get("max_pending", 100),
    }


def setup_backends(config: dict, tracker: JobTracker) -> BackendRegistry:
    """
    Create every known backend with its config section.

    Config format:
        backends:
          simulated:
            min_delay_sec: 1.0
            max_delay_sec: 4.0
          serial:
            baud_rate: 9600
          spooler:
            cups_name: Kitchen_Laser
    """
    dispatch = get_dispatch_config(config)
    sections = config.get("backends", {}) or {}

    registry = BackendRegistry(default=dispatch["default_backend"])
    for name, backend_class in BACKEND_TYPES.items():
        registry.register(backend_class(tracker, sections.get(name) or {}))

    if registry.get() is None:
        logger.warning(
            f"Unknown default backend '{dispatch['default_backend']}', using simulated"
        )
        registry.default = "simulated"

    return registry


def build_service(config: dict) -> PrintService:
    """Create stores, tracker, backends and dispatcher from configuration."""
    storage = config.get("storage", {}) or {}
    data_dir = storage.get("data_dir")
    data_path = Path(data_dir) if data_dir else None

    printers = PrinterStore(data_path / "printers.json" if data_path else None)
    mappings = MappingStore(data_path / "category-printer-mappings.json" if data_path else None)
    jobs = JobStore(data_path / "print-jobs.json" if data_path else None)

    dispatch = get_dispatch_config(config)
    tracker = JobTracker(jobs, max_retries=dispatch["max_retries"])

    return PrintService(
        printers=printers,
        mappings=mappings,
        jobs=jobs,
        tracker=tracker,
        backends=setup_backends(config, tracker),
        dispatcher=Dispatcher(max_pending=dispatch["max_pending"]),
    )


async def seed_from_config(service: PrintService, config: dict) -> None:
    """
    Load printers and mappings listed in the config file.

    Config format:
        printers:
          - id: grill
            name: Grill Station
            ip_address: 192.168.1.50
            port: 9100
            type: thermal
            categories: [mains]

        mappings:
          - category_id: mains
            printer_id: grill
            priority: 1

    Seeding only happens into empty stores, so records edited through the
    API survive restarts when storage.data_dir is set.
    """
    if await service.printers.count() == 0:
        for printer_conf in config.get("printers", []) or []:
            try:
                printer = await service.printers.add(PrinterConfig.from_dict(printer_conf))
                logger.info(f"Registered printer: {printer.name} ({printer.id})")
            except (StoreError, TypeError, ValueError) as e:
                logger.error(f"Skipping printer {printer_conf.get('id')}: {e}")

    if await service.mappings.count() == 0:
        for mapping_conf in config.get("mappings", []) or []:
            try:
                await service.mappings.add(CategoryPrinterMapping.from_dict(mapping_conf))
            except (StoreError, TypeError, ValueError) as e:
                logger.error(f"Skipping mapping {mapping_conf}: {e}")
