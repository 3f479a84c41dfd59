"""
Kitchen Print Gateway entry point.

    kitchen-print-gateway --config config/local.yaml --backend network
"""

import argparse
import logging
import sys

import uvicorn

from kitchen_print.api.server import create_app
from kitchen_print.config import BACKEND_TYPES, get_server_config, load_config
from kitchen_print.startup import print_startup_banner, run_startup_checks

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Kitchen Print Gateway - routes orders to kitchen printers"
    )
    parser.add_argument("-c", "--config", help="YAML config file (default: config/local.yaml, then config/default.yaml)")
    parser.add_argument("--host", help="Bind address")
    parser.add_argument("--port", type=int, help="Listen port")
    parser.add_argument(
        "--backend",
        choices=sorted(BACKEND_TYPES),
        help="Dispatch backend used when a request does not name one"
    )
    parser.add_argument("--data-dir", help="Keep printers, mappings and jobs as JSON in this directory")
    parser.add_argument("--debug", action="store_true", help="Verbose logging and FastAPI debug mode")
    parser.add_argument("--skip-checks", action="store_true", help="Start without running startup checks")
    return parser


def apply_overrides(config: dict, args: argparse.Namespace) -> dict:
    """Fold command line options into the loaded config."""
    server = config.setdefault("server", {})
    if args.host:
        server["host"] = args.host
    if args.port:
        server["port"] = args.port
    if args.debug:
        server["debug"] = True
    if args.backend:
        config.setdefault("dispatch", {})["default_backend"] = args.backend
    if args.data_dir:
        config.setdefault("storage", {})["data_dir"] = args.data_dir
    return config


def main():
    args = build_parser().parse_args()

    try:
        config = apply_overrides(load_config(args.config), args)
    except Exception as e:
        logger.error(f"Failed to load config: {e}")
        sys.exit(1)

    if not args.skip_checks:
        run_startup_checks(config)

    server_config = get_server_config(config)
    if server_config["debug"]:
        logging.getLogger("kitchen_print").setLevel(logging.DEBUG)

    app = create_app(
        config=config,
        cors_origins=server_config["cors_origins"],
        debug=server_config["debug"]
    )

    print_startup_banner(config)

    try:
        uvicorn.run(
            app,
            host=server_config["host"],
            port=server_config["port"],
            log_level="debug" if server_config["debug"] else "info"
        )
    except Exception as e:
        logger.error(f"Server error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
