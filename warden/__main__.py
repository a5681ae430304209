"""Run Warden: python -m warden [-c FILE]"""

import argparse
import asyncio
import sys

from warden import __version__
from warden.service import WardenService
from warden.shared.config import ConfigError, load_warden_config
from warden.shared.logger import configure_logging, get_logger

DEFAULT_CONFIG = "/etc/warden.json"

logger = get_logger("main")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="warden", description="Host liveness monitor driven by heartbeats.")
    parser.add_argument("-c", "--config", metavar="FILE", default=DEFAULT_CONFIG, help="configuration file name")
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_warden_config(args.config)
    except (FileNotFoundError, ConfigError) as e:
        logger.error(str(e))
        return 1

    configure_logging(config.log_file, config.log_level)
    service = WardenService(config)

    try:
        asyncio.run(service.start())
    except KeyboardInterrupt:
        print("\nWarden shutting down...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
