"""Command line entry point: ct-scanlog --config simple.yaml"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from . import __version__
from .config import DEFAULT_CONFIG_PATH, load_config
from .director import LoggingFatalLogger, build_director
from .errors import ConfigError

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(
        prog="ct-scanlog",
        description="Incrementally scan a Certificate Transparency log with resumable checkpoints.",
    )
    ap.add_argument("--config", default=DEFAULT_CONFIG_PATH,
                    help=f"Path to the YAML scan configuration (default: {DEFAULT_CONFIG_PATH})")
    ap.add_argument("--log-level", default="INFO",
                    choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                    help="Logging level (default: INFO)")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return ap.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
    )

    fatal_logger = LoggingFatalLogger()
    try:
        config = load_config(args.config)
    except ConfigError as e:
        fatal_logger.fatal(e)
        return 1

    director = build_director(config, fatal_logger=fatal_logger)
    result = asyncio.run(director.run())
    if not result.success:
        return 1

    logger.info(f"Scan finished at index {result.next_index} of {result.end_bound}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
