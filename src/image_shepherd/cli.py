"""Command-line entry point.

Usage:
    image-shepherd --config images.yaml --os-cloud openstack [--verbose] [--dry-run]
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from image_shepherd import __version__
from image_shepherd.config import ConfigError, RunOptions, load_images_config
from image_shepherd.registry.auth import RegistryAuthError, connect
from image_shepherd.sync.errors import RegistryListError
from image_shepherd.sync.image_tools import QemuImageTools
from image_shepherd.sync.orchestrator import ImageSynchronizer

logger = logging.getLogger("image_shepherd")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(verbose: bool = False) -> None:
    """Log to stderr; INFO when verbose, otherwise warnings and errors only."""
    root = logging.getLogger("image_shepherd")
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(logging.INFO if verbose else logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="image-shepherd",
        description="Keep an OpenStack image registry in sync with upstream images",
    )
    parser.add_argument(
        "--config", default="images.yaml", help="Path to the images configuration file"
    )
    parser.add_argument(
        "--os-cloud", default="openstack", help="Name of the cloud to use in clouds.yaml"
    )
    parser.add_argument(
        "--verbose", action="store_true", help="Include informational messages in the log"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report which images would be published without changing anything",
    )
    parser.add_argument(
        "--work-dir", default=None, help="Directory for downloaded and converted images"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    overrides: dict[str, object] = {}
    if args.dry_run:
        overrides["dry_run"] = True
    if args.work_dir:
        overrides["work_dir"] = Path(args.work_dir)
    options = RunOptions(**overrides)

    try:
        config = load_images_config(Path(args.config))
    except ConfigError as e:
        logger.error("%s", e)
        return 1

    try:
        registry = connect(args.os_cloud, timeout=options.list_timeout_secs)
    except RegistryAuthError as e:
        logger.error("Failed to create image client: %s", e)
        return 1

    synchronizer = ImageSynchronizer(
        registry, QemuImageTools(timeout=options.tool_timeout_secs), options
    )
    try:
        with registry:
            synchronizer.run(config.images)
    except RegistryListError as e:
        logger.error("%s", e)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
