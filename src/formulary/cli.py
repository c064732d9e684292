# src/formulary/cli.py

import argparse
import importlib.metadata
import sys
from pathlib import Path
from typing import List, Optional

from formulary import log_utils
from formulary.config import load_config, resolve_config_path
from formulary.constants import (
    EXIT_CANCELLED,
    EXIT_FAILURE,
    EXIT_OK,
    SUPPORTED_SOURCES,
)
from formulary.exceptions import FormularyError, RunCancelledError
from formulary.release.controller import run_sync


def get_formulary_version() -> str:
    """Return the installed package version, or "unknown" when running from a checkout."""
    try:
        return importlib.metadata.version("formulary")
    except importlib.metadata.PackageNotFoundError:
        return "unknown"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="formulary",
        description="Formulary - generate versioned package manifests from GitHub releases",
    )
    subparsers = parser.add_subparsers(dest="command")

    generate_parser = subparsers.add_parser(
        "generate", help="Generate manifests for every configured repository"
    )
    generate_parser.add_argument(
        "--config",
        "-c",
        help="Path to the YAML configuration (default: $FORMULARY_CONFIG or ./util/config/config.yaml)",
    )
    generate_parser.add_argument(
        "--output-dir",
        "-o",
        help="Directory manifests are written to (overrides outputDir)",
    )
    generate_parser.add_argument(
        "--source",
        choices=SUPPORTED_SOURCES,
        help="Where release information comes from (overrides source)",
    )
    generate_parser.add_argument(
        "--log-level",
        help="Logging level (DEBUG, INFO, WARNING, ...); defaults to $FORMULARY_LOG_LEVEL or INFO",
    )
    generate_parser.add_argument(
        "--log-dir",
        help="Also write a rotating log file to this directory",
    )

    subparsers.add_parser("version", help="Display Formulary version")
    return parser


def _log_failure(logger, error: FormularyError) -> None:
    logger.error(f"Generation failed: {error}")
    for key, value in error.context().items():
        if key in ("message", "details"):
            continue
        if isinstance(value, str) and "\n" in value:
            logger.error(f"  {key}:\n{value.rstrip()}")
        else:
            logger.error(f"  {key}: {value}")


def run_generate(args: argparse.Namespace) -> int:
    """
    Run the `generate` subcommand.

    Returns:
        int: Process exit status.
    """
    logger = log_utils.configure_logging(
        args.log_level, Path(args.log_dir) if args.log_dir else None
    )
    try:
        config = load_config(resolve_config_path(args.config))
        config = config.with_overrides(
            output_dir=Path(args.output_dir) if args.output_dir else None,
            source=args.source,
        )
        logger.info(
            f"Loaded configuration with {len(config.repositories)} repositories "
            f"(source: {config.source}, output: {config.output_dir})"
        )
        run_sync(config, logger)
    except RunCancelledError as error:
        logger.warning(f"Run cancelled: {error.reason or 'termination requested'}")
        return EXIT_CANCELLED
    except KeyboardInterrupt:
        logger.warning("Run cancelled: interrupted")
        return EXIT_CANCELLED
    except FormularyError as error:
        _log_failure(logger, error)
        return EXIT_FAILURE
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """
    Entry point for the Formulary command-line interface.

    Parses command-line arguments and dispatches the `generate` and `version`
    subcommands. Without a subcommand, help is printed.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command == "generate":
        return run_generate(args)
    if args.command == "version":
        print(f"Formulary v{get_formulary_version()}")
        return EXIT_OK

    parser.print_help()
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
