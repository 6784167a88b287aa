# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fda_regintel

"""Command-line entry point for the FDA regulatory-intelligence engine."""

import argparse
import sys
import threading
from pathlib import Path

from loguru import logger
from pydantic import BaseModel

from coreason_fda_regintel.config import RegIntelConfig
from coreason_fda_regintel.exceptions import RegIntelError, ValidationError
from coreason_fda_regintel.freshness import FreshnessManager
from coreason_fda_regintel.gold.queries import RegulatoryQueryEngine
from coreason_fda_regintel.gold.store import Generation, GenerationStore
from coreason_fda_regintel.pipeline import build_generation
from coreason_fda_regintel.source import FdaBookSource
from coreason_fda_regintel.utils.logger import configure_logging

EXIT_FAILURE = 1
EXIT_INVALID = 2


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(description="FDA Orange Book / Purple Book regulatory intelligence")
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=RegIntelConfig.DEFAULT_DATA_DIR,
        help="Directory holding the store generations",
    )
    parser.add_argument("--log-level", default=None, help="Console log level (default: $LOG_LEVEL or INFO)")
    commands = parser.add_subparsers(dest="command", required=True)

    refresh = commands.add_parser("refresh", help="Rebuild the store if stale")
    refresh.add_argument("--force", action="store_true", help="Rebuild even if the store is fresh")

    search = commands.add_parser("search", help="Search the Orange Book")
    search.add_argument("drug")
    search.add_argument("--no-generics", action="store_true", help="Only brand (NDA) products")

    equivalents = commands.add_parser("equivalents", help="Therapeutic equivalents of a drug")
    equivalents.add_argument("drug")

    patents = commands.add_parser("patents", help="Patents and exclusivity of an application")
    patents.add_argument("application_number")

    cliff = commands.add_parser("cliff", help="Patent cliff analysis of a drug")
    cliff.add_argument("drug")
    cliff.add_argument("--years-ahead", type=int, default=RegIntelConfig.DEFAULT_YEARS_AHEAD)

    purple = commands.add_parser("purple", help="Search the Purple Book")
    purple.add_argument("drug")

    interchangeable = commands.add_parser("interchangeable", help="Biosimilar interchangeability")
    interchangeable.add_argument("drug")

    commands.add_parser("metadata", help="Show the active generation")
    return parser.parse_args(args)


def build_manager(data_dir: Path) -> tuple[GenerationStore, FreshnessManager]:
    """Wire the store, the source and the freshness manager together."""
    store = GenerationStore(data_dir)
    source = FdaBookSource()

    def rebuild(cancel: threading.Event) -> Generation:
        return build_generation(source, store.builder, cancel=cancel)

    return store, FreshnessManager(store, rebuild)


def run_command(parsed: argparse.Namespace) -> BaseModel:
    """Execute one subcommand and return its result model."""
    store, manager = build_manager(parsed.data_dir)
    engine = RegulatoryQueryEngine(store)

    if parsed.command == "refresh":
        return manager.refresh(force=parsed.force).metadata
    if parsed.command == "metadata":
        return engine.get_metadata()

    manager.ensure_ready()
    if parsed.command == "search":
        return engine.search_orange_book(parsed.drug, include_generics=not parsed.no_generics)
    if parsed.command == "equivalents":
        return engine.get_therapeutic_equivalents(parsed.drug)
    if parsed.command == "patents":
        return engine.get_patent_exclusivity(parsed.application_number)
    if parsed.command == "cliff":
        return engine.analyze_patent_cliff(parsed.drug, years_ahead=parsed.years_ahead)
    if parsed.command == "purple":
        return engine.search_purple_book(parsed.drug)
    if parsed.command == "interchangeable":
        return engine.get_biosimilar_interchangeability(parsed.drug)
    raise ValidationError(f"Unknown command: {parsed.command}")


def main(args: list[str] | None = None) -> None:
    """Main entry point."""
    parsed = parse_args(args)
    configure_logging(level=parsed.log_level)

    logger.info(f"Running {parsed.command} against {parsed.data_dir}")
    try:
        result = run_command(parsed)
    except ValidationError as e:
        logger.error(f"Invalid input: {e}")
        sys.exit(EXIT_INVALID)
    except RegIntelError as e:
        logger.error(f"{parsed.command} failed: {e}")
        sys.exit(EXIT_FAILURE)
    except Exception as e:
        logger.exception(f"Unexpected failure in {parsed.command}: {e}")
        sys.exit(EXIT_FAILURE)

    print(result.model_dump_json(indent=2))


if __name__ == "__main__":  # pragma: no cover
    main()
