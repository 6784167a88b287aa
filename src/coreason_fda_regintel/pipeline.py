# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fda_regintel

"""Fetch -> Parse -> Build, producing one unactivated generation."""

import threading
from datetime import datetime
from typing import Optional

from coreason_fda_regintel.exceptions import BuildCancelledError
from coreason_fda_regintel.gold.store import Generation, GenerationBuilder, new_generation_id
from coreason_fda_regintel.silver.models import ParsedDataset
from coreason_fda_regintel.silver.purple_book import parse_purple_book
from coreason_fda_regintel.silver.transform import parse_orange_book
from coreason_fda_regintel.source import FdaBookSource
from coreason_fda_regintel.utils.logger import logger


def _check_cancel(cancel: Optional[threading.Event], stage: str) -> None:
    if cancel is not None and cancel.is_set():
        logger.warning(f"Build cancelled before {stage}")
        raise BuildCancelledError(f"Build cancelled before {stage}")


def build_generation(
    source: FdaBookSource,
    builder: GenerationBuilder,
    cancel: Optional[threading.Event] = None,
    generation_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Generation:
    """
    Run the full acquisition and build sequence.

    Args:
        source: Where the raw datasets come from.
        builder: Writes the generation file.
        cancel: Shutdown signal, checked between stages.
        generation_id: Explicit id; generated from the clock when omitted.
        now: Build timestamp override.

    Returns:
        The finished generation. Activation is the caller's job.

    Raises:
        AcquisitionError, ParseError, BuildError: From the failing stage.
    """
    generation_id = generation_id or new_generation_id(now)

    # 1. Fetch
    logger.info("Step 1: Fetching Orange Book and Purple Book...")
    _check_cancel(cancel, "fetch")
    orange_book = source.fetch_orange_book()
    _check_cancel(cancel, "Purple Book fetch")
    purple_book = source.fetch_purple_book()

    # 2. Parse
    logger.info("Step 2: Parsing source files...")
    _check_cancel(cancel, "parse")
    products, patents, exclusivity = parse_orange_book(orange_book)
    biologics = parse_purple_book(purple_book)

    dataset = ParsedDataset(
        products=products,
        patents=patents,
        exclusivity=exclusivity,
        biologics=biologics,
        orange_book_date=orange_book.source_date,
        purple_book_date=purple_book.source_month,
        source_hashes={"orange_book": orange_book.source_hash, "purple_book": purple_book.source_hash},
    )

    # 3. Build
    logger.info("Step 3: Building store generation...")
    return builder.build(generation_id, dataset, cancel=cancel, now=now)
