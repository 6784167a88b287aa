# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fda_regintel

"""Configuration module for the FDA regulatory-intelligence engine."""

from datetime import timedelta
from pathlib import Path
from typing import Final


class RegIntelConfig:
    """Configuration constants for the Orange Book / Purple Book engine."""

    # Source Definition
    ORANGE_BOOK_URL: Final[str] = "https://www.fda.gov/media/76860/download?attachment"
    PURPLE_BOOK_URL_TEMPLATE: Final[str] = (
        "https://purplebooksearch.fda.gov/files/{year}/purplebook-search-{month}-data-download.xlsx"
    )
    DEFAULT_DATA_DIR: Final[Path] = Path("data/regintel")

    # Orange Book archive members
    FILE_PRODUCTS: Final[str] = "products.txt"
    FILE_PATENTS: Final[str] = "patent.txt"
    FILE_EXCLUSIVITY: Final[str] = "exclusivity.txt"

    # Parsing
    DELIMITER: Final[str] = "~"
    ENCODING: Final[str] = "utf-8"
    ENCODING_ERRORS: Final[str] = "replace"  # Lossy, FDA files occasionally carry cp1252 bytes

    # Identity Resolution
    NAMESPACE_FDA: Final[str] = "fda.gov"  # For UUID5 generation

    # Acquisition
    REQUEST_TIMEOUT: Final[int] = 120
    MAX_RETRIES: Final[int] = 3
    BACKOFF_BASE: Final[float] = 2.0
    MAX_LOOKBACK_MONTHS: Final[int] = 12
    CHUNK_SIZE: Final[int] = 8192

    # Freshness
    MAX_AGE: Final[timedelta] = timedelta(days=30)
    RETRY_COOLDOWN: Final[timedelta] = timedelta(hours=1)

    # Store
    ACTIVE_POINTER: Final[str] = "ACTIVE"
    GENERATION_PREFIX: Final[str] = "generation-"

    # Queries
    SEARCH_LIMIT: Final[int] = 100
    DEFAULT_YEARS_AHEAD: Final[int] = 5
