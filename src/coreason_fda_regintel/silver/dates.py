# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fda_regintel

"""
Date normalization for FDA source files.

Orange Book text files use ``Mon DD, YYYY``; the Purple Book spreadsheet mixes
native date cells with ``MM/DD/YYYY`` and ISO text. Every recognized value is
normalized to ISO ``YYYY-MM-DD``. Anything else is kept verbatim behind the
``UNPARSED:`` marker so it stays visible instead of being guessed.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, NamedTuple, Optional

UNPARSED_PREFIX = "UNPARSED:"


class DateFormat(Enum):
    """Recognized textual date encodings, tried in declaration order."""

    FDA_TEXT = "%b %d, %Y"
    ISO = "%Y-%m-%d"
    US_SLASH = "%m/%d/%Y"


class ParsedDate(NamedTuple):
    value: Optional[date]
    source_format: Optional[DateFormat]
    raw: str

    @property
    def recognized(self) -> bool:
        return self.value is not None


def parse_date_text(text: str) -> ParsedDate:
    """
    Try each DateFormat in turn against ``text``.

    Args:
        text: Non-empty date text from a source file.

    Returns:
        ParsedDate with the first matching format, or value=None if none matched.
    """
    cleaned = " ".join(text.split())
    for fmt in DateFormat:
        try:
            return ParsedDate(datetime.strptime(cleaned, fmt.value).date(), fmt, text)
        except ValueError:
            continue
    return ParsedDate(None, None, text)


def normalize_date(value: Any) -> Optional[str]:
    """
    Normalize a source date value to canonical ISO text.

    Args:
        value: A string, ``date``/``datetime`` cell value, or None.

    Returns:
        ``YYYY-MM-DD``; None for blank input; ``UNPARSED:<text>`` when unrecognized.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()

    text = str(value).strip()
    if not text:
        return None

    parsed = parse_date_text(text)
    if parsed.recognized:
        return parsed.value.isoformat()
    return f"{UNPARSED_PREFIX}{text}"


def to_date(value: Optional[str]) -> Optional[date]:
    """Convert a stored canonical date back to ``date``; None for absent or unparsed values."""
    if not value or value.startswith(UNPARSED_PREFIX):
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None
