# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fda_regintel

"""Transformation of the Purple Book spreadsheet into Silver Biologic records."""

import io
from collections.abc import Iterable
from datetime import date, datetime
from typing import Any, Final, Optional

from openpyxl import load_workbook
from pydantic import ValidationError as PydanticValidationError

from coreason_fda_regintel.bronze.models import PurpleBookRaw
from coreason_fda_regintel.exceptions import ParseError
from coreason_fda_regintel.silver.dates import normalize_date
from coreason_fda_regintel.silver.models import Biologic, ParseOutcome
from coreason_fda_regintel.utils.logger import logger

# Logical field -> accepted header spellings (normalized: lower case, single spaces)
COLUMN_ALIASES: Final[dict[str, tuple[str, ...]]] = {
    "applicant": ("applicant",),
    "license_number": ("bla number", "bla no.", "bla no"),
    "proprietary_name": ("proprietary name",),
    "proper_name": ("proper name",),
    "bla_type": ("bla type",),
    "strength": ("strength",),
    "dosage_form": ("dosage form",),
    "route": ("route of administration", "route"),
    "marketing_status": ("marketing status",),
    "licensure_status": ("licensure", "licensure status"),
    "approval_date": ("approval date",),
    "reference_proper_name": ("ref. product proper name", "reference product proper name"),
    "reference_proprietary_name": ("ref. product proprietary name", "reference product proprietary name"),
    "reference_license_number": ("ref. product bla number", "reference product bla number"),
    "first_licensure_date": ("date of first licensure",),
    "exclusivity_expiration_date": ("exclusivity expiration date", "ref. product exclusivity exp. date"),
    "interchangeable_exclusivity_date": ("first interchangeable exclusivity exp. date",),
    "orphan_exclusivity_date": ("orphan exclusivity exp. date",),
    "interchangeable": ("interchangeable",),
}

HEADER_SCAN_ROWS: Final[int] = 20
NOT_APPLICABLE: Final[frozenset[str]] = frozenset({"N/A", "NA", "NONE", "-"})
TRUTHY: Final[frozenset[str]] = frozenset({"YES", "Y", "TRUE", "1"})


def _normalize_header(value: Any) -> str:
    return " ".join(str(value).split()).lower() if value is not None else ""


def _cell_text(value: Any) -> Optional[str]:
    """Spreadsheet cell as stripped text; blank and N/A placeholders become None."""
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, (datetime, date)):
        return normalize_date(value)
    text = str(value).strip()
    if not text or text.upper() in NOT_APPLICABLE:
        return None
    return text


def _cell_date(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip().upper() in NOT_APPLICABLE:
        return None
    return normalize_date(value)


def _locate_header(rows: list[tuple[Any, ...]]) -> tuple[int, dict[str, int]]:
    """
    Find the header row and map logical fields to column positions.

    The download carries a title row above the header, so the first rows are
    scanned for the one naming the BLA number column.
    """
    wanted = {alias: name for name, aliases in COLUMN_ALIASES.items() for alias in aliases}
    for row_idx, row in enumerate(rows[:HEADER_SCAN_ROWS]):
        headers = [_normalize_header(cell) for cell in row]
        if not any(h in COLUMN_ALIASES["license_number"] for h in headers):
            continue
        mapping: dict[str, int] = {}
        for col_idx, header in enumerate(headers):
            name = wanted.get(header)
            if name and name not in mapping:
                mapping[name] = col_idx
        return row_idx, mapping
    raise ParseError("Purple Book header row (BLA Number) not found")


def _row_to_fields(row: tuple[Any, ...], mapping: dict[str, int]) -> dict[str, Any]:
    def cell(name: str) -> Any:
        idx = mapping.get(name)
        return row[idx] if idx is not None and idx < len(row) else None

    bla_type = _cell_text(cell("bla_type"))
    ref_proper = _cell_text(cell("reference_proper_name"))
    ref_proprietary = _cell_text(cell("reference_proprietary_name"))
    ref_license = _cell_text(cell("reference_license_number"))
    interchangeable_date = _cell_date(cell("interchangeable_exclusivity_date"))
    explicit_interchangeable = (_cell_text(cell("interchangeable")) or "").upper() in TRUTHY

    is_biosimilar = bool((bla_type and "351(k)" in bla_type) or ref_proper or ref_proprietary or ref_license)
    is_interchangeable = is_biosimilar and bool(
        explicit_interchangeable or interchangeable_date or (bla_type and "interchangeable" in bla_type.lower())
    )

    applicant = _cell_text(cell("applicant"))
    return {
        "license_number": _cell_text(cell("license_number")),
        "proper_name": _cell_text(cell("proper_name")),
        "proprietary_name": _cell_text(cell("proprietary_name")),
        "bla_type": bla_type,
        "licensure_date": _cell_date(cell("first_licensure_date")) or _cell_date(cell("approval_date")),
        "licensure_status": _cell_text(cell("licensure_status")),
        "marketing_status": _cell_text(cell("marketing_status")),
        "applicant": applicant,
        "applicant_full_name": applicant,
        "strength": _cell_text(cell("strength")),
        "dosage_form": _cell_text(cell("dosage_form")),
        "route": _cell_text(cell("route")),
        "reference_license_number": ref_license if is_biosimilar else None,
        "reference_proper_name": ref_proper if is_biosimilar else None,
        "reference_proprietary_name": ref_proprietary if is_biosimilar else None,
        "is_biosimilar": is_biosimilar,
        "is_interchangeable": is_interchangeable,
        "interchangeable_date": interchangeable_date if is_interchangeable else None,
        "exclusivity_expiration_date": _cell_date(cell("exclusivity_expiration_date")),
        "orphan_exclusivity_date": _cell_date(cell("orphan_exclusivity_date")),
    }


def resolve_reference_pointers(biologics: Iterable[Biologic]) -> list[Biologic]:
    """
    Fill ``reference_license_number`` for biosimilars that only name their reference product.

    Matches the reference proprietary name first, then the proper name, against
    originator rows of the same load. Unmatched pointers stay empty.
    """
    items = list(biologics)
    by_name: dict[str, str] = {}
    for bio in items:
        if bio.is_biosimilar:
            continue
        for name in (bio.proprietary_name, bio.proper_name):
            if name:
                by_name.setdefault(name.upper(), bio.license_number)

    resolved: list[Biologic] = []
    unresolved = 0
    for bio in items:
        if bio.is_biosimilar and not bio.reference_license_number:
            target = None
            for name in (bio.reference_proprietary_name, bio.reference_proper_name):
                if name and name.upper() in by_name:
                    target = by_name[name.upper()]
                    break
            if target:
                bio = bio.model_copy(update={"reference_license_number": target})
            else:
                unresolved += 1
        resolved.append(bio)

    if unresolved:
        logger.info(f"{unresolved} biosimilars reference a product that is not in this Purple Book load")
    return resolved


def parse_biologics(content: bytes, source: str = "purple book") -> ParseOutcome[Biologic]:
    """
    Parse the Purple Book spreadsheet.

    Args:
        content: Raw .xlsx bytes.
        source: Label for messages.

    Returns:
        ParseOutcome of Biologics, one per BLA number (first occurrence wins).

    Raises:
        ParseError: If the workbook is unreadable, has no header, or yields zero valid rows.
    """
    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
        try:
            rows = list(workbook.worksheets[0].iter_rows(values_only=True))
        finally:
            workbook.close()
    except Exception as e:
        # Damaged parts surface as zipfile, XML, KeyError or ValueError failures
        logger.error(f"Unreadable {source} workbook: {e!r}")
        raise ParseError(f"{source} is not a readable .xlsx workbook") from e

    header_idx, mapping = _locate_header(rows)
    outcome: ParseOutcome[Biologic] = ParseOutcome()
    seen: dict[str, Biologic] = {}

    for row in rows[header_idx + 1 :]:
        if not any(_cell_text(cell) for cell in row):
            continue
        outcome.rows_read += 1
        try:
            biologic = Biologic.model_validate(_row_to_fields(row, mapping))
        except PydanticValidationError as e:
            outcome.skipped += 1
            logger.debug(f"Skipping invalid {source} row: {e.errors()[0]['loc']} {e.errors()[0]['msg']}")
            continue
        if biologic.license_number in seen:
            outcome.duplicates += 1
            continue
        seen[biologic.license_number] = biologic

    if outcome.skipped:
        logger.warning(f"{source}: skipped {outcome.skipped} malformed rows")
    if not seen:
        logger.error(f"{source}: no valid rows out of {outcome.rows_read}")
        raise ParseError(f"No valid rows parsed from {source} ({outcome.rows_read} rows read)")

    outcome.records = resolve_reference_pointers(seen.values())
    logger.info(f"Parsed {len(outcome.records)} biologics from {source} ({outcome.duplicates} extra presentations)")
    return outcome


def parse_purple_book(raw: PurpleBookRaw) -> list[Biologic]:
    """Parse the fetched Purple Book into Biologic records."""
    return parse_biologics(raw.content, source=f"purple book {raw.source_month}").records
