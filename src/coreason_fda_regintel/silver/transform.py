# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fda_regintel

"""Transformation of raw Orange Book text files into Silver records using Polars."""

import uuid
from collections.abc import Sequence
from typing import Final

import polars as pl
from pydantic import ValidationError as PydanticValidationError

from coreason_fda_regintel.bronze.models import OrangeBookRaw
from coreason_fda_regintel.config import RegIntelConfig
from coreason_fda_regintel.exceptions import ParseError
from coreason_fda_regintel.silver.dates import normalize_date
from coreason_fda_regintel.silver.models import Exclusivity, ParseOutcome, Patent, Product, RecordT
from coreason_fda_regintel.utils.logger import logger

PRODUCT_REQUIRED: Final[tuple[str, ...]] = ("Ingredient", "Appl_Type", "Appl_No", "Product_No")
PATENT_REQUIRED: Final[tuple[str, ...]] = ("Appl_Type", "Appl_No", "Product_No", "Patent_No")
EXCLUSIVITY_REQUIRED: Final[tuple[str, ...]] = ("Appl_Type", "Appl_No", "Product_No", "Exclusivity_Code")


def _generate_coreason_id(source_id: str) -> str:
    """
    Generate a UUID5 coreason_id from the composite product key.

    Args:
        source_id: Appl_Type + Appl_No + Product_No.

    Returns:
        String representation of the UUID5.
    """
    namespace = uuid.uuid5(uuid.NAMESPACE_DNS, RegIntelConfig.NAMESPACE_FDA)
    return str(uuid.uuid5(namespace, source_id))


class _Fields:
    """Header-aware column accessors over a frame of pre-split ``fields`` lists."""

    def __init__(self, header: Sequence[str]) -> None:
        self.index: dict[str, int] = {}
        for idx, name in enumerate(header):
            self.index.setdefault(name.strip().lower(), idx)

    def has(self, name: str) -> bool:
        return name.lower() in self.index

    def text(self, name: str) -> pl.Expr:
        """Stripped text of a column; blank cells become null."""
        if not self.has(name):
            return pl.lit(None, dtype=pl.String)
        value = pl.col("fields").list.get(self.index[name.lower()]).str.strip_chars()
        return pl.when(value.str.len_chars() > 0).then(value)

    def padded(self, name: str, width: int) -> pl.Expr:
        return self.text(name).str.pad_start(width, "0")

    def upper(self, name: str) -> pl.Expr:
        return self.text(name).str.to_uppercase()

    def date(self, name: str) -> pl.Expr:
        if not self.has(name):
            return pl.lit(None, dtype=pl.String)
        return self.text(name).map_elements(normalize_date, return_dtype=pl.String)

    def flag(self, name: str, truthy: str) -> pl.Expr:
        return (self.upper(name) == truthy).fill_null(False)


def _split_rows(text: str, required: Sequence[str], source: str) -> tuple[pl.DataFrame, _Fields, int]:
    """
    Split a ``~``-delimited file into per-row field lists.

    Args:
        text: Full file contents, header first.
        required: Header columns that must be present.
        source: File name for messages.

    Returns:
        Well-formed rows (at least as many fields as the header), the accessor, and the data row count.

    Raises:
        ParseError: If the file is empty or the header lacks a required column.
    """
    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        raise ParseError(f"{source} is empty")

    header = lines[0].split(RegIntelConfig.DELIMITER)
    fields = _Fields(header)
    missing = [name for name in required if not fields.has(name)]
    if missing:
        logger.error(f"{source} header is missing {missing}: {lines[0][:200]}")
        raise ParseError(f"{source} header is missing required columns: {', '.join(missing)}")

    rows = pl.DataFrame({"line": lines[1:]}, schema={"line": pl.String})
    rows = rows.with_columns(pl.col("line").str.split(RegIntelConfig.DELIMITER).alias("fields"))
    well_formed = rows.filter(pl.col("fields").list.len() >= len(header))
    return well_formed, fields, rows.height


def _validate_rows(df: pl.DataFrame, model: type[RecordT], source: str) -> tuple[list[RecordT], int]:
    """Validate each row independently; invalid rows are counted, never fatal."""
    records: list[RecordT] = []
    invalid = 0
    for row in df.iter_rows(named=True):
        try:
            records.append(model.model_validate(row))
        except PydanticValidationError as e:
            invalid += 1
            logger.debug(f"Skipping invalid {source} row: {e.errors()[0]['loc']} {e.errors()[0]['msg']}")
    return records, invalid


def _finish(
    outcome: ParseOutcome[RecordT], short_rows: int, invalid: int, source: str
) -> ParseOutcome[RecordT]:
    outcome.skipped = short_rows + invalid
    if outcome.skipped:
        logger.warning(f"{source}: skipped {outcome.skipped} malformed rows ({short_rows} short, {invalid} invalid)")
    if not outcome.records:
        logger.error(f"{source}: no valid rows out of {outcome.rows_read}")
        raise ParseError(f"No valid rows parsed from {source} ({outcome.rows_read} rows read)")
    logger.info(f"Parsed {len(outcome.records)} rows from {source}")
    return outcome


def parse_products(text: str, source: str = RegIntelConfig.FILE_PRODUCTS) -> ParseOutcome[Product]:
    """
    Parse products.txt into Product records.

    Format: Ingredient~DF;Route~Trade_Name~Applicant~Strength~Appl_Type~Appl_No~Product_No~
    TE_Code~Approval_Date~RLD~RS~Type~Applicant_Full_Name

    Args:
        text: File contents.
        source: File name for messages.

    Returns:
        ParseOutcome of Products, one per composite key (last occurrence wins).
    """
    df, f, rows_read = _split_rows(text, PRODUCT_REQUIRED, source)

    if f.has("DF;Route"):
        df_route = f.text("DF;Route").str.splitn(";", 2)
        dosage_form = df_route.struct.field("field_0").str.strip_chars()
        route = df_route.struct.field("field_1").str.strip_chars()
        dosage_form = pl.when(dosage_form.str.len_chars() > 0).then(dosage_form)
        route = pl.when(route.str.len_chars() > 0).then(route)
    else:
        dosage_form = route = pl.lit(None, dtype=pl.String)

    df_silver = df.select(
        [
            f.text("Ingredient").alias("ingredient"),
            dosage_form.alias("dosage_form"),
            route.alias("route"),
            f.text("Trade_Name").alias("trade_name"),
            f.text("Applicant").alias("applicant"),
            f.text("Applicant_Full_Name").alias("applicant_full_name"),
            f.text("Strength").alias("strength"),
            f.upper("Appl_Type").alias("application_type"),
            f.padded("Appl_No", 6).alias("application_number"),
            f.padded("Product_No", 3).alias("product_number"),
            f.text("TE_Code").alias("te_code"),
            f.date("Approval_Date").alias("approval_date"),
            f.flag("RLD", "YES").alias("is_rld"),
            f.flag("RS", "YES").alias("is_rs"),
            f.text("Type").alias("marketing_status"),
        ]
    )
    df_silver = df_silver.with_columns(
        pl.concat_str([pl.col("application_type"), pl.col("application_number"), pl.col("product_number")])
        .map_elements(_generate_coreason_id, return_dtype=pl.String)
        .alias("coreason_id")
    )

    records, invalid = _validate_rows(df_silver, Product, source)

    by_key: dict[tuple[str, str, str], Product] = {}
    for product in records:
        by_key[product.key] = product
    duplicates = len(records) - len(by_key)
    if duplicates:
        logger.warning(f"{source}: {duplicates} duplicate product keys, keeping the last occurrence")

    outcome = ParseOutcome(records=list(by_key.values()), rows_read=rows_read, duplicates=duplicates)
    return _finish(outcome, rows_read - df.height, invalid, source)


def parse_patents(text: str, source: str = RegIntelConfig.FILE_PATENTS) -> ParseOutcome[Patent]:
    """
    Parse patent.txt into Patent records.

    Format: Appl_Type~Appl_No~Product_No~Patent_No~Patent_Expire_Date_Text~Drug_Substance_Flag~
    Drug_Product_Flag~Patent_Use_Code~Delist_Flag~Submission_Date
    """
    df, f, rows_read = _split_rows(text, PATENT_REQUIRED, source)

    df_silver = df.select(
        [
            f.upper("Appl_Type").alias("application_type"),
            f.padded("Appl_No", 6).alias("application_number"),
            f.padded("Product_No", 3).alias("product_number"),
            f.text("Patent_No").alias("patent_number"),
            f.date("Patent_Expire_Date_Text").alias("patent_expiry_date"),
            f.flag("Drug_Substance_Flag", "Y").alias("is_drug_substance"),
            f.flag("Drug_Product_Flag", "Y").alias("is_drug_product"),
            f.text("Patent_Use_Code").alias("patent_use_code"),
            f.flag("Delist_Flag", "Y").alias("is_delisted"),
            f.date("Submission_Date").alias("submission_date"),
        ]
    )

    records, invalid = _validate_rows(df_silver, Patent, source)
    return _finish(ParseOutcome(records=records, rows_read=rows_read), rows_read - df.height, invalid, source)


def parse_exclusivity(text: str, source: str = RegIntelConfig.FILE_EXCLUSIVITY) -> ParseOutcome[Exclusivity]:
    """
    Parse exclusivity.txt into Exclusivity records.

    Format: Appl_Type~Appl_No~Product_No~Exclusivity_Code~Exclusivity_Date
    """
    df, f, rows_read = _split_rows(text, EXCLUSIVITY_REQUIRED, source)

    df_silver = df.select(
        [
            f.upper("Appl_Type").alias("application_type"),
            f.padded("Appl_No", 6).alias("application_number"),
            f.padded("Product_No", 3).alias("product_number"),
            f.text("Exclusivity_Code").alias("exclusivity_code"),
            f.date("Exclusivity_Date").alias("exclusivity_date"),
        ]
    )

    records, invalid = _validate_rows(df_silver, Exclusivity, source)
    return _finish(ParseOutcome(records=records, rows_read=rows_read), rows_read - df.height, invalid, source)


def parse_orange_book(raw: OrangeBookRaw) -> tuple[list[Product], list[Patent], list[Exclusivity]]:
    """
    Parse all three Orange Book files.

    Args:
        raw: The fetched archive members.

    Returns:
        (products, patents, exclusivity).

    Raises:
        ParseError: If any file yields zero valid rows.
    """
    products = parse_products(raw.products).records
    patents = parse_patents(raw.patents).records
    exclusivity = parse_exclusivity(raw.exclusivity).records

    known_keys = {p.key for p in products}
    orphan_patents = sum(1 for p in patents if p.key not in known_keys)
    orphan_exclusivity = sum(1 for e in exclusivity if e.key not in known_keys)
    if orphan_patents or orphan_exclusivity:
        logger.info(
            f"Retaining {orphan_patents} patents and {orphan_exclusivity} exclusivity rows "
            "that reference no loaded product"
        )
    return products, patents, exclusivity

