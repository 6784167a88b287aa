# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fda_regintel

"""Loss-of-exclusivity (patent cliff) derivation."""

from collections.abc import Callable, Sequence
from datetime import MAXYEAR, MINYEAR, date
from typing import Final, Optional

import polars as pl

from coreason_fda_regintel.exceptions import ValidationError
from coreason_fda_regintel.gold.models import ExclusivityExpiry, PatentCliffAnalysis, PatentCliffReport, PatentExpiry
from coreason_fda_regintel.silver.models import Exclusivity, Patent, Product
from coreason_fda_regintel.utils.logger import logger

KEY_COLUMNS: Final[list[str]] = ["application_type", "application_number", "product_number"]
DAYS_PER_YEAR: Final[float] = 365.25

KEY_SCHEMA: Final[dict[str, pl.DataType]] = {col: pl.String() for col in KEY_COLUMNS}

PATENT_SCHEMA: Final[dict[str, pl.DataType]] = {
    "application_type": pl.String(),
    "application_number": pl.String(),
    "product_number": pl.String(),
    "patent_number": pl.String(),
    "patent_expiry_date": pl.String(),
    "is_drug_substance": pl.Boolean(),
    "is_drug_product": pl.Boolean(),
    "patent_use_code": pl.String(),
    "is_delisted": pl.Boolean(),
}

EXCLUSIVITY_SCHEMA: Final[dict[str, pl.DataType]] = {
    "application_type": pl.String(),
    "application_number": pl.String(),
    "product_number": pl.String(),
    "exclusivity_code": pl.String(),
    "exclusivity_date": pl.String(),
}


def add_years(start: date, years: int) -> date:
    """Calendar-year offset; Feb 29 falls back to Feb 28 and results clamp to the representable range."""
    year = start.year + years
    if year > MAXYEAR:
        return date.max
    if year < MINYEAR:
        return date.min
    try:
        return start.replace(year=year)
    except ValueError:
        return start.replace(year=year, day=28)


def years_between(start: date, end: date) -> float:
    """Years from ``start`` to ``end``, one decimal, never negative."""
    return max(0.0, round((end - start).days / DAYS_PER_YEAR, 1))


def _frame(records: Sequence[object], schema: dict[str, pl.DataType]) -> pl.DataFrame:
    return pl.DataFrame({col: [getattr(r, col) for r in records] for col in schema}, schema=schema)


def _iso_date(column: str) -> pl.Expr:
    # ISO text parses; absent and UNPARSED: markers become null
    return pl.col(column).str.to_date("%Y-%m-%d", strict=False)


class PatentCliffAnalyzer:
    """
    Derives when generic or biosimilar competition can begin.

    ``today`` is injectable so results are reproducible in tests.
    """

    def __init__(self, today: Callable[[], date] = date.today) -> None:
        self._today = today

    def analyze(
        self,
        drug: str,
        years_ahead: int,
        ingredients: Sequence[str],
        products: Sequence[Product],
        patents: Sequence[Patent],
        exclusivity: Sequence[Exclusivity],
    ) -> PatentCliffReport:
        """
        Build the cliff report for one drug.

        Args:
            drug: The name the caller asked about.
            years_ahead: Horizon for the itemized lists; aggregates ignore it.
            ingredients: Ingredients the drug name resolved to.
            products: Every product sharing one of those ingredients.
            patents: Candidate patent rows; rows keyed to no product are dropped.
            exclusivity: Candidate exclusivity rows; same rule.

        Returns:
            PatentCliffReport.
        """
        if years_ahead < 0:
            raise ValidationError(f"years_ahead must be >= 0, got {years_ahead}")
        today = self._today()
        horizon_end = add_years(today, years_ahead)

        keys = _frame(products, KEY_SCHEMA).unique()

        patent_df = (
            _frame(patents, PATENT_SCHEMA)
            .join(keys, on=KEY_COLUMNS, how="inner")
            .filter(~pl.col("is_delisted"))
            .with_columns(_iso_date("patent_expiry_date").alias("expires"))
            .filter(pl.col("expires").is_not_null())
            .sort(["expires", "patent_number", "application_number", "product_number"])
        )
        exclusivity_df = (
            _frame(exclusivity, EXCLUSIVITY_SCHEMA)
            .join(keys, on=KEY_COLUMNS, how="inner")
            .with_columns(_iso_date("exclusivity_date").alias("expires"))
            .filter(pl.col("expires").is_not_null())
            .sort(["expires", "exclusivity_code", "application_number", "product_number"])
        )

        analysis = self._aggregate(patent_df, exclusivity_df, today)

        listed_patents = (
            patent_df.filter(pl.col("expires") <= horizon_end)
            .unique(subset=["patent_number", "expires", "patent_use_code"], keep="first", maintain_order=True)
            .select(
                "patent_number",
                "expires",
                pl.col("patent_use_code").alias("use_code"),
                "is_drug_substance",
                "is_drug_product",
                "application_number",
                "product_number",
            )
        )
        listed_exclusivity = (
            exclusivity_df.filter(pl.col("expires") <= horizon_end)
            .unique(subset=["exclusivity_code", "expires", "application_number"], keep="first", maintain_order=True)
            .select(
                pl.col("exclusivity_code").alias("code"),
                "expires",
                "application_number",
                "product_number",
            )
        )

        report = PatentCliffReport(
            drug=drug,
            ingredients=list(ingredients),
            years_ahead=years_ahead,
            horizon_end=horizon_end,
            analysis=analysis,
            patents=[PatentExpiry.model_validate(row) for row in listed_patents.iter_rows(named=True)],
            exclusivity=[ExclusivityExpiry.model_validate(row) for row in listed_exclusivity.iter_rows(named=True)],
            patent_count=patent_df["patent_number"].n_unique(),
            has_substance_patent=bool(patent_df["is_drug_substance"].any()),
            has_product_patent=bool(patent_df["is_drug_product"].any()),
            has_use_patent=bool(patent_df["patent_use_code"].is_not_null().any()),
            exclusivity_codes=sorted(exclusivity_df["exclusivity_code"].unique().to_list()),
        )
        logger.debug(
            f"Patent cliff for {drug!r}: {report.patent_count} patents, "
            f"estimate {analysis.generic_entry_estimate}, {analysis.years_until_loe} years"
        )
        return report

    @staticmethod
    def _aggregate(patent_df: pl.DataFrame, exclusivity_df: pl.DataFrame, today: date) -> PatentCliffAnalysis:
        next_expiration: Optional[date] = patent_df.filter(pl.col("expires") >= today)["expires"].min()
        all_patents_expire: Optional[date] = patent_df["expires"].max()
        exclusivity_expires: Optional[date] = exclusivity_df["expires"].max()

        candidates = [d for d in (all_patents_expire, exclusivity_expires) if d is not None]
        estimate = max(candidates) if candidates else None
        return PatentCliffAnalysis(
            next_expiration=next_expiration,
            all_patents_expire=all_patents_expire,
            exclusivity_expires=exclusivity_expires,
            generic_entry_estimate=estimate,
            years_until_loe=years_between(today, estimate) if estimate is not None else None,
        )
