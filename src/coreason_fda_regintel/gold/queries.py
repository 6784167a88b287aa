# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fda_regintel

"""Read-only query operations over the active generation."""

import re
import sqlite3
from collections.abc import Sequence
from typing import Final, Optional

from coreason_fda_regintel.config import RegIntelConfig
from coreason_fda_regintel.exceptions import ValidationError
from coreason_fda_regintel.gold.cliff import PatentCliffAnalyzer
from coreason_fda_regintel.gold.models import (
    ApplicationSummary,
    BiosimilarInterchangeabilityResult,
    GenerationMetadata,
    OrangeBookSearchResult,
    PatentCliffReport,
    PatentExclusivityResult,
    PurpleBookSearchResult,
    TherapeuticEquivalentsResult,
)
from coreason_fda_regintel.gold.store import GenerationStore
from coreason_fda_regintel.silver.models import Biologic, Exclusivity, Patent, Product
from coreason_fda_regintel.utils.logger import logger

TOKEN_PATTERN: Final[re.Pattern[str]] = re.compile(r"\w+")

PRODUCT_NAME_COLUMNS: Final[tuple[str, ...]] = ("ingredient", "trade_name")
BIOLOGIC_NAME_COLUMNS: Final[tuple[str, ...]] = ("proper_name", "proprietary_name")


def _require_text(value: Optional[str], what: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{what} must not be empty")
    return value.strip()


def fts_query(text: str, columns: Sequence[str] = ()) -> str:
    """
    Turn free text into an FTS5 MATCH expression.

    Each word becomes a quoted prefix term and all terms must match.
    ``columns`` restricts matching to those columns.

    Raises:
        ValidationError: If the text holds no searchable word.
    """
    tokens = TOKEN_PATTERN.findall(text)
    if not tokens:
        raise ValidationError(f"No searchable terms in {text!r}")
    terms = " ".join(f'"{token}"*' for token in tokens)
    if columns:
        return f"{{{' '.join(columns)}}} : ({terms})"
    return terms


def normalize_application_number(value: Optional[str]) -> str:
    """Strip and zero-pad an application number to six digits."""
    text = _require_text(value, "application_number")
    if not text.isdigit() or len(text) > 6:
        raise ValidationError(f"Invalid application number: {value!r}")
    return text.zfill(6)


def _placeholders(values: Sequence[object]) -> str:
    return ", ".join("?" for _ in values)


class RegulatoryQueryEngine:
    """
    The six analytical operations plus metadata.

    Every call snapshots ``store.active`` once, so a generation swap mid-call
    never mixes rows from two generations.
    """

    def __init__(self, store: GenerationStore, analyzer: Optional[PatentCliffAnalyzer] = None) -> None:
        self.store = store
        self.analyzer = analyzer or PatentCliffAnalyzer()

    def search_orange_book(self, drug_name: str, include_generics: bool = True) -> OrangeBookSearchResult:
        """
        Full-text search over ingredient, trade name and applicant.

        Args:
            drug_name: Free text; each word is a prefix term.
            include_generics: Include ANDA products.

        Returns:
            Brand and generic products, at most ``SEARCH_LIMIT`` rows in total.
            ``total_count`` is the number of matches before that limit.
        """
        query = fts_query(_require_text(drug_name, "drug_name"))
        matches = (
            "FROM products_fts JOIN products p ON p.id = products_fts.rowid "
            "WHERE products_fts MATCH ?"
        )
        if not include_generics:
            matches += " AND p.application_type = 'N'"
        order = "ORDER BY p.application_type DESC, p.trade_name, p.application_number, p.product_number"

        with self.store.require_active().connect() as conn:
            (total,) = conn.execute(f"SELECT COUNT(*) {matches}", (query,)).fetchone()
            products = self._products(
                conn.execute(f"SELECT p.* {matches} {order} LIMIT ?", (query, RegIntelConfig.SEARCH_LIMIT))
            )

        brand = [p for p in products if p.is_brand]
        generic = [p for p in products if not p.is_brand]
        logger.debug(f"search_orange_book({drug_name!r}): {len(brand)} brand, {len(generic)} generic of {total}")
        return OrangeBookSearchResult(
            query=drug_name, brand_products=brand, generic_products=generic, total_count=total
        )

    def get_therapeutic_equivalents(self, drug_name: str) -> TherapeuticEquivalentsResult:
        """Partition matching products into RLDs, AB-rated products and the rest."""
        query = fts_query(_require_text(drug_name, "drug_name"), PRODUCT_NAME_COLUMNS)
        with self.store.require_active().connect() as conn:
            products = self._match_products(conn, query)

        rld: list[Product] = []
        ab_rated: list[Product] = []
        other: list[Product] = []
        for product in products:
            if product.is_rld:
                rld.append(product)
            elif product.te_code and product.te_code.upper().startswith("AB"):
                ab_rated.append(product)
            else:
                other.append(product)
        return TherapeuticEquivalentsResult(
            query=drug_name, reference_listed_drugs=rld, ab_rated_generics=ab_rated, other_products=other
        )

    def get_patent_exclusivity(self, application_number: str) -> PatentExclusivityResult:
        """Every patent and exclusivity row filed under one application number."""
        appl_no = normalize_application_number(application_number)
        with self.store.require_active().connect() as conn:
            patents = [
                Patent.model_validate(dict(row))
                for row in conn.execute(
                    "SELECT * FROM patents WHERE application_number = ? "
                    "ORDER BY application_type, product_number, patent_number",
                    (appl_no,),
                )
            ]
            exclusivity = [
                Exclusivity.model_validate(dict(row))
                for row in conn.execute(
                    "SELECT * FROM exclusivity WHERE application_number = ? "
                    "ORDER BY application_type, product_number, exclusivity_code",
                    (appl_no,),
                )
            ]
            applications = [
                ApplicationSummary.model_validate(dict(row))
                for row in conn.execute(
                    "SELECT application_type, application_number, MIN(trade_name) AS trade_name, "
                    "MIN(ingredient) AS ingredient FROM products WHERE application_number = ? "
                    "GROUP BY application_type, application_number ORDER BY application_type DESC",
                    (appl_no,),
                )
            ]
        return PatentExclusivityResult(
            application_number=appl_no, applications=applications, patents=patents, exclusivity=exclusivity
        )

    def analyze_patent_cliff(
        self, drug_name: str, years_ahead: int = RegIntelConfig.DEFAULT_YEARS_AHEAD
    ) -> PatentCliffReport:
        """Loss-of-exclusivity forecast for every product sharing the drug's ingredients."""
        drug_name = _require_text(drug_name, "drug_name")
        if years_ahead < 0:
            raise ValidationError(f"years_ahead must be >= 0, got {years_ahead}")
        query = fts_query(drug_name, PRODUCT_NAME_COLUMNS)

        with self.store.require_active().connect() as conn:
            matched = self._match_products(conn, query)
            ingredients = sorted({p.ingredient.upper() for p in matched})
            products: list[Product] = []
            patents: list[Patent] = []
            exclusivity: list[Exclusivity] = []
            if ingredients:
                products = self._products(
                    conn.execute(
                        f"SELECT * FROM products WHERE ingredient COLLATE NOCASE IN ({_placeholders(ingredients)})",
                        ingredients,
                    )
                )
                appl_numbers = sorted({p.application_number for p in products})
                patents = [
                    Patent.model_validate(dict(row))
                    for row in conn.execute(
                        f"SELECT * FROM patents WHERE application_number IN ({_placeholders(appl_numbers)})",
                        appl_numbers,
                    )
                ]
                exclusivity = [
                    Exclusivity.model_validate(dict(row))
                    for row in conn.execute(
                        f"SELECT * FROM exclusivity WHERE application_number IN ({_placeholders(appl_numbers)})",
                        appl_numbers,
                    )
                ]

        return self.analyzer.analyze(drug_name, years_ahead, ingredients, products, patents, exclusivity)

    def search_purple_book(self, drug_name: str) -> PurpleBookSearchResult:
        """Reference biologics matching the name plus every biosimilar pointing at them."""
        query = fts_query(_require_text(drug_name, "drug_name"), BIOLOGIC_NAME_COLUMNS)
        with self.store.require_active().connect() as conn:
            references = self._match_references(conn, query)
            licenses = [b.license_number for b in references]
            biosimilars: list[Biologic] = []
            if licenses:
                biosimilars = self._biologics(
                    conn.execute(
                        f"SELECT * FROM biologics WHERE is_biosimilar = 1 "
                        f"AND reference_license_number IN ({_placeholders(licenses)}) "
                        "ORDER BY proper_name, license_number",
                        licenses,
                    )
                )
        return PurpleBookSearchResult(
            query=drug_name,
            reference_products=references,
            biosimilars=biosimilars,
            total_count=len(references) + len(biosimilars),
        )

    def get_biosimilar_interchangeability(self, reference_product_name: str) -> BiosimilarInterchangeabilityResult:
        """
        Split the biosimilars of a reference product by interchangeability.

        Biosimilars are attached through their reference license number, or by
        reference name when the pointer could not be resolved at load time.
        """
        name = _require_text(reference_product_name, "reference_product_name")
        query = fts_query(name, BIOLOGIC_NAME_COLUMNS)
        with self.store.require_active().connect() as conn:
            licenses = [b.license_number for b in self._match_references(conn, query)]
            sql = (
                "SELECT * FROM biologics WHERE is_biosimilar = 1 AND ("
                "(reference_license_number IS NULL "
                "AND (reference_proprietary_name = ? COLLATE NOCASE OR reference_proper_name = ? COLLATE NOCASE))"
            )
            params: list[str] = [name, name]
            if licenses:
                sql += f" OR reference_license_number IN ({_placeholders(licenses)})"
                params.extend(licenses)
            sql += ") ORDER BY proprietary_name, license_number"
            biosimilars = self._biologics(conn.execute(sql, params))

        return BiosimilarInterchangeabilityResult(
            reference_product=name,
            reference_license_numbers=licenses,
            interchangeable_biosimilars=[b for b in biosimilars if b.is_interchangeable],
            non_interchangeable_biosimilars=[b for b in biosimilars if not b.is_interchangeable],
        )

    def get_metadata(self) -> GenerationMetadata:
        return self.store.require_active().metadata

    def _match_products(self, conn: sqlite3.Connection, query: str) -> list[Product]:
        return self._products(
            conn.execute(
                "SELECT p.* FROM products_fts JOIN products p ON p.id = products_fts.rowid "
                "WHERE products_fts MATCH ? ORDER BY p.application_number, p.product_number",
                (query,),
            )
        )

    def _match_references(self, conn: sqlite3.Connection, query: str) -> list[Biologic]:
        return self._biologics(
            conn.execute(
                "SELECT b.* FROM biologics_fts JOIN biologics b ON b.id = biologics_fts.rowid "
                "WHERE biologics_fts MATCH ? AND b.is_biosimilar = 0 "
                "ORDER BY b.proprietary_name, b.license_number LIMIT ?",
                (query, RegIntelConfig.SEARCH_LIMIT),
            )
        )

    @staticmethod
    def _products(rows: sqlite3.Cursor) -> list[Product]:
        return [Product.model_validate(dict(row)) for row in rows]

    @staticmethod
    def _biologics(rows: sqlite3.Cursor) -> list[Biologic]:
        return [Biologic.model_validate(dict(row)) for row in rows]
