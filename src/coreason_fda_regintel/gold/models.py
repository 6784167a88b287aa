# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fda_regintel

"""Pydantic models for the Gold layer: generation metadata and query results."""

from datetime import date, datetime, timedelta
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from coreason_fda_regintel.silver.models import Biologic, Exclusivity, Patent, Product


class GenerationMetadata(BaseModel):
    """
    Metadata of one immutable store generation.
    """

    model_config = ConfigDict(frozen=True)

    generation_id: str
    version: str = Field(description="YYYY-MM of the build")
    orange_book_date: Optional[str] = None
    purple_book_date: Optional[str] = None
    built_at: datetime = Field(description="UTC build timestamp; drives staleness")
    row_counts: dict[str, int] = Field(default_factory=dict)
    source_hashes: dict[str, str] = Field(default_factory=dict)

    def age(self, now: datetime) -> timedelta:
        return now - self.built_at

    def is_stale(self, max_age: timedelta, now: datetime) -> bool:
        return self.age(now) > max_age


class OrangeBookSearchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    query: str
    brand_products: list[Product]
    generic_products: list[Product]
    total_count: int


class TherapeuticEquivalentsResult(BaseModel):
    """
    Products matching a drug, partitioned three ways.

    Every matching product lands in exactly one list: RLD first, then AB-rated,
    then everything else.
    """

    model_config = ConfigDict(frozen=True)

    query: str
    reference_listed_drugs: list[Product]
    ab_rated_generics: list[Product] = Field(description="TE code starts with AB: pharmacy-substitutable")
    other_products: list[Product] = Field(description="Non-RLD products without an AB rating")

    @property
    def total_count(self) -> int:
        return len(self.reference_listed_drugs) + len(self.ab_rated_generics) + len(self.other_products)


class ApplicationSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    application_type: str
    application_number: str
    trade_name: Optional[str] = None
    ingredient: str


class PatentExclusivityResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    application_number: str
    applications: list[ApplicationSummary]
    patents: list[Patent]
    exclusivity: list[Exclusivity]


class PatentExpiry(BaseModel):
    model_config = ConfigDict(frozen=True)

    patent_number: str
    expires: date
    use_code: Optional[str] = None
    is_drug_substance: bool = False
    is_drug_product: bool = False
    application_number: str
    product_number: str


class ExclusivityExpiry(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    expires: date
    application_number: str
    product_number: str


class PatentCliffAnalysis(BaseModel):
    """Aggregate loss-of-exclusivity dates. Computed over every row, not just the horizon."""

    model_config = ConfigDict(frozen=True)

    next_expiration: Optional[date] = None
    all_patents_expire: Optional[date] = None
    exclusivity_expires: Optional[date] = None
    generic_entry_estimate: Optional[date] = None
    years_until_loe: Optional[float] = None


class PatentCliffReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    drug: str
    ingredients: list[str]
    years_ahead: int
    horizon_end: date
    analysis: PatentCliffAnalysis
    patents: list[PatentExpiry] = Field(description="Patents expiring on or before horizon_end")
    exclusivity: list[ExclusivityExpiry] = Field(description="Exclusivities expiring on or before horizon_end")
    patent_count: int = 0
    has_substance_patent: bool = False
    has_product_patent: bool = False
    has_use_patent: bool = False
    exclusivity_codes: list[str] = Field(default_factory=list)


class PurpleBookSearchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    query: str
    reference_products: list[Biologic]
    biosimilars: list[Biologic]
    total_count: int


class BiosimilarInterchangeabilityResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    reference_product: str
    reference_license_numbers: list[str]
    interchangeable_biosimilars: list[Biologic]
    non_interchangeable_biosimilars: list[Biologic]
