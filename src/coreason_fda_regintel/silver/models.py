# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fda_regintel

"""Pydantic models for normalized (Silver) Orange Book and Purple Book records."""

from dataclasses import dataclass, field
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Composite product key: (application type, application number, product number)
ProductKey = tuple[str, str, str]


class Product(BaseModel):
    """
    Silver layer model for FDA Orange Book Products.
    """

    model_config = ConfigDict(frozen=True)

    coreason_id: str = Field(description="UUID5 generated from Namespace FDA + composite key")
    ingredient: str = Field(min_length=1)
    dosage_form: Optional[str] = None
    route: Optional[str] = None
    trade_name: Optional[str] = None
    applicant: Optional[str] = None
    applicant_full_name: Optional[str] = None
    strength: Optional[str] = None
    application_type: str = Field(pattern=r"^[NA]$", description="N = NDA (brand), A = ANDA (generic)")
    application_number: str = Field(pattern=r"^\d{6}$", description="6-digit padded application number")
    product_number: str = Field(pattern=r"^\d{3}$", description="3-digit padded product number")
    te_code: Optional[str] = None
    approval_date: Optional[str] = Field(default=None, description="ISO date or UNPARSED:<text>")
    is_rld: bool = False
    is_rs: bool = False
    marketing_status: Optional[str] = Field(default=None, description="Source Type column, verbatim")

    @property
    def key(self) -> ProductKey:
        return (self.application_type, self.application_number, self.product_number)

    @property
    def is_brand(self) -> bool:
        return self.application_type == "N"


class Patent(BaseModel):
    """
    Silver layer model for FDA Orange Book Patents.
    """

    model_config = ConfigDict(frozen=True)

    application_type: str = Field(pattern=r"^[NA]$")
    application_number: str = Field(pattern=r"^\d{6}$")
    product_number: str = Field(pattern=r"^\d{3}$")
    patent_number: str = Field(min_length=1)
    patent_expiry_date: Optional[str] = None
    is_drug_substance: bool = False
    is_drug_product: bool = False
    patent_use_code: Optional[str] = None
    is_delisted: bool = False
    submission_date: Optional[str] = None

    @property
    def key(self) -> ProductKey:
        return (self.application_type, self.application_number, self.product_number)


class Exclusivity(BaseModel):
    """
    Silver layer model for FDA Orange Book Exclusivity.
    """

    model_config = ConfigDict(frozen=True)

    application_type: str = Field(pattern=r"^[NA]$")
    application_number: str = Field(pattern=r"^\d{6}$")
    product_number: str = Field(pattern=r"^\d{3}$")
    exclusivity_code: str = Field(min_length=1)
    exclusivity_date: Optional[str] = None

    @property
    def key(self) -> ProductKey:
        return (self.application_type, self.application_number, self.product_number)


class Biologic(BaseModel):
    """
    Silver layer model for FDA Purple Book licensed biologics.

    ``reference_license_number`` is a loose pointer: the referenced BLA may be
    absent from the same load.
    """

    model_config = ConfigDict(frozen=True)

    license_number: str = Field(min_length=1, description="BLA number")
    proper_name: Optional[str] = None
    proprietary_name: Optional[str] = None
    bla_type: Optional[str] = None
    licensure_date: Optional[str] = None
    licensure_status: Optional[str] = None
    marketing_status: Optional[str] = None
    applicant: Optional[str] = None
    applicant_full_name: Optional[str] = None
    strength: Optional[str] = None
    dosage_form: Optional[str] = None
    route: Optional[str] = None
    reference_license_number: Optional[str] = None
    reference_proper_name: Optional[str] = None
    reference_proprietary_name: Optional[str] = None
    is_biosimilar: bool = False
    is_interchangeable: bool = False
    interchangeable_date: Optional[str] = None
    exclusivity_expiration_date: Optional[str] = None
    orphan_exclusivity_date: Optional[str] = None

    @model_validator(mode="after")
    def _originators_have_no_reference(self) -> "Biologic":
        if not self.is_biosimilar and (
            self.reference_license_number or self.reference_proper_name or self.reference_proprietary_name
        ):
            raise ValueError("reference product fields are only valid on biosimilars")
        if self.is_interchangeable and not self.is_biosimilar:
            raise ValueError("only biosimilars can be interchangeable")
        return self


RecordT = TypeVar("RecordT", bound=BaseModel)


@dataclass
class ParseOutcome(Generic[RecordT]):
    """Records parsed from one source file plus row accounting."""

    records: list[RecordT] = field(default_factory=list)
    rows_read: int = 0
    skipped: int = 0
    duplicates: int = 0


class ParsedDataset(BaseModel):
    """Everything a single generation is built from."""

    model_config = ConfigDict(frozen=True)

    products: list[Product]
    patents: list[Patent]
    exclusivity: list[Exclusivity]
    biologics: list[Biologic]
    orange_book_date: Optional[str] = None
    purple_book_date: Optional[str] = None
    source_hashes: dict[str, str] = Field(default_factory=dict)
