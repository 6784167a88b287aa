# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fda_regintel

"""Shared fixtures: small but realistic Orange Book and Purple Book payloads."""

import io
import zipfile
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Optional

import pytest
from openpyxl import Workbook

from coreason_fda_regintel.bronze.models import OrangeBookRaw, PurpleBookRaw
from coreason_fda_regintel.gold.cliff import PatentCliffAnalyzer
from coreason_fda_regintel.gold.queries import RegulatoryQueryEngine
from coreason_fda_regintel.gold.store import GenerationStore
from coreason_fda_regintel.silver.models import ParsedDataset
from coreason_fda_regintel.silver.purple_book import parse_purple_book
from coreason_fda_regintel.silver.transform import parse_orange_book

BUILT_AT = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
TODAY = date(2026, 1, 1)

PRODUCTS_HEADER = (
    "Ingredient~DF;Route~Trade_Name~Applicant~Strength~Appl_Type~Appl_No~Product_No~"
    "TE_Code~Approval_Date~RLD~RS~Type~Applicant_Full_Name"
)
PRODUCT_ROWS = [
    "IBUPROFEN~TABLET;ORAL~MOTRIN~PFIZER~400MG~N~018989~001~AB~Jan 1, 1982~Yes~No~RX~PFIZER INC",
    "IBUPROFEN~TABLET;ORAL~IBUPROFEN~AMNEAL~400MG~A~071935~001~AB~Jan 10, 1988~No~No~RX~AMNEAL PHARMACEUTICALS LLC",
    "IBUPROFEN~TABLET;ORAL~IBUPROFEN~OLDCO~600MG~A~072000~001~~Mar 3, 1990~No~No~DISCN~OLDCO LABS INC",
    "ATORVASTATIN CALCIUM~TABLET;ORAL~LIPITOR~PFIZER~EQ 10MG BASE~N~020702~001~AB~Dec 17, 1996~Yes~Yes~RX~PFIZER IRELAND",
    "ATORVASTATIN CALCIUM~TABLET;ORAL~ATORVASTATIN CALCIUM~TEVA~EQ 10MG BASE~A~076477~001~AB~Nov 30, 2011~No~No~RX~"
    "TEVA PHARMACEUTICALS USA",
    "DRUGX~CAPSULE;ORAL~NEWBRAND~ACME~5MG~N~021000~001~~Jan 5, 2020~Yes~No~RX~ACME PHARMA INC",
    "DRUGX~CAPSULE;ORAL~NEWBRAND~ACME~10MG~N~021000~002~~Jan 5, 2020~No~No~Discontinued~ACME PHARMA INC",
]

PATENTS_HEADER = (
    "Appl_Type~Appl_No~Product_No~Patent_No~Patent_Expire_Date_Text~Drug_Substance_Flag~"
    "Drug_Product_Flag~Patent_Use_Code~Delist_Flag~Submission_Date"
)
PATENT_ROWS = [
    "N~020702~001~5273995~Jun 28, 2011~Y~~~~",
    "N~020702~001~6126971~Mar 1, 2017~~Y~U-123~~Jan 1, 2001",
    "N~021000~001~9000001~Jan 1, 2030~Y~Y~~~Feb 2, 2020",
    "N~021000~001~9000002~Jun 1, 2035~~~U-999~~Feb 2, 2020",
    "N~021000~002~9000003~Jan 1, 2040~~Y~~Y~Feb 2, 2020",
    "N~099999~001~7777777~Jan 1, 2031~Y~~~~",
]

EXCLUSIVITY_HEADER = "Appl_Type~Appl_No~Product_No~Exclusivity_Code~Exclusivity_Date"
EXCLUSIVITY_ROWS = [
    "N~021000~001~NCE~Jan 5, 2025",
    "N~021000~001~ODE-123~Jan 5, 2036",
    "N~020702~001~PED~Sep 28, 2011",
]

PURPLE_HEADER = [
    "N/R/U",
    "Applicant",
    "BLA Number",
    "Proprietary Name",
    "Proper Name",
    "BLA Type",
    "Strength",
    "Dosage Form",
    "Route of Administration",
    "Marketing Status",
    "Licensure",
    "Approval Date",
    "Ref. Product Proper Name",
    "Ref. Product Proprietary Name",
    "Date of First Licensure",
    "Exclusivity Expiration Date",
    "First Interchangeable Exclusivity Exp. Date",
    "Orphan Exclusivity Exp. Date",
]


def purple_row(
    applicant: str,
    bla: Optional[str],
    proprietary: str,
    proper: str,
    bla_type: str,
    ref_proper: Optional[str] = None,
    ref_proprietary: Optional[str] = None,
    strength: str = "40MG/0.8ML",
    approval: Any = None,
    interchangeable_exclusivity: Any = None,
) -> list[Any]:
    """One Purple Book data row in PURPLE_HEADER order."""
    return [
        None,
        applicant,
        bla,
        proprietary,
        proper,
        bla_type,
        strength,
        "Injection",
        "Subcutaneous",
        "Rx",
        "Licensed",
        approval,
        ref_proper,
        ref_proprietary,
        None,
        None,
        interchangeable_exclusivity,
        "N/A",
    ]


PURPLE_ROWS = [
    purple_row("AbbVie Inc.", "125057", "HUMIRA", "adalimumab", "351(a)", approval=datetime(2002, 12, 31)),
    purple_row(
        "Boehringer Ingelheim",
        "761058",
        "CYLTEZO",
        "adalimumab-adbm",
        "351(k) Interchangeable",
        ref_proper="adalimumab",
        ref_proprietary="HUMIRA",
        approval="08/25/2017",
    ),
    purple_row(
        "Amgen Inc.",
        "761024",
        "AMJEVITA",
        "adalimumab-atto",
        "351(k) Biosimilar",
        ref_proper="adalimumab",
        ref_proprietary="HUMIRA",
        approval=datetime(2016, 9, 23),
    ),
    purple_row(
        "Sandoz Inc.",
        "761071",
        "HYRIMOZ",
        "adalimumab-adaz",
        "351(k) Biosimilar",
        ref_proper="adalimumab",
        ref_proprietary="HUMIRA",
    ),
    # Second presentation of the same license
    purple_row("AbbVie Inc.", "125057", "HUMIRA", "adalimumab", "351(a)", strength="80MG/0.8ML"),
    purple_row("Genentech, Inc.", "103705", "RITUXAN", "rituximab", "351(a)", strength="100MG/10ML"),
    [],
    purple_row("Nobody Inc.", None, "BROKEN", "nothing", "351(a)"),
]


def tilde_file(header: str, rows: list[str]) -> str:
    return "\n".join([header, *rows]) + "\n"


def products_text(rows: Optional[list[str]] = None) -> str:
    return tilde_file(PRODUCTS_HEADER, PRODUCT_ROWS if rows is None else rows)


def patents_text(rows: Optional[list[str]] = None) -> str:
    return tilde_file(PATENTS_HEADER, PATENT_ROWS if rows is None else rows)


def exclusivity_text(rows: Optional[list[str]] = None) -> str:
    return tilde_file(EXCLUSIVITY_HEADER, EXCLUSIVITY_ROWS if rows is None else rows)


def orange_book_zip(members: Optional[dict[str, str]] = None) -> bytes:
    """An in-memory Orange Book archive; members default to the sample files."""
    if members is None:
        members = {
            "products.txt": products_text(),
            "patent.txt": patents_text(),
            "exclusivity.txt": exclusivity_text(),
        }
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, text in members.items():
            archive.writestr(name, text)
    return buffer.getvalue()


def purple_book_xlsx(rows: Optional[list[list[Any]]] = None, header: Optional[list[str]] = None) -> bytes:
    """An in-memory Purple Book workbook with a title row above the header."""
    workbook = Workbook()
    sheet = workbook.active
    sheet.append(["Purple Book: Database of Licensed Biological Products"])
    sheet.append(PURPLE_HEADER if header is None else header)
    for row in PURPLE_ROWS if rows is None else rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


@pytest.fixture(name="orange_raw")
def orange_raw() -> OrangeBookRaw:
    return OrangeBookRaw(
        products=products_text(),
        patents=patents_text(),
        exclusivity=exclusivity_text(),
        source_date="2025-12-15",
        source_hash="orange-hash",
    )


@pytest.fixture(name="purple_raw")
def purple_raw() -> PurpleBookRaw:
    return PurpleBookRaw(
        content=purple_book_xlsx(),
        source_month="2025-12",
        source_url="https://example.test/purplebook.xlsx",
        source_hash="purple-hash",
    )


@pytest.fixture(name="dataset")
def dataset(orange_raw: OrangeBookRaw, purple_raw: PurpleBookRaw) -> ParsedDataset:
    """The sample files parsed into one dataset."""
    products, patents, exclusivity = parse_orange_book(orange_raw)
    return ParsedDataset(
        products=products,
        patents=patents,
        exclusivity=exclusivity,
        biologics=parse_purple_book(purple_raw),
        orange_book_date=orange_raw.source_date,
        purple_book_date=purple_raw.source_month,
        source_hashes={"orange_book": orange_raw.source_hash, "purple_book": purple_raw.source_hash},
    )


@pytest.fixture(name="store")
def store(tmp_path: Path, dataset: ParsedDataset) -> GenerationStore:
    """A store with one active generation built from the sample dataset."""
    generation_store = GenerationStore(tmp_path / "store")
    generation = generation_store.builder.build("20260101T120000-sample", dataset, now=BUILT_AT)
    generation_store.activate(generation)
    return generation_store


@pytest.fixture(name="engine")
def engine(store: GenerationStore) -> RegulatoryQueryEngine:
    return RegulatoryQueryEngine(store, analyzer=PatentCliffAnalyzer(today=lambda: TODAY))
