# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fda_regintel

"""Tests for data models."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from coreason_fda_regintel.gold.models import GenerationMetadata, TherapeuticEquivalentsResult
from coreason_fda_regintel.silver.models import Exclusivity, Patent, Product


class TestModels:
    """Test validation rules of the Pydantic models."""

    def test_product_model(self):
        """Test Product model and its composite key."""
        m = Product(
            coreason_id="id",
            ingredient="ing",
            application_type="A",
            application_number="000123",
            product_number="001",
            marketing_status="Discontinued",
        )
        assert m.key == ("A", "000123", "001")
        assert m.is_brand is False
        assert m.marketing_status == "Discontinued"

    @pytest.mark.parametrize(
        "field, value",
        [("application_type", "X"), ("application_number", "123"), ("product_number", "1"), ("ingredient", "")],
    )
    def test_product_rejects_invalid_identity(self, field, value):
        """Identity fields must be well-formed."""
        data = {
            "coreason_id": "id",
            "ingredient": "ing",
            "application_type": "N",
            "application_number": "000123",
            "product_number": "001",
        }
        data[field] = value
        with pytest.raises(ValidationError):
            Product(**data)

    def test_product_is_frozen(self):
        m = Product(
            coreason_id="id", ingredient="ing", application_type="N", application_number="000123", product_number="001"
        )
        with pytest.raises(ValidationError):
            m.trade_name = "changed"

    def test_patent_and_exclusivity_keys(self):
        p = Patent(application_type="N", application_number="000123", product_number="001", patent_number="12345")
        e = Exclusivity(application_type="N", application_number="000123", product_number="001", exclusivity_code="NCE")
        assert p.key == e.key
        assert p.is_delisted is False

    def test_generation_metadata_staleness(self):
        built = datetime(2026, 1, 1, tzinfo=timezone.utc)
        meta = GenerationMetadata(generation_id="g", version="2026-01", built_at=built)
        assert meta.age(built + timedelta(days=2)) == timedelta(days=2)
        assert meta.is_stale(timedelta(days=30), built + timedelta(days=30)) is False
        assert meta.is_stale(timedelta(days=30), built + timedelta(days=30, seconds=1)) is True

    def test_therapeutic_equivalents_total(self):
        result = TherapeuticEquivalentsResult(
            query="x", reference_listed_drugs=[], ab_rated_generics=[], other_products=[]
        )
        assert result.total_count == 0
