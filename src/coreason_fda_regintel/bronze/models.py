# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fda_regintel

"""Pydantic models for raw (Bronze) payloads as fetched from FDA."""

from pydantic import BaseModel, ConfigDict, Field


class OrangeBookRaw(BaseModel):
    """
    The three decoded text members of the Orange Book archive.
    """

    model_config = ConfigDict(frozen=True)

    products: str = Field(description="Contents of products.txt")
    patents: str = Field(description="Contents of patent.txt")
    exclusivity: str = Field(description="Contents of exclusivity.txt")
    source_date: str = Field(description="ISO date the archive was published (Last-Modified) or fetched")
    source_hash: str = Field(description="MD5 of the downloaded archive")


class PurpleBookRaw(BaseModel):
    """
    The Purple Book spreadsheet for the most recent available month.
    """

    model_config = ConfigDict(frozen=True)

    content: bytes = Field(description="Raw .xlsx bytes")
    source_month: str = Field(description="YYYY-MM of the probed file")
    source_url: str
    source_hash: str = Field(description="MD5 of the downloaded spreadsheet")
