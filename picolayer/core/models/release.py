"""
Release models — assets, integrity records, and extraction plans.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

Algorithm = Literal["sha256", "sha1", "md5", "sha512"]


class ReleaseAsset(BaseModel):
    """One downloadable file attached to a release."""

    name: str
    download_url: str = Field(alias="browser_download_url")
    size: int = 0

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("name")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("asset name must be non-empty")
        return value


class Release(BaseModel):
    """Release metadata as returned by the hosting API."""

    tag_name: str = ""
    name: str | None = None
    assets: list[ReleaseAsset] = Field(default_factory=list)

    model_config = {"extra": "ignore"}


class ChecksumRecord(BaseModel):
    """A published digest for an asset."""

    algorithm: Algorithm = "sha256"
    hex_digest: str
    source: str = ""  # side-car name, or "text" for --checksum-text

    @field_validator("hex_digest")
    @classmethod
    def _lower(cls, value: str) -> str:
        value = value.strip().lower()
        if not value or any(c not in "0123456789abcdef" for c in value):
            raise ValueError(f"not a hex digest: {value!r}")
        return value


class ExtractPlan(BaseModel):
    """Where to extract, and which entries to keep."""

    target: Path
    binary_names: list[str]

    @field_validator("binary_names")
    @classmethod
    def _check_names(cls, value: list[str]) -> list[str]:
        names = [n.strip() for n in value if n.strip()]
        if not names:
            raise ValueError("at least one binary name is required")
        return names
