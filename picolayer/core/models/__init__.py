"""
Data model — pydantic records passed between the services.
"""

from picolayer.core.models.exec import ExecResult
from picolayer.core.models.release import (
    ChecksumRecord,
    ExtractPlan,
    Release,
    ReleaseAsset,
)
from picolayer.core.models.request import PackageRequest, parse_csv

__all__ = [
    "ChecksumRecord",
    "ExecResult",
    "ExtractPlan",
    "PackageRequest",
    "Release",
    "ReleaseAsset",
    "parse_csv",
]
