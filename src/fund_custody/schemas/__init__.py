"""Pydantic API schemas."""

from fund_custody.schemas.release import (
    AutoReleaseBody,
    BatchFileBody,
    BatchFileResponse,
    BatchReleaseBody,
    BatchReleaseResponse,
    ConfigureRailBody,
    EntryResponse,
    ExecuteReleaseBody,
    HealthResponse,
    HeldFundsResponse,
    HoldSummaryResponse,
    RailResponse,
    ReleaseOutcomeResponse,
    ReleaseRequestBody,
    ReleaseResponse,
    VoidBody,
)

__all__ = [
    "AutoReleaseBody",
    "BatchFileBody",
    "BatchFileResponse",
    "BatchReleaseBody",
    "BatchReleaseResponse",
    "ConfigureRailBody",
    "EntryResponse",
    "ExecuteReleaseBody",
    "HealthResponse",
    "HeldFundsResponse",
    "HoldSummaryResponse",
    "RailResponse",
    "ReleaseOutcomeResponse",
    "ReleaseRequestBody",
    "ReleaseResponse",
    "VoidBody",
]
