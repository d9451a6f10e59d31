"""Data contracts shared by the ingestion pipeline, storage and status layers."""

from .records import (
    AvailabilityRecord,
    AvailabilityStatus,
    IngestStats,
    Measurement,
    PassSummary,
    RefreshOutcome,
    ViewRefreshStatus,
)

__all__ = [
    'AvailabilityRecord',
    'AvailabilityStatus',
    'IngestStats',
    'Measurement',
    'PassSummary',
    'RefreshOutcome',
    'ViewRefreshStatus',
]
