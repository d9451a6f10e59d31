"""
cggtts-monitor: CGGTTS Station File Ingestion Daemon

Remote GNSS time-transfer receivers drop one CGGTTS track file per day
into a per-station directory and keep appending to it. This package
watches that tree and turns it into queryable rows:

    station dirs → FolderMonitor → FileIngestor → measurements
                                 → availability (AVAILABLE / MISSING)
    measurements → RefreshCoordinator → aggregate views (common-view
                                        differences, session counts)

Ingestion is incremental and idempotent: a per-file checkpoint skips
lines already examined, and the measurement identity
(sat, mjd, sttime, source) drops duplicates.

Version: 1.0.0
"""

__version__ = "1.0.0"

from .interfaces.records import (
    AvailabilityRecord,
    AvailabilityStatus,
    IngestStats,
    Measurement,
    PassSummary,
    RefreshOutcome,
    ViewRefreshStatus,
)

__all__ = [
    "AvailabilityRecord",
    "AvailabilityStatus",
    "IngestStats",
    "Measurement",
    "PassSummary",
    "RefreshOutcome",
    "ViewRefreshStatus",
    "__version__",
]
