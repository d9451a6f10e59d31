"""
Record Data Models

These dataclasses define the contract between cggtts-monitor and the
reporting layer that reads its persisted state. Measurements and
availability records are written by the ingestion pipeline; refresh
statuses are written by the refresh coordinator and read by status
queries.

Contract Version: 1.0.0
"""

from dataclasses import dataclass, field, asdict, fields
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List
import json
import time


class AvailabilityStatus(str, Enum):
    """Arrival status of one station/day file."""
    AVAILABLE = "AVAILABLE"   # File seen on the last monitor pass
    MISSING = "MISSING"       # Expected inside the trailing window, never seen


class RefreshOutcome(str, Enum):
    """Result of the last rebuild of one aggregate view."""
    SUCCESS = "Success"
    FAILED = "Failed"


@dataclass
class Measurement:
    """
    One CGGTTS track as read from a station file.

    Field names follow the CGGTTS column mnemonics. Units are those of
    the file format (0.1 ns, 0.1 deg, seconds); no scaling is applied.
    Identity for deduplication is (sat, mjd, sttime, source).
    """
    sat: int                  # Numeric satellite id ("G01" -> 1)
    sat_token: str            # Satellite token exactly as written
    cl: str                   # Common-view class / code label
    mjd: int                  # Day index (Modified Julian Day)
    sttime: str               # Track start time, hhmmss
    trkl: int                 # Track length (s)
    elv: int                  # Elevation (0.1 deg)
    azth: int                 # Azimuth (0.1 deg)
    refsv: int                # Receiver - satellite clock (0.1 ns)
    srsv: int                 # Slope of refsv (0.1 ps/s)
    refsys: int               # Receiver - system time (0.1 ns)
    srsys: int                # Slope of refsys (0.1 ps/s)
    dsg: int                  # RMS of refsys residuals (0.1 ns)
    ioe: int                  # Issue of ephemeris
    mdtr: int                 # Modelled tropospheric delay
    smdt: int                 # Slope of mdtr
    mdio: int                 # Modelled ionospheric delay
    smdi: int                 # Slope of mdio
    msio: int                 # Measured ionospheric delay
    smsi: int                 # Slope of msio
    isg: int                  # RMS of msio residuals
    fr: int                   # GLONASS frequency channel
    hc: int                   # Receiver hardware channel / health code
    frc: str                  # Frequency code label ("L1C", "L3P", ...)
    ck: str                   # Checksum label
    source: str               # Station code (from the filename)
    ion_type: Optional[str] = None   # Optional ionosphere model label

    @property
    def identity(self) -> tuple:
        """Deduplication key."""
        return (self.sat, self.mjd, self.sttime, self.source)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def column_names(cls) -> List[str]:
        """Column order used by the storage backends."""
        return [f.name for f in fields(cls)]

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Measurement":
        return cls(**{name: row[name] for name in cls.column_names()})


@dataclass
class AvailabilityRecord:
    """
    Arrival state of one (station, day) pair.

    Unique on (source, mjd). MISSING records carry no filename and no
    creation time.
    """
    source: str
    mjd: int
    status: AvailabilityStatus
    last_checked: datetime
    file_name: Optional[str] = None
    file_creation_time: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            'source': self.source,
            'mjd': self.mjd,
            'status': self.status.value,
            'file_name': self.file_name,
            'file_creation_time': (
                self.file_creation_time.isoformat() if self.file_creation_time else None
            ),
            'last_checked': self.last_checked.isoformat(),
        }


@dataclass
class ViewRefreshStatus:
    """Last refresh result of one aggregate view. Overwritten every cycle."""
    view_name: str
    outcome: RefreshOutcome
    duration_ms: float
    timestamp: float = field(default_factory=time.time)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        result = {
            'last_refresh_status': self.outcome.value,
            'last_refresh_duration_ms': round(self.duration_ms, 3),
            'last_refresh_timestamp': self.timestamp,
        }
        if self.error is not None:
            result['error'] = self.error
        return result


@dataclass
class IngestStats:
    """Counters for one incremental parse of one file."""
    path: str
    lines_total: int = 0
    lines_examined: int = 0
    inserted: int = 0
    skipped: int = 0          # short lines, duplicates and parse errors
    errors: int = 0           # parse/convert failures (also counted in skipped)
    checkpoint_before: int = 0
    checkpoint_after: int = 0

    @property
    def advanced(self) -> bool:
        return self.checkpoint_after > self.checkpoint_before


@dataclass
class PassSummary:
    """Outcome of one full folder-monitor pass."""
    started_at: float = field(default_factory=time.time)
    finished_at: float = 0.0
    files_seen: int = 0
    files_recognized: int = 0
    files_failed: int = 0
    measurements_inserted: int = 0
    lines_skipped: int = 0
    checkpoints_advanced: int = 0
    upserts_dropped: int = 0
    missing_inserted: int = 0
    aborted: bool = False
    observed: Dict[str, List[int]] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)
