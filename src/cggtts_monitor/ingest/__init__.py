"""Ingestion pipeline - folder monitor, incremental file parser, missing-day detection.

Contains:
- FolderMonitor: periodic pass over the station directory tree
- FileIngestor: checkpointed incremental parse of one growing file
- MissingDayDetector: MISSING records for gaps in the trailing window
"""

from .filenames import FileKey, derive_station_day, date_to_mjd, mjd_to_date, today_mjd
from .record_parser import RecordParseError, parse_line, parse_tokens
from .file_ingestor import FileIngestor
from .missing_days import MissingDayDetector
from .folder_monitor import FolderMonitor

__all__ = [
    'FileKey',
    'derive_station_day',
    'date_to_mjd',
    'mjd_to_date',
    'today_mjd',
    'RecordParseError',
    'parse_line',
    'parse_tokens',
    'FileIngestor',
    'MissingDayDetector',
    'FolderMonitor',
]
