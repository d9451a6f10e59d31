"""
Station/day derivation from CGGTTS file names, and MJD calendar helpers.

Station files are named with a 6-character station code followed by the
day index with arbitrary punctuation, e.g. ``GZLMB160.878`` is station
``GZLMB1`` on MJD 60878. The station is always taken from the file name,
never from the directory the file sits in.
"""

from datetime import date, timedelta
from typing import NamedTuple, Optional

MJD_EPOCH = date(1858, 11, 17)
STATION_CODE_LENGTH = 6


class FileKey(NamedTuple):
    """Station code and day index derived from one file name."""
    station: str
    mjd: int


def derive_station_day(filename: str) -> Optional[FileKey]:
    """
    Derive (station, day index) from a file name.

    The first six characters are the station code. Every digit after
    them is concatenated in order and read as an unsigned integer.

    Examples:
        "GZLMB160.878" -> FileKey("GZLMB1", 60878)
        "GZLMB1.txt"   -> None (no digits after the station code)

    Args:
        filename: Bare file name (no directory part)

    Returns:
        FileKey, or None when the name does not follow the convention
    """
    if len(filename) <= STATION_CODE_LENGTH:
        return None

    station = filename[:STATION_CODE_LENGTH]
    digits = ''.join(ch for ch in filename[STATION_CODE_LENGTH:] if '0' <= ch <= '9')
    if not digits:
        return None

    return FileKey(station, int(digits))


def date_to_mjd(day: date) -> int:
    """Convert a calendar date to its Modified Julian Day."""
    return (day - MJD_EPOCH).days


def mjd_to_date(mjd: int) -> date:
    """Convert a Modified Julian Day to its calendar date."""
    return MJD_EPOCH + timedelta(days=mjd)


def today_mjd() -> int:
    """MJD of the local host date."""
    return date_to_mjd(date.today())
