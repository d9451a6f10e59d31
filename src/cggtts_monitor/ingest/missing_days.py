"""
Missing-day detection.

After a monitor pass, every station seen in that pass is checked against
a trailing window of days ending today. Days with no file and no
availability record yet get a MISSING record. Existing records are never
touched here, so a file that shows up late is not flipped back and forth.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Set

from ..interfaces.records import AvailabilityRecord, AvailabilityStatus
from ..storage.base import Store
from ..storage.retry import BackoffPolicy, retry_on_contention
from .filenames import today_mjd

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 3


def expected_days(today: int, window_days: int) -> List[int]:
    """Inclusive window [today - W, today]."""
    return list(range(today - window_days, today + 1))


class MissingDayDetector:
    """Fills gaps in the trailing window with MISSING availability records."""

    def __init__(
        self,
        store: Store,
        window_days: int = DEFAULT_WINDOW_DAYS,
        retry_policy: BackoffPolicy = BackoffPolicy(),
        today: Callable[[], int] = today_mjd,
        now: Callable[[], datetime] = datetime.now
    ):
        self.store = store
        self.window_days = window_days
        self.retry_policy = retry_policy
        self.today = today
        self.now = now

    def detect(self, observed: Dict[str, Iterable[int]]) -> int:
        """
        Insert MISSING records for unobserved days of each observed station.

        Args:
            observed: Station code -> day indexes seen in the last pass

        Returns:
            Number of MISSING records inserted
        """
        window = expected_days(self.today(), self.window_days)
        inserted = 0

        for station in sorted(observed):
            seen: Set[int] = set(observed[station])
            for day in window:
                if day in seen:
                    continue
                if self._mark_missing(station, day):
                    inserted += 1

        if inserted:
            logger.info(
                f"Missing-day check: {inserted} new MISSING records "
                f"(window MJD {window[0]}-{window[-1]}, {len(observed)} stations)"
            )
        return inserted

    def _mark_missing(self, station: str, day: int) -> bool:
        record = AvailabilityRecord(
            source=station,
            mjd=day,
            status=AvailabilityStatus.MISSING,
            last_checked=self.now(),
        )
        result = {'inserted': False}

        def write():
            result['inserted'] = self.store.insert_availability_if_absent(record)

        retry_on_contention(write, self.retry_policy, description=f"MISSING {station}/{day}")
        if result['inserted']:
            logger.debug(f"{station} MJD {day}: marked MISSING")
        return result['inserted']
