"""
Folder monitor - one pass over the station directory tree.

Layout:
    <root_dir>/
        <any station folder>/
            GZLMB160.878        <- station GZLMB1, MJD 60878
            archive/GZLMB160.877

Every first-level directory under the root is walked recursively. The
station and day come from each file's name, not from the folder, so a
folder may hold files of several stations. Folders are processed one
after the other to keep write contention on the availability table low.
"""

import logging
import os
import stat
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Set, Union

from ..interfaces.records import AvailabilityRecord, AvailabilityStatus, PassSummary
from ..storage.base import Store
from ..storage.retry import BackoffPolicy, retry_on_contention
from .file_ingestor import FileIngestor
from .filenames import derive_station_day
from .missing_days import MissingDayDetector

logger = logging.getLogger(__name__)


def file_creation_time(st: os.stat_result) -> datetime:
    """Best-effort creation time: birth time where the OS reports it, else ctime."""
    timestamp = getattr(st, 'st_birthtime', None)
    if timestamp is None:
        timestamp = st.st_ctime
    return datetime.fromtimestamp(timestamp)


class FolderMonitor:
    """
    Scans the station tree, records availability and ingests new lines.

    Each pass upserts an AVAILABLE record for every recognized file,
    parses the file incrementally and finally hands the observed
    station/day sets to the missing-day detector.
    """

    def __init__(
        self,
        store: Store,
        root_dir: Union[str, Path],
        ingestor: Optional[FileIngestor] = None,
        detector: Optional[MissingDayDetector] = None,
        retry_policy: BackoffPolicy = BackoffPolicy(),
        now: Callable[[], datetime] = datetime.now
    ):
        """
        Args:
            store: Availability, checkpoint and measurement storage
            root_dir: Directory holding one subdirectory per station feed
            ingestor: Incremental parser (default: FileIngestor(store))
            detector: Missing-day detector run after each pass (None disables)
            retry_policy: Retry budget for availability upserts
            now: Clock for last-checked timestamps
        """
        self.store = store
        self.root_dir = Path(root_dir)
        self.ingestor = ingestor or FileIngestor(store)
        self.detector = detector
        self.retry_policy = retry_policy
        self.now = now

        # Statistics
        self.pass_count = 0
        self.last_summary: Optional[PassSummary] = None
        self.totals = {
            'measurements_inserted': 0,
            'lines_skipped': 0,
            'files_failed': 0,
            'upserts_dropped': 0,
            'missing_inserted': 0,
            'passes_aborted': 0,
        }

    def run_pass(self) -> PassSummary:
        """
        Run one full pass over the root directory.

        Never raises: a vanished or unreadable root aborts the pass with
        an error log, and already committed checkpoints stay in place.
        """
        summary = PassSummary()
        observed: Dict[str, Set[int]] = {}

        try:
            station_dirs = self._list_station_dirs()
        except OSError as e:
            logger.error(f"Cannot list root directory {self.root_dir}: {e}")
            summary.aborted = True
            return self._finish(summary)

        for station_dir in station_dirs:
            try:
                self._process_station_dir(station_dir, summary, observed)
            except Exception as e:
                logger.exception(f"Error processing directory {station_dir}: {e}")

        summary.observed = {station: sorted(days) for station, days in observed.items()}

        if self.detector is not None:
            try:
                summary.missing_inserted = self.detector.detect(observed)
            except Exception as e:
                logger.exception(f"Missing-day detection failed: {e}")

        return self._finish(summary)

    def _finish(self, summary: PassSummary) -> PassSummary:
        summary.finished_at = time.time()
        self.pass_count += 1
        self.last_summary = summary

        self.totals['measurements_inserted'] += summary.measurements_inserted
        self.totals['lines_skipped'] += summary.lines_skipped
        self.totals['files_failed'] += summary.files_failed
        self.totals['upserts_dropped'] += summary.upserts_dropped
        self.totals['missing_inserted'] += summary.missing_inserted
        if summary.aborted:
            self.totals['passes_aborted'] += 1
            return summary

        logger.info(
            f"Pass #{self.pass_count}: {summary.files_recognized}/{summary.files_seen} files, "
            f"+{summary.measurements_inserted} records, {summary.lines_skipped} skipped, "
            f"{summary.checkpoints_advanced} checkpoints advanced, "
            f"{summary.missing_inserted} MISSING, {summary.files_failed} failed "
            f"({summary.finished_at - summary.started_at:.1f}s)"
        )
        return summary

    def _list_station_dirs(self) -> List[Path]:
        return sorted(path for path in self.root_dir.iterdir() if path.is_dir())

    def _iter_files(self, station_dir: Path) -> Iterator[Path]:
        def on_error(error: OSError):
            logger.warning(f"Cannot read directory {error.filename}: {error}")

        for dirpath, dirnames, filenames in os.walk(station_dir, onerror=on_error):
            dirnames.sort()
            for filename in sorted(filenames):
                yield Path(dirpath) / filename

    def _process_station_dir(
        self,
        station_dir: Path,
        summary: PassSummary,
        observed: Dict[str, Set[int]]
    ):
        logger.debug(f"Scanning {station_dir}")
        for path in self._iter_files(station_dir):
            self._process_file(path, summary, observed)

    def _process_file(
        self,
        path: Path,
        summary: PassSummary,
        observed: Dict[str, Set[int]]
    ):
        try:
            st = path.stat()
        except OSError as e:
            logger.warning(f"Cannot stat {path}: {e}")
            summary.files_failed += 1
            return

        if not stat.S_ISREG(st.st_mode) or st.st_size == 0:
            return
        summary.files_seen += 1

        key = derive_station_day(path.name)
        if key is None:
            return
        summary.files_recognized += 1
        observed.setdefault(key.station, set()).add(key.mjd)

        record = AvailabilityRecord(
            source=key.station,
            mjd=key.mjd,
            status=AvailabilityStatus.AVAILABLE,
            file_name=path.name,
            file_creation_time=file_creation_time(st),
            last_checked=self.now(),
        )
        try:
            if not retry_on_contention(
                lambda: self.store.upsert_availability(record),
                self.retry_policy,
                description=f"availability {key.station}/{key.mjd}"
            ):
                summary.upserts_dropped += 1
        except Exception as e:
            logger.exception(f"Availability upsert failed for {path}: {e}")
            summary.upserts_dropped += 1

        try:
            stats = self.ingestor.ingest(path, key.station, key.mjd)
        except Exception as e:
            logger.exception(f"Failed to ingest {path}: {e}")
            summary.files_failed += 1
            return

        summary.measurements_inserted += stats.inserted
        summary.lines_skipped += stats.skipped
        if stats.advanced:
            summary.checkpoints_advanced += 1
