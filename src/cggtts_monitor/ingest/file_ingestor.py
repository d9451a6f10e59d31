"""
Incremental ingestion of one growing CGGTTS file.

Station files are appended to during the day. Each call reads the whole
file, skips the header and every line already consumed (per the stored
checkpoint), parses the rest and then moves the checkpoint forward. The
checkpoint lives in the store, so a restarted daemon resumes where the
previous process stopped.
"""

import logging
from pathlib import Path
from typing import List, Optional, Tuple

from ..interfaces.records import IngestStats
from ..storage.base import Store
from .record_parser import MIN_TOKENS, RecordParseError, parse_tokens

logger = logging.getLogger(__name__)

HEADER_LINES = 20


class FileIngestor:
    """
    Parses new lines of station files into the measurement table.

    Lines with index < header_lines are the CGGTTS header. A trailing
    line without a newline is still being written by the station and is
    left for the next pass.
    """

    def __init__(
        self,
        store: Store,
        header_lines: int = HEADER_LINES,
        min_tokens: int = MIN_TOKENS,
        primary_encoding: str = 'utf-8',
        fallback_encoding: str = 'latin-1'
    ):
        """
        Args:
            store: Measurement and checkpoint storage
            header_lines: Number of header lines at the top of each file
            min_tokens: Minimum token count for a data line
            primary_encoding: Encoding tried first
            fallback_encoding: Single-byte encoding used when the primary fails
        """
        self.store = store
        self.header_lines = header_lines
        self.min_tokens = min_tokens
        self.primary_encoding = primary_encoding
        self.fallback_encoding = fallback_encoding

    def read_lines(self, path: Path) -> Tuple[List[str], Optional[str]]:
        """
        Read complete lines from a file.

        Returns:
            (complete lines without terminators, unterminated tail or None)
        """
        raw = path.read_bytes()
        try:
            text = raw.decode(self.primary_encoding)
        except UnicodeDecodeError:
            logger.debug(
                f"{path.name}: not valid {self.primary_encoding}, "
                f"reading as {self.fallback_encoding}"
            )
            text = raw.decode(self.fallback_encoding)

        parts = text.split('\n')
        tail = parts.pop()
        lines = [part.rstrip('\r') for part in parts]
        return lines, (tail or None)

    def ingest(self, path: Path, station: str, mjd: int) -> IngestStats:
        """
        Parse the unprocessed part of a station file.

        Args:
            path: File to read
            station: Station code derived from the file name
            mjd: Day index derived from the file name

        Returns:
            IngestStats for this call
        """
        key = str(path.resolve())
        stats = IngestStats(path=key)

        lines, tail = self.read_lines(path)
        stats.lines_total = len(lines)

        if len(lines) < self.header_lines:
            logger.debug(f"{path.name}: only {len(lines)} lines, no data yet")
            return stats

        checkpoint = self.store.get_checkpoint(key) or 0
        stats.checkpoint_before = checkpoint
        stats.checkpoint_after = checkpoint
        start = max(self.header_lines, checkpoint)

        for index in range(start, len(lines)):
            line = lines[index].strip()
            if not line:
                continue
            stats.lines_examined += 1

            tokens = line.split()
            if len(tokens) < self.min_tokens:
                stats.skipped += 1
                logger.debug(f"{path.name}:{index + 1}: {len(tokens)} tokens, skipped")
                continue

            try:
                measurement = parse_tokens(tokens, station, self.min_tokens)
            except RecordParseError as e:
                stats.skipped += 1
                stats.errors += 1
                logger.warning(f"{path.name}:{index + 1}: {e} | {line}")
                continue

            if self.store.insert_measurement(measurement):
                stats.inserted += 1
            else:
                stats.skipped += 1

        if len(lines) > start:
            self.store.advance_checkpoint(key, len(lines))
            stats.checkpoint_after = len(lines)

        if stats.inserted or stats.errors:
            logger.info(
                f"{station} MJD {mjd} {path.name}: +{stats.inserted} records, "
                f"{stats.skipped} skipped ({stats.errors} errors), "
                f"checkpoint {stats.checkpoint_before} -> {stats.checkpoint_after}"
                + (" (partial last line pending)" if tail else "")
            )
        return stats
