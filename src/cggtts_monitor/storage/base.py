"""
Storage contract for cggtts-monitor.

The ingestion pipeline and the refresh coordinator only talk to storage
through this interface. Two backends implement it: SQLite (single host,
tests) and PostgreSQL (production, real materialized views).
"""

import re
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from ..interfaces.records import AvailabilityRecord, Measurement

EXPECTED_SESSIONS_PER_DAY = 90

_IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')


def is_valid_identifier(name: str) -> bool:
    """View names are interpolated into SQL, so only plain identifiers pass."""
    return bool(name) and _IDENTIFIER.match(name) is not None


class StoreError(Exception):
    """Base class for storage failures."""


class StoreContentionError(StoreError):
    """Transient lock or serialization conflict. Safe to retry."""


class ViewNotFoundError(StoreError):
    """An aggregate view named in the configuration does not exist."""


class Store(ABC):
    """Relational store used by the ingestion pipeline."""

    @abstractmethod
    def initialize_schema(self) -> None:
        """Create tables and indexes if they do not exist."""

    # Checkpoints

    @abstractmethod
    def get_checkpoint(self, path: str) -> Optional[int]:
        """Last processed line offset (exclusive) for a file, or None."""

    @abstractmethod
    def advance_checkpoint(self, path: str, offset: int) -> None:
        """Store max(current, offset) as the checkpoint for a file."""

    # Measurements

    @abstractmethod
    def insert_measurement(self, measurement: Measurement) -> bool:
        """Insert unless the dedup identity exists. Returns False for duplicates."""

    @abstractmethod
    def find_measurements(
        self,
        day: Optional[int] = None,
        stations: Optional[Iterable[str]] = None
    ) -> List[Measurement]:
        """Measurements filtered by day and/or station codes."""

    @abstractmethod
    def session_counts(self, day: int) -> List[dict]:
        """Distinct sessions per station for one day."""

    # Availability

    @abstractmethod
    def upsert_availability(self, record: AvailabilityRecord) -> None:
        """Atomic insert-or-update keyed on (source, mjd). Last write wins."""

    @abstractmethod
    def insert_availability_if_absent(self, record: AvailabilityRecord) -> bool:
        """Atomic insert that leaves an existing (source, mjd) row untouched."""

    @abstractmethod
    def get_availability(self, station: str, day: int) -> Optional[AvailabilityRecord]:
        """Availability record for one station/day, or None."""

    @abstractmethod
    def find_availability(
        self,
        stations: Iterable[str],
        start_day: int,
        end_day: int
    ) -> List[AvailabilityRecord]:
        """Availability records for a station set over an inclusive day range."""

    # Aggregate views

    @abstractmethod
    def view_exists(self, name: str) -> bool:
        """True if the named aggregate view exists."""

    @abstractmethod
    def rebuild_view(self, name: str) -> None:
        """Rebuild the view contents without blocking readers."""

    @abstractmethod
    def analyze_view(self, name: str) -> None:
        """Refresh planner statistics for the view."""

    @abstractmethod
    def create_view(self, definition) -> None:
        """Create an aggregate view from a ViewDefinition."""

    def release_thread(self) -> None:
        """Release resources held for the calling thread only."""

    def close(self) -> None:
        """Release connections."""
