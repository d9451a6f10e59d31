"""Storage backends - SQLite, PostgreSQL, contention retry and bundled views."""

import logging
from typing import Any, Dict

from .base import (
    Store,
    StoreError,
    StoreContentionError,
    ViewNotFoundError,
    EXPECTED_SESSIONS_PER_DAY,
)
from .retry import BackoffPolicy, retry_on_contention
from .sqlite_store import SQLiteStore
from .views import BUNDLED_VIEWS, ViewDefinition

logger = logging.getLogger(__name__)


def open_store(config: Dict[str, Any]) -> Store:
    """
    Build the store described by the [database] config section.

    Args:
        config: Full configuration dictionary

    Returns:
        SQLiteStore or PostgresStore (not yet schema-initialized)
    """
    db_config = config.get('database', {})
    backend = db_config.get('backend', 'sqlite')

    if backend == 'postgres':
        from .postgres_store import PostgresStore
        logger.info("Using PostgreSQL store")
        return PostgresStore(db_config['dsn'])

    logger.info(f"Using SQLite store: {db_config.get('path')}")
    return SQLiteStore(
        db_config.get('path', '/var/lib/cggtts-monitor/cggtts.db'),
        busy_timeout=float(db_config.get('busy_timeout_seconds', 5.0)),
    )


__all__ = [
    'Store',
    'StoreError',
    'StoreContentionError',
    'ViewNotFoundError',
    'EXPECTED_SESSIONS_PER_DAY',
    'BackoffPolicy',
    'retry_on_contention',
    'SQLiteStore',
    'BUNDLED_VIEWS',
    'ViewDefinition',
    'open_store',
]
