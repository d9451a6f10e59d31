#!/usr/bin/env python3
"""
cggtts-monitor: CGGTTS Station File Ingestion Daemon

Main entry point for the cggtts-monitor daemon. This service:
1. Watches a directory tree fed by remote time-transfer receiver stations
2. Records which station/day files have arrived (AVAILABLE / MISSING)
3. Incrementally parses new CGGTTS lines into the measurement table
4. Keeps the aggregate views used by the reporting layer fresh

Usage:
    # Start daemon
    python -m cggtts_monitor --config /etc/cggtts-monitor/config.toml

    # One monitor pass against a local tree, then exit
    python -m cggtts_monitor --root-dir /tmp/cggtts --database /tmp/cggtts.db --once

Architecture:

    ┌───────────────────────────────────────────────────────────────┐
    │                        cggtts-monitor                          │
    │                                                                │
    │  MonitorLoop (every 5 min)           RefreshTimer (every N s)  │
    │  ┌───────────────┐                   ┌──────────────────────┐  │
    │  │ FolderMonitor │──▶ measurements ◀─│ RefreshCoordinator   │  │
    │  │  FileIngestor │──▶ availability   │  (one cycle at most) │  │
    │  │  MissingDays  │                   └──────────────────────┘  │
    │  └───────────────┘                                             │
    │                 HealthServer: /health /status /metrics /refresh│
    └───────────────────────────────────────────────────────────────┘

The two loops share the store but no in-process lock; the views may lag
the latest ingestion pass by up to one refresh period.
"""

import argparse
import logging
import signal
import sys
import threading
import time
from pathlib import Path
from typing import Any, Dict, Optional

# Set up logging before imports that use it
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger('cggtts-monitor')

from .config import ConfigError, load_config
from .ingest import FileIngestor, FolderMonitor, MissingDayDetector
from .refresh import RefreshCoordinator
from .storage import BUNDLED_VIEWS, BackoffPolicy, Store, open_store


class MonitorDaemon:
    """
    Main cggtts-monitor daemon.

    Owns the folder monitor loop, the refresh coordinator and the
    optional health server, all sharing one store.
    """

    def __init__(self, config: Dict[str, Any], store: Store):
        """
        Initialize the daemon.

        Args:
            config: Configuration dictionary (see config.DEFAULT_CONFIG)
            store: Schema-initialized store
        """
        self.config = config
        self.store = store

        monitor_config = config['monitor']
        refresh_config = config['refresh']
        self.root_dir = Path(monitor_config['root_dir'])
        self.monitor_interval = float(monitor_config['interval_seconds'])
        self.retry_policy = BackoffPolicy.from_config(config['database'].get('retry', {}))

        ingestor = FileIngestor(
            store,
            header_lines=int(monitor_config['header_lines']),
            min_tokens=int(monitor_config['min_tokens']),
            primary_encoding=monitor_config['primary_encoding'],
            fallback_encoding=monitor_config['fallback_encoding'],
        )
        detector = MissingDayDetector(
            store,
            window_days=int(monitor_config['missing_window_days']),
            retry_policy=self.retry_policy,
        )
        self.monitor = FolderMonitor(
            store,
            self.root_dir,
            ingestor=ingestor,
            detector=detector,
            retry_policy=self.retry_policy,
        )

        self.coordinator: Optional[RefreshCoordinator] = None
        if refresh_config.get('enabled', True):
            self.coordinator = RefreshCoordinator(
                store,
                refresh_config.get('views', []),
                interval_seconds=float(refresh_config['interval_seconds']),
            )

        self.health_server = None

        # State
        self.running = False
        self.start_time = 0.0
        self._stop_event = threading.Event()
        self._monitor_thread: Optional[threading.Thread] = None

        logger.info("=" * 60)
        logger.info("cggtts-monitor initializing")
        logger.info(f"  Root directory: {self.root_dir}")
        logger.info(f"  Monitor interval: {self.monitor_interval:.0f}s")
        logger.info(f"  Missing-day window: {detector.window_days} days")
        logger.info(f"  Refresh: {'enabled' if self.coordinator else 'disabled'}")
        if self.coordinator:
            logger.info(f"  Views: {', '.join(self.coordinator.view_names) or '(none)'}")
        logger.info("=" * 60)

    def start(self):
        """Start the monitor loop, refresh timer and health server."""
        if self.running:
            logger.warning("Daemon already running")
            return

        logger.info("Starting cggtts-monitor daemon")
        self.running = True
        self.start_time = time.time()
        self._stop_event.clear()

        self._monitor_thread = threading.Thread(
            target=self._monitor_loop,
            name="MonitorLoop",
            daemon=True
        )
        self._monitor_thread.start()

        if self.coordinator:
            self.coordinator.start()

        health_port = int(self.config['output'].get('health_port', 0))
        if health_port > 0:
            from .output import HealthServer
            self.health_server = HealthServer(
                port=health_port,
                bind_address=self.config['output'].get('bind_address', '127.0.0.1')
            )
            self.health_server.set_daemon(self)
            self.health_server.start()

    def _monitor_loop(self):
        """Run a monitor pass every monitor_interval seconds."""
        logger.info("Entering monitor loop")
        while not self._stop_event.is_set():
            tick_start = time.monotonic()
            try:
                self.monitor.run_pass()
            except Exception as e:
                logger.exception(f"Error in monitor pass: {e}")
            elapsed = time.monotonic() - tick_start
            self._stop_event.wait(max(0.0, self.monitor_interval - elapsed))

    def run(self):
        """Run the daemon (blocking) until SIGTERM/SIGINT."""
        def handle_signal(signum, frame):
            logger.info(f"Received signal {signum}, shutting down...")
            self._stop_event.set()

        signal.signal(signal.SIGTERM, handle_signal)
        signal.signal(signal.SIGINT, handle_signal)

        self.start()
        try:
            while not self._stop_event.is_set():
                self._stop_event.wait(1.0)
        finally:
            self.stop()

    def stop(self):
        """Stop all loops. Work in flight runs to completion."""
        if not self.running:
            return
        logger.info("Stopping cggtts-monitor...")
        self.running = False
        self._stop_event.set()

        if self.health_server:
            self.health_server.stop()
        if self.coordinator:
            self.coordinator.stop()
        if self._monitor_thread:
            self._monitor_thread.join()
            self._monitor_thread = None
        self.store.close()

        uptime = time.time() - self.start_time
        logger.info("cggtts-monitor stopped")
        logger.info(f"  Uptime: {uptime:.1f}s")
        logger.info(f"  Monitor passes: {self.monitor.pass_count}")
        logger.info(f"  Measurements inserted: {self.monitor.totals['measurements_inserted']}")

    def run_once(self):
        """Run a single monitor pass (with missing-day detection)."""
        return self.monitor.run_pass()

    def get_status(self) -> Dict[str, Any]:
        """Status snapshot for the health server."""
        last = self.monitor.last_summary
        status = {
            'timestamp': time.time(),
            'uptime_seconds': time.time() - self.start_time if self.start_time else 0.0,
            'monitor': {
                'root_dir': str(self.root_dir),
                'pass_count': self.monitor.pass_count,
                'totals': dict(self.monitor.totals),
                'last_pass': last.to_dict() if last else None,
            },
        }
        if self.coordinator:
            status['refresh'] = self.coordinator.get_status()
            status['healthy'] = self.coordinator.is_healthy()
            status['refresh_running'] = self.coordinator.is_running
        else:
            status['healthy'] = True
            status['refresh_running'] = False
        return status


def install_bundled_views(store: Store, view_names) -> int:
    """Create configured bundled views that do not exist yet."""
    created = 0
    for name in view_names:
        definition = BUNDLED_VIEWS.get(name)
        if definition is None:
            logger.warning(f"View {name} is not bundled, create it in the database yourself")
            continue
        if not store.view_exists(name):
            store.create_view(definition)
            created += 1
    return created


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='cggtts-monitor: CGGTTS Station File Ingestion Daemon',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Start with config file
    python -m cggtts_monitor --config /etc/cggtts-monitor/config.toml

    # Create schema and bundled views
    python -m cggtts_monitor --config config.toml --init-db

    # Single pass against a local tree
    python -m cggtts_monitor --root-dir /tmp/cggtts --database /tmp/cggtts.db --once
        """
    )

    parser.add_argument(
        '--config', '-c',
        help='Path to TOML configuration file'
    )
    parser.add_argument(
        '--root-dir', '-r',
        help='Station directory root (overrides config)'
    )
    parser.add_argument(
        '--database',
        help='SQLite database path (overrides config, selects the sqlite backend)'
    )
    parser.add_argument(
        '--health-port',
        type=int,
        help='HTTP port for health monitoring endpoint (0 to disable)'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )
    parser.add_argument(
        '--once',
        action='store_true',
        help='Run one monitor pass and exit'
    )
    parser.add_argument(
        '--refresh-now',
        action='store_true',
        help='Run one view refresh cycle and exit (exit code 1 if any view failed)'
    )
    parser.add_argument(
        '--init-db',
        action='store_true',
        help='Create schema and bundled aggregate views, then exit'
    )

    args = parser.parse_args()

    # Load configuration
    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(2)

    level = 'DEBUG' if args.debug else str(config['logging'].get('level', 'INFO')).upper()
    logging.getLogger().setLevel(level)

    # Apply command-line overrides
    if args.root_dir:
        config['monitor']['root_dir'] = args.root_dir
    if args.database:
        config['database']['backend'] = 'sqlite'
        config['database']['path'] = args.database
    if args.health_port is not None:
        config['output']['health_port'] = args.health_port

    store = open_store(config)
    store.initialize_schema()

    try:
        if args.init_db:
            created = install_bundled_views(store, config['refresh'].get('views', []))
            logger.info(f"Database initialized ({created} views created)")
            return

        if args.refresh_now:
            coordinator = RefreshCoordinator(store, config['refresh'].get('views', []))
            coordinator.run_cycle()
            for name, view_status in coordinator.status_board.snapshot().items():
                logger.info(f"  {name}: {view_status}")
            if not coordinator.is_healthy():
                sys.exit(1)
            return

        daemon = MonitorDaemon(config, store)
        if args.once:
            summary = daemon.run_once()
            if summary.aborted:
                sys.exit(1)
            return

        daemon.run()
    finally:
        store.close()


if __name__ == '__main__':
    main()
