"""
Health Monitoring HTTP Server for cggtts-monitor.

Provides a simple HTTP endpoint for monitoring ingestion and view
refresh state, plus the manual refresh trigger.

Endpoints:
    GET  /health     - Basic health check (200 OK if running)
    GET  /status     - JSON monitor statistics and refresh status map
    GET  /metrics    - Prometheus-compatible metrics
    POST /refresh    - Trigger a refresh cycle (202 started, 409 dropped)

Usage:
    from cggtts_monitor.output.health_server import HealthServer

    server = HealthServer(port=8080)
    server.set_daemon(monitor_daemon)
    server.start()
"""

import json
import logging
import threading
from http.server import HTTPServer, BaseHTTPRequestHandler
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class HealthRequestHandler(BaseHTTPRequestHandler):
    """HTTP request handler for health endpoints."""

    # Class-level references to daemon callbacks
    get_status: Optional[Callable[[], Dict[str, Any]]] = None
    trigger_refresh: Optional[Callable[[], bool]] = None

    def log_message(self, format, *args):
        """Suppress default HTTP logging."""
        pass

    def do_GET(self):
        """Handle GET requests."""
        if self.path == '/health':
            self._handle_health()
        elif self.path == '/status':
            self._handle_status()
        elif self.path == '/metrics':
            self._handle_metrics()
        else:
            self.send_error(404, "Not Found")

    def do_POST(self):
        """Handle POST requests."""
        if self.path == '/refresh':
            self._handle_refresh()
        else:
            self.send_error(404, "Not Found")

    def _send_json(self, code: int, payload: Dict[str, Any]):
        self.send_response(code)
        self.send_header('Content-Type', 'application/json')
        self.end_headers()
        self.wfile.write(json.dumps(payload, indent=2, default=str).encode())

    def _handle_health(self):
        """Basic health check - returns 200 if server is running."""
        self.send_response(200)
        self.send_header('Content-Type', 'text/plain')
        self.end_headers()
        self.wfile.write(b'OK\n')

    def _handle_status(self):
        """Return JSON status with monitor and refresh information."""
        if not self.get_status:
            self._send_json(503, {'error': 'No daemon connected'})
            return
        try:
            self._send_json(200, self.get_status())
        except Exception as e:
            logger.exception(f"Status request failed: {e}")
            self._send_json(500, {'error': str(e)})

    def _handle_metrics(self):
        """Return Prometheus-compatible metrics."""
        if not self.get_status:
            self.send_response(503)
            self.send_header('Content-Type', 'text/plain')
            self.end_headers()
            self.wfile.write(b'# No daemon connected\n')
            return
        try:
            metrics = self._format_prometheus_metrics(self.get_status())
            self.send_response(200)
            self.send_header('Content-Type', 'text/plain; version=0.0.4')
            self.end_headers()
            self.wfile.write(metrics.encode())
        except Exception as e:
            logger.exception(f"Metrics request failed: {e}")
            self.send_response(500)
            self.send_header('Content-Type', 'text/plain')
            self.end_headers()
            self.wfile.write(f'# Error: {e}\n'.encode())

    def _handle_refresh(self):
        """Fire-and-forget refresh trigger."""
        if not self.trigger_refresh:
            self._send_json(503, {'error': 'Refresh coordinator not enabled'})
            return
        if self.trigger_refresh():
            self._send_json(202, {
                'status': 'accepted',
                'message': 'Refresh cycle started for all views. Check /status for progress.'
            })
        else:
            self._send_json(409, {
                'status': 'dropped',
                'message': 'A refresh cycle is already running.'
            })

    def _format_prometheus_metrics(self, status: Dict[str, Any]) -> str:
        """Format status as Prometheus metrics."""
        monitor = status.get('monitor', {})
        totals = monitor.get('totals', {})
        refresh = status.get('refresh', {})

        lines = [
            '# HELP cggtts_monitor_passes_total Completed folder monitor passes',
            '# TYPE cggtts_monitor_passes_total counter',
            f'cggtts_monitor_passes_total {monitor.get("pass_count", 0)}',
            '',
            '# HELP cggtts_monitor_measurements_inserted_total Measurements inserted',
            '# TYPE cggtts_monitor_measurements_inserted_total counter',
            f'cggtts_monitor_measurements_inserted_total {totals.get("measurements_inserted", 0)}',
            '',
            '# HELP cggtts_monitor_lines_skipped_total Data lines skipped (short, duplicate or malformed)',
            '# TYPE cggtts_monitor_lines_skipped_total counter',
            f'cggtts_monitor_lines_skipped_total {totals.get("lines_skipped", 0)}',
            '',
            '# HELP cggtts_monitor_upserts_dropped_total Availability upserts abandoned after retries',
            '# TYPE cggtts_monitor_upserts_dropped_total counter',
            f'cggtts_monitor_upserts_dropped_total {totals.get("upserts_dropped", 0)}',
            '',
            '# HELP cggtts_monitor_missing_inserted_total MISSING availability records created',
            '# TYPE cggtts_monitor_missing_inserted_total counter',
            f'cggtts_monitor_missing_inserted_total {totals.get("missing_inserted", 0)}',
            '',
            '# HELP cggtts_monitor_refresh_healthy 1 if no view failed its last refresh',
            '# TYPE cggtts_monitor_refresh_healthy gauge',
            f'cggtts_monitor_refresh_healthy {1 if refresh.get("healthy", True) else 0}',
            '',
            '# HELP cggtts_monitor_refresh_running 1 while a refresh cycle is in progress',
            '# TYPE cggtts_monitor_refresh_running gauge',
            f'cggtts_monitor_refresh_running {1 if refresh.get("running", False) else 0}',
        ]

        # Per-view metrics
        views = refresh.get('views', {})
        if views:
            lines.extend([
                '',
                '# HELP cggtts_monitor_view_refresh_duration_ms Last refresh duration per view',
                '# TYPE cggtts_monitor_view_refresh_duration_ms gauge',
            ])
            for name, view_status in views.items():
                duration = view_status.get('last_refresh_duration_ms', 0)
                lines.append(f'cggtts_monitor_view_refresh_duration_ms{{view="{name}"}} {duration:.1f}')
            lines.extend([
                '',
                '# HELP cggtts_monitor_view_refresh_success 1 if the last refresh of the view succeeded',
                '# TYPE cggtts_monitor_view_refresh_success gauge',
            ])
            for name, view_status in views.items():
                ok = 1 if view_status.get('last_refresh_status') == 'Success' else 0
                lines.append(f'cggtts_monitor_view_refresh_success{{view="{name}"}} {ok}')

        lines.append('')
        return '\n'.join(lines)


class HealthServer:
    """
    HTTP server for health monitoring.

    Runs in a background thread and provides endpoints for monitoring
    the cggtts-monitor daemon.
    """

    def __init__(self, port: int = 8080, bind_address: str = '127.0.0.1'):
        """
        Initialize the health server.

        Args:
            port: HTTP port to listen on (0 picks a free port)
            bind_address: Address to bind to
        """
        self.port = port
        self.bind_address = bind_address
        self.server: Optional[HTTPServer] = None
        self.thread: Optional[threading.Thread] = None
        self.daemon = None
        self._running = False

    def set_daemon(self, daemon):
        """
        Connect to a MonitorDaemon for status reporting.

        Args:
            daemon: Object exposing get_status() and, optionally,
                a refresh coordinator with trigger_manual()
        """
        self.daemon = daemon
        HealthRequestHandler.get_status = staticmethod(daemon.get_status)
        coordinator = getattr(daemon, 'coordinator', None)
        HealthRequestHandler.trigger_refresh = (
            staticmethod(coordinator.trigger_manual) if coordinator else None
        )

    def start(self):
        """Start the health server in a background thread."""
        if self._running:
            logger.warning("Health server already running")
            return

        try:
            self.server = HTTPServer(
                (self.bind_address, self.port),
                HealthRequestHandler
            )
            # Set timeout so handle_request doesn't block forever
            self.server.timeout = 1.0
            self.port = self.server.server_address[1]
            self._running = True

            self.thread = threading.Thread(
                target=self._serve,
                name="HealthServer",
                daemon=True
            )
            self.thread.start()

            logger.info(f"Health server started on http://{self.bind_address}:{self.port}")
            logger.info("  GET  /health  - Health check")
            logger.info("  GET  /status  - JSON status")
            logger.info("  GET  /metrics - Prometheus metrics")
            logger.info("  POST /refresh - Manual view refresh")

        except OSError as e:
            logger.error(f"Failed to start health server: {e}")
            self._running = False

    def _serve(self):
        """Server loop (runs in background thread)."""
        while self._running:
            try:
                self.server.handle_request()
            except Exception as e:
                if self._running:
                    logger.debug(f"Health server request error: {e}")

    def stop(self):
        """Stop the health server."""
        self._running = False
        if self.thread:
            self.thread.join(timeout=2.0)
            self.thread = None
        if self.server:
            self.server.server_close()
            self.server = None
        logger.info("Health server stopped")
