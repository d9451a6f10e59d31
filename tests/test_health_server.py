"""
Tests for health monitoring server.
"""

import json
import pytest
import urllib.error
import urllib.request
from unittest.mock import MagicMock


def sample_status():
    return {
        'healthy': False,
        'monitor': {
            'pass_count': 7,
            'totals': {
                'measurements_inserted': 1234,
                'lines_skipped': 5,
                'upserts_dropped': 1,
                'missing_inserted': 3,
            },
        },
        'refresh': {
            'healthy': False,
            'running': True,
            'views': {
                'sat_common_view_difference': {
                    'last_refresh_status': 'Success',
                    'last_refresh_duration_ms': 812.25,
                    'last_refresh_timestamp': 1753430400.0,
                },
                'station_session_counts': {
                    'last_refresh_status': 'Failed',
                    'last_refresh_duration_ms': 3.0,
                    'last_refresh_timestamp': 1753430401.0,
                    'error': "Aggregate view 'station_session_counts' does not exist",
                },
            },
        },
    }


class TestHealthServer:
    """Tests for HealthServer."""

    def test_health_server_initialization(self):
        """Test HealthServer initialization with custom port."""
        from cggtts_monitor.output.health_server import HealthServer

        server = HealthServer(port=9999, bind_address='127.0.0.1')
        assert server.port == 9999
        assert server.bind_address == '127.0.0.1'
        assert server.daemon is None
        assert server._running is False


class TestHealthServerIntegration:
    """Integration tests for HealthServer (requires network)."""

    @pytest.fixture
    def mock_daemon(self):
        """Create a mock MonitorDaemon for testing."""
        daemon = MagicMock()
        daemon.get_status.return_value = sample_status()
        daemon.coordinator.trigger_manual.return_value = True
        return daemon

    @pytest.fixture
    def health_server(self, mock_daemon):
        """Create and start a health server on a free port."""
        from cggtts_monitor.output.health_server import HealthServer

        server = HealthServer(port=0, bind_address='127.0.0.1')
        server.set_daemon(mock_daemon)
        server.start()

        yield server

        server.stop()

    def _url(self, server, path):
        return f'http://127.0.0.1:{server.port}{path}'

    def test_health_endpoint(self, health_server):
        """Test /health endpoint returns OK."""
        response = urllib.request.urlopen(self._url(health_server, '/health'), timeout=5)
        assert response.status == 200
        assert response.read() == b'OK\n'

    def test_status_endpoint(self, health_server):
        """Test /status endpoint returns the daemon status as JSON."""
        response = urllib.request.urlopen(self._url(health_server, '/status'), timeout=5)
        assert response.status == 200

        data = json.loads(response.read())
        assert data['monitor']['pass_count'] == 7
        assert data['refresh']['views']['station_session_counts']['last_refresh_status'] == 'Failed'

    def test_metrics_endpoint(self, health_server):
        """Test /metrics endpoint returns Prometheus format."""
        response = urllib.request.urlopen(self._url(health_server, '/metrics'), timeout=5)
        assert response.status == 200

        content = response.read().decode()
        assert 'cggtts_monitor_measurements_inserted_total 1234' in content
        assert 'cggtts_monitor_refresh_healthy 0' in content

    def test_refresh_accepted(self, health_server, mock_daemon):
        """POST /refresh starts a cycle and answers 202."""
        request = urllib.request.Request(self._url(health_server, '/refresh'), data=b'', method='POST')
        response = urllib.request.urlopen(request, timeout=5)

        assert response.status == 202
        assert json.loads(response.read())['status'] == 'accepted'
        mock_daemon.coordinator.trigger_manual.assert_called_once()

    def test_refresh_conflict(self, health_server, mock_daemon):
        """POST /refresh while a cycle runs answers 409."""
        mock_daemon.coordinator.trigger_manual.return_value = False
        request = urllib.request.Request(self._url(health_server, '/refresh'), data=b'', method='POST')

        with pytest.raises(urllib.error.HTTPError) as exc_info:
            urllib.request.urlopen(request, timeout=5)

        assert exc_info.value.code == 409

    def test_unknown_path(self, health_server):
        with pytest.raises(urllib.error.HTTPError) as exc_info:
            urllib.request.urlopen(self._url(health_server, '/nope'), timeout=5)
        assert exc_info.value.code == 404


class TestPrometheusMetrics:
    """Tests for Prometheus metrics formatting."""

    def test_prometheus_format(self):
        """Test that metrics are properly formatted for Prometheus."""
        from cggtts_monitor.output.health_server import HealthRequestHandler

        handler = HealthRequestHandler.__new__(HealthRequestHandler)

        metrics = handler._format_prometheus_metrics(sample_status())

        assert 'cggtts_monitor_passes_total 7' in metrics
        assert 'cggtts_monitor_lines_skipped_total 5' in metrics
        assert 'cggtts_monitor_upserts_dropped_total 1' in metrics
        assert 'cggtts_monitor_missing_inserted_total 3' in metrics
        assert 'cggtts_monitor_refresh_running 1' in metrics
        assert 'cggtts_monitor_view_refresh_duration_ms{view="sat_common_view_difference"} 812.2' in metrics
        assert 'cggtts_monitor_view_refresh_success{view="station_session_counts"} 0' in metrics

    def test_without_refresh(self):
        """Refresh disabled still produces the monitor metrics."""
        from cggtts_monitor.output.health_server import HealthRequestHandler

        handler = HealthRequestHandler.__new__(HealthRequestHandler)

        metrics = handler._format_prometheus_metrics({'monitor': {'pass_count': 1, 'totals': {}}})

        assert 'cggtts_monitor_passes_total 1' in metrics
        assert 'view_refresh' not in metrics
