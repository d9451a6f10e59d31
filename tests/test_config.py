"""
Tests for configuration loading.
"""

import pytest


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults(self):
        from cggtts_monitor.config import load_config

        config = load_config(None)
        assert config['monitor']['interval_seconds'] == 300.0
        assert config['monitor']['missing_window_days'] == 3
        assert config['monitor']['header_lines'] == 20
        assert config['refresh']['interval_seconds'] == 600.0
        assert config['database']['backend'] == 'sqlite'

    def test_missing_file_gives_defaults(self, tmp_path):
        from cggtts_monitor.config import DEFAULT_CONFIG, load_config

        assert load_config(str(tmp_path / 'absent.toml')) == DEFAULT_CONFIG

    def test_file_merged_over_defaults(self, tmp_path):
        from cggtts_monitor.config import load_config

        path = tmp_path / 'config.toml'
        path.write_text(
            '[monitor]\n'
            'root_dir = "/data/cggtts"\n'
            'missing_window_days = 5\n'
            '\n'
            '[refresh]\n'
            'views = ["station_session_counts"]\n'
            '\n'
            '[database.retry]\n'
            'attempts = 6\n'
        )

        config = load_config(str(path))

        assert config['monitor']['root_dir'] == '/data/cggtts'
        assert config['monitor']['missing_window_days'] == 5
        assert config['monitor']['interval_seconds'] == 300.0
        assert config['refresh']['views'] == ['station_session_counts']
        assert config['database']['retry']['attempts'] == 6
        assert config['database']['retry']['base_delay_seconds'] == 0.1

    def test_defaults_not_mutated(self, tmp_path):
        from cggtts_monitor.config import DEFAULT_CONFIG, load_config

        path = tmp_path / 'config.toml'
        path.write_text('[monitor]\nmissing_window_days = 9\n')
        load_config(str(path))

        assert DEFAULT_CONFIG['monitor']['missing_window_days'] == 3

    def test_invalid_toml(self, tmp_path):
        from cggtts_monitor.config import ConfigError, load_config

        path = tmp_path / 'config.toml'
        path.write_text('[monitor\nroot_dir = ')

        with pytest.raises(ConfigError):
            load_config(str(path))

    @pytest.mark.parametrize("body", [
        '[monitor]\ninterval_seconds = 0\n',
        '[refresh]\ninterval_seconds = -1\n',
        '[monitor]\nmissing_window_days = -1\n',
        '[refresh]\nviews = "station_session_counts"\n',
        '[database]\nbackend = "oracle"\n',
        '[database]\nbackend = "postgres"\n',
        '[database.retry]\nattempts = 0\n',
    ])
    def test_invalid_values(self, tmp_path, body):
        from cggtts_monitor.config import ConfigError, load_config

        path = tmp_path / 'config.toml'
        path.write_text(body)

        with pytest.raises(ConfigError):
            load_config(str(path))

    def test_config_error_is_value_error(self):
        from cggtts_monitor.config import ConfigError

        assert issubclass(ConfigError, ValueError)

    @pytest.mark.parametrize("body", [
        '[monitor]\ninterval_seconds = "fast"\n',
        '[monitor]\nmissing_window_days = "three"\n',
        '[refresh]\ninterval_seconds = true\n',
        '[output]\nhealth_port = "http"\n',
        '[database.retry]\njitter_seconds = [0.1]\n',
        'monitor = 5\n',
    ])
    def test_non_numeric_values(self, tmp_path, body):
        """Wrongly typed values are reported as ConfigError, not a bare ValueError."""
        from cggtts_monitor.config import ConfigError, load_config

        path = tmp_path / 'config.toml'
        path.write_text(body)

        with pytest.raises(ConfigError):
            load_config(str(path))
