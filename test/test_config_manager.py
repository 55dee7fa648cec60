"""
Unit tests for ConfigManager.
"""

import pytest

from venuesync.config_manager import ConfigManager, SyncSettings


@pytest.fixture
def config_manager(temp_db):
    """Create a ConfigManager instance for testing."""
    return ConfigManager(temp_db)


def test_get_default(config_manager):
    """Test getting default configuration values."""
    assert config_manager.get('heartbeat_timeout_seconds') == '21600'
    assert config_manager.get('activity_retention_days') == '30'
    assert config_manager.get('default_volume') == '80'
    assert config_manager.get('identity_endpoint') is None


def test_set_and_get(config_manager):
    """Test setting and getting configuration values."""
    config_manager.set('history_limit', '50')
    assert config_manager.get('history_limit') == '50'

    config_manager.set('test_key', 'test_value')
    assert config_manager.get('test_key') == 'test_value'


def test_get_int(config_manager):
    """Test getting integer configuration values."""
    config_manager.set('test_int', '42')
    assert config_manager.get_int('test_int') == 42

    assert config_manager.get_int('nonexistent', default=10) == 10

    config_manager.set('invalid_int', 'not_a_number')
    assert config_manager.get_int('invalid_int', default=0) == 0


def test_get_float(config_manager):
    """Test getting float configuration values."""
    config_manager.set('test_float', '0.25')
    assert config_manager.get_float('test_float') == 0.25

    assert config_manager.get_float('nonexistent', default=1.0) == 1.0

    config_manager.set('invalid_float', 'not_a_number')
    assert config_manager.get_float('invalid_float', default=0.0) == 0.0


def test_get_bool(config_manager):
    """Test getting boolean configuration values."""
    config_manager.set('test_bool', 'true')
    assert config_manager.get_bool('test_bool') is True

    config_manager.set('test_bool', '0')
    assert config_manager.get_bool('test_bool') is False

    assert config_manager.get_bool('nonexistent', default=True) is True


def test_environment_overrides_database(config_manager, monkeypatch):
    config_manager.set('history_limit', '50')
    monkeypatch.setenv('VENUESYNC_HISTORY_LIMIT', '5')

    assert config_manager.get_int('history_limit') == 5


def test_get_all(config_manager):
    """Test getting all configuration values."""
    config_manager.set('history_limit', '7')
    config_manager.set('custom_key', 'custom_value')

    all_config = config_manager.get_all()

    assert 'heartbeat_timeout_seconds' in all_config
    assert 'identity_endpoint' in all_config
    assert all_config['history_limit'] == '7'
    assert all_config['custom_key'] == 'custom_value'


def test_settings_defaults(config_manager):
    assert config_manager.settings() == SyncSettings()


def test_settings_resolution(config_manager, monkeypatch):
    config_manager.set('heartbeat_timeout_seconds', '60')
    config_manager.set('command_retry_attempts', '5')
    config_manager.set('identity_endpoint', 'https://id.example.com/v1')
    monkeypatch.setenv('VENUESYNC_IDENTITY_PROJECT_ID', 'proj-1')

    settings = config_manager.settings()

    assert settings.heartbeat_timeout_seconds == 60.0
    assert settings.command_retry_attempts == 5
    assert settings.identity_endpoint == 'https://id.example.com/v1'
    assert settings.identity_project_id == 'proj-1'
    assert settings.default_volume == 80


def test_invalid_value_falls_back(config_manager):
    config_manager.set('broadcast_queue_size', 'lots')
    assert config_manager.settings().broadcast_queue_size == 100


def test_config_persistence(temp_db):
    """Test that configuration persists across ConfigManager instances."""
    cm1 = ConfigManager(temp_db)
    cm1.set('history_limit', '9')

    cm2 = ConfigManager(temp_db)
    assert cm2.get('history_limit') == '9'
