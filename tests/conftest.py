"""
Global pytest configuration and fixtures

Provides:
- Test markers
- Config file factory
"""

import json

import pytest
import yaml


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom settings"""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "plugin: Plugin tests")


# ============================================================================
# Config Files
# ============================================================================

@pytest.fixture
def sample_config():
    """Service configuration as it would appear on disk"""
    return {
        "nats_url": "nats://nats.example:4222",
        "log_level": "debug",
        "server_shutdown": {
            "ServerShutdownAutoRestart": True,
            "ServerShutdownSchedule": "04:00,16:00",
            "ServerShutdownEnableVote": True,
            "ServerShutdownVotePercent": 0.6,
            "ServerShutdownCountdownTime": 5,
        },
    }


@pytest.fixture
def write_config(tmp_path):
    """Factory writing a config dict to a .json or .yaml file"""
    def _write(data, suffix=".json"):
        path = tmp_path / f"config{suffix}"
        with open(path, "w", encoding="utf-8") as fp:
            if suffix in (".yaml", ".yml"):
                yaml.safe_dump(data, fp)
            else:
                json.dump(data, fp)
        return str(path)
    return _write
