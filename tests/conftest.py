"""Pytest fixtures shared by the maestro test suite.

- valid_config_dict / temp_config_file: YAML configuration on disk
- free_udp_port: a loopback UDP port that was free a moment ago
- clean_env: removes MAESTRO_* overrides from the environment
- reset_log_level: undoes set_level() after each test
"""

import os
import socket
import tempfile

import pytest
import yaml

from maestro.log import set_level


@pytest.fixture
def valid_config_dict():
    """Valid config dict for testing."""
    return {
        'mixer': {'host': '10.0.0.20', 'port': 10023},
        'osc': {'local_host': '0.0.0.0', 'local_port': 0},
        'logging': {'level': 'DEBUG'},
    }


@pytest.fixture
def temp_config_file(valid_config_dict):
    """Create a temporary config file."""
    with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
        yaml.dump(valid_config_dict, f)
        temp_path = f.name
    yield temp_path
    os.unlink(temp_path)


@pytest.fixture
def free_udp_port():
    """Loopback UDP port number that is currently unbound."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("MAESTRO_MIXER_HOST", raising=False)
    monkeypatch.delenv("MAESTRO_LOG_LEVEL", raising=False)


@pytest.fixture(autouse=True)
def reset_log_level():
    """Drop any level set through the CLI so later tests see the default."""
    yield
    set_level(None)
