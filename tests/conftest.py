"""
Shared fixtures for state sync tests.
"""

import pytest

from sidecar.statesync.store.memory import InMemoryObjectStore

from .helpers import make_config


@pytest.fixture
def config(tmp_path):
    """Sidecar configuration with state under a temporary directory."""
    return make_config(tmp_path)


@pytest.fixture
def store():
    """Fresh in-memory bucket (not yet connected)."""
    return InMemoryObjectStore()
