# tests/conftest.py
import os

import pytest

# Set the TESTING environment variable before any tests are collected/run
os.environ["TESTING"] = "True"

from install_scheduler.config import get_settings


@pytest.fixture(autouse=True)
def fresh_settings():
    """Re-read settings for every test so monkeypatched env vars take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
