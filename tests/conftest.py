"""Shared pytest configuration and fixtures for the test suite."""

import atexit
import os
import shutil
import tempfile
from pathlib import Path

import pytest
import yaml

_TEST_DATA_DIR = Path(tempfile.mkdtemp(prefix="tb-tests-"))
os.environ["TB_DATA_PATH"] = str(_TEST_DATA_DIR)
_TEST_CONFIG_FILE = _TEST_DATA_DIR / "config.yaml"

_TEST_CONFIG_FILE.write_text(
    yaml.safe_dump(
        {
            "log_level": "DEBUG",
            "services": {
                "anilist": {"token": "anilist-token"},
                "mal": {"client_id": "mal-client"},
            },
            "sync": {"debounce_delay": 0.01, "sync_interval": 0},
        },
        sort_keys=False,
    ),
    encoding="utf-8",
)

from trackbridge.config import settings as settings_module  # noqa: E402
from trackbridge.config.database import TrackBridgeDB  # noqa: E402

settings_module.get_config.cache_clear()


@pytest.fixture
def db(tmp_path: Path):
    """Provide a freshly migrated database in a temporary directory."""
    database = TrackBridgeDB(tmp_path / "data")
    yield database
    database.close()


@atexit.register
def _cleanup_test_data_dir() -> None:
    """Remove the temporary test data directory after the test session."""
    shutil.rmtree(_TEST_DATA_DIR, ignore_errors=True)
