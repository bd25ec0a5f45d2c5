from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Generator, Iterator
from pathlib import Path

import pytest

# Register fixture plugins from tests/fixtures/
pytest_plugins = [
    "tests.fixtures.jobs",
]


@pytest.fixture(autouse=True)
def configure_test_logging() -> Generator[None, None, None]:
    """Configure structlog for test environment.

    Logs go to stderr at WARNING level so they never mix with test stdout.
    """
    from revscope.logging import clear_context, configure_logging

    configure_logging(level=logging.WARNING)
    yield
    clear_context()


@pytest.fixture
def temp_dir() -> Iterator[Path]:
    """Create a temporary directory for test files.

    Also saves and restores the current working directory to prevent
    tests that use os.chdir() from affecting other tests.
    """
    original_cwd = os.getcwd()
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)
    os.chdir(original_cwd)


@pytest.fixture
def clean_env() -> Generator[None, None, None]:
    """Remove all REVSCOPE_ environment variables for clean testing."""
    original_env = os.environ.copy()
    for key in list(os.environ.keys()):
        if key.startswith("REVSCOPE_"):
            del os.environ[key]
    yield
    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def sample_config_yaml() -> str:
    """Return sample revscope.yaml content for testing."""
    return """
commands:
  git_cmd: ["git", "-c", "core.quotepath=false"]

jobs:
  max_retries: 3
  yield_interval_ms: 5

diff:
  show_untracked: false

file_history:
  single_file:
    follow: true
    max_count: 64
"""


@pytest.fixture
def test_config(clean_env: None, temp_dir: Path):
    """A RevscopeConfig built from defaults only, with fast retries."""
    from revscope.config import JobConfig, RevscopeConfig

    os.chdir(temp_dir)
    return RevscopeConfig(jobs=JobConfig(retry_delay=0.0, yield_interval_ms=1.0))
