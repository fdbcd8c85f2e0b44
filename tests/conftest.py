import os
import sys
import tempfile

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# Keep config/log files out of the real user data dir.
os.environ.setdefault("UNITORRENT_DATA_DIR", tempfile.mkdtemp(prefix="unitorrent-tests-"))

import normalizer  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_warning_registry():
    normalizer.reset_warnings()
    yield
    normalizer.reset_warnings()
