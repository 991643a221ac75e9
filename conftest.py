import os
import sys
from pathlib import Path

import pytest

# The `common`, `dal` and `schema` packages live under src/ and are imported
# without an editable install, so src/ must be on sys.path before collection.

MIN_PYTHON = (3, 10)

if sys.version_info < MIN_PYTHON:
    sys.exit(
        "tablegrid-engine requires Python %d.%d+ (found %s)."
        % (*MIN_PYTHON, sys.version.split()[0])
    )

SRC_DIR = Path(__file__).resolve().parent / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))


def _runs_integration() -> bool:
    return os.getenv("RUN_INTEGRATION_TESTS", "0") == "1"


def pytest_collection_modifyitems(config, items):
    """Skip tests that need a live database unless RUN_INTEGRATION_TESTS=1."""
    if _runs_integration():
        return
    skip = pytest.mark.skip(reason="needs a live database; set RUN_INTEGRATION_TESTS=1")
    for item in items:
        in_integration_dir = "integration" in Path(str(item.fspath)).parts
        if in_integration_dir or item.get_closest_marker("integration"):
            item.add_marker(skip)
