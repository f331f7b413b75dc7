import sys
from pathlib import Path

import pytest

# Ensure the `ofdb_import` package is importable when running pytest from the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fakes import FakeCatalog, FakeGeocoder  # noqa: E402


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def geocoder():
    return FakeGeocoder()


@pytest.fixture
def write_csv(tmp_path):
    def _write(name, text):
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return path

    return _write
