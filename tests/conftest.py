"""
Shared fixtures: a temporary archive and a reporter writing to memory.
"""

import io

import pytest

from gsi_mbtiles.archive import MBTilesArchive
from gsi_mbtiles.progress import Reporter


@pytest.fixture
def archive_path(tmp_path):
    return tmp_path / "test.mbtiles"


@pytest.fixture
def archive(archive_path):
    store = MBTilesArchive(archive_path)
    yield store
    store.close()


@pytest.fixture
def reporter():
    return Reporter("test", stream=io.StringIO())
