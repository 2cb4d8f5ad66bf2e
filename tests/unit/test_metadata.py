"""
Unit tests for tileset metadata, bounds and center
"""

from datetime import timezone

import pytest

from gsi_mbtiles.errors import FormatError
from gsi_mbtiles.metadata import (
    center_zoom,
    compute_bounds_center,
    extent_bounds,
    format_timestamp,
    parse_timestamp,
    version_string,
    write_tileset_metadata,
)
from tests.fakes import MANIFEST_TIME, TEST_SPEC


class TestTimestamps:

    def test_format(self):
        assert format_timestamp(MANIFEST_TIME) == "2024-01-02T03:04:05.000Z"

    def test_parse_formatted(self):
        assert parse_timestamp("2024-01-02T03:04:05.000Z") == MANIFEST_TIME

    def test_parse_naive_is_utc(self):
        assert parse_timestamp("2024-01-02T03:04:05").tzinfo == timezone.utc

    def test_parse_invalid(self):
        with pytest.raises(FormatError, match="lastModified"):
            parse_timestamp("last tuesday")

    def test_version_string(self):
        assert version_string(MANIFEST_TIME) == "1.0.0+20240102030405"


class TestCenterZoom:
    """Test cases for the representative center zoom"""

    @pytest.mark.parametrize("min_zoom, max_zoom, expected", [
        (5, 5, 5),
        (2, 3, 3),
        (4, 16, 10),
        (5, 15, 10),
        (14, 18, 16),
        (0, 8, 4),
    ])
    def test_center_zoom(self, min_zoom, max_zoom, expected):
        assert center_zoom(min_zoom, max_zoom) == expected


class TestExtentBounds:
    """Test cases for bounds of a tile block"""

    def test_whole_world(self):
        west, south, east, north = extent_bounds(0, 0, 0, 0, 0)
        assert west == -180.0
        assert east == pytest.approx(180.0)
        assert south == pytest.approx(-85.0511, abs=0.0001)
        assert north == pytest.approx(85.0511, abs=0.0001)

    def test_block_of_tiles(self):
        """Columns 3..5, bottom-origin rows 1..2 at zoom 3"""
        west, south, east, north = extent_bounds(3, 5, 1, 2, 3)
        assert west == pytest.approx(-45.0)
        assert east == pytest.approx(90.0)
        assert -90.0 <= south < north < 0.0

    def test_stays_in_valid_range(self):
        west, south, east, north = extent_bounds(0, 7, 0, 7, 3)
        assert -180.0 <= west <= east <= 180.0
        assert -90.0 <= south <= north <= 90.0


class TestComputeBoundsCenter:
    """Test cases for bounds and center derived from stored tiles"""

    def test_empty_archive(self, archive):
        assert compute_bounds_center(archive, 2, 3) is None

    def test_uses_min_zoom(self, archive):
        archive.upsert_tile_ref(2, 1, 1, "a", 1)
        archive.upsert_tile_ref(3, 7, 7, "a", 1)

        bounds, center = compute_bounds_center(archive, 2, 3)

        assert bounds == extent_bounds(1, 1, 1, 1, 2)
        west, south, east, north = bounds
        lon, lat, zoom = center
        assert lon == pytest.approx((west + east) / 2)
        assert lat == pytest.approx((south + north) / 2)
        assert zoom == 3

    def test_falls_back_to_lowest_zoom(self, archive):
        archive.upsert_tile_ref(4, 2, 3, "a", 1)
        archive.upsert_tile_ref(5, 0, 0, "a", 1)

        bounds, _ = compute_bounds_center(archive, 2, 5)

        assert bounds == extent_bounds(2, 2, 3, 3, 4)


class TestWriteTilesetMetadata:
    """Test cases for the metadata written after a sync"""

    def test_writes_all_keys(self, archive):
        archive.upsert_tile_ref(2, 1, 1, "a", 1)

        write_tileset_metadata(archive, "test", TEST_SPEC, "png", MANIFEST_TIME)

        assert archive.tileset_id == "test"
        assert archive.get_metadata("name") == "Test tiles"
        assert archive.get_metadata("format") == "png"
        assert archive.get_metadata("minzoom") == "2"
        assert archive.get_metadata("maxzoom") == "3"
        assert archive.get_metadata("version") == "1.0.0+20240102030405"
        assert archive.get_metadata("lastModified") == "2024-01-02T03:04:05.000Z"
        assert "GSI" in archive.get_metadata("attribution")
        assert len(archive.get_metadata("bounds").split(",")) == 4
        assert archive.get_metadata("center").split(",")[2] == "3"

    def test_no_bounds_without_tiles(self, archive):
        write_tileset_metadata(archive, "test", TEST_SPEC, "png", MANIFEST_TIME)
        assert archive.get_metadata("bounds") is None
        assert archive.get_metadata("center") is None
        assert archive.get_metadata("format") == "png"

    def test_rewrite_updates_values(self, archive):
        write_tileset_metadata(archive, "test", TEST_SPEC, "png", MANIFEST_TIME)
        later = MANIFEST_TIME.replace(year=2025)
        write_tileset_metadata(archive, "test", TEST_SPEC, "png", later)
        assert archive.get_metadata("version") == "1.0.0+20250102030405"
