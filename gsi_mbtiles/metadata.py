"""
MBTiles metadata written at the end of a successful sync: tileset identity,
zoom range, version, the manifest time used as the next run's checkpoint,
and bounds/center derived from the stored tiles.
"""

from datetime import datetime, timezone
from typing import Optional, Tuple

from .archive import MBTilesArchive
from .config import ATTRIBUTION, LAST_MODIFIED_KEY, TILESET_ID_KEY, TilesetSpec
from .errors import FormatError
from .tiles import tms_tile_bounds


Bounds = Tuple[float, float, float, float]


def format_timestamp(ts: datetime) -> str:
    """UTC ISO-8601 timestamp with millisecond precision and 'Z' suffix."""
    return ts.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse a timestamp written by format_timestamp (or any ISO-8601 string)."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        ts = datetime.fromisoformat(value)
    except ValueError as e:
        raise FormatError(f"invalid {LAST_MODIFIED_KEY} in archive: {value!r}") from e
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def version_string(last_modified: datetime) -> str:
    return "1.0.0+" + last_modified.astimezone(timezone.utc).strftime("%Y%m%d%H%M%S")


def extent_bounds(
    min_x: int, max_x: int, min_row: int, max_row: int, zoom: int
) -> Bounds:
    """
    Geographic bounds covering a block of tiles, clamped to the valid range.

    Args:
        min_x, max_x: Tile column range
        min_row, max_row: Tile row range (TMS, bottom-origin)
        zoom: Zoom level of the tiles

    Returns:
        (west, south, east, north) in degrees
    """
    west, south, _, _ = tms_tile_bounds(min_x, min_row, zoom)
    _, _, east, north = tms_tile_bounds(max_x, max_row, zoom)
    return (
        max(west, -180.0),
        max(south, -90.0),
        min(east, 180.0),
        min(north, 90.0),
    )


def center_zoom(min_zoom: int, max_zoom: int) -> int:
    """Representative zoom for the center: max for narrow ranges, else the middle."""
    span = max_zoom - min_zoom
    if span <= 1:
        return max_zoom
    return int(span * 0.5) + min_zoom


def compute_bounds_center(
    archive: MBTilesArchive, min_zoom: int, max_zoom: int
) -> Optional[Tuple[Bounds, Tuple[float, float, int]]]:
    """
    Derive bounds and center from the tiles stored at min_zoom.

    Falls back to the lowest zoom present when min_zoom has no tiles.

    Returns:
        (bounds, (lon, lat, zoom)), or None if the archive has no tiles
    """
    zoom = min_zoom
    extent = archive.zoom_extent(zoom)
    if extent is None:
        lowest = archive.lowest_zoom()
        if lowest is None:
            return None
        zoom = lowest
        extent = archive.zoom_extent(zoom)

    bounds = extent_bounds(*extent, zoom)
    west, south, east, north = bounds
    center = (
        (east - west) / 2 + west,
        (north - south) / 2 + south,
        center_zoom(min_zoom, max_zoom),
    )
    return bounds, center


def write_tileset_metadata(
    archive: MBTilesArchive,
    tileset_id: str,
    spec: TilesetSpec,
    tile_format: str,
    last_modified: datetime,
):
    """
    Record tileset identity and descriptive metadata.

    Args:
        archive: Store session
        tileset_id: Registry id the archive is bound to
        spec: Registry entry
        tile_format: Tile file extension, e.g. "png" or "pbf"
        last_modified: Manifest time; the next run compares against it
    """
    values = {
        TILESET_ID_KEY: tileset_id,
        "name": spec.name,
        "format": tile_format,
        "minzoom": str(spec.min_zoom),
        "maxzoom": str(spec.max_zoom),
        "version": version_string(last_modified),
        LAST_MODIFIED_KEY: format_timestamp(last_modified),
        "attribution": ATTRIBUTION,
    }
    bounds_center = compute_bounds_center(archive, spec.min_zoom, spec.max_zoom)
    if bounds_center is not None:
        bounds, center = bounds_center
        values["bounds"] = ",".join(str(v) for v in bounds)
        values["center"] = ",".join(str(v) for v in center)

    with archive.transaction():
        for name, value in values.items():
            archive.set_metadata(name, value)
