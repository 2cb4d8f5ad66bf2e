"""
Tile addressing: the {z}/{x}/{y}.{ext} path grammar, XYZ/TMS row flipping,
and Web Mercator conversions between tile indices and longitude/latitude.
"""

import math
import re
from dataclasses import dataclass
from typing import Tuple

from .errors import ParseError


_TILE_PATH_RE = re.compile(r"^(\d+)/(\d+)/(\d+)\.([A-Za-z0-9]+)$")


@dataclass(frozen=True)
class TilePath:
    """A decoded manifest path. y is top-origin (XYZ)."""
    z: int
    x: int
    y: int
    ext: str

    @property
    def tms_row(self) -> int:
        return flip_row(self.z, self.y)


def parse_tile_path(path: str) -> TilePath:
    """
    Decode a manifest path of the form "{z}/{x}/{y}.{ext}".

    Args:
        path: Path as listed in the manifest, e.g. "12/3638/1612.png"

    Returns:
        TilePath with integer coordinates and the extension

    Raises:
        ParseError: if the path does not match the grammar or the
            coordinates fall outside the zoom level's grid
    """
    match = _TILE_PATH_RE.match(path)
    if match is None:
        raise ParseError(f"malformed tile path: {path!r}")
    z, x, y = (int(g) for g in match.group(1, 2, 3))
    n = 1 << z
    if x >= n or y >= n:
        raise ParseError(f"tile path {path!r} is outside the zoom {z} grid")
    return TilePath(z, x, y, match.group(4))


def path_zoom(path: str) -> int:
    """Zoom level from the leading path segment. Raises ValueError if absent."""
    return int(path.split("/", 1)[0])


def flip_row(zoom: int, row: int) -> int:
    """Convert a row between top-origin (XYZ) and bottom-origin (TMS) numbering."""
    return (1 << zoom) - 1 - row


def tile_to_lat_lon(x: int, y: int, zoom: int) -> Tuple[float, float]:
    """
    Convert tile coordinates to latitude/longitude (top-left corner of tile).

    Args:
        x: Tile X coordinate
        y: Tile Y coordinate (XYZ, top-origin)
        zoom: Zoom level

    Returns:
        Tuple of (latitude, longitude) in degrees
    """
    n = 2 ** zoom
    lon = x / n * 360.0 - 180.0
    lat_rad = math.atan(math.sinh(math.pi * (1 - 2 * y / n)))
    lat = math.degrees(lat_rad)
    return (lat, lon)


def tms_tile_bounds(x: int, row: int, zoom: int) -> Tuple[float, float, float, float]:
    """
    Geographic extent of a tile addressed with a bottom-origin (TMS) row.

    Returns:
        (west, south, east, north) in degrees
    """
    y = flip_row(zoom, row)
    north, west = tile_to_lat_lon(x, y, zoom)
    south, east = tile_to_lat_lon(x + 1, y + 1, zoom)
    return (west, south, east, north)
