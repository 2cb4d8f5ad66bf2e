"""
Configuration for GSI tile mirroring.
Defines the tile host, the registry of known tilesets, and tuning constants.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from .process import terrain_rgb


# Tile host configuration
# Every tileset lives under https://<host>/xyz/<source-id>/ together with its
# mokuroku.csv.gz manifest
TILE_HOST = "cyberjapandata.gsi.go.jp"
MANIFEST_URL = "https://" + TILE_HOST + "/xyz/{manifest_id}/mokuroku.csv.gz"
TILE_URL = "https://" + TILE_HOST + "/xyz/{source_id}/{path}"
USER_AGENT = "gsi-mbtiles/1.0 (offline MBTiles mirror of GSI tiles)"
REQUEST_TIMEOUT_SEC = 30

ATTRIBUTION = '<a href="https://www.gsi.go.jp/" target="_blank">&copy; GSI Japan</a>'

DEFAULT_OUTPUT = "./out.mbtiles"

# Content sync runs this many fetches at once; also sizes the HTTP pool
CONTENT_WORKERS = 20

# Seconds between progress lines while tiles are downloading
PROGRESS_INTERVAL_SEC = 10

# Reference sync reports and commits every N manifest rows
REF_BATCH_SIZE = 10_000

# Metadata key holding the tileset a file is bound to
TILESET_ID_KEY = "_gsi_tileset_id"
LAST_MODIFIED_KEY = "lastModified"


@dataclass(frozen=True)
class TilesetSpec:
    """A GSI tileset and how to mirror it.

    source_id is the directory tiles are fetched from, manifest_id the one
    the mokuroku is read from. Both default to the registry key.
    """
    name: str
    min_zoom: int
    max_zoom: int
    kind: str  # "vector" or "raster"
    source_id: Optional[str] = None
    manifest_id: Optional[str] = None
    transform: Optional[Callable[[bytes], bytes]] = None

    def tile_source(self, tileset_id: str) -> str:
        return self.source_id or tileset_id

    def manifest_source(self, tileset_id: str) -> str:
        return self.manifest_id or self.source_id or tileset_id


# Tileset registry keyed by the id given on the command line
# Zoom ranges are inclusive; wider ranges mean exponentially more tiles
TILESETS = {
    "experimental_bvmap": TilesetSpec(
        name="地理院地図Vector",
        min_zoom=4,
        max_zoom=16,
        kind="vector",
    ),
    "relief": TilesetSpec(
        name="色別標高図",
        min_zoom=5,
        max_zoom=15,
        kind="raster",
    ),
    "hillshademap": TilesetSpec(
        name="陰影起伏図",
        min_zoom=2,
        max_zoom=16,
        kind="raster",
    ),
    "earthhillshade": TilesetSpec(
        name="陰影起伏図（全球版）",
        min_zoom=0,
        max_zoom=8,
        kind="raster",
    ),
    "20150911dol": TilesetSpec(
        name="口永良部島の火山活動 UAV撮影による正射画像（2015年9月8,11,12日撮影）",
        min_zoom=14,
        max_zoom=18,
        kind="raster",
    ),
    # Elevation PNG re-encoded for raster-dem consumers
    "dem_terrain_rgb": TilesetSpec(
        name="標高タイル（Terrain-RGB）",
        min_zoom=1,
        max_zoom=14,
        kind="raster",
        source_id="dem_png",
        transform=terrain_rgb,
    ),
}


def get_tileset(tileset_id: str) -> TilesetSpec:
    """Look up a tileset, raising KeyError with the known ids on a miss."""
    try:
        return TILESETS[tileset_id]
    except KeyError:
        raise KeyError(
            f"'tileset-id' must be one of: {', '.join(TILESETS)}"
        ) from None
