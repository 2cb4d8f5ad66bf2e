# GSI MBTiles Mirror
# Downloads GSI tilesets into deduplicated MBTiles archives and keeps them in sync

from .config import TILESETS, TilesetSpec, get_tileset
from .download import TileDownloader, TileDescriptor, Manifest
from .archive import MBTilesArchive, verify_archive
from .process import terrain_rgb
from .generate import SyncResult, SyncState, TilesetSync, sync_tileset

__all__ = [
    'TILESETS', 'TilesetSpec', 'get_tileset',
    'TileDownloader', 'TileDescriptor', 'Manifest',
    'MBTilesArchive', 'verify_archive',
    'terrain_rgb',
    'SyncResult', 'SyncState', 'TilesetSync', 'sync_tileset',
]
