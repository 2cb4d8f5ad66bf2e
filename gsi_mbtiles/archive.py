"""
MBTiles archive store.
Deduplicated layout: tile bodies live once in `images` keyed by MD5, and
`tile_ref` maps each z/x/y (TMS row) to a body. The `tiles` view joins the
two so the file reads like any other MBTiles archive.
"""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Tuple

from .config import TILESET_ID_KEY


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS metadata (
  name text,
  value text
);

CREATE TABLE IF NOT EXISTS images (
  md5 text,
  tile_size integer,
  tile_data blob
);

CREATE TABLE IF NOT EXISTS tile_ref (
  zoom_level INTEGER,
  tile_column INTEGER,
  tile_row INTEGER,
  image_md5 text,
  updated_at integer
);

CREATE UNIQUE INDEX IF NOT EXISTS md5 ON images (md5);
CREATE UNIQUE INDEX IF NOT EXISTS name ON metadata (name);
CREATE UNIQUE INDEX IF NOT EXISTS xyz ON tile_ref (zoom_level, tile_column, tile_row);

CREATE VIEW IF NOT EXISTS tiles AS
  SELECT
    tile_ref.zoom_level AS zoom_level,
    tile_ref.tile_column AS tile_column,
    tile_ref.tile_row AS tile_row,
    images.tile_data AS tile_data
  FROM
    tile_ref
  JOIN images ON images.md5 = tile_ref.image_md5;
"""


class MBTilesArchive:
    """
    Store session for one MBTiles file.

    Created once per run and handed to every sync step. All statements run
    under one lock, so worker threads may share the session; each statement
    outside transaction() commits on its own.
    """

    SQL_GET_METADATA = "SELECT value FROM metadata WHERE name = ?"
    SQL_SET_METADATA = (
        "INSERT INTO metadata (name, value) VALUES (?, ?) "
        "ON CONFLICT (name) DO UPDATE SET value = excluded.value"
    )
    SQL_HAS_IMAGE = "SELECT 1 FROM images WHERE md5 = ?"
    SQL_PUT_IMAGE = (
        "INSERT INTO images (md5, tile_size, tile_data) VALUES (?, ?, ?) "
        "ON CONFLICT (md5) DO NOTHING"
    )
    SQL_UPSERT_TILE_REF = """
        INSERT INTO tile_ref (zoom_level, tile_column, tile_row, image_md5, updated_at)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT (zoom_level, tile_column, tile_row) DO UPDATE SET
          image_md5 = excluded.image_md5,
          updated_at = excluded.updated_at
        WHERE updated_at <> excluded.updated_at
    """
    SQL_MARK_SEEN = "INSERT OR IGNORE INTO temp.seen_ref (zoom_level, tile_column, tile_row) VALUES (?, ?, ?)"
    SQL_PRUNE_UNSEEN = """
        DELETE FROM tile_ref WHERE NOT EXISTS (
          SELECT 1 FROM temp.seen_ref s
          WHERE s.zoom_level = tile_ref.zoom_level
            AND s.tile_column = tile_ref.tile_column
            AND s.tile_row = tile_ref.tile_row
        )
    """
    SQL_DELETE_UNUSED_IMAGES = """
        DELETE FROM images WHERE md5 IN (
          SELECT i.md5
            FROM images i
            LEFT JOIN tile_ref tr ON tr.image_md5 = i.md5
            WHERE tr.image_md5 IS NULL
        )
    """
    SQL_ZOOM_EXTENT = """
        SELECT MIN(tile_column), MAX(tile_column), MIN(tile_row), MAX(tile_row)
        FROM tile_ref WHERE zoom_level = ?
    """

    def __init__(self, path: Path, readonly: bool = False):
        """
        Open (and for writers, initialize) an archive.

        Args:
            path: Path to the .mbtiles file; created if missing unless readonly
            readonly: Open without creating or altering the file
        """
        self.path = Path(path)
        self.readonly = readonly
        self._lock = threading.RLock()
        if readonly:
            uri = self.path.resolve().as_uri() + "?mode=ro"
            self._conn = sqlite3.connect(uri, uri=True, check_same_thread=False)
        else:
            # Autocommit: every statement outside transaction() is durable on its own
            self._conn = sqlite3.connect(str(self.path), check_same_thread=False, isolation_level=None)
            self._conn.executescript(SCHEMA_SQL)

    def __enter__(self) -> "MBTilesArchive":
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self):
        with self._lock:
            self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group statements into one commit; rolled back if the body raises."""
        with self._lock:
            self._conn.execute("BEGIN")
            try:
                yield
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        with self._lock:
            return self._conn.execute(sql, params)

    def _fetchone(self, sql: str, params: tuple = ()) -> Optional[tuple]:
        with self._lock:
            return self._conn.execute(sql, params).fetchone()

    # -------- metadata --------

    def get_metadata(self, name: str) -> Optional[str]:
        row = self._fetchone(self.SQL_GET_METADATA, (name,))
        return row[0] if row else None

    def set_metadata(self, name: str, value: str):
        self._execute(self.SQL_SET_METADATA, (name, value))

    @property
    def tileset_id(self) -> Optional[str]:
        return self.get_metadata(TILESET_ID_KEY)

    # -------- images --------

    def has_image(self, md5: str) -> bool:
        return self._fetchone(self.SQL_HAS_IMAGE, (md5,)) is not None

    def put_image(self, md5: str, size: int, data: bytes):
        """Store a tile body. A digest already present is left untouched."""
        self._execute(self.SQL_PUT_IMAGE, (md5, size, sqlite3.Binary(data)))

    def count_images(self) -> int:
        return self._fetchone("SELECT count(*) FROM images")[0]

    def delete_unused_images(self) -> int:
        """Delete every image no tile_ref points at. Returns rows deleted."""
        return self._execute(self.SQL_DELETE_UNUSED_IMAGES).rowcount

    # -------- tile references --------

    def count_tile_refs(self) -> int:
        return self._fetchone("SELECT count(*) FROM tile_ref")[0]

    def upsert_tile_ref(self, zoom: int, column: int, row: int, md5: str, updated_at: int) -> bool:
        """
        Point (zoom, column, row) at md5.

        Args:
            row: Bottom-origin (TMS) row

        Returns:
            True if a row was inserted or changed, False if updated_at already matched
        """
        cur = self._execute(self.SQL_UPSERT_TILE_REF, (zoom, column, row, md5, updated_at))
        return cur.rowcount > 0

    def begin_seen_refs(self):
        """Start recording which coordinates the current manifest lists."""
        with self._lock:
            self._conn.execute(
                "CREATE TEMP TABLE IF NOT EXISTS seen_ref ("
                "zoom_level INTEGER, tile_column INTEGER, tile_row INTEGER, "
                "PRIMARY KEY (zoom_level, tile_column, tile_row)) WITHOUT ROWID"
            )
            self._conn.execute("DELETE FROM temp.seen_ref")

    def mark_ref_seen(self, zoom: int, column: int, row: int):
        self._execute(self.SQL_MARK_SEEN, (zoom, column, row))

    def prune_unseen_refs(self) -> int:
        """Delete references not recorded since begin_seen_refs(). Returns rows deleted."""
        with self._lock:
            deleted = self._conn.execute(self.SQL_PRUNE_UNSEEN).rowcount
            self._conn.execute("DROP TABLE temp.seen_ref")
        return deleted

    def zoom_extent(self, zoom: int) -> Optional[Tuple[int, int, int, int]]:
        """(min_column, max_column, min_row, max_row) at a zoom level, or None if empty."""
        row = self._fetchone(self.SQL_ZOOM_EXTENT, (zoom,))
        if row is None or row[0] is None:
            return None
        return tuple(row)

    def lowest_zoom(self) -> Optional[int]:
        return self._fetchone("SELECT MIN(zoom_level) FROM tile_ref")[0]

    def get_tile(self, zoom: int, column: int, row: int) -> Optional[bytes]:
        """Tile body through the tiles view (row is TMS), or None if not found."""
        found = self._fetchone(
            "SELECT tile_data FROM tiles WHERE zoom_level = ? AND tile_column = ? AND tile_row = ?",
            (zoom, column, row),
        )
        return found[0] if found else None

    # -------- maintenance --------

    def vacuum(self):
        self._execute("VACUUM")

    def enable_wal(self):
        """Switch to write-ahead logging for the duration of a sync."""
        self._execute("PRAGMA journal_mode = WAL")

    def finalize(self):
        """Fold the WAL back into the main file so the archive is a single file."""
        self._execute("PRAGMA journal_mode = DELETE")

    def get_info(self) -> dict:
        """Get archive information."""
        dangling = self._fetchone(
            "SELECT count(*) FROM tile_ref tr LEFT JOIN images i ON i.md5 = tr.image_md5 "
            "WHERE i.md5 IS NULL"
        )[0]
        return {
            "tileset_id": self.tileset_id,
            "name": self.get_metadata("name"),
            "format": self.get_metadata("format"),
            "min_zoom": self.get_metadata("minzoom"),
            "max_zoom": self.get_metadata("maxzoom"),
            "version": self.get_metadata("version"),
            "tile_count": self.count_tile_refs(),
            "image_count": self.count_images(),
            "dangling_refs": dangling,
            "file_size": self.path.stat().st_size,
        }


def verify_archive(archive_path: Path) -> bool:
    """
    Verify archive integrity: metadata present and every reference resolvable.

    Args:
        archive_path: Path to .mbtiles file

    Returns:
        True if archive appears valid
    """
    archive_path = Path(archive_path)
    if not archive_path.is_file():
        print(f"Archive verification failed: {archive_path} not found")
        return False
    try:
        with MBTilesArchive(archive_path, readonly=True) as archive:
            info = archive.get_info()
    except sqlite3.DatabaseError as e:
        print(f"Archive verification failed: {e}")
        return False

    if info["tileset_id"] is None:
        print("Archive verification failed: no tileset id recorded")
        return False
    if info["dangling_refs"]:
        print(f"Archive verification failed: {info['dangling_refs']} tiles reference missing images")
        return False

    print(f"Archive verified ({info['tileset_id']} {info['version']}): "
          f"{info['tile_count']:,} tiles, {info['image_count']:,} unique images, "
          f"format {info['format']}, zoom {info['min_zoom']}-{info['max_zoom']}, "
          f"size {info['file_size'] / 1024 / 1024:.1f} MB")
    return True
