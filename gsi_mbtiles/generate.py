"""
GSI MBTiles Mirror

Downloads a GSI tileset into a single .mbtiles file and keeps it in sync
with the tileset's mokuroku manifest. Re-running only fetches tiles whose
content changed; an unchanged manifest is detected before its body is read.

Usage:
    python -m gsi_mbtiles relief --output relief.mbtiles
    python -m gsi_mbtiles experimental_bvmap -o bvmap.mbtiles --workers 10
    python -m gsi_mbtiles --verify relief.mbtiles
    python -m gsi_mbtiles --list
"""

import argparse
import sqlite3
import sys
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional

from .archive import MBTilesArchive, verify_archive
from .config import (
    CONTENT_WORKERS,
    DEFAULT_OUTPUT,
    LAST_MODIFIED_KEY,
    TILESET_ID_KEY,
    TILESETS,
    TilesetSpec,
    get_tileset,
)
from .download import TileDownloader
from .errors import AmbiguousExistingData, FormatError, IdentityConflict, SyncError
from .metadata import parse_timestamp, write_tileset_metadata
from .progress import Reporter
from .sync import (
    ImageSyncStats,
    RefSyncStats,
    delete_unused_images,
    sync_images,
    sync_tile_refs,
    unique_by_digest,
)
from .tiles import parse_tile_path


class SyncState(Enum):
    INIT = "init"
    VERIFY_IDENTITY = "verify_identity"
    FETCH_CATALOG = "fetch_catalog"
    UP_TO_DATE = "up_to_date"
    STALE = "stale"
    DEDUP = "dedup"
    SYNC_CONTENT = "sync_content"
    SYNC_REFERENCES = "sync_references"
    GC = "gc"
    WRITE_METADATA = "write_metadata"
    DONE = "done"


@dataclass
class SyncResult:
    updated: bool
    last_modified: Optional[datetime] = None
    images: Optional[ImageSyncStats] = None
    refs: Optional[RefSyncStats] = None
    deleted_images: int = 0


def verify_identity(archive: MBTilesArchive, tileset_id: str):
    """
    Refuse to sync into an archive that belongs to something else.

    An archive may be claimed only if it already carries this tileset id, or
    carries no id and no tiles.

    Raises:
        IdentityConflict: archive is bound to another tileset
        AmbiguousExistingData: archive has tiles but no tileset id
    """
    existing = archive.tileset_id
    if existing == tileset_id:
        return
    if existing:
        raise IdentityConflict(existing, tileset_id)
    if archive.count_tile_refs() > 0:
        raise AmbiguousExistingData(
            "archive already contains tiles from an unknown source; aborting"
        )


def claim_identity(archive: MBTilesArchive, tileset_id: str):
    """
    Bind an unclaimed archive to tileset_id before anything else is written.

    A run that aborts after committing tiles leaves the archive claimed, so
    the next run of the same tileset resumes instead of finding tiles of
    unknown origin.
    """
    if archive.tileset_id is None:
        archive.set_metadata(TILESET_ID_KEY, tileset_id)


class TilesetSync:
    """One sync run of a tileset into an archive."""

    def __init__(
        self,
        tileset_id: str,
        output_path: Path,
        spec: Optional[TilesetSpec] = None,
        downloader=None,
        reporter: Optional[Reporter] = None,
        workers: int = CONTENT_WORKERS,
    ):
        """
        Args:
            tileset_id: Registry id; also the identity written to the archive
            output_path: .mbtiles file to create or update
            spec: Tileset definition; looked up in the registry if omitted
            downloader: Object with fetch_manifest/fetch_tile; a TileDownloader if omitted
            reporter: Progress output; prints to stdout if omitted
            workers: Concurrent tile downloads
        """
        self.tileset_id = tileset_id
        self.output_path = Path(output_path)
        self.spec = spec or get_tileset(tileset_id)
        self.downloader = downloader
        self.reporter = reporter or Reporter(tileset_id)
        self.workers = workers
        self.state = SyncState.INIT

    def run(self) -> SyncResult:
        owns_downloader = self.downloader is None
        if owns_downloader:
            self.downloader = TileDownloader(pool_size=self.workers)
        archive = MBTilesArchive(self.output_path)
        try:
            return self._run(archive)
        finally:
            archive.close()
            if owns_downloader:
                self.downloader.close()

    def _run(self, archive: MBTilesArchive) -> SyncResult:
        log = self.reporter.log
        spec = self.spec

        self.state = SyncState.VERIFY_IDENTITY
        verify_identity(archive, self.tileset_id)
        last_synced_str = archive.get_metadata(LAST_MODIFIED_KEY)
        last_synced = parse_timestamp(last_synced_str) if last_synced_str else None

        self.state = SyncState.FETCH_CATALOG
        manifest = self.downloader.fetch_manifest(
            spec.manifest_source(self.tileset_id),
            spec.min_zoom,
            spec.max_zoom,
            last_synced,
        )
        if manifest.up_to_date:
            self.state = SyncState.UP_TO_DATE
            log("archive is already in sync with the manifest, nothing to do")
            return SyncResult(updated=False, last_modified=last_synced)

        self.state = SyncState.STALE
        rows = manifest.rows
        if not rows:
            raise FormatError(
                f"manifest lists no tiles between zoom {spec.min_zoom} and {spec.max_zoom}"
            )
        log(f"manifest lists {len(rows):,} tiles")
        archive.enable_wal()
        claim_identity(archive, self.tileset_id)

        self.state = SyncState.DEDUP
        unique = unique_by_digest(rows)
        log(f"manifest has {len(unique):,} unique tiles")

        self.state = SyncState.SYNC_CONTENT
        images = sync_images(
            archive,
            self.downloader,
            spec.tile_source(self.tileset_id),
            unique,
            transform=spec.transform,
            workers=self.workers,
            reporter=self.reporter,
        )
        log(f"stored {images.inserted:,} new tiles in the archive")

        self.state = SyncState.SYNC_REFERENCES
        refs = sync_tile_refs(archive, rows, reporter=self.reporter)
        log(f"updated {refs.written:,} tile references, removed {refs.pruned:,}")

        self.state = SyncState.GC
        deleted = delete_unused_images(archive, reporter=self.reporter)

        self.state = SyncState.WRITE_METADATA
        tile_format = parse_tile_path(rows[0].path).ext
        write_tileset_metadata(archive, self.tileset_id, spec, tile_format, manifest.last_modified)
        archive.finalize()

        self.state = SyncState.DONE
        return SyncResult(
            updated=True,
            last_modified=manifest.last_modified,
            images=images,
            refs=refs,
            deleted_images=deleted,
        )


def sync_tileset(
    tileset_id: str,
    output_path: Path,
    downloader=None,
    reporter: Optional[Reporter] = None,
    workers: int = CONTENT_WORKERS,
) -> SyncResult:
    """
    Create or update an MBTiles archive for a registered tileset.

    Args:
        tileset_id: Registry id (see config.TILESETS)
        output_path: Path to the .mbtiles file
        downloader: Optional downloader override
        reporter: Optional progress output
        workers: Concurrent tile downloads

    Returns:
        SyncResult; updated is False when the archive was already current
    """
    return TilesetSync(
        tileset_id, output_path, downloader=downloader, reporter=reporter, workers=workers
    ).run()


def list_tilesets():
    for tileset_id, spec in TILESETS.items():
        print(f"  {tileset_id:<20} z{spec.min_zoom}-{spec.max_zoom:<3} {spec.kind:<7} {spec.name}")


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="gsi-mbtiles",
        description="Mirror a GSI tileset into an MBTiles file",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s relief -o relief.mbtiles
      Create or refresh relief.mbtiles

  %(prog)s --verify relief.mbtiles
      Check an existing archive

  %(prog)s --list
      Show known tileset ids
"""
    )

    parser.add_argument(
        "tileset_id",
        nargs="?",
        help="GSI tileset id (see --list)"
    )

    parser.add_argument(
        "--output", "-o",
        type=Path,
        default=Path(DEFAULT_OUTPUT),
        help=f"File to create or update (default: {DEFAULT_OUTPUT})"
    )

    parser.add_argument(
        "--workers", "-w",
        type=int,
        default=CONTENT_WORKERS,
        help=f"Concurrent tile downloads (default: {CONTENT_WORKERS})"
    )

    parser.add_argument(
        "--verify",
        type=Path,
        help="Verify existing archive instead of syncing"
    )

    parser.add_argument(
        "--list",
        action="store_true",
        help="List known tileset ids and exit"
    )

    args = parser.parse_args(argv)

    if args.list:
        list_tilesets()
        return 0

    # Verify mode
    if args.verify:
        return 0 if verify_archive(args.verify) else 1

    if not args.tileset_id:
        parser.error("tileset_id is required")
    if args.workers < 1:
        parser.error("--workers must be at least 1")
    try:
        spec = get_tileset(args.tileset_id)
    except KeyError as e:
        parser.error(e.args[0])

    reporter = Reporter(args.tileset_id)
    reporter.log(f"Starting up {spec.name}...")
    try:
        result = TilesetSync(
            args.tileset_id, args.output, spec=spec, reporter=reporter, workers=args.workers
        ).run()
    except SyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except sqlite3.DatabaseError as e:
        print(f"Archive error ({args.output}): {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted. Stored tiles are kept; run again to resume.", file=sys.stderr)
        return 1

    if result.updated:
        reporter.log(f"done, archive reflects manifest of {result.last_modified.isoformat()}")
    else:
        reporter.log("done, no update performed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
