"""
Synchronization steps between a manifest and an MBTiles archive.

The steps must run in order: images for every digest are stored before any
reference to them is written, and unused images are only collected once the
reference pass is complete.
"""

import itertools
from contextlib import nullcontext
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Set

from .archive import MBTilesArchive
from .config import CONTENT_WORKERS, PROGRESS_INTERVAL_SEC, REF_BATCH_SIZE
from .download import TileDescriptor
from .progress import Reporter
from .tiles import parse_tile_path


TileTransform = Callable[[bytes], bytes]


@dataclass
class ImageSyncStats:
    total: int
    inserted: int = 0
    skipped: int = 0

    @property
    def remaining(self) -> int:
        return self.total - self.inserted - self.skipped


@dataclass
class RefSyncStats:
    total: int
    processed: int = 0
    written: int = 0
    pruned: int = 0


def unique_by_digest(rows: Iterable[TileDescriptor]) -> List[TileDescriptor]:
    """
    Keep the first row for each digest, in order of first appearance.

    Tiles with identical content (open sea, blank land) share a digest, so
    this is the set of bodies that actually has to be downloaded.
    """
    seen: Set[str] = set()
    unique = []
    for row in rows:
        if row.digest in seen:
            continue
        seen.add(row.digest)
        unique.append(row)
    return unique


def _store_image(
    archive: MBTilesArchive,
    downloader,
    source_id: str,
    row: TileDescriptor,
    transform: Optional[TileTransform],
) -> bool:
    """Fetch and store one body unless present. Returns True if inserted."""
    if archive.has_image(row.digest):
        return False
    data = downloader.fetch_tile(source_id, row.path)
    if transform is not None:
        data = transform(data)
    archive.put_image(row.digest, row.size, data)
    return True


def sync_images(
    archive: MBTilesArchive,
    downloader,
    source_id: str,
    rows: List[TileDescriptor],
    transform: Optional[TileTransform] = None,
    workers: int = CONTENT_WORKERS,
    reporter: Optional[Reporter] = None,
    interval: float = PROGRESS_INTERVAL_SEC,
) -> ImageSyncStats:
    """
    Download and store every body the archive does not have yet.

    Runs up to `workers` fetches at once. The first failure cancels queued
    fetches, waits for running ones and is re-raised; bodies stored before
    that stay in the archive, so a re-run only fetches what is missing.

    Args:
        archive: Store session
        downloader: Object with fetch_tile(source_id, path) -> bytes
        source_id: GSI directory tiles are fetched from
        rows: Descriptors with unique digests (see unique_by_digest)
        transform: Optional bytes -> bytes conversion applied before storing
        workers: Size of the fetch pool
        reporter: Progress output; silent if None
        interval: Seconds between progress lines

    Returns:
        ImageSyncStats with inserted/skipped counts
    """
    stats = ImageSyncStats(total=len(rows))
    queue = iter(rows)
    max_pending = workers * 4
    pending: Set[Future] = set()

    def fill(pool: ThreadPoolExecutor):
        for row in itertools.islice(queue, max_pending - len(pending)):
            pending.add(pool.submit(_store_image, archive, downloader, source_id, row, transform))

    def report() -> str:
        return (f"[tile download] remaining={stats.remaining} newlyInserted={stats.inserted} "
                f"skipped={stats.skipped} total={stats.total}")

    pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="tile-fetch")
    try:
        progress = reporter.every(interval, report) if reporter is not None else nullcontext()
        with progress:
            fill(pool)
            while pending:
                done, not_done = wait(pending, return_when=FIRST_COMPLETED)
                pending.intersection_update(not_done)
                for future in done:
                    if future.result():
                        stats.inserted += 1
                    else:
                        stats.skipped += 1
                fill(pool)
    finally:
        pool.shutdown(wait=True, cancel_futures=True)
    return stats


def sync_tile_refs(
    archive: MBTilesArchive,
    rows: List[TileDescriptor],
    reporter: Optional[Reporter] = None,
    batch_size: int = REF_BATCH_SIZE,
) -> RefSyncStats:
    """
    Point every manifest coordinate at its digest, then drop coordinates the
    manifest no longer lists.

    Rows are written in manifest order, one transaction per batch. A
    reference whose updated_at already matches the manifest stamp is not
    rewritten.

    Args:
        archive: Store session
        rows: Every manifest row (not deduplicated)
        reporter: Progress output; silent if None
        batch_size: Rows per commit and per progress line

    Returns:
        RefSyncStats with written and pruned counts

    Raises:
        ParseError: if a manifest path is malformed
    """
    stats = RefSyncStats(total=len(rows))
    queue = iter(rows)
    archive.begin_seen_refs()
    while True:
        batch = list(itertools.islice(queue, batch_size))
        if not batch:
            break
        with archive.transaction():
            for row in batch:
                tile = parse_tile_path(row.path)
                if archive.upsert_tile_ref(tile.z, tile.x, tile.tms_row, row.digest, row.modified):
                    stats.written += 1
                archive.mark_ref_seen(tile.z, tile.x, tile.tms_row)
        stats.processed += len(batch)
        if reporter is not None:
            reporter.log(f"[tile sync] current={stats.processed} total={stats.total}")

    with archive.transaction():
        stats.pruned = archive.prune_unseen_refs()
    return stats


def delete_unused_images(archive: MBTilesArchive, reporter: Optional[Reporter] = None) -> int:
    """
    Remove images no reference points at, then VACUUM.

    Only safe once sync_tile_refs has finished for the whole manifest.

    Returns:
        Number of images deleted
    """
    log = reporter.log if reporter is not None else (lambda message: None)
    log("[image cleanup] start")
    deleted = archive.delete_unused_images()
    log(f"[image cleanup] done, deleted={deleted}")

    log("[VACUUM] start")
    archive.vacuum()
    log("[VACUUM] done")
    return deleted
