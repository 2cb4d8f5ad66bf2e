"""
Manifest and tile downloading.
Streams mokuroku.csv.gz manifests and fetches raw tile bodies from the GSI tile host.
"""

import csv
import gzip
import io
import threading
import zlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import IO, Iterable, Iterator, List, Optional

import requests
import urllib3
from requests.adapters import HTTPAdapter

from .config import (
    CONTENT_WORKERS,
    MANIFEST_URL,
    REQUEST_TIMEOUT_SEC,
    TILE_URL,
    USER_AGENT,
)
from .errors import FetchError, FormatError, NetworkError
from .tiles import path_zoom


@dataclass(frozen=True)
class TileDescriptor:
    """One manifest row: path, modification stamp, byte size, MD5 digest."""
    path: str
    modified: int
    size: int
    digest: str


@dataclass
class Manifest:
    """Result of a manifest fetch.

    When up_to_date is True the body was never read and rows is empty.
    """
    up_to_date: bool
    last_modified: datetime
    rows: List[TileDescriptor] = field(default_factory=list)


def parse_http_date(value: Optional[str]) -> datetime:
    """
    Parse a Last-Modified header into an aware UTC datetime.

    Args:
        value: Header value, or None when the server sent none

    Returns:
        The header time, or the current time if the header is missing

    Raises:
        FormatError: if the header is present but not an HTTP date
    """
    if not value:
        return datetime.now(timezone.utc)
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError) as e:
        raise FormatError(f"invalid Last-Modified header: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _descriptor(record: List[str], line: int) -> TileDescriptor:
    if len(record) != 4:
        raise FormatError(f"manifest line {line}: expected 4 columns, got {len(record)}")
    path, modified, size, digest = record
    try:
        return TileDescriptor(path, int(modified), int(size), digest)
    except ValueError as e:
        raise FormatError(f"manifest line {line}: {e}") from e


def read_manifest_rows(stream: IO[bytes]) -> Iterator[TileDescriptor]:
    """
    Lazily decode a gzip-compressed mokuroku CSV stream.

    Rows are yielded as they are decompressed; nothing is buffered beyond
    the decoder's own read size.

    Args:
        stream: Binary file-like object positioned at the start of the gzip data

    Yields:
        TileDescriptor per non-empty CSV row

    Raises:
        FormatError: on corrupt gzip data, bad UTF-8 or malformed rows
        NetworkError: if the underlying stream fails mid-read
    """
    reader = csv.reader(io.TextIOWrapper(gzip.GzipFile(fileobj=stream), encoding="utf-8", newline=""))
    try:
        for record in reader:
            if not record:
                continue
            yield _descriptor(record, reader.line_num)
    except urllib3.exceptions.HTTPError as e:
        raise NetworkError(f"manifest stream failed: {e}") from e
    except (gzip.BadGzipFile, EOFError, zlib.error, csv.Error, UnicodeDecodeError) as e:
        raise FormatError(f"could not decode manifest: {e}") from e
    except OSError as e:
        raise NetworkError(f"manifest stream failed: {e}") from e


def filter_zoom(rows: Iterable[TileDescriptor], min_zoom: int, max_zoom: int) -> Iterator[TileDescriptor]:
    """Keep rows whose path zoom lies within [min_zoom, max_zoom]."""
    for row in rows:
        try:
            zoom = path_zoom(row.path)
        except ValueError as e:
            raise FormatError(f"manifest path without zoom: {row.path!r}") from e
        if min_zoom <= zoom <= max_zoom:
            yield row


class TileDownloader:
    """Fetches manifests and tiles from the GSI tile host over one HTTP session."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        pool_size: int = CONTENT_WORKERS,
        timeout: float = REQUEST_TIMEOUT_SEC,
    ):
        """
        Initialize downloader.

        Args:
            session: optional requests.Session; a pooled one is created if omitted
            pool_size: connections kept per host, matched to the worker count
            timeout: per-request connect/read timeout in seconds
        """
        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(pool_connections=1, pool_maxsize=pool_size)
            session.mount("https://", adapter)
            session.mount("http://", adapter)
        session.headers.update({"User-Agent": USER_AGENT})
        self.session = session
        self.timeout = timeout

        # Statistics
        self._lock = threading.Lock()
        self.tiles_downloaded = 0
        self.bytes_downloaded = 0

    def _get(self, url: str, **kwargs) -> requests.Response:
        try:
            response = self.session.get(url, timeout=self.timeout, stream=True, **kwargs)
        except requests.RequestException as e:
            raise NetworkError(f"request to {url} failed: {e}") from e
        if response.status_code != 200:
            response.close()
            raise FetchError(response.status_code, url)
        return response

    def fetch_manifest(
        self,
        manifest_id: str,
        min_zoom: int,
        max_zoom: int,
        last_synced: Optional[datetime] = None,
    ) -> Manifest:
        """
        Download a tileset manifest unless it is not newer than last_synced.

        Args:
            manifest_id: GSI directory holding mokuroku.csv.gz
            min_zoom: Lowest zoom level to keep
            max_zoom: Highest zoom level to keep
            last_synced: Manifest time recorded by the previous run, if any

        Returns:
            Manifest with up_to_date set, or the filtered rows in manifest order
        """
        url = MANIFEST_URL.format(manifest_id=manifest_id)
        response = self._get(url)
        try:
            last_modified = parse_http_date(response.headers.get("Last-Modified"))
            if last_synced is not None and last_modified <= last_synced:
                return Manifest(up_to_date=True, last_modified=last_modified)

            raw = response.raw
            # Only undo transfer encodings; the .gz payload itself is decoded below
            if hasattr(raw, "decode_content"):
                raw.decode_content = True
            rows = list(filter_zoom(read_manifest_rows(raw), min_zoom, max_zoom))
            return Manifest(up_to_date=False, last_modified=last_modified, rows=rows)
        finally:
            response.close()

    def fetch_tile(self, source_id: str, path: str) -> bytes:
        """
        Download a single tile body exactly as served.

        Compression is requested explicitly because some tile types (vector
        tiles) are only gzipped on request, and the encoded bytes are kept:
        MBTiles consumers expect gzipped pbf tiles.

        Args:
            source_id: GSI directory the tile lives in
            path: Tile path "{z}/{x}/{y}.{ext}"

        Returns:
            Tile bytes, still content-encoded
        """
        url = TILE_URL.format(source_id=source_id, path=path)
        response = self._get(url, headers={"Accept-Encoding": "gzip"})
        try:
            data = response.raw.read(decode_content=False)
        except (urllib3.exceptions.HTTPError, OSError) as e:
            raise NetworkError(f"reading {url} failed: {e}") from e
        finally:
            response.close()

        with self._lock:
            self.tiles_downloaded += 1
            self.bytes_downloaded += len(data)
        return data

    def get_stats(self) -> dict:
        """Get download statistics."""
        with self._lock:
            return {
                "downloaded": self.tiles_downloaded,
                "bytes": self.bytes_downloaded,
            }

    def close(self):
        self.session.close()
