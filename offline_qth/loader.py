"""
Database loader: cache hit -> use cache; miss -> stream download, report
progress, populate cache.

``DatabaseLoader.ensure_loaded`` is the single readiness gate. It is
single-flight and thread-safe; once a store is loaded every later call returns
the same instance. A failed attempt is remembered in ``last_error`` and the
next call tries again.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import urljoin

import requests

from offline_qth.cache import CacheManager
from offline_qth.config import (
    DATABASE_URL_PATH, DEFAULT_BASE_URL, DOWNLOAD_CHUNK_SIZE, DOWNLOAD_TIMEOUT,
)
from offline_qth.exceptions import (
    CorruptBlobError, DownloadError, OfflineQthError, StoreUnavailableError,
)
from offline_qth.store import RecordStore

__all__ = ["LoaderConfig", "DatabaseLoader", "ProgressCallback"]

# progress(bytes_loaded, total_bytes); total_bytes is 0 when the server sends no length
ProgressCallback = Callable[[int, int], None]


@dataclass
class LoaderConfig:
    base_url: str = DEFAULT_BASE_URL
    url_path: str = DATABASE_URL_PATH
    local_path: Optional[Path] = None  # read the blob from disk instead of the network
    cache_dir: Optional[Path] = None
    use_cache: bool = True
    chunk_size: int = DOWNLOAD_CHUNK_SIZE
    timeout: float = DOWNLOAD_TIMEOUT

    @property
    def url(self) -> str:
        base = self.base_url if self.base_url.endswith('/') else self.base_url + '/'
        return urljoin(base, self.url_path.lstrip('/'))


def _report(progress: Optional[ProgressCallback], loaded: int, total: int) -> None:
    if progress is None:
        return
    try:
        progress(loaded, total)
    except Exception as e:  # noqa: BLE001
        logging.warning(f"Progress callback failed: {e}")


class DatabaseLoader:
    """Owns the loaded RecordStore for one session."""

    def __init__(self, config: Optional[LoaderConfig] = None, cache: Optional[CacheManager] = None,
                 session: Optional[requests.Session] = None):
        self.config = config or LoaderConfig()
        self.cache = cache or CacheManager(self.config.cache_dir)
        self.session = session or requests.Session()
        self.last_error: Optional[Exception] = None
        self._store: Optional[RecordStore] = None
        self._lock = threading.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._store is not None

    def ensure_loaded(self, progress: Optional[ProgressCallback] = None) -> RecordStore:
        """Return the loaded store, loading it on first use.

        Raises:
            StoreUnavailableError: if no store could be loaded
        """
        store = self._store
        if store is not None:
            return store
        with self._lock:
            if self._store is not None:
                return self._store
            try:
                self._store = self._load(progress)
            except OfflineQthError as e:
                self.last_error = e
                logging.error(f"Failed to initialize database: {e}")
                raise StoreUnavailableError(f"Summit database unavailable: {e}") from e
            self.last_error = None
            return self._store

    def reload(self, progress: Optional[ProgressCallback] = None) -> RecordStore:
        """Drop the current store and load again (cache first)."""
        with self._lock:
            self._store = None
        return self.ensure_loaded(progress)

    def clear_cache(self) -> None:
        self.cache.clear()

    def _load(self, progress: Optional[ProgressCallback]) -> RecordStore:
        logging.info("Initializing SOTA database...")
        if self.config.use_cache:
            blob = self.cache.try_load()
            if blob is not None:
                try:
                    return RecordStore.load(blob)
                except CorruptBlobError as e:
                    logging.warning(f"Cached database is unusable ({e}); discarding it")
                    self.cache.clear()

        if self.config.local_path is not None:
            blob = self._read_local(Path(self.config.local_path), progress)
        else:
            blob = self.download(progress)

        store = RecordStore.load(blob)
        if self.config.use_cache:
            self.cache.store(blob)
        return store

    def _read_local(self, path: Path, progress: Optional[ProgressCallback]) -> bytes:
        logging.info(f"Reading database from: {path}")
        try:
            blob = path.read_bytes()
        except OSError as e:
            raise DownloadError(f"Cannot read database file {path}: {e}") from e
        _report(progress, len(blob), len(blob))
        return blob

    def download(self, progress: Optional[ProgressCallback] = None) -> bytes:
        """Fetch the blob from the network, reporting (loaded, total) as it streams.

        A download that fails or ends short is discarded entirely. With a
        Content-Encoding the length header counts encoded bytes, so progress
        is reported with total 0 and the length is not checked.

        Raises:
            DownloadError: on HTTP/network failure or a truncated body
        """
        url = self.config.url
        logging.info(f"Downloading SOTA database: {url}")
        response = None
        try:
            response = self.session.get(url, stream=True, timeout=self.config.timeout)
            response.raise_for_status()

            encoding = (response.headers.get('content-encoding') or '').strip().lower()
            total = 0
            if encoding in ('', 'identity'):
                try:
                    total = int(response.headers.get('content-length', 0) or 0)
                except (TypeError, ValueError):
                    total = 0
            loaded = 0
            chunks = []
            _report(progress, loaded, total)
            for chunk in response.iter_content(chunk_size=self.config.chunk_size):
                if chunk:
                    chunks.append(chunk)
                    loaded += len(chunk)
                    _report(progress, loaded, total)
        except requests.exceptions.RequestException as e:
            raise DownloadError(f"Failed to fetch database from {url}: {e}") from e
        finally:
            if response is not None:
                response.close()

        if total and loaded != total:
            raise DownloadError(f"Incomplete download from {url}: {loaded} of {total} bytes")
        blob = b''.join(chunks)
        logging.info(f"Downloaded database ({len(blob) / 1024 / 1024:.2f} MB)")
        return blob
