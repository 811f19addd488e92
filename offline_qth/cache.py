"""
Persistent cache for the database blob.

Holds exactly one named blob in a local cache directory. Every failure here
degrades to "cache miss" and is logged, never raised.
"""
from __future__ import annotations

import os
import logging
import tempfile
from pathlib import Path
from typing import Optional

import offline_qth.config as config
from offline_qth.config import DATABASE_FILENAME
from offline_qth.utils import ensure_directories


def default_cache_dir() -> Path:
    return config.CACHE_DIR or Path.cwd() / "cache"


class CacheManager:
    """Presence test + full-blob replace for one cached dataset."""

    def __init__(self, cache_dir: Optional[Path] = None, name: str = DATABASE_FILENAME):
        self.cache_dir = Path(cache_dir) if cache_dir else default_cache_dir()
        self.name = name

    @property
    def path(self) -> Path:
        return self.cache_dir / self.name

    def exists(self) -> bool:
        try:
            return self.path.is_file()
        except OSError:
            return False

    def try_load(self) -> Optional[bytes]:
        """Return the cached blob, or None on any kind of miss."""
        try:
            if not self.path.is_file():
                logging.debug(f"No cached database at {self.path}")
                return None
            data = self.path.read_bytes()
        except Exception as e:  # noqa: BLE001
            logging.warning(f"Error reading cached database {self.path}: {e}")
            return None
        if not data:
            logging.warning(f"Cached database is empty: {self.path}")
            return None
        logging.info(f"Loaded cached database ({len(data) / 1024 / 1024:.2f} MB) from {self.path}")
        return data

    def store(self, blob: bytes) -> None:
        """Replace the cached blob. Best effort: errors are logged and swallowed."""
        tmp_name = None
        try:
            ensure_directories(self.cache_dir)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.name}.", dir=self.cache_dir)
            with os.fdopen(fd, 'wb') as f:
                f.write(blob)
            os.replace(tmp_name, self.path)
            tmp_name = None
            logging.info(f"Cached database to: {self.path}")
        except Exception as e:  # noqa: BLE001
            logging.warning(f"Failed to cache database at {self.path}: {e}")
        finally:
            if tmp_name:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass

    def clear(self) -> None:
        """Delete the cached blob, if any. Best effort."""
        try:
            self.path.unlink()
            logging.info(f"Cleared cached database: {self.path}")
        except FileNotFoundError:
            logging.debug(f"No cached database to clear at {self.path}")
        except Exception as e:  # noqa: BLE001
            logging.warning(f"Failed to clear cached database {self.path}: {e}")
