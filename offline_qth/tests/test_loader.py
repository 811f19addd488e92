"""
Tests for the database loader: cache-first loading, streamed download with
progress, single-flight initialisation and failure handling.

The network is replaced by a MagicMock session throughout.
"""
import gzip
import threading
import time
from unittest.mock import MagicMock

import pytest
import requests

from offline_qth.cache import CacheManager
from offline_qth.exceptions import DownloadError, StoreUnavailableError
from offline_qth.loader import DatabaseLoader, LoaderConfig


def _response(blob, chunk_size=4096, content_length=True, status_error=None):
    response = MagicMock()
    response.headers = {'content-length': str(len(blob))} if content_length else {}
    response.iter_content.return_value = [blob[i:i + chunk_size] for i in range(0, len(blob), chunk_size)]
    if status_error is not None:
        response.raise_for_status.side_effect = status_error
    return response


def _session(*responses):
    session = MagicMock()
    session.get.side_effect = list(responses)
    return session


def _loader(tmp_path, session, use_cache=True):
    config = LoaderConfig(base_url="https://example.org/app", cache_dir=tmp_path / "cache",
                          use_cache=use_cache)
    return DatabaseLoader(config, session=session)


class TestLoaderConfig:

    def test_url_is_relative_to_base(self):
        assert LoaderConfig(base_url="https://example.org/app").url == "https://example.org/app/data/sota.db"
        assert LoaderConfig(base_url="https://example.org/app/").url == "https://example.org/app/data/sota.db"


class TestDownload:

    def test_first_load_downloads_and_caches(self, tmp_path, blob):
        session = _session(_response(blob))
        loader = _loader(tmp_path, session)

        store = loader.ensure_loaded()

        assert store.count() == 9
        assert loader.is_loaded
        session.get.assert_called_once_with("https://example.org/app/data/sota.db",
                                            stream=True, timeout=loader.config.timeout)
        assert CacheManager(tmp_path / "cache").try_load() == blob

    def test_progress_reports_loaded_and_total(self, tmp_path, blob):
        progress = []
        loader = _loader(tmp_path, _session(_response(blob, chunk_size=1024)))

        loader.ensure_loaded(progress=lambda loaded, total: progress.append((loaded, total)))

        assert progress[0] == (0, len(blob))
        assert progress[-1] == (len(blob), len(blob))
        loaded = [p[0] for p in progress]
        assert loaded == sorted(loaded)
        assert len(progress) == 1 + -(-len(blob) // 1024)

    def test_unknown_length_reports_zero_total(self, tmp_path, blob):
        progress = []
        loader = _loader(tmp_path, _session(_response(blob, content_length=False)))
        loader.ensure_loaded(progress=lambda loaded, total: progress.append((loaded, total)))
        assert all(total == 0 for _, total in progress)
        assert progress[-1][0] == len(blob)

    def test_failing_progress_callback_does_not_abort(self, tmp_path, blob):
        def callback(loaded, total):
            raise RuntimeError("ui gone")

        loader = _loader(tmp_path, _session(_response(blob)))
        assert loader.ensure_loaded(progress=callback).count() == 9

    def test_gzip_encoded_response(self, tmp_path, blob):
        """Content-Length counts compressed bytes; iter_content yields decoded ones."""
        response = _response(blob, chunk_size=1024)
        response.headers = {'content-length': str(len(gzip.compress(blob))), 'content-encoding': 'gzip'}
        progress = []
        loader = _loader(tmp_path, _session(response))

        store = loader.ensure_loaded(progress=lambda loaded, total: progress.append((loaded, total)))

        assert store.count() == 9
        assert all(total == 0 for _, total in progress)
        assert progress[-1][0] == len(blob)

    def test_truncated_download_is_rejected(self, tmp_path, blob):
        response = _response(blob)
        response.iter_content.return_value = [blob[:len(blob) // 2]]
        loader = _loader(tmp_path, _session(response))

        with pytest.raises(DownloadError, match="Incomplete"):
            loader.download()
        response.close.assert_called_once()

    def test_http_error(self, tmp_path, blob):
        response = _response(blob, status_error=requests.exceptions.HTTPError("404 Not Found"))
        loader = _loader(tmp_path, _session(response))

        with pytest.raises(StoreUnavailableError) as excinfo:
            loader.ensure_loaded()
        assert isinstance(excinfo.value.__cause__, DownloadError)
        assert isinstance(loader.last_error, DownloadError)
        assert not CacheManager(tmp_path / "cache").exists()

    def test_connection_error(self, tmp_path):
        loader = _loader(tmp_path, _session(requests.exceptions.ConnectionError("offline")))
        with pytest.raises(StoreUnavailableError, match="offline"):
            loader.ensure_loaded()

    def test_corrupt_download_is_not_cached(self, tmp_path):
        loader = _loader(tmp_path, _session(_response(b"<html>not found</html>")))
        with pytest.raises(StoreUnavailableError):
            loader.ensure_loaded()
        assert not CacheManager(tmp_path / "cache").exists()


class TestCacheFirst:

    def test_cache_hit_skips_network(self, tmp_path, blob):
        CacheManager(tmp_path / "cache").store(blob)
        session = _session()
        loader = _loader(tmp_path, session)

        assert loader.ensure_loaded().count() == 9
        session.get.assert_not_called()

    def test_corrupt_cache_is_cleared_and_redownloaded(self, tmp_path, blob):
        cache = CacheManager(tmp_path / "cache")
        cache.store(b"garbage")
        session = _session(_response(blob))
        loader = _loader(tmp_path, session)

        assert loader.ensure_loaded().count() == 9
        session.get.assert_called_once()
        assert cache.try_load() == blob

    def test_no_cache_mode(self, tmp_path, blob):
        CacheManager(tmp_path / "cache").store(b"garbage")
        loader = _loader(tmp_path, _session(_response(blob)), use_cache=False)
        assert loader.ensure_loaded().count() == 9
        assert CacheManager(tmp_path / "cache").try_load() == b"garbage"

    def test_clear_cache(self, tmp_path, blob):
        cache = CacheManager(tmp_path / "cache")
        cache.store(blob)
        _loader(tmp_path, _session()).clear_cache()
        assert not cache.exists()

    def test_local_file(self, tmp_path, database_path):
        progress = []
        session = _session()
        config = LoaderConfig(local_path=database_path, cache_dir=tmp_path / "cache")
        loader = DatabaseLoader(config, session=session)

        assert loader.ensure_loaded(lambda loaded, total: progress.append((loaded, total))).count() == 9
        session.get.assert_not_called()
        size = database_path.stat().st_size
        assert progress == [(size, size)]


class TestSingleFlight:

    def test_loads_once(self, tmp_path, blob):
        session = _session(_response(blob))
        loader = _loader(tmp_path, session)

        first = loader.ensure_loaded()
        second = loader.ensure_loaded()

        assert first is second
        session.get.assert_called_once()

    def test_concurrent_callers_share_one_load(self, tmp_path, blob):
        def slow_get(*args, **kwargs):
            time.sleep(0.05)
            return _response(blob)

        session = MagicMock()
        session.get.side_effect = slow_get
        loader = _loader(tmp_path, session, use_cache=False)

        results = []
        threads = [threading.Thread(target=lambda: results.append(loader.ensure_loaded())) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 8
        assert all(store is results[0] for store in results)
        session.get.assert_called_once()

    def test_failure_then_retry(self, tmp_path, blob):
        session = _session(requests.exceptions.ConnectionError("offline"), _response(blob))
        loader = _loader(tmp_path, session)

        with pytest.raises(StoreUnavailableError):
            loader.ensure_loaded()
        assert not loader.is_loaded

        assert loader.ensure_loaded().count() == 9
        assert loader.last_error is None
        assert session.get.call_count == 2

    def test_reload_reads_cache(self, tmp_path, blob):
        session = _session(_response(blob))
        loader = _loader(tmp_path, session)
        first = loader.ensure_loaded()

        second = loader.reload()

        assert second is not first
        assert second.count() == first.count()
        session.get.assert_called_once()
