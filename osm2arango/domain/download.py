from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import requests
from requests.exceptions import ChunkedEncodingError, ConnectionError, ReadTimeout
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from osm2arango.exceptions import DownloadError
from osm2arango.util.progress import ThrottledProgress

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://download.geofabrik.de"

_ABSOLUTE_URL = re.compile(r"^https?://", re.IGNORECASE)


@dataclass(frozen=True)
class DownloadProgress:
    downloaded_bytes: int
    total_bytes: int | None = None


@dataclass(frozen=True)
class DownloadResult:
    url: str
    path: Path


def resolve_geofabrik_url(region_or_url: str, base_url: str = DEFAULT_BASE_URL) -> str:
    """
    Turn a Geofabrik region path (e.g. "europe/germany/berlin") into the
    URL of its latest .osm.pbf extract. Absolute http(s) URLs pass through.
    """
    if _ABSOLUTE_URL.match(region_or_url):
        return region_or_url

    cleaned = region_or_url.strip("/")
    with_file = cleaned if cleaned.endswith(".osm.pbf") else f"{cleaned}-latest.osm.pbf"
    return f"{base_url.rstrip('/')}/{with_file}"


def _parse_content_length(value: str | None) -> int | None:
    if not value:
        return None
    try:
        n = int(value)
    except ValueError:
        return None
    return n if n > 0 else None


class GeofabrikDownloader:
    """
    Downloads .osm.pbf extracts from a Geofabrik-style mirror.

    Parameters
    ----------
    base_url : str
        Mirror root used for region paths.
    progress : callable, optional
        Receives DownloadProgress, at most once per ``progress_interval``
        seconds plus once when the download completes.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        session: requests.Session | None = None,
        request_timeout: int = 300,
        chunk_size: int = 1024 * 1024,
        progress: Callable[[DownloadProgress], None] | None = None,
        progress_interval: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.base_url = base_url
        self.request_timeout = request_timeout
        self.chunk_size = chunk_size
        self._progress = progress
        self._progress_interval = progress_interval
        self._clock = clock
        self._session = session or requests.Session()
        self.logger = logging.getLogger("osm2arango.geofabrik_downloader")

    def download(self, region_or_url: str, out_dir: str | Path) -> DownloadResult:
        """Download an extract into ``out_dir``, named after the URL's file name."""
        url = resolve_geofabrik_url(region_or_url, self.base_url)
        out_dir = Path(out_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        file_name = url.rstrip("/").rsplit("/", 1)[-1] or "extract.osm.pbf"
        path = out_dir / file_name

        self._download_to_file(url, path)
        return DownloadResult(url=url, path=path)

    @retry(
        retry=retry_if_exception_type(
            (ChunkedEncodingError, ConnectionError, ReadTimeout),
        ),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=10, max=120),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    def _download_to_file(self, url: str, path: Path) -> None:
        self.logger.info("Downloading %s", url)
        resp = self._session.get(url, stream=True, timeout=self.request_timeout)
        try:
            if not resp.ok:
                raise DownloadError(f"Download failed ({resp.status_code}): {url}", resp.status_code)

            total = _parse_content_length(resp.headers.get("content-length"))
            progress = ThrottledProgress(self._progress, self._progress_interval, self._clock)
            downloaded = 0
            try:
                with open(path, "wb") as f:
                    for chunk in resp.iter_content(chunk_size=self.chunk_size):
                        if not chunk:
                            continue
                        f.write(chunk)
                        downloaded += len(chunk)
                        progress.emit(lambda: DownloadProgress(downloaded, total))
            except Exception:
                path.unlink(missing_ok=True)
                raise

            progress.emit(lambda: DownloadProgress(downloaded, total), force=True)
            self.logger.info(
                "Downloaded %s to %s (%.1f MB)",
                url,
                path,
                downloaded / (1024 * 1024),
            )
        finally:
            resp.close()
