"""
Media cache for the signage device client.

A media file is cached when ``<cache_dir>/<fileName>`` exists and is not
empty. There is no separate index; the directory itself is the record.
"""

import os
from pathlib import Path
from typing import List, Optional

import requests

from .models import PlaylistItem
from src.common.logger import setup_logger

logger = setup_logger(__name__)


class MediaCacheManager:
    """Downloads playlist media to local disk and reports cache coverage."""

    # Download timeout in seconds (for large files)
    DOWNLOAD_TIMEOUT = 120

    CHUNK_SIZE = 64 * 1024

    def __init__(self, cache_dir: str, download_timeout: float = DOWNLOAD_TIMEOUT):
        """
        Initialize the cache.

        Args:
            cache_dir: Cache root, created if missing
            download_timeout: Per-request timeout in seconds
        """
        self.cache_dir = Path(cache_dir)
        self.download_timeout = download_timeout
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def _path_for(self, file_name: str) -> Path:
        # Server file names are used as cache keys; never let them leave the cache root
        return self.cache_dir / Path(file_name).name

    def _temp_path_for(self, file_name: str) -> Path:
        return self.cache_dir / f".{Path(file_name).name}.part"

    def get_local_file(self, item: PlaylistItem) -> Optional[Path]:
        """
        Look up the cached copy of an item's media.

        Returns:
            Path to a present, non-empty file or None
        """
        if item.media is None or not item.media.file_name:
            return None

        path = self._path_for(item.media.file_name)
        try:
            if path.is_file() and path.stat().st_size > 0:
                return path
        except OSError:
            pass
        return None

    def download_url(self, item: PlaylistItem, base_url: str) -> Optional[str]:
        """Remote URL the media of ``item`` is served from."""
        if item.media is None or not item.media.id:
            return None
        return f"{base_url.rstrip('/')}/api/media/{item.media.id}/download"

    def download(self, item: PlaylistItem, base_url: str) -> bool:
        """
        Make sure an item's media is in the cache.

        Safe to call repeatedly: an item already cached returns True
        without touching the network. On failure no partial file is left
        behind, so the next attempt starts clean.

        Args:
            item: Playlist item to cache
            base_url: Backend base URL

        Returns:
            True if the media is cached after the call
        """
        if item.media is None or not item.media.file_name:
            return False

        if self.get_local_file(item) is not None:
            return True

        url = self.download_url(item, base_url)
        if url is None:
            logger.warning("No media id for file: %s", item.media.file_name)
            return False

        file_name = item.media.file_name
        local_path = self._path_for(file_name)
        temp_path = self._temp_path_for(file_name)

        try:
            logger.info("Downloading: %s", file_name)

            response = requests.get(url, stream=True, timeout=self.download_timeout)
            try:
                if response.status_code != 200:
                    logger.error(
                        "Failed to download %s - status: %d",
                        file_name,
                        response.status_code
                    )
                    return False

                with open(temp_path, 'wb') as f:
                    for chunk in response.iter_content(chunk_size=self.CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
            finally:
                response.close()

            if temp_path.stat().st_size == 0:
                logger.error("Empty download for %s", file_name)
                self._cleanup(temp_path, local_path)
                return False

            os.replace(temp_path, local_path)

            logger.info("Downloaded: %s", file_name)
            return True

        except requests.Timeout:
            logger.error("Timeout downloading: %s", file_name)
            self._cleanup(temp_path, local_path)
            return False
        except requests.RequestException as e:
            logger.error("Download failed for %s: %s", file_name, e)
            self._cleanup(temp_path, local_path)
            return False
        except OSError as e:
            logger.error("IO error downloading %s: %s", file_name, e)
            self._cleanup(temp_path, local_path)
            return False

    def _cleanup(self, *paths: Path) -> None:
        """Remove partial files left by a failed download."""
        for path in paths:
            try:
                if path.exists():
                    path.unlink()
            except OSError as e:
                logger.warning("Could not remove partial file %s: %s", path, e)

    def progress(self, items: List[PlaylistItem]) -> float:
        """
        Fraction of items with a cached file.

        An empty playlist counts as fully cached.
        """
        if not items:
            return 1.0
        cached = sum(1 for item in items if self.get_local_file(item) is not None)
        return cached / len(items)

    def __repr__(self) -> str:
        return f"MediaCacheManager(cache_dir={self.cache_dir})"
