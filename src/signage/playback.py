"""
Playback source resolution.

Turns a playlist item into what the renderer needs: where to read the
media from, how to render it, and for how long.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .media_cache import MediaCacheManager
from .models import PlaylistItem, PlaylistSnapshot
from src.common.logger import setup_logger

logger = setup_logger(__name__)

# Shortest time an item stays on screen, in seconds
MIN_ITEM_DURATION = 1


@dataclass(frozen=True)
class PlaybackSource:
    """Resolved source for one playlist item."""
    item_id: str
    media_name: str
    location: str      # Local path or remote URL
    is_local: bool
    is_video: bool
    duration: int      # Seconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "media_name": self.media_name,
            "location": self.location,
            "is_local": self.is_local,
            "strategy": "video" if self.is_video else "image",
            "duration": self.duration,
        }


def resolve_source(
    item: PlaylistItem,
    cache: MediaCacheManager,
    base_url: str
) -> Optional[PlaybackSource]:
    """
    Resolve where and how to play an item.

    The cached file wins over streaming from the backend.

    Returns:
        PlaybackSource, or None for an item without media
    """
    media = item.media
    if media is None:
        return None

    local = cache.get_local_file(item)
    if local is not None:
        location, is_local = str(local), True
    else:
        location = cache.download_url(item, base_url)
        if location is None:
            logger.warning("Item %s has no playable source", item.id)
            return None
        is_local = False

    return PlaybackSource(
        item_id=item.id,
        media_name=media.file_name,
        location=location,
        is_local=is_local,
        is_video=media.is_video,
        duration=max(int(item.duration or 0), MIN_ITEM_DURATION),
    )


def playable_items(playlist: PlaylistSnapshot) -> List[PlaylistItem]:
    """Items in play order, skipping slots with no media."""
    return [item for item in playlist.items if item.media is not None]
