"""
Data model for the signage device client.

Playlist, media and license records plus the backend response shapes.
Field names on the wire are camelCase; ``to_dict`` produces the same
shape the backend sends so saved playlists round-trip unchanged.
"""

import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional


def _str_or_empty(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _int_or_zero(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _as_dict(value: Any) -> Optional[Dict[str, Any]]:
    return value if isinstance(value, dict) else None


@dataclass(frozen=True)
class MediaAsset:
    """A remote media file; ``file_name`` is its key in the local cache."""

    id: str
    file_name: str
    mime_type: str = ""
    file_path: str = ""
    duration: Optional[float] = None
    file_size: Optional[int] = None

    @property
    def is_video(self) -> bool:
        """Video assets go to the video pipeline, everything else is shown as an image."""
        return self.mime_type.startswith("video")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MediaAsset":
        return cls(
            id=_str_or_empty(data.get("id")),
            file_name=_str_or_empty(data.get("fileName")),
            mime_type=_str_or_empty(data.get("mimeType")),
            file_path=_str_or_empty(data.get("filePath")),
            duration=data.get("duration"),
            file_size=data.get("fileSize"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "fileName": self.file_name,
            "filePath": self.file_path,
            "mimeType": self.mime_type,
            "duration": self.duration,
            "fileSize": self.file_size,
        }


@dataclass(frozen=True)
class PlaylistItem:
    """One slot of the timeline. Items without media are skipped by the player."""

    id: str
    order: int = 0
    duration: int = 0  # seconds
    media: Optional[MediaAsset] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlaylistItem":
        media = _as_dict(data.get("video")) or _as_dict(data.get("media"))
        return cls(
            id=_str_or_empty(data.get("id")),
            order=_int_or_zero(data.get("order")),
            duration=_int_or_zero(data.get("duration")),
            media=MediaAsset.from_dict(media) if media else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "order": self.order,
            "duration": self.duration,
            "video": self.media.to_dict() if self.media else None,
        }


def parse_items(raw: Any) -> List[PlaylistItem]:
    """Parse a list of item dicts, keeping server order."""
    if not isinstance(raw, list):
        return []
    return [PlaylistItem.from_dict(item) for item in raw if isinstance(item, dict)]


@dataclass(frozen=True)
class PlaylistSnapshot:
    """
    A playlist as last applied on this device.

    Identity is ``id``. ``items`` are replaced wholesale on every
    timeline refresh; their order is the playback order.
    """

    id: str
    name: str = ""
    code: str = ""
    items: List[PlaylistItem] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlaylistSnapshot":
        playlist_id = _str_or_empty(data.get("id"))
        if not playlist_id:
            raise ValueError("playlist has no id")
        return cls(
            id=playlist_id,
            name=_str_or_empty(data.get("name")),
            code=_str_or_empty(data.get("code")),
            items=parse_items(data.get("items")),
        )

    @classmethod
    def from_json(cls, raw: str) -> "PlaylistSnapshot":
        """
        Parse a saved snapshot.

        Raises:
            ValueError: If the text is not JSON or has no playlist id
        """
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("playlist JSON is not an object")
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "items": [item.to_dict() for item in self.items],
        }

    def to_json(self) -> str:
        """Canonical serialization; equal snapshots produce equal strings."""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))

    def with_items(self, items: List[PlaylistItem]) -> "PlaylistSnapshot":
        return replace(self, items=list(items))


@dataclass(frozen=True)
class LicenseInfo:
    """License fragment as sent by the backend."""

    expires_at: Optional[str] = None
    expires_at_alt: Optional[str] = None  # snake_case "expires_at"
    is_active: Optional[bool] = None

    @property
    def raw_expiry(self) -> Optional[str]:
        """camelCase field first, snake_case second."""
        return self.expires_at or self.expires_at_alt or None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LicenseInfo":
        expires_at = data.get("expiresAt")
        expires_at_alt = data.get("expires_at")
        return cls(
            expires_at=str(expires_at) if expires_at is not None else None,
            expires_at_alt=str(expires_at_alt) if expires_at_alt is not None else None,
            is_active=data.get("isActive"),
        )


def _license_from(value: Any) -> Optional[LicenseInfo]:
    data = _as_dict(value)
    return LicenseInfo.from_dict(data) if data is not None else None


@dataclass(frozen=True)
class DeviceRecord:
    """Device record returned by registration."""

    id: str = ""
    uid: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeviceRecord":
        return cls(id=_str_or_empty(data.get("id")), uid=_str_or_empty(data.get("uid")))


@dataclass(frozen=True)
class RegistrationSession:
    """QR pairing session. Never persisted."""

    session_token: str
    qr_payload: str = ""
    registration_url: str = ""
    expires_at: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RegistrationSession":
        return cls(
            session_token=_str_or_empty(data.get("sessionToken")),
            qr_payload=_str_or_empty(data.get("qrPayload") or data.get("qrCode")),
            registration_url=_str_or_empty(data.get("registrationUrl")),
            expires_at=_str_or_empty(data.get("expiresAt")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionToken": self.session_token,
            "qrPayload": self.qr_payload,
            "registrationUrl": self.registration_url,
            "expiresAt": self.expires_at,
        }


@dataclass(frozen=True)
class RegisterResponse:
    """
    Response of ``POST playlists/device/register`` and payload of the
    ``registration:complete`` push event.

    The backend sends playlist, device and license either wrapped in
    ``data`` or at the top level. The accessors below resolve them in
    one place: the ``data`` field wins, the top-level field is the fallback.
    """

    success: bool = False
    message: str = ""
    data_playlist: Optional[PlaylistSnapshot] = None
    data_device: Optional[DeviceRecord] = None
    data_license: Optional[LicenseInfo] = None
    top_level_playlist: Optional[PlaylistSnapshot] = None
    top_level_device: Optional[DeviceRecord] = None
    top_level_license: Optional[LicenseInfo] = None

    @property
    def playlist(self) -> Optional[PlaylistSnapshot]:
        return self.data_playlist or self.top_level_playlist

    @property
    def device(self) -> Optional[DeviceRecord]:
        return self.data_device or self.top_level_device

    @property
    def license(self) -> Optional[LicenseInfo]:
        return self.data_license or self.top_level_license

    @property
    def license_expiry(self) -> Optional[str]:
        return self.license.raw_expiry if self.license else None

    @classmethod
    def from_dict(cls, body: Dict[str, Any]) -> "RegisterResponse":
        data = _as_dict(body.get("data")) or {}
        return cls(
            success=bool(body.get("success", False)),
            message=_str_or_empty(body.get("message")),
            data_playlist=_playlist_from(data.get("playlist")),
            data_device=_device_from(data.get("device")),
            data_license=_license_from(data.get("license")),
            top_level_playlist=_playlist_from(body.get("playlist")),
            top_level_device=_device_from(body.get("device")),
            top_level_license=_license_from(body.get("license")),
        )


def _playlist_from(value: Any) -> Optional[PlaylistSnapshot]:
    data = _as_dict(value)
    if data is None:
        return None
    try:
        return PlaylistSnapshot.from_dict(data)
    except ValueError:
        return None


def _device_from(value: Any) -> Optional[DeviceRecord]:
    data = _as_dict(value)
    return DeviceRecord.from_dict(data) if data is not None else None


@dataclass(frozen=True)
class TimelineResponse:
    """Response of ``GET api/playlists/{id}/timeline``."""

    success: bool = False
    message: str = ""
    items: Optional[List[PlaylistItem]] = None
    license: Optional[LicenseInfo] = None
    device_deleted: bool = False

    @property
    def license_expiry(self) -> Optional[str]:
        return self.license.raw_expiry if self.license else None

    @classmethod
    def from_dict(cls, body: Dict[str, Any]) -> "TimelineResponse":
        raw_items = body.get("data")
        return cls(
            success=bool(body.get("success", False)),
            message=_str_or_empty(body.get("message")),
            items=parse_items(raw_items) if isinstance(raw_items, list) else None,
            license=_license_from(body.get("license")),
            device_deleted=bool(body.get("deviceDeleted", False)),
        )


@dataclass(frozen=True)
class InitRegistrationResponse:
    """Response of ``POST api/device/init-registration``."""

    success: bool = False
    message: str = ""
    session: Optional[RegistrationSession] = None

    @classmethod
    def from_dict(cls, body: Dict[str, Any]) -> "InitRegistrationResponse":
        data = _as_dict(body.get("data"))
        return cls(
            success=bool(body.get("success", False)),
            message=_str_or_empty(body.get("message")),
            session=RegistrationSession.from_dict(data) if data else None,
        )


@dataclass(frozen=True)
class PlaybackErrorRecord:
    """Last playback failure reported by the front end."""

    media_name: str
    message: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mediaName": self.media_name,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
