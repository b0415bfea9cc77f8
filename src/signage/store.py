"""
Local durable store for the signage device client.

Holds the five registration fields in a single ``settings.json``
document. Every write replaces the whole document atomically, so fields
written together are always seen together after a crash or restart.
"""

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional

from .models import PlaylistSnapshot
from src.common.logger import setup_logger

logger = setup_logger(__name__)

PLAYLIST_CODE = "playlist_code"
PLAYLIST_ID = "playlist_id"
DEVICE_UID = "device_uid"
SAVED_PLAYLIST = "saved_playlist"
LICENSE_EXPIRY = "license_expiry"

FIELDS = (PLAYLIST_CODE, PLAYLIST_ID, DEVICE_UID, SAVED_PLAYLIST, LICENSE_EXPIRY)


class LocalStore:
    """
    Key-value persistence of device registration state.

    Empty string is the "absent" value for every field.
    """

    SETTINGS_FILE = "settings.json"

    def __init__(self, settings_dir: str):
        """
        Initialize the store.

        Args:
            settings_dir: Directory for settings.json (created on first write)
        """
        self.settings_dir = Path(settings_dir)
        self._lock = threading.Lock()
        self._values: Dict[str, str] = {name: "" for name in FIELDS}
        self.load()

    @property
    def path(self) -> Path:
        return self.settings_dir / self.SETTINGS_FILE

    def load(self) -> None:
        """Load settings.json. A missing or corrupt file means every field is empty."""
        values = {name: "" for name in FIELDS}

        if self.path.exists():
            try:
                with open(self.path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    for name in FIELDS:
                        value = data.get(name)
                        values[name] = "" if value is None else str(value)
            except (OSError, ValueError) as e:
                logger.error("Could not read %s, starting empty: %s", self.path, e)

        with self._lock:
            self._values = values

    def _write(self, values: Dict[str, str]) -> None:
        """Replace settings.json with ``values`` in one atomic rename."""
        self.settings_dir.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=".settings-", suffix=".tmp", dir=str(self.settings_dir)
        )
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(values, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def update(self, **fields: str) -> None:
        """
        Write several fields in one transaction.

        Raises:
            KeyError: If a field name is unknown
        """
        for name in fields:
            if name not in FIELDS:
                raise KeyError(f"Unknown settings field: {name}")

        with self._lock:
            values = dict(self._values)
            for name, value in fields.items():
                values[name] = value or ""
            self._write(values)
            self._values = values

        logger.debug("Settings written: %s", ", ".join(sorted(fields)))

    def _get(self, name: str) -> str:
        with self._lock:
            return self._values[name]

    # Field accessors

    @property
    def playlist_code(self) -> str:
        return self._get(PLAYLIST_CODE)

    @property
    def playlist_id(self) -> str:
        return self._get(PLAYLIST_ID)

    @property
    def device_uid(self) -> str:
        return self._get(DEVICE_UID)

    @property
    def saved_playlist(self) -> str:
        return self._get(SAVED_PLAYLIST)

    @property
    def license_expiry(self) -> str:
        return self._get(LICENSE_EXPIRY)

    def snapshot(self) -> Dict[str, str]:
        """Copy of all persisted fields."""
        with self._lock:
            return dict(self._values)

    # Transactions used by the orchestrator

    def save_playlist(self, playlist: PlaylistSnapshot) -> None:
        """Persist a playlist; its id and JSON always go in the same write."""
        self.update(**{
            PLAYLIST_ID: playlist.id,
            SAVED_PLAYLIST: playlist.to_json(),
        })

    def save_registration(
        self,
        code: str,
        playlist: PlaylistSnapshot,
        device_uid: str,
        license_expiry: Optional[str] = None
    ) -> None:
        """Persist everything a successful registration produced."""
        fields = {
            PLAYLIST_CODE: code,
            PLAYLIST_ID: playlist.id,
            DEVICE_UID: device_uid,
            SAVED_PLAYLIST: playlist.to_json(),
        }
        if license_expiry:
            fields[LICENSE_EXPIRY] = license_expiry
        self.update(**fields)

    def save_license_expiry(self, raw: str) -> None:
        self.update(**{LICENSE_EXPIRY: raw})

    def clear(self) -> None:
        """Reset every field to empty in one write."""
        self.update(**{name: "" for name in FIELDS})
        logger.info("Local registration data cleared")

    def discard(self) -> None:
        """Forget every field in memory only. settings.json is left as it is."""
        with self._lock:
            self._values = {name: "" for name in FIELDS}

    def load_playlist(self) -> Optional[PlaylistSnapshot]:
        """
        Parse the saved playlist.

        Returns:
            The snapshot, or None when nothing is saved or the JSON is unusable
        """
        raw = self.saved_playlist
        if not raw:
            return None
        try:
            return PlaylistSnapshot.from_json(raw)
        except ValueError as e:
            logger.error("Saved playlist is unreadable: %s", e)
            return None

    def __repr__(self) -> str:
        return f"LocalStore(path={self.path})"
