"""Unit tests for the LocalStore settings document."""

import json
import os
from pathlib import Path
from unittest import mock

import pytest

from src.signage.store import FIELDS, LocalStore


class TestLocalStoreLoad:
    """Tests for loading settings.json."""

    def test_missing_file_is_empty(self, store):
        assert store.snapshot() == {name: "" for name in FIELDS}
        assert store.load_playlist() is None

    def test_corrupt_file_is_empty(self, temp_settings_dir):
        Path(temp_settings_dir, "settings.json").write_text("{broken")
        store = LocalStore(temp_settings_dir)
        assert store.playlist_id == ""

    def test_unknown_keys_ignored(self, temp_settings_dir):
        Path(temp_settings_dir, "settings.json").write_text(
            json.dumps({"playlist_id": "p1", "volume": 11})
        )
        store = LocalStore(temp_settings_dir)
        assert store.playlist_id == "p1"
        assert "volume" not in store.snapshot()

    def test_null_values_become_empty(self, temp_settings_dir):
        Path(temp_settings_dir, "settings.json").write_text(json.dumps({"playlist_code": None}))
        assert LocalStore(temp_settings_dir).playlist_code == ""


class TestLocalStoreWrite:
    """Tests for transactional writes."""

    def test_registration_written_together(self, store, sample_playlist, temp_settings_dir):
        store.save_registration("ABCDE", sample_playlist, "uid-1", "2030-01-01")

        reloaded = LocalStore(temp_settings_dir)
        assert reloaded.playlist_code == "ABCDE"
        assert reloaded.playlist_id == "p1"
        assert reloaded.device_uid == "uid-1"
        assert reloaded.license_expiry == "2030-01-01"
        assert reloaded.load_playlist() == sample_playlist

    def test_registration_without_license_keeps_old_one(self, store, sample_playlist):
        store.save_license_expiry("2030-01-01")
        store.save_registration("ABCDE", sample_playlist, "uid-1")
        assert store.license_expiry == "2030-01-01"

    def test_playlist_id_matches_saved_playlist(self, store, sample_playlist):
        store.save_playlist(sample_playlist)
        assert store.playlist_id == store.load_playlist().id

    def test_clear_empties_every_field(self, store, sample_playlist, temp_settings_dir):
        store.save_registration("ABCDE", sample_playlist, "uid-1", "2030-01-01")
        store.clear()

        assert LocalStore(temp_settings_dir).snapshot() == {name: "" for name in FIELDS}

    def test_discard_leaves_file_untouched(self, store, sample_playlist, temp_settings_dir):
        store.save_registration("ABCDE", sample_playlist, "uid-1", "2030-01-01")
        store.discard()

        assert store.playlist_id == ""
        assert LocalStore(temp_settings_dir).playlist_id == sample_playlist.id

    def test_unknown_field_rejected(self, store):
        with pytest.raises(KeyError):
            store.update(volume="11")

    def test_write_is_atomic(self, store, sample_playlist, temp_settings_dir):
        """A failed write leaves the previous document and no temp files."""
        store.save_playlist(sample_playlist)

        with mock.patch('src.signage.store.os.replace', side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                store.update(playlist_code="NEW")

        assert store.playlist_code == ""
        assert LocalStore(temp_settings_dir).playlist_id == "p1"
        assert os.listdir(temp_settings_dir) == ["settings.json"]

    def test_one_write_per_transaction(self, store, sample_playlist):
        with mock.patch.object(store, "_write", wraps=store._write) as write:
            store.save_registration("ABCDE", sample_playlist, "uid-1", "2030-01-01")
            store.clear()
        assert write.call_count == 2


class TestLocalStorePlaylist:
    """Tests for load_playlist()."""

    def test_unreadable_playlist_is_none(self, store):
        store.update(playlist_id="p1", saved_playlist="not json")
        assert store.load_playlist() is None

    def test_repr(self, store):
        assert "settings.json" in repr(store)
