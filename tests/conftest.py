"""
Pytest Fixtures for Signage Client Tests

Provides temp directories, sample backend payloads, a synchronous executor
and a fake realtime channel shared across the test files.
"""

import copy
import tempfile
from concurrent.futures import Executor, Future
from datetime import datetime, timedelta, timezone
from unittest import mock

import pytest

from src.signage.api_client import BackendClient
from src.signage.media_cache import MediaCacheManager
from src.signage.models import PlaylistSnapshot
from src.signage.orchestrator import DeviceOrchestrator
from src.signage.store import LocalStore


DEVICE_UID = "signage-test-0001"
BASE_URL = "http://backend.test"


SAMPLE_PLAYLIST = {
    "id": "p1",
    "name": "Lobby",
    "code": "ABCDE",
    "items": [
        {
            "id": "item-1",
            "order": 0,
            "duration": 10,
            "video": {
                "id": "m1",
                "fileName": "intro.mp4",
                "filePath": "/uploads/intro.mp4",
                "mimeType": "video/mp4",
                "duration": 10.0,
                "fileSize": 1024,
            },
        },
        {
            "id": "item-2",
            "order": 1,
            "duration": 5,
            "video": {
                "id": "m2",
                "fileName": "poster.png",
                "filePath": "/uploads/poster.png",
                "mimeType": "image/png",
            },
        },
    ],
}

SAMPLE_TIMELINE_ITEMS = SAMPLE_PLAYLIST["items"]


def iso_utc(delta: timedelta) -> str:
    """Expiry string ``delta`` from now in the backend's Z layout."""
    return (datetime.now(timezone.utc) + delta).strftime("%Y-%m-%dT%H:%M:%SZ")


class InlineExecutor(Executor):
    """Runs submitted work immediately on the calling thread."""

    def __init__(self):
        self.submitted = 0

    def submit(self, fn, *args, **kwargs):
        self.submitted += 1
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


class FakeChannel:
    """Records what the orchestrator asks of the realtime channel."""

    def __init__(self):
        self.status_callback = None
        self.registration_callback = None
        self.remote_callbacks = {}
        self.connected = False
        self.joined_rooms = []
        self.players = []
        self.pings = []
        self.forgotten = 0

    def set_status_callback(self, callback):
        self.status_callback = callback

    def on_registration_complete(self, callback):
        self.registration_callback = callback

    def on_remote_command(self, on_fullscreen_enter, on_fullscreen_exit, on_force_deregister):
        self.remote_callbacks = {
            "enter": on_fullscreen_enter,
            "exit": on_fullscreen_exit,
            "force_deregister": on_force_deregister,
        }

    def connect(self):
        self.connected = True

    def disconnect(self):
        self.connected = False

    def join_device_room(self, device_id):
        self.joined_rooms.append(device_id)

    def connect_player(self, uid, playlist_id):
        self.players.append((uid, playlist_id))

    def forget_player(self):
        self.forgotten += 1

    def send_ping(self, uid):
        self.pings.append(uid)
        return True


@pytest.fixture
def sample_playlist():
    return PlaylistSnapshot.from_dict(SAMPLE_PLAYLIST)


@pytest.fixture
def temp_settings_dir():
    """Create a temporary settings directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def temp_cache_dir():
    """Create a temporary media cache directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def store(temp_settings_dir):
    return LocalStore(temp_settings_dir)


@pytest.fixture
def cache(temp_cache_dir):
    """Real cache on a temp dir; downloads are stubbed out."""
    manager = MediaCacheManager(temp_cache_dir)
    manager.download = mock.MagicMock(return_value=False)
    return manager


@pytest.fixture
def api():
    return mock.MagicMock(spec=BackendClient)


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def executor():
    return InlineExecutor()


@pytest.fixture
def make_orchestrator(store, api, cache, channel, executor):
    """Factory for an orchestrator driven synchronously via process_pending()."""

    def _make(**kwargs):
        kwargs.setdefault("splash_delay", 0)
        return DeviceOrchestrator(
            store=store,
            api=api,
            cache=cache,
            channel=channel,
            device_uid=DEVICE_UID,
            base_url=BASE_URL,
            executor=executor,
            **kwargs
        )

    return _make


@pytest.fixture
def playlist_payload():
    """Playlist as the backend sends it."""
    return copy.deepcopy(SAMPLE_PLAYLIST)


@pytest.fixture
def future_expiry():
    return iso_utc(timedelta(days=1))


@pytest.fixture
def past_expiry():
    return iso_utc(timedelta(days=-1))
