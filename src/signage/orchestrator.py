"""
Device Orchestrator for the signage device client.

Owns the device state machine and reconciles every input into it:
REST responses, the periodic license/timeline check, realtime push events
and media cache progress.

All state changes happen on one loop thread that consumes a command
queue. Producers (the periodic timer, Socket.IO callbacks, the front end,
finished REST calls, cache downloads) only post commands, so handlers read
and write the full state without interleaving. Network and disk I/O run on
an executor and post their result back as another command.
"""

import queue
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from .api_client import (
    ApiError,
    BackendClient,
    DeviceDeregisteredError,
    LicenseExpiredError,
)
from .license import is_expired, parse_timestamp
from .media_cache import MediaCacheManager
from .models import (
    InitRegistrationResponse,
    PlaybackErrorRecord,
    PlaylistSnapshot,
    RegisterResponse,
    TimelineResponse,
)
from .realtime import RealtimeChannel
from .state import AppState, DeviceState
from .store import LocalStore
from src.common.logger import setup_logger

logger = setup_logger(__name__)

REMOTE_ENTER_FULLSCREEN = "ENTER_FULLSCREEN"
REMOTE_EXIT_FULLSCREEN = "EXIT_FULLSCREEN"

# Name given to a playlist rebuilt from a timeline when nothing was saved
PLACEHOLDER_PLAYLIST_NAME = "My Playlist"

Command = Tuple[Callable[..., None], Tuple[Any, ...]]


class DeviceOrchestrator:
    """
    Single writer of the device state.

    Public methods may be called from any thread; they enqueue work.
    Read accessors return consistent snapshots.
    """

    DEFAULT_PERIODIC_INTERVAL = 30
    DEFAULT_SPLASH_DELAY = 2.0

    def __init__(
        self,
        store: LocalStore,
        api: BackendClient,
        cache: MediaCacheManager,
        channel: RealtimeChannel,
        device_uid: str,
        base_url: str,
        executor: Optional[Executor] = None,
        periodic_interval: float = DEFAULT_PERIODIC_INTERVAL,
        splash_delay: float = DEFAULT_SPLASH_DELAY
    ):
        """
        Args:
            store: Local durable store
            api: Backend REST client
            cache: Media cache
            channel: Realtime push channel
            device_uid: This device's identity
            base_url: Backend base URL media is downloaded from
            executor: Runs network and disk work (a thread pool if None)
            periodic_interval: Seconds between periodic checks
            splash_delay: Seconds to stay LOADING before the startup check
        """
        self._store = store
        self._api = api
        self._cache = cache
        self._channel = channel
        self._device_uid = device_uid
        self._base_url = base_url
        self.periodic_interval = periodic_interval
        self.splash_delay = splash_delay

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=4, thread_name_prefix="signage-io"
        )

        self._commands: "queue.Queue[Command]" = queue.Queue()

        # Guards everything read from other threads
        self._lock = threading.Lock()
        self._state = AppState.loading()
        self._cache_progress = 0.0
        self._license_raw: Optional[str] = None
        self._playback_error: Optional[PlaybackErrorRecord] = None
        self._socket_connected = False
        self._remote_command: Optional[str] = None
        self._listeners: List[Callable[[AppState], None]] = []

        # Loop-thread only
        self._license_expiry: Optional[datetime] = None
        self._applied_json: Optional[str] = None
        self._cache_generation = 0

        self._running = False
        self._closed = False
        self._stop_event = threading.Event()
        self._loop_thread: Optional[threading.Thread] = None
        self._timer_thread: Optional[threading.Thread] = None

        self._channel.set_status_callback(self.on_socket_status)
        self._channel.on_registration_complete(
            lambda response: self._post(self._on_registration_event, response)
        )
        self._channel.on_remote_command(
            on_fullscreen_enter=lambda: self._post(self._set_remote_command, REMOTE_ENTER_FULLSCREEN),
            on_fullscreen_exit=lambda: self._post(self._set_remote_command, REMOTE_EXIT_FULLSCREEN),
            on_force_deregister=lambda: self._post(self._reset_registration),
        )

        logger.info("DeviceOrchestrator initialized for device %s", device_uid)

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def state(self) -> AppState:
        with self._lock:
            return self._state

    @property
    def cache_progress(self) -> float:
        with self._lock:
            return self._cache_progress

    @property
    def license_expiry(self) -> Optional[str]:
        """Raw expiry string as last received, None when unknown."""
        with self._lock:
            return self._license_raw

    @property
    def playback_error(self) -> Optional[PlaybackErrorRecord]:
        with self._lock:
            return self._playback_error

    @property
    def socket_connected(self) -> bool:
        with self._lock:
            return self._socket_connected

    @property
    def device_uid(self) -> str:
        return self._device_uid

    @property
    def cache(self) -> MediaCacheManager:
        return self._cache

    @property
    def is_running(self) -> bool:
        return self._running

    def take_remote_command(self) -> Optional[str]:
        """Return the pending remote command once, then forget it."""
        with self._lock:
            command = self._remote_command
            self._remote_command = None
        return command

    def add_listener(self, callback: Callable[[AppState], None]) -> None:
        """Call ``callback(state)`` on the loop thread after each state change."""
        with self._lock:
            self._listeners.append(callback)

    def report_playback_error(self, media_name: str, message: str) -> None:
        with self._lock:
            self._playback_error = PlaybackErrorRecord(media_name, message, datetime.now())
        logger.warning("Playback error on %s: %s", media_name, message)

    def clear_playback_error(self) -> None:
        with self._lock:
            self._playback_error = None

    def get_status(self) -> Dict[str, Any]:
        """Diagnostics for the stats screen and the control socket."""
        state = self.state
        playlist = state.playlist
        error = self.playback_error
        return {
            "device_uid": self._device_uid,
            "state": state.kind.value,
            "playlist": {
                "id": playlist.id,
                "name": playlist.name,
                "code": playlist.code,
                "item_count": len(playlist.items),
            } if playlist else None,
            "cache_progress": self.cache_progress,
            "license_expiry": self.license_expiry,
            "socket_connected": self.socket_connected,
            "playback_error": error.to_dict() if error else None,
            "running": self._running,
        }

    # ------------------------------------------------------------------
    # Commands (any thread)
    # ------------------------------------------------------------------

    def check_registration(self) -> None:
        """Run the startup check."""
        self._post(self._startup)

    def register(self, code: str) -> None:
        """Register with a playlist code typed on the device."""
        self._post(self._register, code)

    def init_qr_registration(self) -> None:
        """Fetch a fresh QR registration session."""
        self._post(self._init_qr_registration)

    def refresh_timeline(self) -> None:
        """Refresh the timeline of the persisted playlist now."""
        self._post(self._refresh_persisted)

    def manual_deregister(self) -> None:
        """Notify the backend (best effort) and reset local registration."""
        self._post(self._manual_deregister)

    def reset_registration(self) -> None:
        """Reset local registration without notifying the backend."""
        self._post(self._reset_registration)

    def on_socket_status(self, connected: bool) -> None:
        self._post(self._set_socket_connected, connected)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the loop and periodic threads and open the realtime channel."""
        if self._running:
            logger.warning("Orchestrator already running")
            return

        self._running = True
        self._closed = False
        self._stop_event.clear()

        self._channel.connect()

        self._loop_thread = threading.Thread(
            target=self._run_loop, name="DeviceOrchestrator", daemon=True
        )
        self._timer_thread = threading.Thread(
            target=self._periodic_loop, name="PeriodicCheck", daemon=True
        )
        self._loop_thread.start()
        self._timer_thread.start()

        logger.info("Orchestrator started")

    def stop(self) -> None:
        """Stop timers and the channel. Results of in-flight calls are dropped."""
        if not self._running:
            return

        logger.info("Stopping orchestrator...")
        self._running = False
        self._closed = True
        self._stop_event.set()

        self._channel.disconnect()

        for thread in (self._timer_thread, self._loop_thread):
            if thread and thread.is_alive():
                thread.join(timeout=5)

        if self._owns_executor:
            self._executor.shutdown(wait=False)

        logger.info("Orchestrator stopped")

    def process_pending(self) -> int:
        """
        Run queued commands on the calling thread until the queue is empty.

        Only for use when the loop thread is not running.

        Returns:
            Number of commands executed
        """
        count = 0
        while True:
            try:
                func, args = self._commands.get_nowait()
            except queue.Empty:
                return count
            self._execute(func, args)
            count += 1

    def _run_loop(self) -> None:
        if self._stop_event.wait(timeout=self.splash_delay):
            return
        self._execute(self._startup, ())

        while self._running:
            try:
                func, args = self._commands.get(timeout=0.5)
            except queue.Empty:
                continue
            self._execute(func, args)

        logger.info("Orchestrator loop ended")

    def _periodic_loop(self) -> None:
        while not self._stop_event.wait(timeout=self.periodic_interval):
            self._post(self._periodic_check)

    def _post(self, func: Callable[..., None], *args: Any) -> None:
        if self._closed:
            logger.debug("Orchestrator stopped, dropping %s", func.__name__)
            return
        self._commands.put((func, args))

    def _execute(self, func: Callable[..., None], args: Tuple[Any, ...]) -> None:
        try:
            func(*args)
        except Exception:
            logger.exception("Error handling %s", getattr(func, "__name__", func))

    def _run_io(
        self,
        call: Callable[[], Any],
        on_success: Callable[[Any], None],
        on_failure: Callable[[Exception], None]
    ) -> None:
        """Run ``call`` on the executor and post its outcome back to the loop."""

        def task() -> None:
            try:
                result = call()
            except Exception as e:
                self._post(on_failure, e)
                return
            self._post(on_success, result)

        try:
            self._executor.submit(task)
        except RuntimeError as e:
            logger.debug("Executor unavailable: %s", e)

    # ------------------------------------------------------------------
    # State helpers (loop thread)
    # ------------------------------------------------------------------

    def _set_state(self, new_state: AppState) -> None:
        with self._lock:
            previous = self._state
            self._state = new_state
            listeners = list(self._listeners)

        if previous == new_state:
            return

        if previous.kind is not new_state.kind:
            logger.info("State transition: %s -> %s", previous.kind.name, new_state.kind.name)

        for listener in listeners:
            try:
                listener(new_state)
            except Exception as e:
                logger.error("Error in state listener: %s", e)

    def _set_cache_progress(self, progress: float) -> None:
        with self._lock:
            self._cache_progress = progress

    def _set_remote_command(self, command: str) -> None:
        with self._lock:
            self._remote_command = command

    def _set_socket_connected(self, connected: bool) -> None:
        with self._lock:
            self._socket_connected = connected

    def _load_license(self, raw: Optional[str]) -> None:
        """Adopt a license expiry in memory without persisting it."""
        if not raw or raw == "null":
            return
        with self._lock:
            self._license_raw = raw
        self._license_expiry = parse_timestamp(raw)

    def _update_license(self, raw: Optional[str]) -> None:
        """Adopt and persist a license expiry received from the backend."""
        if not raw or raw == "null":
            return
        self._load_license(raw)
        if self._store.license_expiry != raw:
            self._store.save_license_expiry(raw)
            logger.info("Saved license expiry: %s", raw)

    def _is_license_expired(self) -> bool:
        return is_expired(self._license_expiry)

    def _playing_from(self, playlist: PlaylistSnapshot) -> AppState:
        progress = self._cache.progress(playlist.items)
        self._set_cache_progress(progress)
        return AppState.playing(playlist, progress)

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def _startup(self) -> None:
        logger.info("Checking registration status...")

        saved_code = self._store.playlist_code
        saved_id = self._store.playlist_id
        self._load_license(self._store.license_expiry)

        logger.debug(
            "Persisted state - playlist_id: %r, code: %r, cached playlist: %s, license: %r",
            saved_id, saved_code, bool(self._store.saved_playlist), self.license_expiry
        )

        if saved_id:
            if self._is_license_expired():
                logger.warning("License expired, blocking playback")
                self._set_state(AppState.license_expired())
                self._refresh_timeline(saved_id)
                return

            playlist = self._store.load_playlist()
            if playlist is not None and playlist.id != saved_id:
                logger.warning("Saved playlist %s does not match id %s, ignoring it",
                               playlist.id, saved_id)
                playlist = None

            if playlist is not None:
                logger.info("Starting playback from cache: %s", playlist.id)
                self._applied_json = playlist.to_json()
                self._start_caching(playlist)
            else:
                logger.info("No cached playlist, waiting for the timeline")

            self._channel.connect_player(self._device_uid, saved_id)
            self._refresh_timeline(saved_id)

        elif saved_code:
            logger.info("Legacy code registration found: %s", saved_code)
            self._register(saved_code)

        else:
            logger.info("No registration found, starting QR registration")
            self._init_qr_registration()

    # ------------------------------------------------------------------
    # QR registration
    # ------------------------------------------------------------------

    def _registered(self) -> bool:
        return self.state.is_playing or bool(self._store.playlist_id)

    def _init_qr_registration(self) -> None:
        if self.state.is_playing:
            logger.debug("Skipping QR init: already playing")
            return

        if self.state.kind is not DeviceState.REGISTRATION_REQUIRED:
            self._set_state(AppState.loading())

        uid = self._device_uid
        self._run_io(
            lambda: self._api.init_registration(uid),
            self._on_qr_session,
            self._on_qr_session_failed,
        )

    def _on_qr_session(self, response: InitRegistrationResponse) -> None:
        if self._registered():
            logger.debug("Registered meanwhile, ignoring QR session")
            return

        if response.success and response.session is not None:
            logger.info("QR session ready: %s", response.session.registration_url)
            self._channel.join_device_room(self._device_uid)
            self._set_state(AppState.registration_required(response.session))
        else:
            logger.error("QR session refused: %s", response.message)
            self._set_state(AppState.registration_required(
                error=f"Server returned error: {response.message}"
            ))

    def _on_qr_session_failed(self, error: Exception) -> None:
        if self._registered():
            return
        logger.error("Failed to fetch QR session: %s", error)
        self._set_state(AppState.registration_required(
            error=f"Connection failed: {error}"
        ))

    # ------------------------------------------------------------------
    # Code registration and registration:complete
    # ------------------------------------------------------------------

    def _register(self, code: str) -> None:
        logger.info("Starting registration for code: %s", code)
        self._set_state(AppState.loading())

        uid = self._device_uid
        self._run_io(
            lambda: self._api.register_device(code, uid),
            lambda response: self._apply_registration(response, code),
            self._on_register_failed,
        )

    def _on_registration_event(self, response: RegisterResponse) -> None:
        playlist = response.playlist
        if playlist is None:
            logger.error("registration:complete without playlist, ignoring")
            return
        self._apply_registration(response, playlist.code)

    def _apply_registration(self, response: RegisterResponse, code: str) -> None:
        playlist = response.playlist
        if playlist is None:
            if not response.success:
                self._on_register_failed(ApiError(response.message or "Registration rejected"))
            else:
                logger.error("Registration response has no playlist")
                self._set_state(AppState.failed("Invalid response from server: Missing playlist"))
            return

        expiry = response.license_expiry
        if expiry is None:
            logger.info("No license in registration response, will fetch via timeline")

        self._store.save_registration(code or playlist.code, playlist, self._device_uid, expiry)
        self._applied_json = playlist.to_json()
        self._load_license(expiry)

        logger.info("Registration complete for playlist %s", playlist.id)
        self._channel.connect_player(self._device_uid, playlist.id)

        if self._is_license_expired():
            logger.warning("Registered with an expired license")
            self._set_state(AppState.license_expired())
            return

        self._start_caching(playlist)

        if expiry is None:
            self._refresh_timeline(playlist.id)

    def _on_register_failed(self, error: Exception) -> None:
        logger.error("Registration failed: %s", error)

        if isinstance(error, LicenseExpiredError):
            self._update_license(error.license_expiry)
            self._set_state(AppState.license_expired())
            return

        if self._is_license_expired():
            self._set_state(AppState.license_expired())
            return

        playlist = self._store.load_playlist()
        if playlist is not None:
            logger.info("Offline: falling back to saved playlist %s", playlist.id)
            self._applied_json = playlist.to_json()
            self._set_state(self._playing_from(playlist))
        else:
            self._set_state(AppState.failed(str(error) or "Unknown error"))

    # ------------------------------------------------------------------
    # Timeline
    # ------------------------------------------------------------------

    def _refresh_persisted(self) -> None:
        playlist_id = self._store.playlist_id
        if playlist_id:
            self._refresh_timeline(playlist_id)

    def _refresh_timeline(self, playlist_id: str) -> None:
        logger.debug("Refreshing timeline for %s", playlist_id)
        uid = self._device_uid
        self._run_io(
            lambda: self._api.get_timeline(playlist_id, uid),
            lambda response: self._apply_timeline(playlist_id, response),
            lambda error: self._on_timeline_failed(playlist_id, error),
        )

    def _is_stale(self, playlist_id: str) -> bool:
        if self._store.playlist_id != playlist_id:
            logger.debug("Discarding timeline result for %s", playlist_id)
            return True
        return False

    def _apply_timeline(self, playlist_id: str, response: TimelineResponse) -> None:
        if self._is_stale(playlist_id):
            return

        if response.device_deleted:
            logger.warning("Timeline reports device deleted, resetting")
            self._reset_registration()
            return

        expiry = response.license_expiry
        if expiry:
            self._update_license(expiry)
        else:
            logger.warning("Timeline response carries no license")

        if self._is_license_expired():
            logger.warning("License is expired after timeline refresh")
            self._set_state(AppState.license_expired())
            return

        if not response.success or response.items is None:
            self._on_timeline_failed(
                playlist_id, ApiError(response.message or "Timeline unavailable")
            )
            return

        base = self._store.load_playlist()
        if base is None or base.id != playlist_id:
            base = PlaylistSnapshot(
                id=playlist_id,
                name=PLACEHOLDER_PLAYLIST_NAME,
                code=self._store.playlist_code,
            )
        playlist = base.with_items(response.items)
        playlist_json = playlist.to_json()

        current = self.state
        changed = playlist_json != self._applied_json

        if changed:
            logger.info("Timeline changed: %d items", len(playlist.items))
            self._store.save_playlist(playlist)
            self._applied_json = playlist_json

        if changed or current.kind is DeviceState.LOADING:
            self._start_caching(playlist)
        elif current.kind in (DeviceState.LICENSE_EXPIRED, DeviceState.ERROR):
            logger.info("Recovering from %s", current.kind.name)
            self._set_state(self._playing_from(playlist))
        else:
            logger.debug("Timeline unchanged")

    def _on_timeline_failed(self, playlist_id: str, error: Exception) -> None:
        if self._is_stale(playlist_id):
            return

        if isinstance(error, DeviceDeregisteredError):
            logger.warning("Device deregistered by backend")
            self._reset_registration()
            return

        if isinstance(error, LicenseExpiredError):
            logger.warning("Timeline refused: license expired")
            self._update_license(error.license_expiry)
            self._set_state(AppState.license_expired())
            return

        logger.warning("Timeline refresh failed: %s", error)
        if self._is_license_expired():
            self._set_state(AppState.license_expired())

    # ------------------------------------------------------------------
    # Media cache
    # ------------------------------------------------------------------

    def _start_caching(self, playlist: PlaylistSnapshot) -> None:
        """Enter PLAYING with ``playlist`` and (re)start populating its media."""
        self._cache_generation += 1
        generation = self._cache_generation

        self._set_state(self._playing_from(playlist))

        try:
            self._executor.submit(self._populate_cache, generation, playlist)
        except RuntimeError as e:
            logger.debug("Executor unavailable, cache not populated: %s", e)

    def _populate_cache(self, generation: int, playlist: PlaylistSnapshot) -> None:
        """Executor thread: download items in order, reporting after each."""
        for item in playlist.items:
            if generation != self._cache_generation or self._closed:
                logger.debug("Cache population %d superseded", generation)
                return
            try:
                self._cache.download(item, self._base_url)
            except Exception:
                logger.exception("Unexpected error caching item %s", item.id)
            self._post(self._on_cache_progress, generation, playlist)

    def _on_cache_progress(self, generation: int, playlist: PlaylistSnapshot) -> None:
        if generation != self._cache_generation:
            return

        progress = self._cache.progress(playlist.items)
        self._set_cache_progress(progress)

        current = self.state
        if current.is_playing and current.playlist is not None and current.playlist.id == playlist.id:
            self._set_state(AppState.playing(current.playlist, progress))

    # ------------------------------------------------------------------
    # Periodic check
    # ------------------------------------------------------------------

    def _periodic_check(self) -> None:
        logger.debug("Periodic check")
        current = self.state

        if current.is_playing:
            self._channel.send_ping(self._device_uid)

        if self._is_license_expired() and current.kind is not DeviceState.LICENSE_EXPIRED:
            logger.warning("Periodic check: license expired")
            self._set_state(AppState.license_expired())

        self._refresh_persisted()

    # ------------------------------------------------------------------
    # Deregistration
    # ------------------------------------------------------------------

    def _manual_deregister(self) -> None:
        logger.info("Manual deregistration requested")
        uid = self._device_uid
        self._run_io(
            lambda: self._api.deregister_device(uid),
            lambda _: logger.info("Backend acknowledged deregistration"),
            lambda error: logger.warning("Backend deregistration failed: %s", error),
        )
        self._reset_registration()

    def _reset_registration(self) -> None:
        logger.info("Clearing local registration data...")

        # LOADING first so nothing renders a half-cleared playlist
        self._set_state(AppState.loading())

        self._cache_generation += 1
        try:
            self._store.clear()
        except OSError as e:
            logger.error("Failed to clear persisted registration: %s", e)
            self._store.discard()

        self._license_expiry = None
        self._applied_json = None
        with self._lock:
            self._license_raw = None
            self._cache_progress = 0.0
        self._channel.forget_player()

        self._init_qr_registration()

    def __repr__(self) -> str:
        return f"DeviceOrchestrator(device={self._device_uid}, state={self.state!r})"
