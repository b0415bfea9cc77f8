"""
Realtime push channel for the signage device client.

One Socket.IO connection per process. python-socketio reconnects a dropped
connection by itself; the first connection attempt is retried here on a
background thread. Room membership and player announcements are remembered
and replayed on every (re)connect so the orchestrator never has to.
"""

import threading
from typing import Any, Callable, Dict, Optional

import socketio
from socketio.exceptions import ConnectionError as SocketConnectionError, SocketIOError

from .models import RegisterResponse
from src.common.logger import setup_logger

logger = setup_logger(__name__)

# Server -> client
EVENT_REGISTRATION_COMPLETE = "registration:complete"
EVENT_FULLSCREEN_ENTER = "device:command:fullscreen-enter"
EVENT_FULLSCREEN_EXIT = "device:command:fullscreen-exit"
EVENT_FORCE_DEREGISTER = "device:force-deregister"

# Client -> server
EMIT_JOIN = "device:join"
EMIT_PLAYER_CONNECT = "device:player:connect"
EMIT_PING = "device:ping"


class RealtimeChannel:
    """Long-lived Socket.IO connection with event dispatch."""

    DEFAULT_RECONNECTION_DELAY = 1
    DEFAULT_RECONNECTION_DELAY_MAX = 30

    def __init__(
        self,
        url: str,
        on_status_change: Optional[Callable[[bool], None]] = None,
        reconnection_delay: float = DEFAULT_RECONNECTION_DELAY,
        reconnection_delay_max: float = DEFAULT_RECONNECTION_DELAY_MAX,
        client: Optional[socketio.Client] = None
    ):
        """
        Args:
            url: Socket.IO server URL
            on_status_change: Callback(connected) on connect/disconnect
            reconnection_delay: First retry delay in seconds
            reconnection_delay_max: Retry delay cap in seconds
            client: Pre-built Socket.IO client (for testing)
        """
        self.url = url
        self._on_status_change = on_status_change
        self._reconnection_delay = reconnection_delay
        self._reconnection_delay_max = reconnection_delay_max
        self._client = client or socketio.Client(
            reconnection=True,
            reconnection_delay=reconnection_delay,
            reconnection_delay_max=reconnection_delay_max,
            logger=False,
            engineio_logger=False,
        )

        self._lock = threading.Lock()
        self._device_room: Optional[str] = None
        self._player: Optional[Dict[str, str]] = None

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

        self._client.on("connect", self._handle_connect)
        self._client.on("disconnect", self._handle_disconnect)
        self._client.on("connect_error", self._handle_connect_error)

    @property
    def is_connected(self) -> bool:
        return bool(self._client.connected)

    def set_status_callback(self, callback: Callable[[bool], None]) -> None:
        """Set callback(connected) for connection status changes."""
        self._on_status_change = callback

    # Connection lifecycle

    def connect(self) -> None:
        """Start connecting in the background. Returns immediately."""
        if self.is_connected or (self._thread and self._thread.is_alive()):
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._connect_loop,
            name="RealtimeChannel",
            daemon=True
        )
        self._thread.start()

    def _connect_loop(self) -> None:
        """Retry the initial connection with capped exponential backoff."""
        delay = self._reconnection_delay

        while not self._stop_event.is_set():
            try:
                self._client.connect(self.url, transports=["websocket", "polling"])
                return
            except SocketConnectionError as e:
                logger.warning("Socket connection failed (%s), retrying in %.0fs", e, delay)
                self._notify_status(False)

            if self._stop_event.wait(timeout=delay):
                return
            delay = min(delay * 2, self._reconnection_delay_max)

    def disconnect(self) -> None:
        """Close the connection and stop any retry loop."""
        self._stop_event.set()
        try:
            self._client.disconnect()
        except Exception as e:
            logger.debug("Socket disconnect error: %s", e)

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        self._thread = None

    def _notify_status(self, connected: bool) -> None:
        if self._on_status_change:
            try:
                self._on_status_change(connected)
            except Exception as e:
                logger.error("Error in socket status callback: %s", e)

    def _handle_connect(self) -> None:
        logger.info("Socket connected: %s", self.url)
        self._notify_status(True)

        with self._lock:
            room = self._device_room
            player = dict(self._player) if self._player else None

        # The client reports connected only after this handler returns
        if room:
            self._send(EMIT_JOIN, room)
        if player:
            self._send(EMIT_PLAYER_CONNECT, player)

    def _handle_disconnect(self, *args: Any) -> None:
        logger.info("Socket disconnected")
        self._notify_status(False)

    def _handle_connect_error(self, data: Any = None) -> None:
        logger.error("Socket connection error: %s", data)
        self._notify_status(False)

    def _emit(self, event: str, data: Any) -> bool:
        if not self.is_connected:
            logger.debug("Socket offline, not sending %s", event)
            return False
        return self._send(event, data)

    def _send(self, event: str, data: Any) -> bool:
        try:
            self._client.emit(event, data)
            return True
        except SocketIOError as e:
            logger.warning("Failed to emit %s: %s", event, e)
            return False

    # Outbound

    def join_device_room(self, device_id: str) -> None:
        """Join the room registration events for ``device_id`` are sent to."""
        logger.info("Joining device room: %s", device_id)
        with self._lock:
            self._device_room = device_id
        self._emit(EMIT_JOIN, device_id)

    def connect_player(self, uid: str, playlist_id: str) -> None:
        """Announce this device as the active player of ``playlist_id``."""
        logger.info("Connecting player %s to playlist %s", uid, playlist_id)
        player = {"uid": uid, "playlistId": playlist_id}
        with self._lock:
            self._player = player
        self._emit(EMIT_PLAYER_CONNECT, player)

    def forget_player(self) -> None:
        """Stop replaying the player announcement after a reset."""
        with self._lock:
            self._player = None

    def send_ping(self, uid: str) -> bool:
        """Heartbeat while playing."""
        return self._emit(EMIT_PING, {"uid": uid})

    # Inbound

    def on_registration_complete(self, callback: Callable[[RegisterResponse], None]) -> None:
        """Deliver ``registration:complete`` payloads as parsed responses."""

        def handler(data: Any = None) -> None:
            if not isinstance(data, dict):
                logger.error("Ignoring registration:complete with payload %r", data)
                return
            logger.info("Registration complete event received")
            callback(RegisterResponse.from_dict(data))

        self._client.on(EVENT_REGISTRATION_COMPLETE, handler)

    def on_remote_command(
        self,
        on_fullscreen_enter: Callable[[], None],
        on_fullscreen_exit: Callable[[], None],
        on_force_deregister: Callable[[], None]
    ) -> None:
        """Route the remote-control events."""

        def enter(*args: Any) -> None:
            logger.info("Remote command: fullscreen enter")
            on_fullscreen_enter()

        def exit_(*args: Any) -> None:
            logger.info("Remote command: fullscreen exit")
            on_fullscreen_exit()

        def force_deregister(*args: Any) -> None:
            logger.warning("Remote command: force deregister")
            on_force_deregister()

        self._client.on(EVENT_FULLSCREEN_ENTER, enter)
        self._client.on(EVENT_FULLSCREEN_EXIT, exit_)
        self._client.on(EVENT_FORCE_DEREGISTER, force_deregister)

    def __repr__(self) -> str:
        return f"RealtimeChannel(url={self.url}, connected={self.is_connected})"
