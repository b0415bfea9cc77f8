"""
SignageService - process host for the signage device client.

Wires the components from configuration, publishes every device state to
the front end over ZeroMQ and answers its control requests.
"""

import signal
import sys
import threading
from typing import Any, Callable, Dict, Optional

from .api_client import BackendClient
from .media_cache import MediaCacheManager
from .orchestrator import DeviceOrchestrator
from .playback import playable_items, resolve_source
from .realtime import RealtimeChannel
from .state import AppState
from .store import LocalStore
from src.common.config import Config, get_config
from src.common.device_id import get_device_info, get_or_create_device_id
from src.common.ipc import Message, MessagePublisher, MessageType, ReplyServer
from src.common.logger import set_level, setup_logger

logger = setup_logger(__name__)

SERVICE_NAME = "signage"


class SignageService:
    """
    Owns the orchestrator and the front-end IPC sockets.

    Control requests are COMMAND messages whose ``action`` names one of
    the handlers in ``_request_handlers``.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        orchestrator: Optional[DeviceOrchestrator] = None,
        cache: Optional[MediaCacheManager] = None,
        enable_ipc: bool = True
    ):
        """
        Args:
            config: Loaded configuration (global config if None)
            orchestrator: Pre-built orchestrator (for testing)
            cache: Media cache for resolve requests (the orchestrator's if None)
            enable_ipc: Bind the PUB/REP sockets on start
        """
        self._config = config or get_config()
        self._enable_ipc = enable_ipc

        set_level(self._config.get('logging.level', 'INFO'))

        self._cache = cache
        self._orchestrator = orchestrator or self._build_orchestrator()
        if self._cache is None:
            self._cache = self._orchestrator.cache

        self._publisher: Optional[MessagePublisher] = None
        self._reply_server: Optional[ReplyServer] = None

        self._request_handlers: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
            "register": self._handle_register,
            "retry_registration": self._handle_retry_registration,
            "deregister": self._handle_deregister,
            "reset": self._handle_reset,
            "report_error": self._handle_report_error,
            "clear_error": self._handle_clear_error,
            "take_remote_command": self._handle_take_remote_command,
            "resolve": self._handle_resolve,
            "status": self._handle_status,
        }

        self._running = False
        self._stop_event = threading.Event()

        self._orchestrator.add_listener(self._publish_state)

    def _build_orchestrator(self) -> DeviceOrchestrator:
        config = self._config

        device_uid = config.device_id or get_or_create_device_id(config.device_id_file)
        logger.info("Device UID: %s", device_uid)

        if self._cache is None:
            self._cache = MediaCacheManager(
                config.cache_dir,
                download_timeout=float(config.get('cache.download_timeout', 120))
            )

        api = BackendClient(
            config.base_url,
            timeout=float(config.get('api.timeout', 15)),
            device_info=get_device_info(device_uid)
        )
        channel = RealtimeChannel(
            config.realtime_url,
            reconnection_delay=float(config.get('realtime.reconnection_delay', 1)),
            reconnection_delay_max=float(config.get('realtime.reconnection_delay_max', 30))
        )

        return DeviceOrchestrator(
            store=LocalStore(config.settings_dir),
            api=api,
            cache=self._cache,
            channel=channel,
            device_uid=device_uid,
            base_url=config.base_url,
            periodic_interval=config.sync_interval,
            splash_delay=config.splash_delay
        )

    @property
    def orchestrator(self) -> DeviceOrchestrator:
        return self._orchestrator

    @property
    def is_running(self) -> bool:
        return self._running

    # -------------------------------------------------------------------------
    # Front-end IPC
    # -------------------------------------------------------------------------

    def _publish_state(self, state: AppState) -> None:
        if self._publisher is None:
            return
        payload = state.to_dict()
        payload.setdefault("cacheProgress", self._orchestrator.cache_progress)
        self._publisher.publish(MessageType.STATE, payload)

    def handle_request(self, message: Message) -> Dict[str, Any]:
        """
        Dispatch one control request.

        Raises:
            ValueError: On an unknown action or bad arguments
        """
        if message.msg_type is not MessageType.COMMAND:
            raise ValueError(f"Unsupported message type: {message.msg_type.value}")

        data = message.data or {}
        action = data.get("action")
        handler = self._request_handlers.get(action)
        if handler is None:
            raise ValueError(f"Unknown action: {action}")

        logger.debug("Control request: %s", action)
        return handler(data)

    def _handle_register(self, data: Dict[str, Any]) -> Dict[str, Any]:
        code = str(data.get("code") or "").strip()
        if not code:
            raise ValueError("Playlist code is required")
        self._orchestrator.register(code)
        return {"accepted": True}

    def _handle_retry_registration(self, data: Dict[str, Any]) -> Dict[str, Any]:
        self._orchestrator.init_qr_registration()
        return {"accepted": True}

    def _handle_deregister(self, data: Dict[str, Any]) -> Dict[str, Any]:
        self._orchestrator.manual_deregister()
        return {"accepted": True}

    def _handle_reset(self, data: Dict[str, Any]) -> Dict[str, Any]:
        self._orchestrator.reset_registration()
        return {"accepted": True}

    def _handle_report_error(self, data: Dict[str, Any]) -> Dict[str, Any]:
        self._orchestrator.report_playback_error(
            str(data.get("media_name") or ""),
            str(data.get("message") or "")
        )
        return {"accepted": True}

    def _handle_clear_error(self, data: Dict[str, Any]) -> Dict[str, Any]:
        self._orchestrator.clear_playback_error()
        return {"accepted": True}

    def _handle_take_remote_command(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return {"command": self._orchestrator.take_remote_command()}

    def _handle_resolve(self, data: Dict[str, Any]) -> Dict[str, Any]:
        state = self._orchestrator.state
        if not state.is_playing or state.playlist is None:
            raise ValueError(f"Nothing to play in state {state.kind.value}")

        items = playable_items(state.playlist)
        try:
            index = int(data.get("item_index", 0))
        except (TypeError, ValueError):
            raise ValueError("item_index must be an integer") from None
        if not 0 <= index < len(items):
            raise ValueError(f"item_index {index} out of range ({len(items)} items)")

        source = resolve_source(items[index], self._cache, self._config.base_url)
        return {"source": source.to_dict() if source else None}

    def _handle_status(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._orchestrator.get_status()

    def _start_ipc(self) -> None:
        state_port = int(self._config.get('ipc.state_port', 5560))
        control_port = int(self._config.get('ipc.control_port', 5561))

        self._publisher = MessagePublisher(state_port, SERVICE_NAME)
        self._reply_server = ReplyServer(control_port, SERVICE_NAME, self.handle_request)
        self._reply_server.start()

    def _stop_ipc(self) -> None:
        if self._reply_server:
            self._reply_server.stop()
            self._reply_server = None
        if self._publisher:
            self._publisher.close()
            self._publisher = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> bool:
        """
        Start IPC and the orchestrator.

        Returns:
            True if startup successful, False otherwise
        """
        if self._running:
            logger.warning("Service already running")
            return True

        logger.info("=" * 60)
        logger.info("Starting signage device client")
        logger.info("=" * 60)

        if self._enable_ipc:
            try:
                self._start_ipc()
            except Exception as e:
                logger.error("Failed to start IPC: %s", e)
                self._stop_ipc()
                return False

        self._orchestrator.start()
        self._running = True
        self._stop_event.clear()

        logger.info("Signage service started")
        return True

    def stop(self) -> None:
        """Stop the orchestrator and close the IPC sockets."""
        if not self._running:
            return

        logger.info("Stopping signage service...")
        self._running = False
        self._stop_event.set()

        self._orchestrator.stop()
        self._stop_ipc()

        logger.info("Signage service stopped")

    def run(self) -> None:
        """
        Run the service (blocking).

        Blocks until stop() is called or a signal is received.
        """
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        if not self.start():
            logger.error("Failed to start service")
            sys.exit(1)

        logger.info("Service running - press Ctrl+C to stop")

        try:
            while self._running:
                if self._stop_event.wait(timeout=1.0):
                    break
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")

        self.stop()

    def _signal_handler(self, signum: int, frame) -> None:
        """Handle system signals for graceful shutdown."""
        logger.info("Received signal: %s", signal.Signals(signum).name)
        self._stop_event.set()


def main(config_path: Optional[str] = None) -> None:
    """Main entry point for running the service."""
    logger.info("Signage device client starting...")

    service = SignageService(get_config(config_path))
    service.run()
