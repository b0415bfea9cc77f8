"""
IPC (Inter-Process Communication) using ZeroMQ.
Connects the device service to its front end (player UI, tooling).

- MessagePublisher / MessageSubscriber: one-way state broadcasts (PUB/SUB)
- RequestClient / ReplyServer: control requests with a reply (REQ/REP)
"""

import json
import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

import zmq

from src.common.logger import setup_logger

logger = setup_logger(__name__)


class MessageType(Enum):
    """Types of messages exchanged with the front end."""
    STATE = "state"               # Device state snapshots
    COMMAND = "command"           # Control requests (register, deregister, ...)
    REPLY = "reply"               # Successful reply to a command
    ERROR = "error"               # Failed command
    HEARTBEAT = "heartbeat"       # Keep-alive messages


class Message:
    """Standard message format for IPC."""

    def __init__(
        self,
        msg_type: MessageType,
        data: Dict[str, Any],
        sender: str,
        timestamp: Optional[float] = None
    ):
        """
        Create a message.

        Args:
            msg_type: Type of message
            data: Message payload
            sender: Service name that sent the message
            timestamp: Unix timestamp (auto-generated if None)
        """
        self.msg_type = msg_type
        self.data = data
        self.sender = sender
        self.timestamp = timestamp or time.time()

    def to_json(self) -> str:
        return json.dumps({
            "type": self.msg_type.value,
            "data": self.data,
            "sender": self.sender,
            "timestamp": self.timestamp
        })

    @classmethod
    def from_json(cls, json_str: str) -> "Message":
        """
        Deserialize message from JSON string.

        Raises:
            ValueError: If the string is not a valid message
        """
        try:
            obj = json.loads(json_str)
            return cls(
                msg_type=MessageType(obj["type"]),
                data=obj.get("data") or {},
                sender=obj.get("sender", ""),
                timestamp=obj.get("timestamp")
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise ValueError(f"Malformed message: {e}") from e

    def __repr__(self) -> str:
        return f"Message(type={self.msg_type.value}, sender={self.sender}, data={self.data})"


class MessagePublisher:
    """Publishes messages to subscribers (PUB socket)."""

    def __init__(self, port: int, service_name: str, host: str = "*"):
        """
        Args:
            port: Port to publish on
            service_name: Name of this service
            host: Interface to bind
        """
        self.port = port
        self.service_name = service_name
        self.context = zmq.Context()
        self.socket = self.context.socket(zmq.PUB)
        self.socket.setsockopt(zmq.LINGER, 0)
        self.socket.bind(f"tcp://{host}:{port}")
        self._lock = threading.Lock()

        logger.info("Publisher started: %s on port %d", service_name, port)

    def publish(self, msg_type: MessageType, data: Dict[str, Any]) -> None:
        """
        Publish a message. Safe to call from any thread.

        Args:
            msg_type: Type of message
            data: Message payload
        """
        message = Message(msg_type, data, self.service_name)

        # Topic first so subscribers can filter by type
        with self._lock:
            self.socket.send_string(f"{msg_type.value} {message.to_json()}")
        logger.debug("Published: %s", message)

    def close(self) -> None:
        self.socket.close()
        self.context.term()
        logger.info("Publisher closed: %s", self.service_name)


class MessageSubscriber:
    """Subscribes to messages from publishers (SUB socket)."""

    def __init__(self, host: str, port: int, service_name: str):
        """
        Args:
            host: Host to connect to (usually 'localhost')
            port: Port to connect to
            service_name: Name of this service
        """
        self.host = host
        self.port = port
        self.service_name = service_name
        self.context = zmq.Context()
        self.socket = self.context.socket(zmq.SUB)
        self.socket.setsockopt(zmq.LINGER, 0)
        self.socket.connect(f"tcp://{host}:{port}")
        self._filtered = False

        # All types until subscribe_to narrows it
        self.socket.setsockopt_string(zmq.SUBSCRIBE, "")

        logger.info("Subscriber started: %s connected to %s:%d", service_name, host, port)

    def subscribe_to(self, msg_type: MessageType) -> None:
        """
        Only receive messages of the given type (may be called repeatedly).

        Args:
            msg_type: Message type to subscribe to
        """
        if not self._filtered:
            self.socket.setsockopt_string(zmq.UNSUBSCRIBE, "")
            self._filtered = True
        self.socket.setsockopt_string(zmq.SUBSCRIBE, msg_type.value)
        logger.debug("Subscribed to: %s", msg_type.value)

    def receive(self, timeout_ms: int = 1000) -> Optional[Message]:
        """
        Receive a message (blocking with timeout).

        Args:
            timeout_ms: Timeout in milliseconds

        Returns:
            Message or None on timeout or malformed input
        """
        self.socket.setsockopt(zmq.RCVTIMEO, timeout_ms)

        try:
            raw_message = self.socket.recv_string()
        except zmq.Again:
            return None

        parts = raw_message.split(' ', 1)
        if len(parts) != 2:
            logger.warning("Dropping message without topic")
            return None

        try:
            message = Message.from_json(parts[1])
        except ValueError as e:
            logger.error("Error decoding message: %s", e)
            return None

        logger.debug("Received: %s", message)
        return message

    def close(self) -> None:
        self.socket.close()
        self.context.term()
        logger.info("Subscriber closed: %s", self.service_name)


class RequestClient:
    """Sends requests and waits for replies (REQ socket)."""

    def __init__(self, host: str, port: int, service_name: str):
        """
        Args:
            host: Host to connect to
            port: Port to connect to
            service_name: Name of this service
        """
        self.host = host
        self.port = port
        self.service_name = service_name
        self.context = zmq.Context()
        self.socket = self._connect()

        logger.info("Request client started: %s connected to %s:%d", service_name, host, port)

    def _connect(self) -> zmq.Socket:
        socket = self.context.socket(zmq.REQ)
        socket.setsockopt(zmq.LINGER, 0)
        socket.connect(f"tcp://{self.host}:{self.port}")
        return socket

    def send_request(
        self,
        msg_type: MessageType,
        data: Dict[str, Any],
        timeout_ms: int = 5000
    ) -> Optional[Message]:
        """
        Send a request and wait for reply.

        Args:
            msg_type: Type of message
            data: Request payload
            timeout_ms: Timeout in milliseconds

        Returns:
            Reply message or None if timeout
        """
        message = Message(msg_type, data, self.service_name)
        self.socket.send_string(message.to_json())
        logger.debug("Sent request: %s", message)

        self.socket.setsockopt(zmq.RCVTIMEO, timeout_ms)

        try:
            reply = Message.from_json(self.socket.recv_string())
        except zmq.Again:
            # A REQ socket stuck waiting for a reply cannot send again
            logger.warning("Request timeout")
            self.socket.close()
            self.socket = self._connect()
            return None
        except ValueError as e:
            logger.error("Malformed reply: %s", e)
            return None

        logger.debug("Received reply: %s", reply)
        return reply

    def close(self) -> None:
        self.socket.close()
        self.context.term()
        logger.info("Request client closed: %s", self.service_name)


class ReplyServer:
    """Receives requests and sends replies (REP socket) on a background thread."""

    POLL_INTERVAL_MS = 200

    def __init__(
        self,
        port: int,
        service_name: str,
        handler: Callable[[Message], Dict[str, Any]],
        host: str = "*"
    ):
        """
        Args:
            port: Port to listen on
            service_name: Name of this service
            handler: Builds the reply payload for a request. Exceptions it
                raises are returned to the client as ERROR replies.
            host: Interface to bind
        """
        self.port = port
        self.service_name = service_name
        self.handler = handler
        self.context = zmq.Context()
        self.socket = self.context.socket(zmq.REP)
        self.socket.setsockopt(zmq.LINGER, 0)
        self.socket.bind(f"tcp://{host}:{port}")
        self.running = False
        self._thread: Optional[threading.Thread] = None

        logger.info("Reply server bound: %s on port %d", service_name, port)

    def start(self) -> None:
        """Start serving on a daemon thread."""
        if self.running:
            return
        self.running = True
        self._thread = threading.Thread(
            target=self.serve_forever,
            name=f"ReplyServer-{self.service_name}",
            daemon=True
        )
        self._thread.start()

    def serve_forever(self) -> None:
        """Handle requests until stop() (blocking)."""
        self.running = True
        poller = zmq.Poller()
        poller.register(self.socket, zmq.POLLIN)
        logger.info("Reply server listening: %s", self.service_name)

        while self.running:
            events = dict(poller.poll(self.POLL_INTERVAL_MS))
            if self.socket not in events:
                continue

            request_str = self.socket.recv_string()
            self.socket.send_string(self._reply_for(request_str).to_json())

        logger.info("Reply server loop ended: %s", self.service_name)

    def _reply_for(self, request_str: str) -> Message:
        try:
            request = Message.from_json(request_str)
        except ValueError as e:
            logger.error("Malformed request: %s", e)
            return Message(MessageType.ERROR, {"error": str(e)}, self.service_name)

        logger.debug("Received request: %s", request)
        try:
            reply_data = self.handler(request)
        except Exception as e:
            logger.error("Error handling request: %s", e)
            return Message(MessageType.ERROR, {"error": str(e)}, self.service_name)

        return Message(MessageType.REPLY, reply_data or {}, self.service_name)

    def stop(self) -> None:
        """Stop the server and release the socket."""
        self.running = False
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=2)
        self._thread = None
        self.socket.close()
        self.context.term()
        logger.info("Reply server stopped: %s", self.service_name)
