import asyncio
import json
import logging
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Protocol, Tuple

import requests
import websockets
from pydantic import BaseModel, ValidationError
from websockets.exceptions import WebSocketException

from ..errors import BrokerConnectError, BrokerError, TransientPublishError
from ..models.messages import (
    AckMessage,
    ErrorMessage,
    EventMessage,
    InfoMessage,
    MessageType,
    PublishMessage,
    SubscribeMessage,
)

logger = logging.getLogger(__name__)

MessageHandler = Callable[[bytes, str], None]
ErrorCallback = Callable[[BrokerError], None]

# Payload bytes travel as JSON strings; latin-1 maps every byte to one char
PAYLOAD_ENCODING = "latin-1"


class BrokerClient(Protocol):
    messages_sent: int
    messages_received: int

    @property
    def connected(self) -> bool:
        ...

    async def connect(self) -> None:
        ...

    def publish(self, subject: str, payload: bytes) -> "asyncio.Future[Any]":
        ...

    def subscribe(self, subject: str, handler: MessageHandler) -> "asyncio.Future[Any]":
        ...

    def on_error(self, callback: ErrorCallback) -> None:
        ...

    async def ensure_topic(self, name: str) -> bool:
        ...

    async def close(self) -> None:
        ...


def decode_payload(data: Any) -> bytes:
    if isinstance(data, str):
        return data.encode(PAYLOAD_ENCODING, errors="replace")
    return json.dumps(data).encode()


class WebSocketBrokerClient:
    """
    Client for the JSON-over-WebSocket pub/sub protocol.

    Outbound frames go through a bounded queue drained by a single writer
    task, so publish() never blocks the caller. The server answers requests
    with `ack` / `error` frames in the order it received them, which lets
    replies be matched to a FIFO of pending request futures.

    Inbound `event` frames are dispatched synchronously to the handlers
    registered for their topic.
    """

    def __init__(
        self,
        uri: str,
        api_url: Optional[str] = None,
        connect_timeout: float = 10.0,
        max_queue_size: int = 10000,
    ):
        self.uri = uri
        self.api_url = api_url.rstrip("/") if api_url else None
        self.connect_timeout = connect_timeout
        self.messages_sent = 0
        self.messages_received = 0

        self._ws: Any = None
        self._outbox: Optional[asyncio.Queue] = None
        self._max_queue_size = max_queue_size
        self._pending: Deque[Tuple[MessageType, str, asyncio.Future]] = deque()
        self._handlers: Dict[str, List[MessageHandler]] = {}
        self._error_callbacks: List[ErrorCallback] = []
        self._reader_task: Optional[asyncio.Task] = None
        self._writer_task: Optional[asyncio.Task] = None
        self._connected = False
        self._closing = False

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def pending_requests(self) -> int:
        return len(self._pending)

    def on_error(self, callback: ErrorCallback) -> None:
        """Register a callback invoked once when the connection is lost."""
        self._error_callbacks.append(callback)

    async def connect(self) -> None:
        """Open the WebSocket and start the reader and writer tasks."""
        logger.info(f"Connecting to broker at '{self.uri}'...")
        try:
            self._ws = await asyncio.wait_for(
                websockets.connect(self.uri),
                timeout=self.connect_timeout
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise BrokerConnectError(f"Cannot connect to broker at '{self.uri}': {e}") from e

        self._outbox = asyncio.Queue(maxsize=self._max_queue_size)
        self._connected = True
        self._reader_task = asyncio.create_task(self._receive_loop())
        self._writer_task = asyncio.create_task(self._send_loop())
        logger.info(f"Connected to broker at '{self.uri}'")

    def publish(self, subject: str, payload: bytes) -> "asyncio.Future[Any]":
        """
        Queue a publish and return a future resolved by the server's ack.

        The future fails with TransientPublishError when the server rejects
        the message or the outbound queue is full, and with
        BrokerConnectError when the connection goes away first.
        """
        try:
            message = PublishMessage(topic=subject, data=payload.decode(PAYLOAD_ENCODING))
        except ValidationError as e:
            raise TransientPublishError(subject, f"invalid publish request: {e}", "VALIDATION_ERROR") from e
        return self._request(MessageType.PUBLISH, subject, message)

    def subscribe(self, subject: str, handler: MessageHandler) -> "asyncio.Future[Any]":
        """
        Register a handler for a topic and send the subscribe request.

        The handler is called as handler(payload, subject) for every event
        on the topic. The returned future resolves with the server's ack.
        """
        self._handlers.setdefault(subject, []).append(handler)
        return self._request(MessageType.SUBSCRIBE, subject, SubscribeMessage(topic=subject))

    async def ensure_topic(self, name: str) -> bool:
        """
        Create a topic through the server's REST API.

        The server rejects publishes and subscriptions on unknown topics.
        Creation is idempotent on the server side. Returns False when no
        api_url is configured or the request failed.
        """
        if not self.api_url:
            return False

        try:
            response = await asyncio.to_thread(
                requests.post,
                f"{self.api_url}/topics",
                json={"name": name},
                timeout=self.connect_timeout
            )
        except requests.RequestException as e:
            logger.error(f"Failed to create topic '{name}': {e}")
            return False

        if response.status_code == 201:
            logger.info(f"Created topic: {name}")
            return True

        logger.warning(f"Failed to create topic '{name}': {response.status_code} {response.text}")
        return False

    async def close(self) -> None:
        """
        Close the connection.
        Stops the reader and writer tasks and cancels unanswered requests.
        Idempotent.
        """
        if self._closing:
            return
        self._closing = True
        self._connected = False

        for task in (self._writer_task, self._reader_task):
            if task and task is not asyncio.current_task():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        while self._pending:
            _, _, future = self._pending.popleft()
            future.cancel()

        if self._ws is not None:
            try:
                await self._ws.close()
            except Exception as e:
                logger.warning(f"Error while closing broker connection: {e}")

        logger.info("Broker connection closed")

    def _request(self, kind: MessageType, topic: str, message: BaseModel) -> "asyncio.Future[Any]":
        if not self._connected:
            raise BrokerConnectError("Not connected to broker")

        future = asyncio.get_running_loop().create_future()
        try:
            self._outbox.put_nowait((kind, message.model_dump_json()))
        except asyncio.QueueFull:
            future.set_exception(
                TransientPublishError(topic, "outbound queue full, dropping message", "QUEUE_FULL")
            )
            return future

        self._pending.append((kind, topic, future))
        return future

    async def _send_loop(self) -> None:
        while True:
            kind, frame = await self._outbox.get()
            try:
                await self._ws.send(frame)
            except (OSError, WebSocketException) as e:
                self._connection_lost(e)
                return
            if kind == MessageType.PUBLISH:
                self.messages_sent += 1

    async def _receive_loop(self) -> None:
        try:
            async for raw in self._ws:
                self._handle_frame(raw)
        except (OSError, WebSocketException) as e:
            self._connection_lost(e)
            return
        self._connection_lost(None)

    def _handle_frame(self, raw: Any) -> None:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring non-JSON frame from broker: {raw!r:.80}")
            return

        message_type = data.get("type") if isinstance(data, dict) else None

        try:
            if message_type == MessageType.EVENT:
                self._handle_event(EventMessage(**data))
            elif message_type == MessageType.ACK:
                self._resolve(AckMessage(**data), None)
            elif message_type == MessageType.ERROR:
                self._resolve(None, ErrorMessage(**data))
            elif message_type == MessageType.INFO:
                logger.info(f"Broker: {InfoMessage(**data).message}")
            else:
                logger.warning(f"Unknown message type from broker: {message_type}")
        except ValidationError as e:
            logger.warning(f"Malformed {message_type} frame from broker: {e}")

    def _handle_event(self, event: EventMessage) -> None:
        self.messages_received += 1
        payload = decode_payload(event.data)
        for handler in self._handlers.get(event.topic, ()):
            try:
                handler(payload, event.topic)
            except Exception as e:
                logger.error(f"Message handler for '{event.topic}' failed: {e}", exc_info=True)

    def _resolve(self, ack: Optional[AckMessage], error: Optional[ErrorMessage]) -> None:
        if not self._pending:
            if error is not None:
                logger.error(f"Broker error [{error.code}]: {error.message}")
            return

        kind, topic, future = self._pending.popleft()
        if future.done():
            return

        if error is None:
            future.set_result(ack)
        elif kind == MessageType.PUBLISH:
            future.set_exception(TransientPublishError(topic, error.message, error.code))
        else:
            future.set_exception(BrokerError(f"Subscribe to '{topic}' failed: [{error.code}] {error.message}"))

    def _connection_lost(self, exc: Optional[Exception]) -> None:
        if self._closing or not self._connected:
            return
        self._connected = False

        reason = str(exc) if exc else "closed by server"
        error = BrokerConnectError(f"Connection to broker at '{self.uri}' lost: {reason}")

        while self._pending:
            _, _, future = self._pending.popleft()
            if not future.done():
                future.set_exception(error)

        for callback in self._error_callbacks:
            callback(error)
