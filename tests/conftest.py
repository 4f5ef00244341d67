import asyncio
import heapq
import itertools
from typing import Callable, Dict, List, Tuple

import pytest

from pubsub_loadgen.errors import BrokerConnectError, TransientPublishError
from pubsub_loadgen.models.messages import AckMessage


async def settle(rounds: int = 5) -> None:
    """Let every ready task run until it blocks again."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class VirtualClock:
    """
    Clock whose time only moves when a test calls advance().

    Sleepers are woken strictly in deadline order, and every woken task
    gets to run before the next deadline is processed.
    """

    def __init__(self):
        self._now = 0.0
        self._seq = itertools.count()
        self._sleepers: List[Tuple[float, int, asyncio.Future]] = []

    def time(self) -> float:
        return self._now

    async def sleep(self, seconds: float) -> None:
        future = asyncio.get_running_loop().create_future()
        heapq.heappush(self._sleepers, (self._now + max(0.0, seconds), next(self._seq), future))
        await future

    @property
    def sleeping(self) -> int:
        return sum(1 for _, _, future in self._sleepers if not future.done())

    async def advance(self, seconds: float) -> None:
        target = self._now + seconds
        await settle()
        while self._sleepers and self._sleepers[0][0] <= target:
            deadline, _, future = heapq.heappop(self._sleepers)
            self._now = deadline
            if not future.done():
                future.set_result(None)
            await settle()
        self._now = target


class FakeBroker:
    """In-process stand-in for the broker client."""

    def __init__(self):
        self.connected = False
        self.messages_sent = 0
        self.messages_received = 0
        self.published: List[Tuple[str, bytes]] = []
        self.handlers: Dict[str, List[Callable[[bytes, str], None]]] = {}
        self.created_topics: List[str] = []
        self.error_callbacks = []
        self.fail_connect = False
        self.reject_publishes = False
        self.close_calls = 0

    async def connect(self) -> None:
        if self.fail_connect:
            raise BrokerConnectError("Cannot connect to broker at 'ws://fake': refused")
        self.connected = True

    def publish(self, subject: str, payload: bytes) -> asyncio.Future:
        if not self.connected:
            raise BrokerConnectError("Not connected to broker")

        self.published.append((subject, payload))
        future = asyncio.get_running_loop().create_future()
        if self.reject_publishes:
            future.set_exception(TransientPublishError(subject, "rejected", "TOPIC_NOT_FOUND"))
        else:
            self.messages_sent += 1
            future.set_result(AckMessage(request_type="publish", topic=subject))
        return future

    def subscribe(self, subject: str, handler: Callable[[bytes, str], None]) -> asyncio.Future:
        self.handlers.setdefault(subject, []).append(handler)
        future = asyncio.get_running_loop().create_future()
        future.set_result(AckMessage(request_type="subscribe", topic=subject))
        return future

    def deliver(self, subject: str, payload: bytes) -> None:
        for handler in self.handlers.get(subject, []):
            self.messages_received += 1
            handler(payload, subject)

    def on_error(self, callback) -> None:
        self.error_callbacks.append(callback)

    def fail(self, error) -> None:
        self.connected = False
        for callback in self.error_callbacks:
            callback(error)

    async def ensure_topic(self, name: str) -> bool:
        self.created_topics.append(name)
        return True

    async def close(self) -> None:
        self.close_calls += 1
        self.connected = False


@pytest.fixture
def clock() -> VirtualClock:
    return VirtualClock()


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()
