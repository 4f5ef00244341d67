import asyncio
import logging
from typing import Optional

from ..broker.client import BrokerClient
from ..models.config import SubscriberSpec
from ..stats import StatsAggregator

logger = logging.getLogger(__name__)


class SubscriberTask:
    """
    Observes one subject on behalf of the stats aggregator.

    The handler runs on the broker client's delivery path, so it only does
    constant-time bookkeeping and never touches the message itself.
    """

    def __init__(self, spec: SubscriberSpec, broker: BrokerClient, stats: StatsAggregator):
        self.spec = spec
        self.broker = broker
        self.stats = stats
        self.received = 0
        self._ack: Optional[asyncio.Future] = None

    @property
    def subject(self) -> str:
        return self.spec.subject

    def execute(self) -> asyncio.Future:
        if self._ack is None:
            self._ack = self.broker.subscribe(self.spec.subject, self.handle_message)
            self._ack.add_done_callback(self._on_subscribed)
        return self._ack

    def handle_message(self, payload: bytes, subject: str) -> None:
        self.received += 1
        self.stats.record_received(len(payload))
        logger.debug(f"Received [{subject}]: {len(payload)} bytes")

    def _on_subscribed(self, ack: asyncio.Future) -> None:
        if ack.cancelled():
            return
        exc = ack.exception()
        if exc is not None:
            logger.error(f"Subscription to [{self.spec.subject}] failed: {exc}")
        else:
            logger.info(f"Subscribed to [{self.spec.subject}]")
