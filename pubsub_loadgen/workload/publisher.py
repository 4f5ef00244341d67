import asyncio
import logging
import random
from functools import partial
from typing import Optional

from ..broker.client import BrokerClient
from ..errors import BrokerError
from ..models.config import PublisherSpec
from ..scheduler import Clock, Scheduler
from ..stats import StatsAggregator
from ..utils.subjects import resolve_subject

logger = logging.getLogger(__name__)

FILLER = b"a"
ERROR_BACKOFF = 0.1


class PublisherTask:
    """
    Drives one configured publisher.

    Each cycle publishes a single message and then suspends for an interval
    drawn from the interval distribution, measured from the end of the
    cycle. The chain runs until stop() (or the scheduler) cancels it.

    The broker ack is observed through a done-callback, never awaited, so a
    slow broker does not stretch the interval between sends.
    """

    def __init__(
        self,
        spec: PublisherSpec,
        broker: BrokerClient,
        stats: StatsAggregator,
        rng: Optional[random.Random] = None,
    ):
        self.spec = spec
        self.broker = broker
        self.stats = stats
        self.cycles = 0
        self._rng = rng
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, scheduler: Scheduler) -> asyncio.Task:
        """
        Start the publish chain on the scheduler.
        Idempotent - a second call returns the already running task.
        """
        if self._task is None:
            self._task = scheduler.spawn(
                self._run(scheduler.clock),
                name=f"publisher:{self.spec.subject}"
            )
        return self._task

    async def stop(self) -> None:
        """Cancel the chain and wait for it to unwind."""
        if self._task is None or self._task.done():
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    async def _run(self, clock: Clock) -> None:
        """
        Publish, sample the next interval, suspend, repeat.

        A failing cycle is logged and retried after a short backoff.
        Other publishers keep running.
        """
        while True:
            try:
                self.publish_once()
                interval = self.pick_interval()
            except Exception as e:
                logger.error(f"Publisher cycle for [{self.spec.subject}] failed: {e}", exc_info=True)
                await clock.sleep(ERROR_BACKOFF)
                continue

            logger.debug(f"Next publish in {interval}ms")
            await clock.sleep(interval / 1000.0)

    def publish_once(self) -> Optional[asyncio.Future]:
        """
        Send one message and attach the ack observer.

        Returns the ack future, or None when the broker refused the
        request synchronously (the failure is already counted).
        """
        subject = self.pick_subject()
        payload = self.pick_payload()
        self.cycles += 1

        try:
            ack = self.broker.publish(subject, payload)
        except BrokerError as e:
            self.stats.record_publish_error()
            logger.error(f"Publish to [{subject}] failed: {e}")
            return None

        ack.add_done_callback(partial(self._on_ack, subject, len(payload)))
        return ack

    def pick_subject(self) -> str:
        return resolve_subject(self.spec.subject)

    def pick_payload(self) -> bytes:
        return FILLER * self.spec.payload.sample(self._rng)

    def pick_interval(self) -> int:
        """Milliseconds to wait before the next publish."""
        return self.spec.interval.sample(self._rng)

    def _on_ack(self, subject: str, size: int, ack: asyncio.Future) -> None:
        if ack.cancelled():
            return

        exc = ack.exception()
        if exc is not None:
            self.stats.record_publish_error()
            logger.error(f"Publish to [{subject}] failed: {exc}")
            return

        self.stats.record_sent(size)
        logger.debug(f"Published [{subject}]: {size} bytes")
