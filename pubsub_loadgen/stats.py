import logging
from dataclasses import dataclass
from typing import List, Optional

from .models.api import StatsReport, StatsResponse
from .utils.ring_buffer import RingBuffer
from .utils.time_utils import get_current_timestamp

logger = logging.getLogger(__name__)


@dataclass
class RunningStats:
    """Cumulative counters plus the baselines taken at the last tick."""
    total_sent: int = 0
    total_received: int = 0
    sent_at_last_tick: int = 0
    received_at_last_tick: int = 0
    bytes_sent: int = 0
    bytes_received: int = 0
    publish_errors: int = 0


class StatsAggregator:
    """
    Tracks sent/received totals and turns them into per-interval rates.

    Counters are only touched from the event loop thread (publisher ack
    callbacks, subscriber handlers and the periodic tick), so no lock is
    taken.
    """

    def __init__(self, interval: float = 60.0, history_size: int = 60):
        if interval <= 0:
            raise ValueError("Interval must be positive")
        self.interval = interval
        self.stats = RunningStats()
        self._history = RingBuffer[StatsReport](history_size)

    def record_sent(self, nbytes: int) -> None:
        """Count one acknowledged publish of nbytes."""
        self.stats.total_sent += 1
        self.stats.bytes_sent += nbytes

    def record_received(self, nbytes: int) -> None:
        """Count one delivered message of nbytes."""
        self.stats.total_received += 1
        self.stats.bytes_received += nbytes

    def record_publish_error(self) -> None:
        """Count one failed or rejected publish."""
        self.stats.publish_errors += 1

    def tick(
        self,
        total_sent: Optional[int] = None,
        total_received: Optional[int] = None,
    ) -> StatsReport:
        """
        Close the current interval and emit a report.

        Explicit totals (e.g. connection-level counters) replace the
        internally tracked ones before the rates are computed.
        """
        stats = self.stats
        if total_sent is not None:
            stats.total_sent = total_sent
        if total_received is not None:
            stats.total_received = total_received

        report = StatsReport(
            timestamp=get_current_timestamp(),
            total_sent=stats.total_sent,
            total_received=stats.total_received,
            rate_sent=(stats.total_sent - stats.sent_at_last_tick) / self.interval,
            rate_received=(stats.total_received - stats.received_at_last_tick) / self.interval,
            publish_errors=stats.publish_errors,
        )

        label = f"{self.interval:g}s"
        logger.info(
            f"sent.total: {report.total_sent}, "
            f"rcv.total: {report.total_received}, "
            f"rate.sent.{label}: {round(report.rate_sent, 2)}, "
            f"rate.rcv.{label}: {round(report.rate_received, 2)}"
        )

        stats.sent_at_last_tick = stats.total_sent
        stats.received_at_last_tick = stats.total_received
        self._history.append(report)
        return report

    def recent_reports(self, n: int = 10) -> List[StatsReport]:
        """Return up to n of the latest reports, oldest first."""
        return self._history.get_last_n(n)

    def snapshot(self, last_n: int = 10) -> StatsResponse:
        stats = self.stats
        return StatsResponse(
            total_sent=stats.total_sent,
            total_received=stats.total_received,
            bytes_sent=stats.bytes_sent,
            bytes_received=stats.bytes_received,
            publish_errors=stats.publish_errors,
            reports=self.recent_reports(last_n),
        )
