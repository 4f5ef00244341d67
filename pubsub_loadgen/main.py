import argparse
import asyncio
import logging
import signal
from typing import List, Optional

import uvicorn

from .api import create_stats_app
from .broker.client import BrokerClient, WebSocketBrokerClient
from .errors import BrokerConnectError, BrokerError, ConfigError
from .models.config import LoadGenConfig, load_config_file
from .scheduler import Clock, Scheduler
from .stats import StatsAggregator
from .utils.subjects import has_placeholder
from .utils.time_utils import get_current_timestamp
from .workload.publisher import PublisherTask
from .workload.subscriber import SubscriberTask

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)


def setup_logging(config: LoadGenConfig) -> None:
    logging.basicConfig(
        level=config.log_level,
        format=LOG_FORMAT,
        filename=config.logfile,
        force=True
    )


def log_exception(exc: BaseException, level: int = logging.ERROR) -> None:
    if level != logging.CRITICAL:
        level = logging.ERROR
    exc_info = exc if exc.__traceback__ is not None else None
    logger.log(level, str(exc), exc_info=exc_info)


class LoadGenApplication:
    """
    Lifecycle of one load generator run.

    run() connects to the broker, starts every publisher chain and
    subscriber, arms the periodic stats tick and then waits until stop()
    is requested by a signal, a lost broker connection or an unhandled
    error inside the event loop.

    Shutdown order:
    1. Cancel every scheduled task (publishers, stats tick)
    2. Stop the stats HTTP server, if any
    3. Close the broker connection
    """

    def __init__(
        self,
        config: LoadGenConfig,
        broker: Optional[BrokerClient] = None,
        clock: Optional[Clock] = None,
        install_signal_handlers: bool = True,
    ):
        self.config = config
        self.broker = broker or WebSocketBrokerClient(config.broker_uri, api_url=config.api_url)
        self.scheduler = Scheduler(clock)
        self.stats = StatsAggregator(interval=config.stats_interval)
        self.publishers: List[PublisherTask] = [
            PublisherTask(spec, self.broker, self.stats) for spec in config.pubs
        ]
        self.subscribers: List[SubscriberTask] = [
            SubscriberTask(spec, self.broker, self.stats) for spec in config.subs
        ]
        self.start_time = get_current_timestamp()
        self.shutdown_event = asyncio.Event()
        self.shutting_down = False

        self._install_signal_handlers = install_signal_handlers
        self._signals: List[int] = []
        self._stop_task: Optional[asyncio.Task] = None
        self._previous_exception_handler = None
        self._exception_handler_installed = False
        self._stats_server: Optional[uvicorn.Server] = None
        self._stats_server_task: Optional[asyncio.Task] = None

    async def run(self) -> None:
        logger.info("Starting load generator...")
        logger.info(f"pubs: {len(self.publishers)}, subs: {len(self.subscribers)}")

        loop = asyncio.get_running_loop()
        self._previous_exception_handler = loop.get_exception_handler()
        loop.set_exception_handler(self._handle_loop_error)
        self._exception_handler_installed = True
        if self._install_signal_handlers:
            self._setup_signal_handlers(loop)

        self.broker.on_error(self._handle_broker_error)

        try:
            await self.broker.connect()
        except BrokerConnectError as e:
            log_exception(e)
            await self.stop()
            return

        if self.config.api_url:
            await self._provision_topics()

        if not self.shutting_down:
            self._setup_pubsub()
            self._setup_timers()
            await self._start_stats_server()

        await self.shutdown_event.wait()
        if self._stop_task is not None and self._stop_task is not asyncio.current_task():
            await self._stop_task

    async def stop(self) -> None:
        if self.shutting_down:
            return
        self.shutting_down = True
        logger.info("Load generator shutting down...")

        await self.scheduler.cancel_all()
        await self._stop_stats_server()
        await self.broker.close()
        self._remove_signal_handlers()
        self._restore_exception_handler()

        logger.info("Shutdown complete")
        self.shutdown_event.set()

    def request_stop(self) -> None:
        """Schedule stop() from synchronous callbacks."""
        if self._stop_task is None and not self.shutting_down:
            self._stop_task = asyncio.get_running_loop().create_task(self.stop())

    async def _provision_topics(self) -> None:
        names = {sub.subject for sub in self.config.subs}
        names.update(pub.subject for pub in self.config.pubs if not has_placeholder(pub.subject))
        for name in sorted(names):
            await self.broker.ensure_topic(name)

    def _setup_pubsub(self) -> None:
        for publisher in self.publishers:
            publisher.start(self.scheduler)

        for subscriber in self.subscribers:
            subscriber.execute()

    def _setup_timers(self) -> None:
        self.scheduler.call_every(self.config.stats_interval, self.stats.tick)

    async def _start_stats_server(self) -> None:
        if self.config.stats_port is None:
            return

        server_config = uvicorn.Config(
            create_stats_app(self),
            host="0.0.0.0",
            port=self.config.stats_port,
            log_config=None,
            log_level=logging.getLevelName(self.config.log_level).lower(),
        )
        self._stats_server = uvicorn.Server(server_config)
        self._stats_server_task = asyncio.create_task(self._stats_server.serve())
        logger.info(f"Serving stats on port {self.config.stats_port}")

    async def _stop_stats_server(self) -> None:
        if self._stats_server is None:
            return
        self._stats_server.should_exit = True
        try:
            await self._stats_server_task
        except Exception as e:
            logger.warning(f"Stats server stopped with error: {e}")

    def _setup_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for signum in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(signum, self._handle_signal, signum)
                self._signals.append(signum)
            except (NotImplementedError, RuntimeError):
                logger.warning(f"Cannot install handler for signal {signum}")

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        while self._signals:
            loop.remove_signal_handler(self._signals.pop())

    def _restore_exception_handler(self) -> None:
        if not self._exception_handler_installed:
            return
        asyncio.get_running_loop().set_exception_handler(self._previous_exception_handler)
        self._exception_handler_installed = False

    def _handle_signal(self, signum: int) -> None:
        logger.info(f"Received signal {signum}, initiating graceful shutdown")
        self.request_stop()

    def _handle_broker_error(self, error: BrokerError) -> None:
        log_exception(error)
        if isinstance(error, BrokerConnectError):
            self.request_stop()

    def _handle_loop_error(self, loop: asyncio.AbstractEventLoop, context: dict) -> None:
        exc = context.get("exception")
        message = context.get("message", "Unhandled exception in event loop")
        if exc is not None:
            logger.critical(f"{message}: {exc}", exc_info=exc)
        else:
            logger.critical(message)
        self.request_stop()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="pubsub-loadgen",
        description="Drive publish/subscribe traffic against a broker"
    )
    parser.add_argument("config", help="Path to the YAML workload description")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    try:
        config = load_config_file(args.config)
    except ConfigError as e:
        logger.critical(f"Invalid configuration: {e}")
        return 1

    setup_logging(config)
    asyncio.run(LoadGenApplication(config).run())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
