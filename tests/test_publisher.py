import asyncio
import re

import pytest

from pubsub_loadgen.errors import TransientPublishError
from pubsub_loadgen.models.config import PublisherSpec
from pubsub_loadgen.models.distribution import parse_distribution
from pubsub_loadgen.scheduler import Scheduler
from pubsub_loadgen.stats import StatsAggregator
from pubsub_loadgen.utils.subjects import resolve_subject
from pubsub_loadgen.workload.publisher import ERROR_BACKOFF, PublisherTask

from .conftest import settle


def make_spec(subject="foo.bar", interval=("random", 1, 1), payload=("random", 10, 10)) -> PublisherSpec:
    return PublisherSpec(
        subject=subject,
        interval=parse_distribution(list(interval)),
        payload=parse_distribution(list(payload)),
    )


def test_guid_subject_is_fresh_per_resolution() -> None:
    first = resolve_subject("foo.{guid}")
    second = resolve_subject("foo.{guid}")
    assert first != second
    for subject in (first, second):
        assert re.fullmatch(r"foo\.[0-9a-f-]+", subject)
        assert "{guid}" not in subject


def test_every_placeholder_is_replaced() -> None:
    subject = resolve_subject("a.{guid}.b.{guid}")
    assert "{guid}" not in subject
    assert subject.startswith("a.")


def test_subject_without_placeholder_is_unchanged() -> None:
    assert resolve_subject("foo.bar") == "foo.bar"


async def test_publish_once_sends_sized_payload(broker) -> None:
    await broker.connect()
    stats = StatsAggregator()
    task = PublisherTask(make_spec(payload=("random", 42, 42)), broker, stats)

    task.publish_once()
    await settle()

    subject, payload = broker.published[0]
    assert subject == "foo.bar"
    assert payload == b"a" * 42
    assert stats.stats.total_sent == 1
    assert stats.stats.bytes_sent == 42


async def test_chain_publishes_once_per_interval(broker, clock) -> None:
    await broker.connect()
    scheduler = Scheduler(clock)
    task = PublisherTask(make_spec(), broker, StatsAggregator())

    task.start(scheduler)
    await clock.advance(0.05)

    # One send at t=0, then one per elapsed millisecond
    assert 50 <= len(broker.published) <= 51
    assert task.cycles == len(broker.published)
    await scheduler.cancel_all()


async def test_chain_follows_sampled_interval(broker, clock) -> None:
    await broker.connect()
    scheduler = Scheduler(clock)
    task = PublisherTask(make_spec(interval=("random", 250, 250)), broker, StatsAggregator())

    task.start(scheduler)
    await clock.advance(0.0)
    assert len(broker.published) == 1

    await clock.advance(0.2)
    assert len(broker.published) == 1

    await clock.advance(0.05)
    assert len(broker.published) == 2

    await clock.advance(1.0)
    assert len(broker.published) == 6
    await scheduler.cancel_all()


async def test_cancel_stops_further_publishes(broker, clock) -> None:
    await broker.connect()
    scheduler = Scheduler(clock)
    task = PublisherTask(make_spec(interval=("random", 10, 10)), broker, StatsAggregator())

    task.start(scheduler)
    await clock.advance(0.1)
    sent = len(broker.published)
    assert sent > 0

    await scheduler.cancel_all()
    await clock.advance(10.0)

    assert len(broker.published) == sent
    assert not task.running


async def test_stop_is_idempotent(broker, clock) -> None:
    await broker.connect()
    scheduler = Scheduler(clock)
    task = PublisherTask(make_spec(), broker, StatsAggregator())

    task.start(scheduler)
    await clock.advance(0.01)
    await task.stop()
    await task.stop()
    sent = len(broker.published)

    await clock.advance(1.0)
    assert len(broker.published) == sent


async def test_start_twice_keeps_one_chain(broker, clock) -> None:
    await broker.connect()
    scheduler = Scheduler(clock)
    task = PublisherTask(make_spec(interval=("random", 100, 100)), broker, StatsAggregator())

    assert task.start(scheduler) is task.start(scheduler)
    await clock.advance(0.0)
    assert len(broker.published) == 1
    await scheduler.cancel_all()


async def test_rejected_publish_does_not_stop_chain(broker, clock) -> None:
    await broker.connect()
    broker.reject_publishes = True
    stats = StatsAggregator()
    scheduler = Scheduler(clock)
    task = PublisherTask(make_spec(interval=("random", 10, 10)), broker, stats)

    task.start(scheduler)
    await clock.advance(0.1)

    assert len(broker.published) >= 10
    assert stats.stats.total_sent == 0
    assert stats.stats.publish_errors == len(broker.published)
    assert task.running
    await scheduler.cancel_all()


async def test_disconnected_broker_is_reported_not_raised(broker, clock) -> None:
    stats = StatsAggregator()
    scheduler = Scheduler(clock)
    task = PublisherTask(make_spec(interval=("random", 10, 10)), broker, stats)

    assert task.publish_once() is None
    task.start(scheduler)
    await clock.advance(0.05)

    assert broker.published == []
    assert stats.stats.publish_errors >= 5
    assert task.running
    await scheduler.cancel_all()


async def test_cancelled_ack_is_ignored(broker) -> None:
    stats = StatsAggregator()
    task = PublisherTask(make_spec(), broker, stats)
    ack = asyncio.get_running_loop().create_future()
    ack.add_done_callback(lambda f: task._on_ack("foo.bar", 10, f))

    ack.cancel()
    await settle()

    assert stats.stats.total_sent == 0
    assert stats.stats.publish_errors == 0


async def test_failed_ack_is_counted(broker) -> None:
    stats = StatsAggregator()
    task = PublisherTask(make_spec(), broker, stats)
    ack = asyncio.get_running_loop().create_future()
    ack.set_exception(TransientPublishError("foo.bar", "boom"))

    task._on_ack("foo.bar", 10, ack)

    assert stats.stats.publish_errors == 1


async def test_failing_cycle_backs_off_and_keeps_chain_alive(broker, clock) -> None:
    await broker.connect()
    loop_errors = []
    asyncio.get_running_loop().set_exception_handler(lambda loop, context: loop_errors.append(context))

    failures = []
    publish = broker.publish

    def flaky_publish(subject, payload):
        if len(failures) < 3:
            failures.append(subject)
            raise RuntimeError("sampling blew up")
        return publish(subject, payload)

    broker.publish = flaky_publish
    scheduler = Scheduler(clock)
    task = PublisherTask(make_spec(interval=("random", 1000, 1000)), broker, StatsAggregator())

    try:
        task.start(scheduler)
        await clock.advance(0.0)
        assert len(failures) == 1
        assert broker.published == []

        await clock.advance(ERROR_BACKOFF * 3.5)
        assert len(failures) == 3
        assert len(broker.published) == 1
        assert task.running
        assert loop_errors == []

        await clock.advance(1.0)
        assert len(broker.published) == 2
    finally:
        await scheduler.cancel_all()
        asyncio.get_running_loop().set_exception_handler(None)
