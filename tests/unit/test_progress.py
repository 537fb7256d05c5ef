"""Tests for core/progress.py."""

from __future__ import annotations

import asyncio
import json

import pytest

from devswarm.core.progress import ProgressBus, serve_connection
from devswarm.models.progress import MessageType, ProgressMessage, ProgressPhase


class FakeConnection:
    """Duplex client connection fed from a queue of inbound frames."""

    def __init__(self):
        self.inbound: asyncio.Queue = asyncio.Queue()
        self.sent: list[dict] = []

    async def receive(self):
        return await self.inbound.get()

    async def send(self, message: dict) -> None:
        self.sent.append(message)


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


class TestProgressBus:
    @pytest.mark.asyncio
    async def test_publish_reaches_only_matching_submission(self):
        bus = ProgressBus()
        mine = bus.subscribe("s1")
        other = bus.subscribe("s2")

        delivered = bus.broadcast("s1", MessageType.ANALYSIS_STARTED)

        assert delivered == 1
        message = await mine.get()
        assert message.type == MessageType.ANALYSIS_STARTED
        assert message.payload == {"submission_id": "s1"}
        assert other.pending() == 0

    @pytest.mark.asyncio
    async def test_fan_out_preserves_order(self):
        bus = ProgressBus()
        first = bus.subscribe("s1")
        second = bus.subscribe("s1")

        bus.broadcast("s1", MessageType.ANALYSIS_STARTED)
        bus.broadcast("s1", MessageType.ANALYSIS_COMPLETE, {"execution_time_ms": 12})

        for subscription in (first, second):
            types = [(await subscription.get()).type, (await subscription.get()).type]
            assert types == [MessageType.ANALYSIS_STARTED, MessageType.ANALYSIS_COMPLETE]

    @pytest.mark.asyncio
    async def test_no_replay_for_late_subscriber(self):
        bus = ProgressBus()
        bus.broadcast("s1", MessageType.ANALYSIS_STARTED)
        late = bus.subscribe("s1")
        bus.broadcast("s1", MessageType.ANALYSIS_COMPLETE)

        assert late.pending() == 1
        assert (await late.get()).type == MessageType.ANALYSIS_COMPLETE

    def test_publish_without_subscribers(self):
        assert ProgressBus().broadcast("nobody", MessageType.ERROR, {"message": "x"}) == 0

    @pytest.mark.asyncio
    async def test_full_queue_drops_without_blocking(self, caplog):
        bus = ProgressBus(queue_size=2)
        slow = bus.subscribe("s1")

        results = [bus.broadcast("s1", MessageType.AGENT_PROGRESS) for _ in range(4)]

        assert results == [1, 1, 0, 0]
        assert slow.dropped == 2
        assert slow.pending() == 2
        assert "subscriber queue full" in caplog.text

    @pytest.mark.asyncio
    async def test_publish_from_worker_thread(self):
        bus = ProgressBus()
        subscription = bus.subscribe("s1")

        delivered = await asyncio.to_thread(bus.broadcast, "s1", MessageType.AGENT_PROGRESS, {"n": 1})

        assert delivered == 1
        message = await asyncio.wait_for(subscription.get(), timeout=1)
        assert message.payload == {"submission_id": "s1", "n": 1}

    @pytest.mark.asyncio
    async def test_worker_thread_publish_still_drops_when_full(self, caplog):
        bus = ProgressBus(queue_size=1)
        subscription = bus.subscribe("s1")

        for _ in range(2):
            await asyncio.to_thread(bus.broadcast, "s1", MessageType.AGENT_PROGRESS)
        await _settle()

        assert subscription.pending() == 1
        assert subscription.dropped == 1
        assert "subscriber queue full" in caplog.text

    @pytest.mark.asyncio
    async def test_detach_stops_delivery(self):
        bus = ProgressBus()
        subscription = bus.subscribe("s1")
        bus.detach(subscription)

        assert bus.subscriber_count("s1") == 0
        assert bus.broadcast("s1", MessageType.ANALYSIS_STARTED) == 0
        assert await subscription.get() is None

    @pytest.mark.asyncio
    async def test_iteration_ends_on_close(self):
        bus = ProgressBus()
        subscription = bus.subscribe("s1")
        bus.broadcast("s1", MessageType.ANALYSIS_STARTED)
        bus.broadcast("s1", MessageType.ANALYSIS_COMPLETE)
        subscription.close()

        received = [message.type async for message in subscription]
        assert received == [MessageType.ANALYSIS_STARTED, MessageType.ANALYSIS_COMPLETE]


class TestProgressReporter:
    @pytest.mark.asyncio
    async def test_report_publishes_agent_progress(self, make_agent):
        bus = ProgressBus()
        subscription = bus.subscribe("s1")
        reporter = bus.reporter("s1", make_agent())

        event = reporter.report(ProgressPhase.SEARCHING, 20, "Loading security patterns")
        message = await subscription.get()

        assert message.type == MessageType.AGENT_PROGRESS
        assert message.payload == {
            "submission_id": "s1",
            "agent_id": "agent-1",
            "agent_name": "security agent",
            "status": "searching",
            "progress_percent": 20,
            "current_step": "Loading security patterns",
        }
        assert event.progress_percent == 20

    def test_percent_never_decreases(self, make_agent):
        reporter = ProgressBus().reporter("s1", make_agent())
        reporter.report(ProgressPhase.ANALYZING, 60)
        event = reporter.report(ProgressPhase.FAILED, 10, "failed")
        assert event.progress_percent == 60

    def test_percent_capped_at_100(self, make_agent):
        reporter = ProgressBus().reporter("s1", make_agent())
        assert reporter.report(ProgressPhase.COMPLETED, 150).progress_percent == 100


class TestServeConnection:
    @pytest.mark.asyncio
    async def test_subscribe_ack_and_forward(self):
        bus = ProgressBus()
        conn = FakeConnection()
        task = asyncio.create_task(serve_connection(bus, conn.receive, conn.send))

        await conn.inbound.put(json.dumps({"type": "subscribe", "submission_id": "s1"}))
        await _settle()
        assert conn.sent == [{"type": "subscribed", "submission_id": "s1"}]
        assert bus.subscriber_count("s1") == 1

        bus.broadcast("s1", MessageType.ANALYSIS_COMPLETE, {"execution_time_ms": 5})
        await _settle()
        assert conn.sent[1] == {
            "type": "analysis_complete",
            "payload": {"submission_id": "s1", "execution_time_ms": 5},
        }

        await conn.inbound.put(None)
        await asyncio.wait_for(task, timeout=1)
        assert bus.subscriber_count("s1") == 0

    @pytest.mark.asyncio
    async def test_malformed_and_unknown_messages_ignored(self, caplog):
        bus = ProgressBus()
        conn = FakeConnection()
        task = asyncio.create_task(serve_connection(bus, conn.receive, conn.send))

        await conn.inbound.put("{not json")
        await conn.inbound.put({"type": "ping"})
        await conn.inbound.put({"type": "subscribe"})
        await conn.inbound.put(None)
        await asyncio.wait_for(task, timeout=1)

        assert conn.sent == []
        assert "Ignoring malformed client message" in caplog.text

    @pytest.mark.asyncio
    async def test_connection_error_detaches(self):
        bus = ProgressBus()
        frames = [{"type": "subscribe", "submission_id": "s1"}]

        async def receive():
            if frames:
                return frames.pop(0)
            raise ConnectionResetError("peer gone")

        sent: list[dict] = []

        async def send(message):
            sent.append(message)

        await asyncio.wait_for(serve_connection(bus, receive, send), timeout=1)

        assert sent == [{"type": "subscribed", "submission_id": "s1"}]
        assert bus.subscriber_count("s1") == 0

    def test_wire_format(self):
        message = ProgressMessage(type=MessageType.ERROR, payload={"message": "Analysis failed"})
        assert message.to_wire() == {"type": "error", "payload": {"message": "Analysis failed"}}
