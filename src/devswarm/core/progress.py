"""Per-submission progress broadcast.

Subscribers attach to a submission id and receive every message published
for it from that point on. There is no replay: a late subscriber only sees
what is published after it attaches. Each subscription owns a bounded
queue and `publish` never waits on a slow consumer; a full queue drops the
message.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from typing import Any, Awaitable, Callable, Optional, Union

from ..models.agent import Agent
from ..models.progress import MessageType, ProgressEvent, ProgressMessage, ProgressPhase

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 256

_CLOSED = object()


class Subscription:
    """A live feed of messages for one submission."""

    def __init__(self, submission_id: str, maxsize: int = DEFAULT_QUEUE_SIZE):
        self.submission_id = submission_id
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False
        self.dropped = 0
        try:
            self._loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None

    def _on_owner_loop(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False

    def _offer(self, message: ProgressMessage) -> bool:
        """Queue `message`, hopping onto the owning loop when called from another thread."""
        if self._loop is None or self._on_owner_loop():
            return self._put(message)
        try:
            self._loop.call_soon_threadsafe(self._put, message)
        except RuntimeError:
            # Owning loop already closed.
            return False
        return True

    def _put(self, message: ProgressMessage) -> bool:
        try:
            self._queue.put_nowait(message)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Dropping %s message for submission %s: subscriber queue full",
                message.type.value, self.submission_id,
            )
            return False

    def pending(self) -> int:
        return self._queue.qsize()

    async def get(self) -> Optional[ProgressMessage]:
        """Next message, or None once the subscription is closed and drained."""
        if self.closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            return None
        return item

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # Consumers stop once the backlog drains.
            pass

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ProgressMessage:
        message = await self.get()
        if message is None:
            raise StopAsyncIteration
        return message


class ProgressBus:
    """Observer registry keyed by submission id."""

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE):
        self.queue_size = queue_size
        self._subscribers: dict[str, set[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, submission_id: str) -> Subscription:
        subscription = Subscription(submission_id, self.queue_size)
        with self._lock:
            self._subscribers.setdefault(submission_id, set()).add(subscription)
        return subscription

    def detach(self, subscription: Subscription) -> None:
        subscription.close()
        with self._lock:
            subscribers = self._subscribers.get(subscription.submission_id)
            if subscribers is None:
                return
            subscribers.discard(subscription)
            if not subscribers:
                del self._subscribers[subscription.submission_id]

    def subscriber_count(self, submission_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(submission_id, ()))

    def publish(self, submission_id: str, message: ProgressMessage) -> int:
        """Deliver `message` to every open subscription.

        Safe to call from worker threads. Returns how many subscriptions took
        the message (or had it scheduled onto their loop).
        """
        with self._lock:
            targets = list(self._subscribers.get(submission_id, ()))

        delivered = 0
        for subscription in targets:
            if subscription.closed:
                continue
            if subscription._offer(message):
                delivered += 1
        return delivered

    def broadcast(
        self,
        submission_id: str,
        message_type: MessageType,
        payload: Optional[dict[str, Any]] = None,
    ) -> int:
        data = {"submission_id": submission_id}
        data.update(payload or {})
        return self.publish(submission_id, ProgressMessage(type=message_type, payload=data))

    def reporter(self, submission_id: str, agent: Agent) -> "ProgressReporter":
        return ProgressReporter(self, submission_id, agent)


class ProgressReporter:
    """Publishes `agent_progress` events for one agent on one submission."""

    def __init__(self, bus: ProgressBus, submission_id: str, agent: Agent):
        self.bus = bus
        self.submission_id = submission_id
        self.agent = agent
        self.last_percent = 0

    def report(self, phase: ProgressPhase, percent: int, step: Optional[str] = None) -> ProgressEvent:
        # Percentages never move backwards within one pipeline.
        percent = max(self.last_percent, min(100, percent))
        self.last_percent = percent
        event = ProgressEvent(
            submission_id=self.submission_id,
            agent_id=self.agent.id,
            agent_name=self.agent.name,
            status=phase,
            progress_percent=percent,
            current_step=step,
        )
        self.bus.publish(
            self.submission_id,
            ProgressMessage(type=MessageType.AGENT_PROGRESS, payload=event.model_dump(mode="json")),
        )
        return event


# ---------------------------------------------------------------------------
# Connection handler
# ---------------------------------------------------------------------------

Receive = Callable[[], Awaitable[Union[str, dict, None]]]
Send = Callable[[dict], Awaitable[None]]


async def _forward(subscription: Subscription, send: Send) -> None:
    async for message in subscription:
        await send(message.to_wire())


async def serve_connection(bus: ProgressBus, receive: Receive, send: Send) -> None:
    """Drive one duplex client connection until it disconnects.

    The client sends ``{"type": "subscribe", "submission_id": ...}`` and is
    acknowledged with ``{"type": "subscribed", "submission_id": ...}``; from
    then on every message for that submission is pushed to it. `receive`
    returns None when the peer goes away.
    """
    subscriptions: list[Subscription] = []
    forwarders: list[asyncio.Task] = []

    try:
        while True:
            try:
                raw = await receive()
            except ConnectionError:
                break
            if raw is None:
                break

            if isinstance(raw, str):
                try:
                    raw = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Ignoring malformed client message")
                    continue
            if not isinstance(raw, dict):
                continue

            submission_id = raw.get("submission_id")
            if raw.get("type") != "subscribe" or not submission_id:
                logger.debug("Ignoring client message of type %r", raw.get("type"))
                continue

            subscription = bus.subscribe(submission_id)
            subscriptions.append(subscription)
            await send({"type": "subscribed", "submission_id": submission_id})
            forwarders.append(asyncio.create_task(_forward(subscription, send)))
    finally:
        for subscription in subscriptions:
            bus.detach(subscription)
        for task in forwarders:
            task.cancel()
        if forwarders:
            await asyncio.gather(*forwarders, return_exceptions=True)
