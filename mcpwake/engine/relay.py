"""Fan-out of one session's event stream to live subscribers.

Each session owns one LiveRelay. A new subscriber first receives a
``connected`` header and the full replay of recorded events, then live
envelopes in arrival order. Replay and registration happen in the same
synchronous call, so no live event can slip between the two.

Subscribers that fall too far behind are closed rather than fed a stream
with holes in it.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_MAX_PENDING = 1000

_CLOSED = object()


def event_envelope(index: int, raw: dict[str, Any]) -> dict[str, Any]:
    return {"type": "event", "index": index, "event": raw}


class Subscription:
    """One subscriber's ordered message stream.

    Iterate with ``async for``; iteration ends when the relay closes the
    subscription (session ended, overflow, or explicit removal).
    """

    def __init__(self, session_id: str, max_pending: int = DEFAULT_MAX_PENDING) -> None:
        self.session_id = session_id
        self._max_pending = max_pending
        # Unbounded so that replay and the close marker always fit; the
        # live bound is enforced in offer().
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False
        self.overflowed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def _push(self, message: dict[str, Any]) -> None:
        self._queue.put_nowait(message)

    def offer(self, message: dict[str, Any]) -> bool:
        """Queue a live message. Returns False if the subscriber overflowed."""
        if self._closed:
            return False
        if self._queue.qsize() >= self._max_pending:
            self.overflowed = True
            self.close()
            return False
        self._queue.put_nowait(message)
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def get(self) -> dict[str, Any] | None:
        """Next message, or None once the stream has ended."""
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the marker for any other waiter.
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> dict[str, Any]:
        item = await self.get()
        if item is None:
            raise StopAsyncIteration
        return item


class LiveRelay:
    """Broadcasts a session's envelopes to all current subscribers."""

    def __init__(self, session_id: str, max_pending: int = DEFAULT_MAX_PENDING) -> None:
        self.session_id = session_id
        self._max_pending = max_pending
        self._subscribers: list[Subscription] = []
        self._final_message: dict[str, Any] | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(
        self,
        history: list[dict[str, Any]],
        header: dict[str, Any],
    ) -> Subscription:
        """Register a subscriber, preloading *header* and the replay.

        If the relay is already closed the subscriber gets the replay,
        the stored terminal message, and an immediately-closed stream.
        """
        sub = Subscription(self.session_id, self._max_pending)
        sub._push(header)
        for index, raw in enumerate(history):
            sub._push(event_envelope(index, raw))

        if self._closed:
            if self._final_message is not None:
                sub._push(self._final_message)
            sub.close()
            return sub

        self._subscribers.append(sub)
        logger.info(
            "Viewer subscribed session=%s replayed=%d subscribers=%d",
            self.session_id, len(history), len(self._subscribers),
        )
        return sub

    def remove(self, sub: Subscription) -> None:
        """Deregister *sub*. The session itself is unaffected."""
        if sub in self._subscribers:
            self._subscribers.remove(sub)
            logger.info(
                "Viewer unsubscribed session=%s subscribers=%d",
                self.session_id, len(self._subscribers),
            )
        sub.close()

    def publish_event(self, index: int, raw: dict[str, Any]) -> None:
        self.broadcast(event_envelope(index, raw))

    def broadcast(self, message: dict[str, Any]) -> None:
        if self._closed:
            return
        for sub in list(self._subscribers):
            if not sub.offer(message):
                logger.warning(
                    "Viewer queue full for session %s (pending=%d), dropping subscriber",
                    self.session_id, sub.pending,
                )
                self._subscribers.remove(sub)

    def close(self, final_message: dict[str, Any] | None = None) -> None:
        """Send *final_message* (if any) and end every subscription.

        The final message is kept so late subscribers still see it.
        Calling close() again is a no-op.
        """
        if self._closed:
            return
        if final_message is not None:
            self.broadcast(final_message)
            self._final_message = final_message
        self._closed = True
        for sub in self._subscribers:
            sub.close()
        self._subscribers.clear()
