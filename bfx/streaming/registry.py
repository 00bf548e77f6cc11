"""Channel registry: subscription key → pending token → exchange channel id.

The dispatcher's read loop is the only task that mutates the registry while
frames are flowing. Every method here is synchronous and contains no await,
so a caller task's update is atomic with respect to the read loop.
"""

from __future__ import annotations

import asyncio
import itertools
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from bfx.streaming.errors import (
    DuplicateSubscriptionError,
    UnknownChannelError,
    UnknownPendingSubscriptionError,
)
from bfx.streaming.keys import SubscriptionKey

Callback = Callable[[Any], Any]
ErrorCallback = Callable[[Exception], Any]


class ChannelState(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass(eq=False)
class SubscriptionHandle:
    """Caller-facing view of one subscription, used to unsubscribe."""

    token: int
    key: SubscriptionKey
    state: ChannelState = ChannelState.PENDING
    channel_id: int | None = None
    error: Exception | None = None
    _closed: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def closed(self) -> bool:
        return self.state is ChannelState.CLOSED

    async def wait_closed(self) -> Exception | None:
        """Block until the subscription ends. Returns the terminal error, if any."""
        await self._closed.wait()
        return self.error

    def _activate(self, channel_id: int) -> None:
        self.state = ChannelState.ACTIVE
        self.channel_id = channel_id

    def _close(self, error: Exception | None = None) -> bool:
        """Move to CLOSED. Returns False if the handle was already closed."""
        if self.state is ChannelState.CLOSED:
            return False
        self.state = ChannelState.CLOSED
        self.error = error
        self._closed.set()
        return True


@dataclass
class PendingSubscription:
    token: int
    key: SubscriptionKey
    callback: Callback
    on_error: ErrorCallback | None
    handle: SubscriptionHandle
    created_at: float


@dataclass
class ActiveChannel:
    channel_id: int
    key: SubscriptionKey
    callback: Callback
    on_error: ErrorCallback | None
    handle: SubscriptionHandle
    last_seen: float


Entry = Union[PendingSubscription, ActiveChannel]


class ChannelRegistry:
    """Tracks every pending and active subscription on one connection."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._tokens = itertools.count(1)

        self._pending: dict[SubscriptionKey, PendingSubscription] = {}
        self._active: dict[int, ActiveChannel] = {}
        self._active_keys: dict[SubscriptionKey, int] = {}
        # Keys unsubscribed while pending; their ack must be answered with an unsubscribe
        self._cancelled: set[SubscriptionKey] = set()

    # ── Core contract ─────────────────────────────────────────────────

    def register_pending(
        self,
        key: SubscriptionKey,
        callback: Callback,
        on_error: ErrorCallback | None = None,
    ) -> int:
        """Add a pending entry for ``key``. Returns its token."""
        if key in self._pending or key in self._active_keys:
            raise DuplicateSubscriptionError(key)

        token = next(self._tokens)
        self._pending[key] = PendingSubscription(
            token=token,
            key=key,
            callback=callback,
            on_error=on_error,
            handle=SubscriptionHandle(token=token, key=key),
            created_at=self._clock(),
        )
        self._cancelled.discard(key)
        return token

    def bind(self, channel_id: int, key: SubscriptionKey) -> ActiveChannel:
        """Promote the pending entry for ``key`` to an active channel."""
        pending = self._pending.pop(key, None)
        if pending is None:
            raise UnknownPendingSubscriptionError(key)

        # Keep channel_id → channel a bijection if the exchange hands out an id twice
        self.unbind(channel_id)

        channel = ActiveChannel(
            channel_id=channel_id,
            key=key,
            callback=pending.callback,
            on_error=pending.on_error,
            handle=pending.handle,
            last_seen=self._clock(),
        )
        self._active[channel_id] = channel
        self._active_keys[key] = channel_id
        pending.handle._activate(channel_id)
        return channel

    def resolve(self, channel_id: int) -> ActiveChannel:
        """Return the active channel that owns ``channel_id``."""
        try:
            return self._active[channel_id]
        except KeyError:
            raise UnknownChannelError(channel_id) from None

    def unbind(self, channel_id: int) -> ActiveChannel | None:
        """Remove an active channel. Idempotent."""
        channel = self._active.pop(channel_id, None)
        if channel is not None:
            self._active_keys.pop(channel.key, None)
        return channel

    # ── Supporting operations ─────────────────────────────────────────

    def cancel_pending(self, token: int) -> PendingSubscription | None:
        """Drop a pending entry and remember its key so the late ack gets unsubscribed."""
        for key, pending in self._pending.items():
            if pending.token == token:
                del self._pending[key]
                self._cancelled.add(key)
                return pending
        return None

    def pop_cancelled(self, key: SubscriptionKey) -> bool:
        """True (once) if ``key`` was unsubscribed before its ack arrived."""
        if key in self._cancelled:
            self._cancelled.discard(key)
            return True
        return False

    def fail(self, key: SubscriptionKey) -> Entry | None:
        """Remove whatever entry (pending or active) is registered for ``key``."""
        pending = self._pending.pop(key, None)
        if pending is not None:
            return pending
        channel_id = self._active_keys.get(key)
        if channel_id is not None:
            return self.unbind(channel_id)
        return None

    def touch(self, channel_id: int) -> bool:
        """Record activity on a channel. Returns False for unknown ids."""
        channel = self._active.get(channel_id)
        if channel is None:
            return False
        channel.last_seen = self._clock()
        return True

    def purge_expired(self, max_age: float, now: float | None = None) -> list[PendingSubscription]:
        """Remove and return pending entries older than ``max_age`` seconds.

        Purged keys are treated like cancelled ones: a late ack is unsubscribed.
        """
        now = self._clock() if now is None else now
        expired = [p for p in self._pending.values() if now - p.created_at > max_age]
        for pending in expired:
            del self._pending[pending.key]
            self._cancelled.add(pending.key)
        return expired

    def stale_channels(self, timeout: float, now: float | None = None) -> list[ActiveChannel]:
        """Active channels with no frame or heartbeat for longer than ``timeout``."""
        now = self._clock() if now is None else now
        return [c for c in self._active.values() if now - c.last_seen > timeout]

    def drain(self) -> list[Entry]:
        """Remove and return every entry. Used when the transport closes."""
        entries: list[Entry] = [*self._pending.values(), *self._active.values()]
        self._pending.clear()
        self._active.clear()
        self._active_keys.clear()
        self._cancelled.clear()
        return entries

    def pending_for(self, key: SubscriptionKey) -> PendingSubscription | None:
        return self._pending.get(key)

    def channel_for(self, key: SubscriptionKey) -> ActiveChannel | None:
        channel_id = self._active_keys.get(key)
        return self._active.get(channel_id) if channel_id is not None else None

    @property
    def pending(self) -> list[PendingSubscription]:
        return list(self._pending.values())

    @property
    def active(self) -> list[ActiveChannel]:
        return list(self._active.values())

    def __contains__(self, key: object) -> bool:
        return key in self._pending or key in self._active_keys

    def __len__(self) -> int:
        return len(self._pending) + len(self._active)
