"""Exceptions raised by the streaming layer."""

from __future__ import annotations


class StreamError(Exception):
    """Base class for every streaming error."""


# ── Caller errors (rejected synchronously) ───────────────────────────


class DuplicateSubscriptionError(StreamError):
    """A pending or active subscription with an equal key already exists."""

    def __init__(self, key) -> None:
        super().__init__(f"already subscribed: {key}")
        self.key = key


class MissingHandlerError(StreamError):
    """A live-stream subscription was requested without a callback."""


class InvalidSubscriptionError(StreamError, ValueError):
    """Subscription parameters outside the values the exchange accepts."""


# ── Protocol desync (logged, frame dropped) ──────────────────────────


class UnknownPendingSubscriptionError(StreamError):
    """An ack arrived for a key with no pending subscription."""

    def __init__(self, key) -> None:
        super().__init__(f"no pending subscription for {key}")
        self.key = key


class UnknownChannelError(StreamError):
    """A data frame arrived for a channel id that is not active."""

    def __init__(self, channel_id: int) -> None:
        super().__init__(f"unknown channel id {channel_id}")
        self.channel_id = channel_id


# ── Delivered to a subscription's on_error ───────────────────────────


class SubscriptionFailedError(StreamError):
    """The exchange rejected or dropped a subscription."""

    def __init__(self, code: int | None, msg: str, key=None) -> None:
        super().__init__(f"subscription failed ({code}): {msg}")
        self.code = code
        self.msg = msg
        self.key = key


class SubscriptionTimeoutError(StreamError):
    """No ack arrived for a pending subscription within the timeout."""

    def __init__(self, key, timeout: float) -> None:
        super().__init__(f"no ack for {key} after {timeout:.1f}s")
        self.key = key
        self.timeout = timeout


class ServerError(StreamError):
    """An error event that does not belong to any known subscription."""

    def __init__(self, code: int | None, msg: str) -> None:
        super().__init__(f"server error ({code}): {msg}")
        self.code = code
        self.msg = msg


# ── Transport ────────────────────────────────────────────────────────


class TransportError(StreamError):
    """Base class for transport failures."""


class ConnectError(TransportError):
    """The connection could not be established."""


class SendError(TransportError):
    """A frame could not be written to the connection."""


class ConnectionClosedError(TransportError):
    """The connection is closed; all channel state is discarded."""

    def __init__(self, code: int | None = None, reason: str = "") -> None:
        super().__init__(f"connection closed (code={code}, reason={reason!r})")
        self.code = code
        self.reason = reason
