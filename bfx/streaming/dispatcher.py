"""Bitfinex websocket dispatcher — the core read loop.

One reader task pulls frames off the transport, decodes them, binds
subscription acks to channel ids, and invokes each channel's callback inline.
Frames are processed strictly in arrival order and callbacks are awaited
before the next frame is read, so a channel never sees its frames reordered.
A slow callback therefore delays every other channel.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

import orjson
import structlog

from bfx.config import TuningConfig
from bfx.streaming.decoder import ControlMessage, DataMessage, Unrecognized, decode
from bfx.streaming.errors import (
    ConnectError,
    ConnectionClosedError,
    SendError,
    ServerError,
    SubscriptionFailedError,
    SubscriptionTimeoutError,
    UnknownChannelError,
    UnknownPendingSubscriptionError,
)
from bfx.streaming.keys import SubscriptionKey
from bfx.streaming.payloads import parse_payload
from bfx.streaming.registry import ActiveChannel, ChannelRegistry, Entry
from bfx.streaming.router import (
    CONTROL_HANDLERS,
    INFO_MAINTENANCE_END,
    INFO_MAINTENANCE_START,
    INFO_RECONNECT,
)
from bfx.streaming.transport import Transport

logger = structlog.get_logger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"


def _preview(raw: Any) -> str:
    return raw[:200] if isinstance(raw, str) else str(raw)[:200]


class Dispatcher:
    """
    Owns one transport connection and the channel registry bound to it.

    Channel state does not survive the connection: when the transport closes,
    every pending and active subscription is dropped and its caller notified.
    """

    def __init__(
        self,
        transport: Transport,
        tuning: TuningConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        on_connection_error: Callable[[ServerError], Any] | None = None,
        on_info: Callable[[dict], Any] | None = None,
    ) -> None:
        self._transport = transport
        self._tuning = tuning or TuningConfig()
        self._clock = clock
        self.on_connection_error = on_connection_error
        self.on_info = on_info

        self.registry = ChannelRegistry(clock)
        self.state = ConnectionState.DISCONNECTED
        self.server_version: int | None = None
        self.last_frame_at: float | None = None
        self._reading = False

        # Stats
        self._msg_counts: dict[str, int] = {}
        self._last_stats_time: float = 0

    # ── Connection lifecycle ──────────────────────────────────────────

    async def open(self, url: str) -> None:
        """Connect the transport. DISCONNECTED → CONNECTING → OPEN."""
        if self.state is not ConnectionState.DISCONNECTED:
            raise ConnectError(f"cannot connect while {self.state.value}")

        self.state = ConnectionState.CONNECTING
        try:
            await self._transport.connect(url)
        except BaseException as e:
            self.state = ConnectionState.DISCONNECTED
            logger.error("dispatcher_connect_failed", url=url, error=repr(e))
            raise

        self.state = ConnectionState.OPEN
        self.last_frame_at = self._clock()
        self._last_stats_time = self._clock()
        self._msg_counts.clear()
        logger.info("dispatcher_open", url=url)

    async def run(self) -> None:
        """Read frames until the transport closes.

        Returns normally after :meth:`close`; re-raises ConnectionClosedError
        when the remote end (or the network) closed the connection.
        """
        if self.state is not ConnectionState.OPEN:
            raise ConnectionClosedError(reason="not connected")

        self._reading = True
        try:
            while True:
                # Bounded wait so timeouts and stats still run on a quiet connection
                try:
                    raw = await asyncio.wait_for(
                        self._transport.receive(), self._tuning.housekeeping_interval
                    )
                except asyncio.TimeoutError:
                    pass
                else:
                    await self.process_frame(raw)
                await self._housekeeping()
        except ConnectionClosedError as e:
            requested = self.state is ConnectionState.CLOSING
            if requested:
                logger.info("dispatcher_closed")
            else:
                logger.warning("websocket_disconnected", code=e.code, reason=e.reason)
            await self._teardown(e)
            if not requested:
                raise
        except asyncio.CancelledError:
            self.state = ConnectionState.CLOSING
            await self._transport.close()
            await self._teardown(ConnectionClosedError(reason="reader cancelled"))
            raise
        finally:
            self._reading = False

    async def close(self) -> None:
        """OPEN → CLOSING. The read loop exits and tears down channel state."""
        if self.state in (ConnectionState.DISCONNECTED, ConnectionState.CLOSING):
            return

        self.state = ConnectionState.CLOSING
        await self._transport.close()
        if not self._reading:
            await self._teardown(ConnectionClosedError(reason="closed by client"))

    async def send(self, frame: dict[str, Any]) -> None:
        """Encode and write one control frame. Raises SendError."""
        if self.state is not ConnectionState.OPEN:
            raise SendError(f"cannot send while {self.state.value}")
        await self._transport.send(orjson.dumps(frame).decode())

    async def ping(self, cid: int) -> None:
        await self.send({"event": "ping", "cid": cid})

    async def _teardown(self, error: ConnectionClosedError) -> None:
        entries = self.registry.drain()
        for entry in entries:
            await self._notify_error(entry, error)
        self.state = ConnectionState.DISCONNECTED
        logger.info("dispatcher_torn_down", dropped=len(entries))

    # ── Message processing ────────────────────────────────────────────

    async def process_frame(self, raw: str | bytes) -> None:
        """Handle one frame. Never raises for bad frames or failing callbacks."""
        self.last_frame_at = self._clock()
        msg = decode(raw)

        if isinstance(msg, Unrecognized):
            self._count("unrecognized")
            logger.warning("unrecognized_frame", reason=msg.reason, raw=_preview(raw))
            return

        if isinstance(msg, ControlMessage):
            self._count(msg.type)
            handler_name = CONTROL_HANDLERS.get(msg.type)
            if handler_name is None:
                logger.debug("unknown_event", event=msg.type)
                return
            try:
                await getattr(self, handler_name)(msg.payload)
            except Exception:
                logger.exception("control_handler_error", event=msg.type)
            return

        self._count("data")
        await self._dispatch_data(msg)

    async def _dispatch_data(self, msg: DataMessage) -> None:
        try:
            channel = self.registry.resolve(msg.channel_id)
        except UnknownChannelError:
            logger.warning("unknown_channel", channel_id=msg.channel_id)
            return

        channel.last_seen = self._clock()
        try:
            payload = parse_payload(channel.key, msg)
        except Exception:
            logger.exception(
                "payload_parse_error", channel_id=msg.channel_id, key=str(channel.key)
            )
            return

        await self._invoke(channel.callback, payload, "callback_error", channel_id=msg.channel_id)

    async def _housekeeping(self) -> None:
        now = self._clock()

        for pending in self.registry.purge_expired(self._tuning.pending_timeout, now):
            logger.warning("subscription_timeout", token=pending.token, key=str(pending.key))
            await self._notify_error(
                pending, SubscriptionTimeoutError(pending.key, self._tuning.pending_timeout)
            )

        if now - self._last_stats_time >= self._tuning.stats_interval:
            self._log_stats()
            stale = self.stale_channels()
            if stale:
                logger.warning(
                    "stale_channels",
                    channel_ids=[c.channel_id for c in stale],
                    silent_for=round(now - min(c.last_seen for c in stale), 1),
                    last_frame_age=round(now - (self.last_frame_at or now), 1),
                )
            self._last_stats_time = now

    def _count(self, kind: str) -> None:
        self._msg_counts[kind] = self._msg_counts.get(kind, 0) + 1

    def _log_stats(self) -> None:
        """Log message rate statistics."""
        logger.info(
            "ws_stats",
            total_messages=sum(self._msg_counts.values()),
            by_type=dict(self._msg_counts),
            active=len(self.registry.active),
            pending=len(self.registry.pending),
        )
        self._msg_counts.clear()

    def stale_channels(self, timeout: float | None = None) -> list[ActiveChannel]:
        """Active channels with neither data nor heartbeat within ``timeout`` seconds."""
        if timeout is None:
            timeout = self._tuning.heartbeat_timeout
        return self.registry.stale_channels(timeout, self._clock())

    # ── Callback plumbing ─────────────────────────────────────────────

    async def _invoke(self, fn: Callable[[Any], Any], arg: Any, event: str, **context: Any) -> None:
        """Call a user callback, awaiting it if it is a coroutine function."""
        try:
            result = fn(arg)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(event, **context)

    async def _notify_error(self, entry: Entry, error: Exception) -> None:
        """Close the entry's handle and report ``error`` to its caller, at most once."""
        if not entry.handle._close(error):
            return
        if entry.on_error is None:
            logger.info("subscription_closed", key=str(entry.key), error=str(error))
            return
        await self._invoke(entry.on_error, error, "error_callback_error", key=str(entry.key))

    async def _send_quietly(self, frame: dict[str, Any]) -> None:
        try:
            await self.send(frame)
        except SendError as e:
            logger.warning("send_failed", event=frame.get("event"), error=str(e))

    # ── Control handlers ──────────────────────────────────────────────

    async def _handle_info(self, payload: dict) -> None:
        if "version" in payload:
            self.server_version = payload["version"]
            logger.info(
                "ws_info",
                version=self.server_version,
                platform_status=payload.get("platform", {}).get("status"),
            )

        code = payload.get("code")
        if code is None:
            return
        if code == INFO_RECONNECT:
            logger.warning("ws_reconnect_requested", msg=payload.get("msg"))
        elif code == INFO_MAINTENANCE_START:
            logger.warning("ws_maintenance_started", msg=payload.get("msg"))
        elif code == INFO_MAINTENANCE_END:
            logger.warning("ws_maintenance_ended", msg=payload.get("msg"))
        else:
            logger.info("ws_info_code", code=code, msg=payload.get("msg"))

        if self.on_info is not None:
            await self._invoke(self.on_info, payload, "info_callback_error", code=code)

    async def _handle_subscribed(self, payload: dict) -> None:
        """Bind the pending subscription the ack echoes to its channel id."""
        channel_id = payload.get("chanId")
        key = SubscriptionKey.from_event(payload)
        if key is None or not isinstance(channel_id, int):
            logger.warning("malformed_ack", msg=payload)
            return

        if self.registry.pop_cancelled(key):
            logger.info("cancelled_subscription_acked", channel_id=channel_id, key=str(key))
            await self._send_quietly({"event": "unsubscribe", "chanId": channel_id})
            return

        if self.registry.pending_for(key) is not None:
            try:
                stale = self.registry.resolve(channel_id)
            except UnknownChannelError:
                stale = None
            if stale is not None:
                logger.warning("channel_id_reassigned", channel_id=channel_id, key=str(stale.key))
                self.registry.unbind(channel_id)
                await self._notify_error(
                    stale, SubscriptionFailedError(None, "channel id reassigned", stale.key)
                )

        try:
            self.registry.bind(channel_id, key)
        except UnknownPendingSubscriptionError:
            logger.warning("unknown_pending_subscription", channel_id=channel_id, key=str(key))
            return

        logger.info("subscription_confirmed", channel_id=channel_id, key=str(key))

    async def _handle_unsubscribed(self, payload: dict) -> None:
        channel_id = payload.get("chanId")
        channel = self.registry.unbind(channel_id)
        if channel is not None:
            channel.handle._close()
        logger.info("unsubscription_confirmed", channel_id=channel_id, status=payload.get("status"))

    async def _handle_error(self, payload: dict) -> None:
        """Tear down the subscription an error refers to, else report it connection-wide."""
        code = payload.get("code")
        text = payload.get("msg", "")

        entry: Entry | None = None
        channel_id = payload.get("chanId")
        if isinstance(channel_id, int):
            entry = self.registry.unbind(channel_id)
        if entry is None:
            # Key echoes answer a subscribe; an active channel on the key stays up
            key = SubscriptionKey.from_event(payload)
            if key is not None and self.registry.pending_for(key) is not None:
                entry = self.registry.fail(key)

        if entry is not None:
            logger.warning("subscription_error", code=code, msg=text, key=str(entry.key))
            await self._notify_error(entry, SubscriptionFailedError(code, text, entry.key))
            return

        logger.error("ws_server_error", code=code, msg=text)
        if self.on_connection_error is not None:
            await self._invoke(
                self.on_connection_error, ServerError(code, text), "connection_error_callback_error"
            )

    async def _handle_pong(self, payload: dict) -> None:
        logger.debug("ws_pong", cid=payload.get("cid"), ts=payload.get("ts"))

    async def _handle_conf(self, payload: dict) -> None:
        logger.info("ws_conf", status=payload.get("status"), flags=payload.get("flags"))

    async def _handle_heartbeat(self, payload: dict) -> None:
        channel_id = payload.get("chanId")
        if not self.registry.touch(channel_id):
            logger.debug("heartbeat_unknown_channel", channel_id=channel_id)
