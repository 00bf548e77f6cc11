"""Routes decoded control messages to dispatcher handlers by event name."""

from __future__ import annotations

# Event name → handler method name mapping
CONTROL_HANDLERS: dict[str, str] = {
    "info": "_handle_info",
    "subscribed": "_handle_subscribed",
    "unsubscribed": "_handle_unsubscribed",
    "error": "_handle_error",
    "pong": "_handle_pong",
    "conf": "_handle_conf",
    "hb": "_handle_heartbeat",
}

# Info event codes
INFO_RECONNECT = 20051
INFO_MAINTENANCE_START = 20060
INFO_MAINTENANCE_END = 20061

# Error event codes
ERR_SUBSCRIBE_FAILED = 10300
ERR_ALREADY_SUBSCRIBED = 10301
ERR_UNKNOWN_CHANNEL = 10302
ERR_UNSUBSCRIBE_FAILED = 10400
ERR_NOT_SUBSCRIBED = 10401
