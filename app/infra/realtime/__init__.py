"""Realtime snapshot fan-out and outbound chat transport adapters."""

from app.infra.realtime.feed import ChangeFeed
from app.infra.realtime.transport import (
    ChatTransport,
    LoggingChatTransport,
    NoopChatTransport,
)

__all__ = [
    "ChangeFeed",
    "ChatTransport",
    "LoggingChatTransport",
    "NoopChatTransport",
]
