"""
Channel interfaces — the seams between the dispatcher and the chat service.

Provides:
- Transport events: connected, message, error, invalid auth
- Transport: abstract source of events for the dispatch loop
- Presenter: abstract sink for outbound replies and interactive messages
"""
from __future__ import annotations

import abc
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator

from core.errors import TransportError
from models.schemas import BotIdentity, InboundMessage, MessageFormat


# ══════════════════════════════════════════════════════════════
#  TRANSPORT EVENTS
# ══════════════════════════════════════════════════════════════

@dataclass
class TransportEvent:
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc), kw_only=True)


@dataclass
class ConnectedEvent(TransportEvent):
    """Announces the bot's identity; delivered before any message."""
    identity: BotIdentity
    connection_count: int = 1


@dataclass
class MessageEvent(TransportEvent):
    message: InboundMessage


@dataclass
class TransportErrorEvent(TransportEvent):
    error: TransportError

    @property
    def terminal(self) -> bool:
        return self.error.terminal


@dataclass
class InvalidAuthEvent(TransportEvent):
    reason: str = "Invalid credentials"


# ══════════════════════════════════════════════════════════════
#  TRANSPORT
# ══════════════════════════════════════════════════════════════

class Transport(abc.ABC):
    """
    Connects to the chat service and yields normalized events.

    `connect` raises TransportError; transient errors may be retried by the
    caller, terminal ones (bad credentials, refused connection) may not.
    """

    def __init__(self):
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    @abc.abstractmethod
    async def connect(self) -> None:
        ...

    @abc.abstractmethod
    def events(self) -> AsyncIterator[TransportEvent]:
        ...

    async def close(self) -> None:
        self._connected = False


# ══════════════════════════════════════════════════════════════
#  PRESENTER
# ══════════════════════════════════════════════════════════════

class Presenter(abc.ABC):
    """Renders outbound content to a channel."""

    @abc.abstractmethod
    async def send(self, channel: str, text: str) -> dict[str, Any]:
        ...

    @abc.abstractmethod
    async def send_interactive(self, channel: str, text: str, fmt: MessageFormat) -> dict[str, Any]:
        ...
