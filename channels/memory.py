"""
In-memory channel — queue-fed transport and recording presenter.

Used for tests and for embedding the bot behind another event source:
push events with `put` / `say`, then `finish` to end the stream.
"""
from __future__ import annotations

import asyncio
import uuid
import structlog
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

from channels.base import (
    ConnectedEvent, MessageEvent, Presenter, Transport, TransportEvent,
)
from core.errors import TransportError
from models.schemas import BotIdentity, InboundMessage, MessageFormat

logger = structlog.get_logger()

_END = object()


class InMemoryTransport(Transport):

    def __init__(self, identity: Optional[BotIdentity] = None, connect_failures: list[TransportError] = None):
        super().__init__()
        self.identity = identity
        self._queue: asyncio.Queue = asyncio.Queue()
        self._connect_failures = list(connect_failures or [])
        self.connect_attempts = 0

    async def connect(self) -> None:
        self.connect_attempts += 1
        if self._connect_failures:
            raise self._connect_failures.pop(0)
        self._connected = True

    async def put(self, event: TransportEvent):
        await self._queue.put(event)

    async def say(self, user: str, text: str, channel: str = "D001", **fields: Any) -> InboundMessage:
        """Queue a message event from `user`."""
        message = InboundMessage(user=user, text=text, channel=channel, ts=str(uuid.uuid4()), **fields)
        await self.put(MessageEvent(message=message))
        return message

    async def finish(self):
        await self._queue.put(_END)

    async def events(self) -> AsyncIterator[TransportEvent]:
        if self.identity is not None:
            yield ConnectedEvent(identity=self.identity)
        while True:
            event = await self._queue.get()
            if event is _END:
                logger.debug("memory_transport_drained")
                return
            yield event


@dataclass
class SentMessage:
    channel: str
    text: str
    format: Optional[MessageFormat] = None
    sent_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class RecordingPresenter(Presenter):
    """Keeps every outbound message in `sent`."""

    def __init__(self):
        self.sent: list[SentMessage] = []

    async def send(self, channel: str, text: str) -> dict[str, Any]:
        self.sent.append(SentMessage(channel=channel, text=text))
        return {"status": "sent", "channel": channel}

    async def send_interactive(self, channel: str, text: str, fmt: MessageFormat) -> dict[str, Any]:
        self.sent.append(SentMessage(channel=channel, text=text, format=fmt))
        return {"status": "sent", "channel": channel, "attachment": fmt.to_attachment(text)}

    def texts(self, channel: str = "") -> list[str]:
        return [m.text for m in self.sent if not channel or m.channel == channel]
