"""
Console channel — offline mode.

Reads one command per line from a text stream and prints replies, so flows
and commands can be exercised without a chat service. Each line becomes a
direct message from a single local user.
"""
from __future__ import annotations

import asyncio
import sys
import structlog
from typing import Any, AsyncIterator, TextIO

from channels.base import ConnectedEvent, MessageEvent, Presenter, Transport, TransportEvent
from models.schemas import BotIdentity, InboundMessage, MessageFormat

logger = structlog.get_logger()

LOCAL_BOT_ID = "UOFFLINE"
LOCAL_USER_ID = "ULOCAL"
LOCAL_CHANNEL = "DLOCAL"


class ConsoleTransport(Transport):

    def __init__(self, stream: TextIO = None, prompt_stream: TextIO = None, prompt: str = "> ", bot_name: str = "flowbot"):
        super().__init__()
        self.stream = stream or sys.stdin
        self.prompt_stream = prompt_stream or sys.stdout
        self.prompt = prompt
        self.identity = BotIdentity(user_id=LOCAL_BOT_ID, name=bot_name, team="local")

    async def connect(self) -> None:
        self._connected = True
        logger.info("running_in_local_mode")

    async def events(self) -> AsyncIterator[TransportEvent]:
        yield ConnectedEvent(identity=self.identity)
        while self._connected:
            if self.prompt:
                self.prompt_stream.write(self.prompt)
                self.prompt_stream.flush()
            line = await asyncio.to_thread(self.stream.readline)
            if not line:
                break
            yield MessageEvent(message=InboundMessage(
                user=LOCAL_USER_ID,
                channel=LOCAL_CHANNEL,
                text=line.rstrip("\r\n"),
            ))
        self._connected = False


class ConsolePresenter(Presenter):

    def __init__(self, stream: TextIO = None):
        self.stream = stream or sys.stdout

    async def send(self, channel: str, text: str) -> dict[str, Any]:
        print(f"< {text}", file=self.stream)
        return {"status": "sent", "channel": channel}

    async def send_interactive(self, channel: str, text: str, fmt: MessageFormat) -> dict[str, Any]:
        print("# interactive messages not supported in offline mode", file=self.stream)
        return {"status": "unsupported", "channel": channel}
