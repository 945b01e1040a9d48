"""
Core data models for the FlowBot system.
These are the universal types shared across all modules.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, Field


DIRECT_CHANNEL_PREFIX = "D"


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class MessageType(str, Enum):
    MESSAGE = "message"


class MessageSubtype(str, Enum):
    NONE = ""
    MESSAGE_DELETED = "message_deleted"
    BOT_MESSAGE = "bot_message"
    MESSAGE_CHANGED = "message_changed"


IGNORED_SUBTYPES = frozenset({
    MessageSubtype.MESSAGE_DELETED.value,
    MessageSubtype.BOT_MESSAGE.value,
})


# ──────────────────────────────────────────────────────────────
#  Inbound — normalized messages handed over by the transport
# ──────────────────────────────────────────────────────────────

class InboundMessage(BaseModel):
    """A chat message as seen by the dispatcher."""
    type: str = MessageType.MESSAGE.value
    subtype: str = ""
    channel: str = ""                         # "D…" designates a direct conversation
    user: str = ""                            # author identity
    text: str = ""
    ts: str = ""                              # transport-specific timestamp / id
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = {}

    @property
    def is_normal(self) -> bool:
        """A regular message: not deleted and not posted by a bot."""
        return self.type == MessageType.MESSAGE.value and self.subtype not in IGNORED_SUBTYPES

    @property
    def is_direct(self) -> bool:
        return self.channel.startswith(DIRECT_CHANNEL_PREFIX)

    def mentions(self, user_id: str) -> bool:
        return self.text.startswith(mention_of(user_id))


class BotIdentity(BaseModel):
    """The bot's own identity, announced once by the transport on connect."""
    user_id: str
    name: str = ""
    team: str = ""

    @property
    def mention(self) -> str:
        return mention_of(self.user_id)


def mention_of(user_id: str) -> str:
    return f"<@{user_id}>"


# ──────────────────────────────────────────────────────────────
#  Outbound — interactive elements rendered by presenters
# ──────────────────────────────────────────────────────────────

class MessageButton(BaseModel):
    name: str
    text: str
    value: str = ""

    def to_action(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "text": self.text,
            "type": "button",
            "value": self.value,
        }


class MessageMenu(BaseModel):
    """A select menu; `values` maps option value → display text, in order."""
    name: str
    text: str
    values: dict[str, str] = {}

    def to_action(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "text": self.text,
            "type": "select",
            "options": [
                {"value": value, "text": label}
                for value, label in self.values.items()
            ],
        }


InteractiveElement = Union[MessageButton, MessageMenu]


class MessageFormat(BaseModel):
    callback: str
    elements: list[InteractiveElement] = []

    def to_attachment(self, fallback: str) -> dict[str, Any]:
        return {
            "fallback": fallback,
            "callback_id": self.callback,
            "actions": [e.to_action() for e in self.elements],
        }
