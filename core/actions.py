"""
Action Table — ordered pattern → handler fallback for one-shot commands.

Consulted only when no flow claims a message. Patterns are tried in
registration order against the message text with the bot's mention prefix
stripped; the first match wins. When nothing matches, the default handler
(if any) runs.

Handlers:
    def greet(bot, message, *groups): ...       # groups = (full match, *captures)
    def fallback(bot, message): ...
Either may be a coroutine function.
"""
from __future__ import annotations

import re
import structlog
from typing import Any, Callable, Optional, Union

from models.schemas import InboundMessage

logger = structlog.get_logger()

ActionHandler = Callable[..., Any]
DefaultHandler = Callable[[Any, InboundMessage], Any]


def strip_mention(text: str, mention: str = "") -> str:
    """Remove surrounding whitespace and a leading `<@bot>` mention."""
    text = text.strip()
    if mention and text.startswith(mention):
        text = text[len(mention):].lstrip(" :,").strip()
    return text


class ActionMatch:
    """A resolved table lookup: the handler to call and its arguments."""

    def __init__(self, handler: Callable, groups: tuple[str, ...] = (), pattern: str = "", is_default: bool = False):
        self.handler = handler
        self.groups = groups
        self.pattern = pattern
        self.is_default = is_default

    def __repr__(self):
        if self.is_default:
            return "<ActionMatch default>"
        return f"<ActionMatch {self.pattern!r} groups={self.groups!r}>"


class ActionTable:

    def __init__(self):
        self._entries: list[tuple[re.Pattern, ActionHandler]] = []
        self._default: Optional[DefaultHandler] = None

    def respond_to(self, pattern: Union[str, re.Pattern], handler: ActionHandler):
        compiled = re.compile(pattern) if isinstance(pattern, str) else pattern
        self._entries.append((compiled, handler))
        logger.debug("action_registered", pattern=compiled.pattern, position=len(self._entries))

    def set_default(self, handler: Optional[DefaultHandler]):
        self._default = handler

    @property
    def default(self) -> Optional[DefaultHandler]:
        return self._default

    def match(self, text: str) -> Optional[ActionMatch]:
        for pattern, handler in self._entries:
            m = pattern.search(text)
            if m is not None:
                groups = (m.group(0),) + tuple(g if g is not None else "" for g in m.groups())
                return ActionMatch(handler, groups, pattern.pattern)
        if self._default is not None:
            return ActionMatch(self._default, is_default=True)
        return None

    def patterns(self) -> list[str]:
        return [p.pattern for p, _ in self._entries]

    def __len__(self):
        return len(self._entries)
