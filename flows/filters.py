"""
Message filters — pure predicates deciding which messages are considered.

Filters gate both top-level intake (only messages meant for the bot reach
the dispatcher) and the activation of individual flows. They compose with
`&`, `|` and `~`:

    only_dms_from_humans = DirectMessageFilter() & ~PredicateFilter(is_bot)
"""
from __future__ import annotations

import abc
from typing import Callable

from models.schemas import InboundMessage


class Filter(abc.ABC):
    """Predicate over an inbound message. Must not have side effects."""

    @abc.abstractmethod
    def accepts(self, message: InboundMessage) -> bool:
        ...

    def __call__(self, message: InboundMessage) -> bool:
        return self.accepts(message)

    def __and__(self, other: Filter) -> Filter:
        return AllOf(self, other)

    def __or__(self, other: Filter) -> Filter:
        return AnyOf(self, other)

    def __invert__(self) -> Filter:
        return Not(self)


# ──────────────────────────────────────────────────────────────
#  Combinators
# ──────────────────────────────────────────────────────────────

class AcceptAll(Filter):
    def accepts(self, message: InboundMessage) -> bool:
        return True

    def __repr__(self):
        return "AcceptAll()"


class PredicateFilter(Filter):
    """Adapts a plain `message -> bool` callable."""

    def __init__(self, predicate: Callable[[InboundMessage], bool]):
        self.predicate = predicate

    def accepts(self, message: InboundMessage) -> bool:
        return bool(self.predicate(message))

    def __repr__(self):
        return f"PredicateFilter({getattr(self.predicate, '__name__', self.predicate)!r})"


class AllOf(Filter):
    def __init__(self, *filters: Filter):
        self.filters = filters

    def accepts(self, message: InboundMessage) -> bool:
        return all(f.accepts(message) for f in self.filters)

    def __repr__(self):
        return f"AllOf{self.filters!r}"


class AnyOf(Filter):
    def __init__(self, *filters: Filter):
        self.filters = filters

    def accepts(self, message: InboundMessage) -> bool:
        return any(f.accepts(message) for f in self.filters)

    def __repr__(self):
        return f"AnyOf{self.filters!r}"


class Not(Filter):
    def __init__(self, inner: Filter):
        self.inner = inner

    def accepts(self, message: InboundMessage) -> bool:
        return not self.inner.accepts(message)

    def __repr__(self):
        return f"Not({self.inner!r})"


# ──────────────────────────────────────────────────────────────
#  Built-ins
# ──────────────────────────────────────────────────────────────

class DirectMessageFilter(Filter):
    """Normal messages posted in a one-to-one conversation."""

    def accepts(self, message: InboundMessage) -> bool:
        return message.is_normal and message.is_direct

    def __repr__(self):
        return "DirectMessageFilter()"


class SingleUserFilter(Filter):
    """
    Messages addressed to `user_id`: not authored by it, and either opening
    with a mention of it or sent in a direct conversation.
    """

    def __init__(self, user_id: str):
        self.user_id = user_id

    def accepts(self, message: InboundMessage) -> bool:
        return message.user != self.user_id and (
            message.mentions(self.user_id) or message.is_direct
        )

    def __repr__(self):
        return f"SingleUserFilter({self.user_id!r})"
