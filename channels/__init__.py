"""Transports and presenters connecting the dispatcher to a chat service."""
from channels.base import (
    Transport,
    Presenter,
    TransportEvent,
    ConnectedEvent,
    MessageEvent,
    TransportErrorEvent,
    InvalidAuthEvent,
)
from channels.console import ConsoleTransport, ConsolePresenter
from channels.memory import InMemoryTransport, RecordingPresenter, SentMessage

__all__ = [
    "Transport", "Presenter",
    "TransportEvent", "ConnectedEvent", "MessageEvent",
    "TransportErrorEvent", "InvalidAuthEvent",
    "ConsoleTransport", "ConsolePresenter",
    "InMemoryTransport", "RecordingPresenter", "SentMessage",
]
