"""
FlowBot error hierarchy.

ConfigurationError and its subclasses are raised synchronously while flows
are built or registered. TransportError is raised by transports and by the
dispatch loop for terminal connectivity failures. HandlerError wraps failures
raised from user-supplied actions, triggers and handlers; the dispatcher
reports it and keeps running.
"""
from __future__ import annotations


class FlowBotError(Exception):
    """Base exception for all FlowBot errors."""


# ──────────────────────────────────────────────────────────────
#  Configuration
# ──────────────────────────────────────────────────────────────

class ConfigurationError(FlowBotError, ValueError):
    """Invalid flow definition, registration, or bot settings."""


class DuplicateFlowError(ConfigurationError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Flow '{name}' already registered")


class InvalidInitialStateError(ConfigurationError):
    def __init__(self, flow: str, state: str):
        self.flow = flow
        self.state = state
        super().__init__(f"Flow '{flow}': initial state '{state}' not in states")


class ContextMismatchError(ConfigurationError):
    def __init__(self, flow: str, state: str, expected: type | tuple, provided: type | None):
        self.flow = flow
        self.state = state
        self.expected = expected
        self.provided = provided
        provided_name = provided.__name__ if provided is not None else "None"
        if isinstance(expected, tuple):
            expected_name = " | ".join(cls.__name__ for cls in expected)
        else:
            expected_name = expected.__name__
        super().__init__(
            f"Flow '{flow}': state '{state}' expects context "
            f"{expected_name}, factory provides {provided_name}"
        )


class InvalidStateError(ConfigurationError):
    def __init__(self, flow: str, state: str, reason: str):
        self.flow = flow
        self.state = state
        super().__init__(f"Flow '{flow}': state '{state}' {reason}")


# ──────────────────────────────────────────────────────────────
#  Transport
# ──────────────────────────────────────────────────────────────

class TransportError(FlowBotError):
    """Connectivity failure. Terminal errors end the dispatch loop."""

    def __init__(self, message: str, terminal: bool = False):
        self.terminal = terminal
        super().__init__(message)


# ──────────────────────────────────────────────────────────────
#  Handlers
# ──────────────────────────────────────────────────────────────

class HandlerError(FlowBotError):
    """An exception escaped a state action, trigger, or ActionTable handler."""

    def __init__(self, source: str, cause: BaseException, user: str = "", flow: str = ""):
        self.source = source
        self.cause = cause
        self.user = user
        self.flow = flow
        super().__init__(f"{source} failed: {cause!r}")
