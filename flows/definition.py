"""
Flow definitions — immutable descriptions of a multi-turn dialogue.

A flow is a named set of states. Each state has an action, called with
(bot, message, context) for every message routed to the flow while the
state is current, and the name of the state to move to when the action
returns True. A destination that does not name a state of the flow ends it.

Usage:
    signup = (
        new_flow("signup", context_factory=SignupContext)
        .add_states(
            new_state("ask_name", ask_name).to("ask_email"),
            new_state("ask_email", ask_email).to("done"),
        )
        .set_trigger(lambda bot, msg: msg.text == "signup")
        .filter_by(DirectMessageFilter())
        .build("ask_name")
    )

Definitions are built once and shared read-only by every FlowInstance.
The context contract is checked here, at build time: when an action
annotates its context parameter with a class, the factory must produce an
instance of that class.
"""
from __future__ import annotations

import inspect
import structlog
import typing
from dataclasses import dataclass, field
from types import MappingProxyType, UnionType
from typing import Any, Callable, Mapping, Optional, Union

from core.errors import ContextMismatchError, InvalidInitialStateError, InvalidStateError
from flows.filters import AcceptAll, Filter
from models.schemas import InboundMessage

logger = structlog.get_logger()

# (bot, message, context) -> bool, or a coroutine function returning bool
FlowAction = Callable[[Any, InboundMessage, Any], Any]
# (bot, message) -> bool
Trigger = Callable[[Any, InboundMessage], bool]
ContextFactory = Callable[[], Any]


def accept_any(bot: Any, message: InboundMessage) -> bool:
    return True


# ──────────────────────────────────────────────────────────────
#  State
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class State:
    name: str
    action: FlowAction
    destination: str = ""


class StateBuilder:
    """Fluent builder for State objects."""

    def __init__(self, name: str, action: FlowAction):
        self._name = name
        self._action = action
        self._destination = ""

    def to(self, destination: str) -> StateBuilder:
        """State to move to when the action asks to advance."""
        self._destination = destination
        return self

    def build(self) -> State:
        return State(name=self._name, action=self._action, destination=self._destination)


def new_state(name: str, action: FlowAction) -> StateBuilder:
    return StateBuilder(name, action)


# ──────────────────────────────────────────────────────────────
#  Flow Definition
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class FlowDefinition:
    name: str
    states: Mapping[str, State]
    initial_state: State
    trigger: Trigger = accept_any
    filter: Filter = field(default_factory=AcceptAll)
    context_factory: Optional[ContextFactory] = None
    context_type: Optional[type] = None

    def resolve(self, state_name: str) -> Optional[State]:
        return self.states.get(state_name)

    def new_context(self) -> Any:
        if self.context_factory is None:
            return None
        return self.context_factory()

    def can_activate(self, bot: Any, message: InboundMessage) -> bool:
        """Filter first, then trigger."""
        return self.filter.accepts(message) and bool(self.trigger(bot, message))

    def __repr__(self):
        return f"<FlowDefinition {self.name} states={list(self.states)} initial={self.initial_state.name}>"


class FlowBuilder:
    """Fluent builder for FlowDefinition objects."""

    def __init__(self, name: str, context_factory: Optional[ContextFactory] = None):
        self._name = name
        self._context_factory = context_factory
        self._states: dict[str, State] = {}
        self._trigger: Trigger = accept_any
        self._filter: Filter = AcceptAll()

    def add_states(self, *states: Union[State, StateBuilder]) -> FlowBuilder:
        """Add states; a name that is already present keeps its first state."""
        for state in states:
            if isinstance(state, StateBuilder):
                state = state.build()
            if state.name in self._states:
                logger.debug("duplicate_state_ignored", flow=self._name, state=state.name)
                continue
            self._states[state.name] = state
        return self

    def set_trigger(self, trigger: Trigger) -> FlowBuilder:
        self._trigger = trigger
        return self

    def filter_by(self, flow_filter: Filter) -> FlowBuilder:
        self._filter = flow_filter
        return self

    def build(self, initial_state: str) -> FlowDefinition:
        if initial_state not in self._states:
            raise InvalidInitialStateError(self._name, initial_state)

        context_type = _factory_type(self._context_factory)
        for state in self._states.values():
            if not callable(state.action):
                raise InvalidStateError(self._name, state.name, "has no callable action")
            _check_context(self._name, state, context_type)

        states = MappingProxyType(dict(self._states))
        return FlowDefinition(
            name=self._name,
            states=states,
            initial_state=states[initial_state],
            trigger=self._trigger,
            filter=self._filter,
            context_factory=self._context_factory,
            context_type=context_type,
        )


def new_flow(name: str, context_factory: Optional[ContextFactory] = None) -> FlowBuilder:
    """Start a flow; `context_factory` produces each instance's private context."""
    return FlowBuilder(name, context_factory)


# ──────────────────────────────────────────────────────────────
#  Context contract
# ──────────────────────────────────────────────────────────────

ContextType = Union[type, tuple]


def _is_union(annotation: Any) -> bool:
    return typing.get_origin(annotation) in (Union, UnionType)


def _as_class(annotation: Any) -> Optional[type]:
    if annotation is Any or annotation is None or _is_union(annotation):
        return None
    if inspect.isclass(annotation):
        return annotation
    origin = typing.get_origin(annotation)
    if inspect.isclass(origin):
        return origin
    return None


def _expected_type(annotation: Any) -> Optional[ContextType]:
    """A class, or a tuple of classes for a union; None when unchecked."""
    if not _is_union(annotation):
        return _as_class(annotation)
    members = []
    for arg in typing.get_args(annotation):
        cls = type(None) if arg is type(None) else _as_class(arg)
        if cls is None:
            # Any or an unresolvable member admits everything
            return None
        members.append(cls)
    return tuple(members)


def _type_hints(fn: Callable) -> dict[str, Any]:
    try:
        return typing.get_type_hints(fn)
    except (NameError, TypeError):
        # Unresolvable forward references or non-function callables
        return {}


def _factory_type(factory: Optional[ContextFactory]) -> Optional[type]:
    """The class of context a factory produces, when it is declared."""
    if factory is None:
        return type(None)
    if inspect.isclass(factory):
        return factory
    return _as_class(_type_hints(factory).get("return"))


def _context_annotation(action: FlowAction) -> Optional[ContextType]:
    try:
        params = list(inspect.signature(action).parameters.values())
    except (TypeError, ValueError):
        return None
    if len(params) < 3:
        return None
    return _expected_type(_type_hints(action).get(params[2].name))


def _check_context(flow: str, state: State, provided: Optional[type]) -> None:
    expected = _context_annotation(state.action)
    if expected is None or expected is object:
        return
    if isinstance(expected, tuple) and object in expected:
        return
    if provided is None:
        # Factory without a declared type: nothing to compare against
        logger.debug("context_type_undeclared", flow=flow, state=state.name)
        return
    try:
        compatible = issubclass(provided, expected)
    except TypeError:
        # Protocols without @runtime_checkable, or with data members
        logger.debug("context_type_uncheckable", flow=flow, state=state.name,
                     expected=repr(expected))
        return
    if not compatible:
        raise ContextMismatchError(flow, state.name, expected, provided)
