"""
Conversation flows.

A flow is a per-user, multi-turn dialogue described as a graph of named
states. Definitions are immutable and shared; each user talking to a flow
gets a FlowInstance holding its own cursor and context.
"""
from flows.filters import (
    Filter, AcceptAll, PredicateFilter, AllOf, AnyOf, Not,
    DirectMessageFilter, SingleUserFilter,
)
from flows.definition import (
    State, StateBuilder, FlowDefinition, FlowBuilder,
    new_flow, new_state,
)
from flows.instance import FlowInstance, StepResult
from flows.registry import FlowRegistry

__all__ = [
    "Filter", "AcceptAll", "PredicateFilter", "AllOf", "AnyOf", "Not",
    "DirectMessageFilter", "SingleUserFilter",
    "State", "StateBuilder", "FlowDefinition", "FlowBuilder",
    "new_flow", "new_state",
    "FlowInstance", "StepResult",
    "FlowRegistry",
]
