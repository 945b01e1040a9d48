"""
Flow instances — one user's live run of a FlowDefinition.

The definition is shared and read-only; the cursor (current state) and the
context belong to the instance alone.
"""
from __future__ import annotations

import inspect
import structlog
from datetime import datetime, timezone
from typing import Any

from flows.definition import FlowDefinition, State
from models.schemas import InboundMessage

logger = structlog.get_logger()


class StepResult:
    """Outcome of stepping a flow instance with one message."""

    def __init__(
        self,
        advanced: bool,
        from_state: str,
        to_state: str = "",
        finished: bool = False,
    ):
        self.advanced = advanced
        self.from_state = from_state
        self.to_state = to_state
        self.finished = finished

    def __bool__(self):
        return self.advanced

    def __repr__(self):
        if self.finished:
            return f"<Step {self.from_state} → (finished)>"
        if self.advanced:
            return f"<Step {self.from_state} → {self.to_state}>"
        return f"<Step stay {self.from_state}>"


class FlowInstance:

    def __init__(self, definition: FlowDefinition, user: str):
        self.definition = definition
        self.user = user
        self.current_state: State = definition.initial_state
        self.context: Any = definition.new_context()
        self.started_at = datetime.now(timezone.utc)
        self.updated_at = self.started_at
        self.steps: int = 0

    @property
    def name(self) -> str:
        return self.definition.name

    async def step(self, bot: Any, message: InboundMessage) -> StepResult:
        """
        Run the current state's action and move the cursor when it asks to.

        A destination that does not resolve finishes the instance; the caller
        is responsible for removing finished instances from the registry.
        """
        state = self.current_state
        advance = state.action(bot, message, self.context)
        if inspect.isawaitable(advance):
            advance = await advance

        self.steps += 1
        self.updated_at = datetime.now(timezone.utc)

        if not advance:
            return StepResult(advanced=False, from_state=state.name)

        destination = self.definition.resolve(state.destination)
        if destination is None:
            logger.debug("flow_destination_unresolved",
                         flow=self.name, user=self.user,
                         state=state.name, destination=state.destination)
            return StepResult(advanced=True, from_state=state.name, finished=True)

        self.current_state = destination
        return StepResult(advanced=True, from_state=state.name, to_state=destination.name)

    def __repr__(self):
        return f"<FlowInstance {self.name} user={self.user} state={self.current_state.name}>"
