"""
Flow Registry — Registered flow definitions and the active instance per user.

Definitions are kept in registration order, so when several flows would
accept the same message the one registered first wins.

Each user gets an asyncio.Lock; the dispatcher holds it while it resolves
and steps that user's instance, so two users never wait on each other.
"""
from __future__ import annotations

import asyncio
import structlog
from contextlib import asynccontextmanager
from typing import Any, Optional

from core.errors import DuplicateFlowError, HandlerError
from flows.definition import FlowDefinition
from flows.instance import FlowInstance
from models.schemas import InboundMessage

logger = structlog.get_logger()


class _UserLock:
    __slots__ = ("lock", "refs")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.refs = 0


class FlowRegistry:

    def __init__(self):
        self._definitions: list[FlowDefinition] = []
        self._names: set[str] = set()
        self._active: dict[str, FlowInstance] = {}      # user → instance
        self._locks: dict[str, _UserLock] = {}          # user → lock

    # ── Registration ──────────────────────────────────────────

    def register(self, definition: FlowDefinition):
        if definition.name in self._names:
            logger.error("duplicate_flow", flow=definition.name)
            raise DuplicateFlowError(definition.name)
        self._definitions.append(definition)
        self._names.add(definition.name)
        logger.info("flow_registered",
                     flow=definition.name,
                     states=len(definition.states),
                     initial_state=definition.initial_state.name)

    def get(self, name: str) -> Optional[FlowDefinition]:
        for definition in self._definitions:
            if definition.name == name:
                return definition
        return None

    def list_all(self) -> list[FlowDefinition]:
        return list(self._definitions)

    # ── Activation ────────────────────────────────────────────

    def find_candidate(self, bot: Any, message: InboundMessage) -> Optional[FlowDefinition]:
        """
        First definition, in registration order, whose filter and trigger accept.

        Raises HandlerError when a trigger raises.
        """
        for definition in self._definitions:
            try:
                accepted = definition.can_activate(bot, message)
            except Exception as e:
                raise HandlerError("trigger", e, user=message.user, flow=definition.name) from e
            if accepted:
                return definition
        return None

    def activate(self, definition: FlowDefinition, user: str) -> FlowInstance:
        """Start a fresh instance for `user`. Raises HandlerError when the context factory raises."""
        try:
            instance = FlowInstance(definition, user)
        except Exception as e:
            raise HandlerError("context_factory", e, user=user, flow=definition.name) from e
        self._active[user] = instance
        logger.info("flow_activated",
                     flow=definition.name,
                     user=user,
                     state=instance.current_state.name)
        return instance

    def active(self, user: str) -> Optional[FlowInstance]:
        return self._active.get(user)

    def deactivate(self, user: str) -> Optional[FlowInstance]:
        return self._active.pop(user, None)

    def active_users(self) -> list[str]:
        return list(self._active)

    # ── Per-user locking ──────────────────────────────────────

    @asynccontextmanager
    async def locked(self, user: str):
        """
        Hold `user`'s lock for the duration of the block.

        Locks are reference-counted and dropped once no task holds or waits
        for them, so idle users do not accumulate locks.
        """
        entry = self._locks.get(user)
        if entry is None:
            entry = self._locks[user] = _UserLock()
        entry.refs += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.refs -= 1
            if entry.refs == 0:
                del self._locks[user]

    def is_locked(self, user: str) -> bool:
        entry = self._locks.get(user)
        return entry is not None and entry.lock.locked()

    def __len__(self):
        return len(self._definitions)
