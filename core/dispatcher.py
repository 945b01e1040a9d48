"""
Dispatcher — Routes every inbound message to a flow or a command handler.

Per message from user u:
  1. u has an active flow instance        → step it
  2. a registered flow accepts the message → activate it for u, step it
  3. otherwise                             → ActionTable (pattern, then default)

Flows are checked in registration order. A step whose destination does not
resolve finishes the instance; u's next message starts again at 2.

Failures raised from actions, triggers, context factories, handlers and the
intake filter are caught here: the implicated instance is dropped, the
failure is logged and passed to `on_error`, and dispatch carries on with the
next message.

Usage:
    dispatcher = Dispatcher(bot=bot)
    dispatcher.register_flow(signup_flow)
    dispatcher.respond_to(r"^echo (.+)$", echo)
    await dispatcher.run(transport.events())
"""
from __future__ import annotations

import asyncio
import inspect
import structlog
from enum import Enum
from typing import Any, AsyncIterator, Callable, Optional

from channels.base import (
    ConnectedEvent, InvalidAuthEvent, MessageEvent, TransportErrorEvent, TransportEvent,
)
from core.actions import ActionHandler, ActionTable, DefaultHandler, strip_mention
from core.errors import HandlerError, TransportError
from flows.definition import FlowDefinition
from flows.filters import Filter, SingleUserFilter
from flows.instance import FlowInstance, StepResult
from flows.registry import FlowRegistry
from models.schemas import BotIdentity, InboundMessage

logger = structlog.get_logger()

ErrorHook = Callable[[HandlerError, InboundMessage], Any]


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


# ──────────────────────────────────────────────────────────────
#  Dispatch Result
# ──────────────────────────────────────────────────────────────

class DispatchRoute(str, Enum):
    FLOW = "flow"
    ACTION = "action"
    DEFAULT = "default"
    UNHANDLED = "unhandled"
    FILTERED = "filtered"
    ERROR = "error"


class DispatchResult:
    """How a single message was handled."""

    def __init__(
        self,
        route: DispatchRoute,
        flow: str = "",
        step: Optional[StepResult] = None,
        pattern: str = "",
        error: Optional[HandlerError] = None,
    ):
        self.route = route
        self.flow = flow
        self.step = step
        self.pattern = pattern
        self.error = error

    @property
    def finished(self) -> bool:
        """The message ended the user's flow instance."""
        if self.route == DispatchRoute.ERROR:
            return self.error is not None and self.error.source == "action"
        return bool(self.step and self.step.finished)

    def __repr__(self):
        parts = [self.route.value]
        if self.flow:
            parts.append(f"flow={self.flow}")
        if self.step is not None:
            parts.append(repr(self.step))
        if self.pattern:
            parts.append(f"pattern={self.pattern!r}")
        if self.error is not None:
            parts.append(f"error={self.error}")
        return f"<Dispatch {' '.join(parts)}>"


# ──────────────────────────────────────────────────────────────
#  Dispatcher
# ──────────────────────────────────────────────────────────────

class Dispatcher:

    def __init__(
        self,
        bot: Any = None,
        registry: FlowRegistry = None,
        actions: ActionTable = None,
        intake_filter: Filter = None,
        concurrency: int = 1,
        on_error: ErrorHook = None,
    ):
        self.bot = bot
        self.registry = registry if registry is not None else FlowRegistry()
        self.actions = actions if actions is not None else ActionTable()
        self.identity: Optional[BotIdentity] = None
        self.intake_filter = intake_filter
        self._explicit_intake = intake_filter is not None
        self.concurrency = max(1, concurrency)
        self.on_error = on_error

    # ── Registration ──────────────────────────────────────────

    def register_flow(self, definition: FlowDefinition):
        self.registry.register(definition)

    def respond_to(self, pattern: str, handler: ActionHandler):
        self.actions.respond_to(pattern, handler)

    def set_default_handler(self, handler: Optional[DefaultHandler]):
        self.actions.set_default(handler)

    def set_identity(self, identity: BotIdentity):
        self.identity = identity
        if not self._explicit_intake:
            self.intake_filter = SingleUserFilter(identity.user_id)

    # ── Administration ────────────────────────────────────────

    def active_flow(self, user: str) -> Optional[FlowInstance]:
        return self.registry.active(user)

    def clear_flow(self, user: str) -> bool:
        """Drop `user`'s active flow instance, if any."""
        instance = self.registry.deactivate(user)
        if instance is None:
            return False
        logger.info("flow_cleared",
                     flow=instance.name,
                     user=user,
                     state=instance.current_state.name)
        return True

    # ── Per-message dispatch ──────────────────────────────────

    def accepts(self, message: InboundMessage) -> bool:
        if self.intake_filter is None:
            logger.warning("message_before_identity", user=message.user, channel=message.channel)
            return False
        try:
            return bool(self.intake_filter.accepts(message))
        except Exception as e:
            raise HandlerError("intake_filter", e, user=message.user) from e

    async def handle(self, message: InboundMessage) -> DispatchResult:
        """Intake filter, then dispatch."""
        try:
            accepted = self.accepts(message)
        except HandlerError as e:
            await self._report(e, message)
            return DispatchResult(DispatchRoute.ERROR, error=e)
        if not accepted:
            return DispatchResult(DispatchRoute.FILTERED)
        return await self.dispatch(message)

    async def dispatch(self, message: InboundMessage) -> DispatchResult:
        async with self.registry.locked(message.user):
            result = await self._dispatch_flow(message)
        if result is not None:
            return result
        return await self._dispatch_action(message)

    async def _dispatch_flow(self, message: InboundMessage) -> Optional[DispatchResult]:
        user = message.user
        instance = self.registry.active(user)

        if instance is None:
            try:
                definition = self.registry.find_candidate(self.bot, message)
                if definition is None:
                    return None
                instance = self.registry.activate(definition, user)
            except HandlerError as e:
                await self._report(e, message)
                return DispatchResult(DispatchRoute.ERROR, flow=e.flow, error=e)

        try:
            step = await instance.step(self.bot, message)
        except Exception as e:
            self.registry.deactivate(user)
            error = HandlerError("action", e, user=user, flow=instance.name)
            await self._report(error, message, state=instance.current_state.name)
            return DispatchResult(DispatchRoute.ERROR, flow=instance.name, error=error)

        if step.finished:
            self.registry.deactivate(user)
            logger.info("flow_finished",
                         flow=instance.name,
                         user=user,
                         last_state=step.from_state,
                         steps=instance.steps)
        elif step.advanced:
            logger.info("flow_transition",
                         flow=instance.name,
                         user=user,
                         transition=f"{step.from_state} → {step.to_state}")
        else:
            logger.debug("flow_stayed", flow=instance.name, user=user, state=step.from_state)

        return DispatchResult(DispatchRoute.FLOW, flow=instance.name, step=step)

    async def _dispatch_action(self, message: InboundMessage) -> DispatchResult:
        mention = self.identity.mention if self.identity else ""
        text = strip_mention(message.text, mention)

        match = self.actions.match(text)
        if match is None:
            logger.debug("message_unhandled", user=message.user, text=text)
            return DispatchResult(DispatchRoute.UNHANDLED)

        try:
            if match.is_default:
                await _resolve(match.handler(self.bot, message))
            else:
                await _resolve(match.handler(self.bot, message, *match.groups))
        except Exception as e:
            source = "default_handler" if match.is_default else "action_handler"
            error = HandlerError(source, e, user=message.user)
            await self._report(error, message, pattern=match.pattern)
            return DispatchResult(DispatchRoute.ERROR, pattern=match.pattern, error=error)

        if match.is_default:
            return DispatchResult(DispatchRoute.DEFAULT)
        logger.debug("action_matched", user=message.user, pattern=match.pattern)
        return DispatchResult(DispatchRoute.ACTION, pattern=match.pattern)

    async def _report(self, error: HandlerError, message: InboundMessage, **context: Any):
        logger.error("handler_failed",
                     source=error.source,
                     flow=error.flow,
                     user=error.user,
                     error=str(error.cause),
                     exc_info=error.cause,
                     **context)
        if self.on_error is None:
            return
        try:
            await _resolve(self.on_error(error, message))
        except Exception as e:
            logger.error("error_hook_failed", error=str(e))

    # ── Event loop ────────────────────────────────────────────

    async def run(self, events: AsyncIterator[TransportEvent]):
        """
        Consume transport events until the stream ends.

        With concurrency > 1 messages are dispatched in separate tasks; a
        user's messages still run one at a time, in arrival order, under that
        user's lock. Terminal transport errors end the loop by raising.
        """
        semaphore = asyncio.Semaphore(self.concurrency)
        pending: set[asyncio.Task] = set()

        async def handle_logged(message: InboundMessage):
            try:
                await self.handle(message)
            except Exception as e:
                logger.error("dispatch_failed", user=message.user, error=str(e), exc_info=e)

        async def dispatch_released(message: InboundMessage):
            try:
                await handle_logged(message)
            finally:
                semaphore.release()

        try:
            async for event in events:
                if isinstance(event, ConnectedEvent):
                    self.set_identity(event.identity)
                    logger.info("bot_online",
                                 bot=event.identity.name or event.identity.user_id,
                                 team=event.identity.team)
                    logger.debug("bot_connection", identity=event.identity.model_dump(),
                                 connection_count=event.connection_count)

                elif isinstance(event, MessageEvent):
                    if self.concurrency == 1:
                        await handle_logged(event.message)
                        continue
                    await semaphore.acquire()
                    task = asyncio.create_task(dispatch_released(event.message))
                    pending.add(task)
                    task.add_done_callback(pending.discard)

                elif isinstance(event, TransportErrorEvent):
                    if event.terminal:
                        logger.error("transport_failed", error=str(event.error))
                        raise event.error
                    logger.warning("transport_error", error=str(event.error))

                elif isinstance(event, InvalidAuthEvent):
                    logger.error("invalid_credentials", reason=event.reason)
                    raise TransportError(event.reason, terminal=True)

                else:
                    logger.debug("event_ignored", event=type(event).__name__)
        finally:
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
