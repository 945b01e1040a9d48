"""
Bot — the object flows and command handlers talk to.

Wires settings, a transport, a presenter and one Dispatcher together. State
actions and ActionTable handlers receive the Bot as their first argument
and use it to reply:

    async def ask_name(bot, message, ctx):
        await bot.message(message.channel, "What's your name?")
        return True

    bot = Bot(settings, transport=MyTransport(), presenter=MyPresenter())
    bot.register_flow(signup)
    bot.respond_to(r"^ping$", pong)
    bot.default_response(shrug)
    await bot.start()

In offline mode the console transport and presenter are used when none are
given.
"""
from __future__ import annotations

import structlog
from typing import Any, Optional

from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from channels.base import Presenter, Transport
from channels.console import ConsolePresenter, ConsoleTransport
from config.settings import Settings, get_settings
from core.actions import ActionHandler, DefaultHandler
from core.dispatcher import Dispatcher, ErrorHook
from core.errors import ConfigurationError, TransportError
from flows.definition import FlowDefinition
from flows.instance import FlowInstance
from models.schemas import BotIdentity, MessageFormat

logger = structlog.get_logger()


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, TransportError) and not exc.terminal


class Bot:

    def __init__(
        self,
        settings: Settings = None,
        transport: Transport = None,
        presenter: Presenter = None,
        on_error: ErrorHook = None,
    ):
        self.settings = settings or get_settings()

        if not self.settings.offline and not self.settings.token:
            raise ConfigurationError("token cannot be empty")

        if transport is None:
            if not self.settings.offline:
                raise ConfigurationError("a transport is required unless running offline")
            transport = ConsoleTransport(bot_name=self.settings.app_name)
        if presenter is None:
            if not self.settings.offline:
                raise ConfigurationError("a presenter is required unless running offline")
            presenter = ConsolePresenter()

        self.transport = transport
        self.presenter = presenter
        self.dispatcher = Dispatcher(
            bot=self,
            concurrency=self.settings.dispatch.concurrency,
            on_error=on_error,
        )

    # ── Identity ──────────────────────────────────────────────

    @property
    def identity(self) -> Optional[BotIdentity]:
        return self.dispatcher.identity

    @property
    def user_id(self) -> str:
        return self.identity.user_id if self.identity else ""

    @property
    def name(self) -> str:
        if self.identity is None:
            return ""
        return self.identity.name or self.identity.user_id

    # ── Registration ──────────────────────────────────────────

    def register_flow(self, definition: FlowDefinition):
        """Raises DuplicateFlowError if a flow with the same name exists."""
        self.dispatcher.register_flow(definition)

    def respond_to(self, pattern: str, handler: ActionHandler):
        self.dispatcher.respond_to(pattern, handler)

    def default_response(self, handler: Optional[DefaultHandler]):
        self.dispatcher.set_default_handler(handler)

    def on_error(self, hook: Optional[ErrorHook]):
        self.dispatcher.on_error = hook

    # ── Flow administration ───────────────────────────────────

    def active_flow(self, user: str) -> Optional[FlowInstance]:
        return self.dispatcher.active_flow(user)

    def clear_flow(self, user: str) -> bool:
        return self.dispatcher.clear_flow(user)

    # ── Output ────────────────────────────────────────────────

    async def message(self, channel: str, text: str) -> dict[str, Any]:
        return await self.presenter.send(channel, text)

    async def interactive_message(self, channel: str, text: str, fmt: MessageFormat) -> dict[str, Any]:
        return await self.presenter.send_interactive(channel, text, fmt)

    # ── Run loop ──────────────────────────────────────────────

    async def start(self):
        """Connect and dispatch events until the transport stream ends."""
        await self._connect()
        try:
            await self.dispatcher.run(self.transport.events())
        finally:
            await self.transport.close()
            logger.info("bot_stopped", app=self.settings.app_name)

    async def _connect(self):
        cfg = self.settings.transport

        def log_retry(retry_state):
            logger.warning("transport_connect_retry",
                           attempt=retry_state.attempt_number,
                           error=str(retry_state.outcome.exception()))

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(1, cfg.connect_attempts)),
            wait=wait_exponential(multiplier=cfg.backoff_multiplier, max=cfg.backoff_max),
            retry=retry_if_exception(_is_transient),
            before_sleep=log_retry,
            reraise=True,
        ):
            with attempt:
                await self.transport.connect()

        logger.info("transport_connected",
                     app=self.settings.app_name,
                     transport=type(self.transport).__name__,
                     offline=self.settings.offline)
