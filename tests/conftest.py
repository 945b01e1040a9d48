"""Shared test fixtures for FlowBot."""
import pytest
from dataclasses import dataclass, field

from models.schemas import BotIdentity, InboundMessage
from config.settings import Settings, TransportConfig
from channels.memory import InMemoryTransport, RecordingPresenter
from core.bot import Bot
from core.dispatcher import Dispatcher
from flows.definition import FlowDefinition, new_flow, new_state


BOT_ID = "UBOT"


@dataclass
class SignupContext:
    visits: list[str] = field(default_factory=list)


def always_advance(bot, message, ctx) -> bool:
    return True


def make_message(text="hello", user="U1", channel="D001", **fields) -> InboundMessage:
    return InboundMessage(text=text, user=user, channel=channel, **fields)


@pytest.fixture
def identity() -> BotIdentity:
    return BotIdentity(user_id=BOT_ID, name="flowbot", team="acme")


@pytest.fixture
def settings() -> Settings:
    return Settings(
        token="xoxb-test",
        transport=TransportConfig(connect_attempts=3, backoff_multiplier=0, backoff_max=0),
    )


@pytest.fixture
def presenter() -> RecordingPresenter:
    return RecordingPresenter()


@pytest.fixture
def transport(identity) -> InMemoryTransport:
    return InMemoryTransport(identity=identity)


@pytest.fixture
def bot(settings, transport, presenter) -> Bot:
    return Bot(settings, transport=transport, presenter=presenter)


@pytest.fixture
def dispatcher(identity) -> Dispatcher:
    d = Dispatcher()
    d.set_identity(identity)
    return d


@pytest.fixture
def signup_flow() -> FlowDefinition:
    """A → B → (unresolved) — the canonical two-step flow."""
    return (
        new_flow("signup")
        .add_states(
            new_state("A", always_advance).to("B"),
            new_state("B", always_advance).to(""),
        )
        .set_trigger(lambda bot, msg: msg.text == "start")
        .build("A")
    )
