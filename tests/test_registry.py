"""Tests for FlowRegistry and FlowInstance stepping."""
import asyncio
import pytest

from core.errors import DuplicateFlowError, HandlerError
from flows.definition import new_flow, new_state
from flows.instance import FlowInstance
from flows.registry import FlowRegistry
from flows.filters import DirectMessageFilter
from conftest import SignupContext, always_advance, make_message


def never_advance(bot, message, ctx) -> bool:
    return False


def keyword_flow(name, keyword, **kwargs):
    return (
        new_flow(name, **kwargs)
        .add_states(new_state("only", always_advance))
        .set_trigger(lambda bot, msg: keyword in msg.text)
        .build("only")
    )


class TestRegistration:
    def test_register_and_get(self, signup_flow):
        registry = FlowRegistry()
        registry.register(signup_flow)
        assert registry.get("signup") is signup_flow
        assert len(registry) == 1

    def test_duplicate_name_rejected_and_original_kept(self, signup_flow):
        registry = FlowRegistry()
        registry.register(signup_flow)
        impostor = keyword_flow("signup", "start")
        with pytest.raises(DuplicateFlowError, match="signup"):
            registry.register(impostor)
        assert registry.get("signup") is signup_flow
        assert registry.list_all() == [signup_flow]

    def test_registration_order_preserved(self):
        registry = FlowRegistry()
        flows = [keyword_flow(f"f{i}", "x") for i in range(5)]
        for f in flows:
            registry.register(f)
        assert [f.name for f in registry.list_all()] == ["f0", "f1", "f2", "f3", "f4"]


class TestCandidateSelection:
    def test_first_registered_wins_on_overlap(self):
        registry = FlowRegistry()
        registry.register(keyword_flow("first", "go"))
        registry.register(keyword_flow("second", "go"))
        assert registry.find_candidate(None, make_message(text="go")).name == "first"

    def test_filter_gates_trigger(self):
        registry = FlowRegistry()
        dm_only = (
            new_flow("dm")
            .add_states(new_state("only", always_advance))
            .filter_by(DirectMessageFilter())
            .build("only")
        )
        registry.register(dm_only)
        registry.register(keyword_flow("any", "go"))
        assert registry.find_candidate(None, make_message(text="go", channel="C1")).name == "any"
        assert registry.find_candidate(None, make_message(text="go", channel="D1")).name == "dm"

    def test_no_candidate(self):
        registry = FlowRegistry()
        registry.register(keyword_flow("f", "go"))
        assert registry.find_candidate(None, make_message(text="stop")) is None

    def test_raising_trigger_is_wrapped(self):
        def boom(bot, msg):
            raise RuntimeError("bad trigger")

        registry = FlowRegistry()
        registry.register(new_flow("f").add_states(new_state("s", always_advance)).set_trigger(boom).build("s"))
        with pytest.raises(HandlerError) as exc:
            registry.find_candidate(None, make_message())
        assert exc.value.source == "trigger"
        assert exc.value.flow == "f"


class TestActivation:
    def test_activate_creates_fresh_context_per_user(self):
        flow = keyword_flow("f", "go", context_factory=SignupContext)
        registry = FlowRegistry()
        registry.register(flow)
        a = registry.activate(flow, "U1")
        b = registry.activate(flow, "U2")
        assert a.context is not b.context
        assert a.definition is b.definition is flow
        assert registry.active_users() == ["U1", "U2"]
        assert a.started_at.tzinfo is not None

    def test_one_instance_per_user(self):
        flow = keyword_flow("f", "go")
        registry = FlowRegistry()
        registry.activate(flow, "U1")
        second = registry.activate(flow, "U1")
        assert registry.active("U1") is second
        assert registry.active_users() == ["U1"]

    def test_deactivate(self):
        flow = keyword_flow("f", "go")
        registry = FlowRegistry()
        instance = registry.activate(flow, "U1")
        assert registry.deactivate("U1") is instance
        assert registry.active("U1") is None
        assert registry.deactivate("U1") is None

    def test_failing_factory_is_wrapped(self):
        def broken():
            raise ValueError("no context")

        flow = keyword_flow("f", "go", context_factory=broken)
        registry = FlowRegistry()
        with pytest.raises(HandlerError) as exc:
            registry.activate(flow, "U1")
        assert exc.value.source == "context_factory"
        assert registry.active("U1") is None


class TestStepping:
    @pytest.mark.asyncio
    async def test_stay_when_action_returns_false(self):
        flow = new_flow("f").add_states(new_state("a", never_advance).to("b"), new_state("b", always_advance)).build("a")
        instance = FlowInstance(flow, "U1")
        result = await instance.step(None, make_message())
        assert not result.advanced
        assert instance.current_state.name == "a"

    @pytest.mark.asyncio
    async def test_advance_to_known_destination(self, signup_flow):
        instance = FlowInstance(signup_flow, "U1")
        result = await instance.step(None, make_message())
        assert result.advanced and not result.finished
        assert (result.from_state, result.to_state) == ("A", "B")
        assert instance.current_state.name == "B"

    @pytest.mark.asyncio
    async def test_unresolved_destination_finishes(self, signup_flow):
        instance = FlowInstance(signup_flow, "U1")
        await instance.step(None, make_message())
        result = await instance.step(None, make_message())
        assert result.finished
        assert instance.steps == 2

    @pytest.mark.asyncio
    async def test_async_action(self):
        async def wait_then_advance(bot, message, ctx: SignupContext) -> bool:
            await asyncio.sleep(0)
            ctx.visits.append(message.text)
            return True

        flow = (
            new_flow("f", context_factory=SignupContext)
            .add_states(new_state("a", wait_then_advance).to("b"), new_state("b", always_advance))
            .build("a")
        )
        instance = FlowInstance(flow, "U1")
        await instance.step(None, make_message(text="hi"))
        assert instance.context.visits == ["hi"]
        assert instance.current_state.name == "b"

    @pytest.mark.asyncio
    async def test_action_receives_bot_message_and_context(self):
        seen = {}

        def record(bot, message, ctx) -> bool:
            seen.update(bot=bot, message=message, ctx=ctx)
            return False

        flow = new_flow("f", context_factory=SignupContext).add_states(new_state("a", record)).build("a")
        instance = FlowInstance(flow, "U1")
        msg = make_message()
        await instance.step("the-bot", msg)
        assert seen == {"bot": "the-bot", "message": msg, "ctx": instance.context}


class TestUserLocks:
    @pytest.mark.asyncio
    async def test_lock_is_per_user_and_released(self):
        registry = FlowRegistry()
        async with registry.locked("U1"):
            assert registry.is_locked("U1")
            assert not registry.is_locked("U2")
            async with registry.locked("U2"):
                assert registry.is_locked("U2")
        assert not registry.is_locked("U1")
        assert registry._locks == {}

    @pytest.mark.asyncio
    async def test_same_user_serialized(self):
        registry = FlowRegistry()
        order = []

        async def work(tag):
            async with registry.locked("U1"):
                order.append(f"{tag}-in")
                await asyncio.sleep(0.01)
                order.append(f"{tag}-out")

        await asyncio.gather(work("a"), work("b"))
        assert order == ["a-in", "a-out", "b-in", "b-out"]
        assert registry._locks == {}
