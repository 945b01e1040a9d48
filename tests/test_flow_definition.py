"""Tests for flow and state builders, including the context contract."""
import dataclasses
import pytest
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from core.errors import (
    ConfigurationError, ContextMismatchError, InvalidInitialStateError, InvalidStateError,
)
from flows.definition import FlowDefinition, State, new_flow, new_state
from flows.filters import AcceptAll, DirectMessageFilter
from conftest import always_advance, make_message


@dataclass
class Cart:
    items: list


@dataclass
class Profile:
    name: str = ""


class AdminProfile(Profile):
    pass


def add_item(bot, message, ctx: Cart) -> bool:
    ctx.items.append(message.text)
    return True


def set_name(bot, message, ctx: Profile) -> bool:
    ctx.name = message.text
    return True


def make_cart() -> Cart:
    return Cart(items=[])


def untyped_factory():
    return Cart(items=[])


class TestStateBuilder:
    def test_build_state(self):
        state = new_state("ask", always_advance).to("next").build()
        assert state == State(name="ask", action=always_advance, destination="next")

    def test_default_destination_is_terminal(self):
        assert new_state("only", always_advance).build().destination == ""


class TestFlowBuild:
    def test_build_with_valid_initial_state(self):
        flow = (
            new_flow("f")
            .add_states(new_state("a", always_advance).to("b"), new_state("b", always_advance))
            .build("a")
        )
        assert isinstance(flow, FlowDefinition)
        assert flow.initial_state.name == "a"
        assert list(flow.states) == ["a", "b"]

    def test_build_fails_for_missing_initial_state(self):
        builder = new_flow("f").add_states(new_state("a", always_advance))
        with pytest.raises(InvalidInitialStateError, match="initial state 'zzz'"):
            builder.build("zzz")

    def test_build_fails_with_no_states(self):
        with pytest.raises(ConfigurationError):
            new_flow("empty").build("a")

    def test_duplicate_state_first_wins(self):
        def second(bot, message, ctx):
            return False

        flow = (
            new_flow("f")
            .add_states(new_state("a", always_advance).to("x"))
            .add_states(new_state("a", second).to("y"))
            .build("a")
        )
        assert flow.states["a"].action is always_advance
        assert flow.states["a"].destination == "x"

    def test_defaults(self):
        flow = new_flow("f").add_states(new_state("a", always_advance)).build("a")
        assert isinstance(flow.filter, AcceptAll)
        assert flow.trigger(None, make_message()) is True
        assert flow.new_context() is None

    def test_definition_is_immutable(self):
        flow = new_flow("f").add_states(new_state("a", always_advance)).build("a")
        with pytest.raises(dataclasses.FrozenInstanceError):
            flow.name = "g"
        with pytest.raises(TypeError):
            flow.states["b"] = flow.states["a"]

    def test_builder_changes_after_build_do_not_leak(self):
        builder = new_flow("f").add_states(new_state("a", always_advance))
        flow = builder.build("a")
        builder.add_states(new_state("b", always_advance))
        assert "b" not in flow.states

    def test_can_activate_checks_filter_then_trigger(self):
        calls = []

        def trigger(bot, msg):
            calls.append(msg.text)
            return True

        flow = (
            new_flow("f")
            .add_states(new_state("a", always_advance))
            .set_trigger(trigger)
            .filter_by(DirectMessageFilter())
            .build("a")
        )
        assert not flow.can_activate(None, make_message(channel="C1", text="skip"))
        assert calls == []
        assert flow.can_activate(None, make_message(channel="D1", text="go"))
        assert calls == ["go"]


class TestContextContract:
    def test_factory_produces_fresh_contexts(self):
        flow = new_flow("cart", context_factory=make_cart).add_states(new_state("add", add_item)).build("add")
        first, second = flow.new_context(), flow.new_context()
        assert first == Cart(items=[])
        assert first is not second
        assert first.items is not second.items

    def test_class_factory_declares_type(self):
        flow = new_flow("p", context_factory=Profile).add_states(new_state("s", set_name)).build("s")
        assert flow.context_type is Profile

    def test_subclass_factory_is_accepted(self):
        flow = new_flow("p", context_factory=AdminProfile).add_states(new_state("s", set_name)).build("s")
        assert flow.context_type is AdminProfile

    def test_mismatched_factory_fails_at_build(self):
        builder = new_flow("p", context_factory=make_cart).add_states(new_state("s", set_name))
        with pytest.raises(ContextMismatchError) as exc:
            builder.build("s")
        assert exc.value.state == "s"
        assert exc.value.expected is Profile
        assert exc.value.provided is Cart

    def test_missing_factory_fails_for_typed_action(self):
        builder = new_flow("p").add_states(new_state("s", set_name))
        with pytest.raises(ContextMismatchError):
            builder.build("s")

    def test_untyped_factory_is_not_checked(self):
        flow = new_flow("p", context_factory=untyped_factory).add_states(new_state("s", set_name)).build("s")
        assert flow.context_type is None

    def test_untyped_actions_are_not_checked(self):
        flow = new_flow("p", context_factory=make_cart).add_states(new_state("s", always_advance)).build("s")
        assert flow.context_type is Cart

    def test_any_annotation_is_not_checked(self):
        def anything(bot, message, ctx: Any) -> bool:
            return True

        flow = new_flow("p").add_states(new_state("s", anything)).build("s")
        assert flow.context_type is type(None)

    def test_optional_annotations_match_factory(self):
        def pipe_optional(bot, message, ctx: Cart | None) -> bool:
            return True

        def typing_optional(bot, message, ctx: Optional[Cart]) -> bool:
            return True

        for action in (pipe_optional, typing_optional):
            flow = new_flow("c", context_factory=make_cart).add_states(new_state("s", action)).build("s")
            assert flow.context_type is Cart

    def test_optional_annotation_accepts_missing_factory(self):
        def maybe_cart(bot, message, ctx: Cart | None) -> bool:
            return True

        flow = new_flow("c").add_states(new_state("s", maybe_cart)).build("s")
        assert flow.context_type is type(None)

    def test_optional_annotation_still_checks_members(self):
        def maybe_profile(bot, message, ctx: Optional[Profile]) -> bool:
            return True

        builder = new_flow("c", context_factory=make_cart).add_states(new_state("s", maybe_profile))
        with pytest.raises(ContextMismatchError) as exc:
            builder.build("s")
        assert exc.value.expected == (Profile, type(None))
        assert "Profile | NoneType" in str(exc.value)

    def test_protocol_annotation_is_not_checked(self):
        class HasItems(Protocol):
            items: list

        def count_items(bot, message, ctx: HasItems) -> bool:
            return len(ctx.items) > 0

        flow = new_flow("c", context_factory=make_cart).add_states(new_state("s", count_items)).build("s")
        assert flow.context_type is Cart


class TestStateActions:
    def test_missing_action_rejected_at_build(self):
        builder = new_flow("f").add_states(new_state("a", always_advance).to("b"), new_state("b", None))
        with pytest.raises(InvalidStateError) as exc:
            builder.build("a")
        assert exc.value.state == "b"
        assert isinstance(exc.value, ConfigurationError)
