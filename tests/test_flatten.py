"""Tests for flattening messages into render items."""

from factories import assistant, snapshot, step_finish, step_start, text, tool, user
from opencode_mirror.core import PartTime, ReasoningPart, UnknownPart
from opencode_mirror.flatten import (
    AssistantHeaderItem,
    FlattenCache,
    PartItem,
    UserMessageItem,
    flatten_messages,
    is_part_streaming,
    is_part_visible,
)


def parts_getter(parts_by_message):
    return lambda message_id: parts_by_message.get(message_id, [])


class TestPartPredicates:

    def test_step_and_snapshot_parts_are_hidden(self):
        assert is_part_visible(step_start("p1", "m1")) is False
        assert is_part_visible(step_finish("p2", "m1")) is False
        assert is_part_visible(snapshot("p3", "m1")) is False

    def test_text_visibility(self):
        assert is_part_visible(text("p1", "m1", "hello")) is True
        assert is_part_visible(text("p2", "m1", "   \n")) is False
        assert is_part_visible(text("p3", "m1", "hello", ignored=True)) is False
        assert is_part_visible(text("p4", "m1", "injected", synthetic=True)) is True

    def test_other_parts_are_visible(self):
        assert is_part_visible(tool("p1", "m1")) is True
        assert is_part_visible(UnknownPart(id="p2", type="hologram")) is True

    def test_tool_streams_while_pending_or_running(self):
        assert is_part_streaming(tool("p1", "m1", status="pending")) is True
        assert is_part_streaming(tool("p2", "m1", status="running")) is True
        assert is_part_streaming(tool("p3", "m1", status="completed")) is False
        assert is_part_streaming(tool("p4", "m1", status="error")) is False

    def test_part_streams_until_it_has_an_end_time(self):
        assert is_part_streaming(text("p1", "m1", end=None)) is True
        assert is_part_streaming(text("p2", "m1", end=5)) is False
        assert is_part_streaming(ReasoningPart(id="p3", time=PartTime(start=1))) is True

    def test_part_without_time_is_finished(self):
        assert is_part_streaming(ReasoningPart(id="p1", text="thinking")) is False


class TestFlattenMessages:

    def test_single_turn(self):
        messages = [user("a", created=1), assistant("b", "a", created=2)]
        parts = {"a": [text("pa", "a", "hello")], "b": [text("pb", "b", "hi there")]}

        items = flatten_messages(messages, parts_getter(parts))

        assert [item.id for item in items] == [
            "user-message-a",
            "part-a-pa",
            "assistant-header-b",
            "part-b-pb",
        ]
        assert [item.index for item in items] == [0, 1, 2, 3]
        assert isinstance(items[0], UserMessageItem)
        assert isinstance(items[2], AssistantHeaderItem)
        assert items[1].is_assistant is False
        assert items[3].is_assistant is True
        assert all(item.turn_id == "a" for item in items)

    def test_turn_boundaries(self):
        messages = [user("a"), assistant("b", "a"), user("c"), assistant("d", "c")]
        parts = {
            "a": [text("pa", "a")],
            "b": [text("pb1", "b"), text("pb2", "b")],
            "c": [text("pc", "c")],
            "d": [tool("pd", "d")],
        }

        items = flatten_messages(messages, parts_getter(parts))

        first = [item.id for item in items if item.is_first_in_turn]
        last = [item.id for item in items if item.is_last_in_turn]
        assert first == ["user-message-a", "user-message-c"]
        assert last == ["part-b-pb2", "part-d-pd"]

    def test_empty_messages(self):
        cache = FlattenCache()
        assert flatten_messages([], parts_getter({}), cache) == []
        assert cache.hits == cache.misses == 0

    def test_hidden_parts_are_filtered(self):
        messages = [user("a"), assistant("b", "a")]
        parts = {
            "a": [text("pa", "a")],
            "b": [step_start("s1", "b"), text("pb", "b", "done"), step_finish("s2", "b")],
        }

        items = flatten_messages(messages, parts_getter(parts))

        assert [item.id for item in items] == ["user-message-a", "part-a-pa", "assistant-header-b", "part-b-pb"]

    def test_reply_without_visible_parts_has_no_header(self):
        messages = [user("a"), assistant("b", "a")]
        parts = {"a": [text("pa", "a")], "b": [step_start("s1", "b")]}

        items = flatten_messages(messages, parts_getter(parts))

        assert [item.id for item in items] == ["user-message-a", "part-a-pa"]
        assert items[-1].is_last_in_turn is True

    def test_user_message_without_visible_parts(self):
        messages = [user("a"), assistant("b", "a")]
        parts = {"a": [text("pa", "a", "", ignored=True)], "b": [text("pb", "b", "answer")]}

        items = flatten_messages(messages, parts_getter(parts))

        assert [item.id for item in items] == ["assistant-header-b", "part-b-pb"]
        assert items[0].is_first_in_turn is True

    def test_empty_turn_disappears(self):
        messages = [user("a"), user("c"), assistant("d", "c")]
        parts = {"a": [text("pa", "a", "  ")], "c": [text("pc", "c")], "d": [text("pd", "d")]}

        items = flatten_messages(messages, parts_getter(parts))

        assert items[0].id == "user-message-c"
        assert [item.index for item in items] == list(range(len(items)))

    def test_user_message_with_only_step_start(self):
        items = flatten_messages([user("a")], parts_getter({"a": [step_start("s1", "a")]}))
        assert items == []

    def test_orphan_assistant_messages_are_skipped(self):
        messages = [user("a"), assistant("b", None), assistant("x", "missing")]
        parts = {"a": [text("pa", "a")], "b": [text("pb", "b")], "x": [text("px", "x")]}

        items = flatten_messages(messages, parts_getter(parts))

        assert [item.id for item in items] == ["user-message-a", "part-a-pa"]

    def test_multiple_replies_keep_arrival_order(self):
        messages = [user("a"), assistant("b", "a"), assistant("c", "a")]
        parts = {"a": [text("pa", "a")], "b": [text("pb", "b")], "c": [text("pc", "c")]}

        items = flatten_messages(messages, parts_getter(parts))

        headers = [item.id for item in items if isinstance(item, AssistantHeaderItem)]
        assert headers == ["assistant-header-b", "assistant-header-c"]

    def test_streaming_and_synthetic_flags(self):
        messages = [user("a"), assistant("b", "a")]
        parts = {
            "a": [text("pa", "a", "context", synthetic=True)],
            "b": [tool("pb", "b", status="running")],
        }

        items = flatten_messages(messages, parts_getter(parts))
        part_items = [item for item in items if isinstance(item, PartItem)]

        assert part_items[0].is_synthetic is True
        assert part_items[0].is_streaming is False
        assert part_items[1].is_streaming is True


class TestFlattenCache:

    def setup_method(self):
        self.messages = [user("a"), assistant("b", "a"), user("c"), assistant("d", "c")]
        self.parts = {
            "a": [text("pa", "a")],
            "b": [text("pb", "b")],
            "c": [text("pc", "c")],
            "d": [tool("pd", "d", status="running")],
        }

    def test_unchanged_turns_reuse_items(self):
        cache = FlattenCache()
        first = flatten_messages(self.messages, parts_getter(self.parts), cache)
        second = flatten_messages(self.messages, parts_getter(self.parts), cache)

        assert all(x is y for x, y in zip(first, second))
        assert cache.hits == 2
        assert cache.misses == 2

    def test_only_changed_turn_is_rebuilt(self):
        cache = FlattenCache()
        first = flatten_messages(self.messages, parts_getter(self.parts), cache)

        self.parts["d"] = [tool("pd", "d", status="completed")]
        second = flatten_messages(self.messages, parts_getter(self.parts), cache)

        assert second[0] is first[0]
        assert second[3] is first[3]
        assert second[-1] is not first[-1]
        assert second[-1].is_streaming is False

    def test_reused_items_get_new_index(self):
        cache = FlattenCache()
        first = flatten_messages(self.messages, parts_getter(self.parts), cache)
        second_turn = first[4:]

        self.parts["a"] = [text("pa", "a"), text("pa2", "a", "more detail")]
        second = flatten_messages(self.messages, parts_getter(self.parts), cache)

        assert second[5:] == second_turn
        assert [item.index for item in second] == list(range(len(second)))
        assert second_turn[0].index == 5

    def test_inserted_earlier_turn_keeps_later_items(self):
        cache = FlattenCache()
        first = flatten_messages(self.messages, parts_getter(self.parts), cache)

        self.parts["z"] = [text("pz", "z", "an earlier question")]
        second = flatten_messages([user("z")] + self.messages, parts_getter(self.parts), cache)

        assert [item.id for item in second[:2]] == ["user-message-z", "part-z-pz"]
        assert all(x is y for x, y in zip(second[2:], first))
        assert [item.index for item in second] == list(range(len(second)))
        assert first[0].index == 2

    def test_removed_turns_are_dropped(self):
        cache = FlattenCache()
        flatten_messages(self.messages, parts_getter(self.parts), cache)
        assert "c" in cache

        flatten_messages(self.messages[:2], parts_getter(self.parts), cache)

        assert "c" not in cache
        assert len(cache) == 1

    def test_matches_uncached_output(self):
        cache = FlattenCache()
        flatten_messages(self.messages, parts_getter(self.parts), cache)
        self.parts["b"] = [text("pb", "b", "edited")]

        cached = flatten_messages(self.messages, parts_getter(self.parts), cache)
        fresh = flatten_messages(self.messages, parts_getter(self.parts))

        assert [(i.id, i.index, i.is_first_in_turn, i.is_last_in_turn) for i in cached] == [
            (i.id, i.index, i.is_first_in_turn, i.is_last_in_turn) for i in fresh
        ]
