"""Tests for parley.chat.history: HistoryStore."""

import itertools
import random

import pytest

from parley.schemas.domain.chat import FunctionCall, GroupMetadata, Message, ToolCall
from parley.utils.path import ProjectPath

from conftest import T0, at


def _user(text, seconds):
    return Message(role="user", content=text, timestamp=at(seconds))


def _fragment(text, index, total=3, group_id="group_0_0", processed=0.0):
    return Message(
        role="assistant",
        content=text,
        timestamp=at(processed),
        group_id=group_id,
        message_index=index,
        total_in_group=total,
        group_timestamp=T0,
    )


# ---------------------------------------------------------------------------
# insert / ordering
# ---------------------------------------------------------------------------

class TestChronologicalInsert:

    @pytest.mark.parametrize("seed", range(5))
    def test_any_insert_order_keeps_timestamps_sorted(self, make_store, seed):
        store = make_store()
        offsets = [0, 1, 1, 2, 3, 5, 8, 13]
        rng = random.Random(seed)
        rng.shuffle(offsets)

        for i, offset in enumerate(offsets):
            assert store.insert(_user(f"m{i}", offset))

        stamps = [m.timestamp for m in store.get()]
        assert stamps == sorted(stamps)
        assert len(store) == len(offsets)

    def test_equal_timestamp_goes_after_existing(self, make_store):
        store = make_store()
        store.insert(_user("first", 1))
        store.insert(_user("second", 1))

        assert [m.content for m in store.get()] == ["first", "second"]

    def test_late_fragment_lands_before_newer_user_message(self, make_store):
        store = make_store()
        store.insert(_user("hi", 0))
        store.insert(_user("are you there?", 10))
        store.add_assistant_response(
            "sorry, was typing",
            group_metadata=GroupMetadata(
                group_id="g", message_index=0, total_in_group=2, processed_timestamp=at(5)
            ),
        )

        assert [m.content for m in store.get()] == ["hi", "sorry, was typing", "are you there?"]

    def test_missing_timestamp_is_set_from_clock(self, make_store, clock):
        store = make_store()
        store.insert({"role": "user", "content": "no stamp"})

        assert store.get()[0].timestamp == clock.now()

    def test_naive_timestamp_is_treated_as_utc(self, make_store):
        store = make_store()
        store.insert({"role": "user", "content": "naive", "timestamp": "2025-01-01T00:00:03"})
        store.insert(_user("aware", 1))

        assert [m.content for m in store.get()] == ["aware", "naive"]


class TestInsertFiltering:

    def test_disabled_history_stores_nothing(self, make_store):
        store = make_store(history_size=0)
        assert store.insert(_user("hello", 0)) is False
        assert store.get() == []

    def test_system_message_is_rejected(self, make_store):
        store = make_store()
        assert store.insert(Message(role="system", content="be nice")) is False
        assert len(store) == 0

    def test_continue_marker_is_skipped(self, make_store):
        store = make_store()
        assert store.insert(Message(role="user", content="[CONTINUE]")) is False
        assert len(store) == 0

    def test_tool_message_without_call_id_is_skipped(self, make_store):
        store = make_store()
        assert store.insert({"role": "tool", "content": "42"}) is False
        assert store.insert({"role": "tool", "content": "42", "tool_call_id": "call_1"}) is True
        assert len(store) == 1

    def test_empty_assistant_message_is_dropped(self, make_store):
        store = make_store()
        assert store.insert(Message(role="assistant", content="   ")) is False
        assert len(store) == 0


class TestReasoningExtraction:

    def test_think_block_is_moved_to_reasoning(self, make_store):
        store = make_store()
        store.insert(Message(role="assistant", content="<think>R</think> visible"))

        msg = store.get()[0]
        assert msg.content == "visible"
        assert msg.reasoning == "R"

    def test_only_first_block_is_extracted_and_spaces_collapse(self, make_store):
        store = make_store()
        store.insert(Message(role="assistant", content="a  <think>one</think>  b <think>two</think>"))

        msg = store.get()[0]
        assert msg.reasoning == "one"
        assert msg.content == "a b <think>two</think>"

    def test_existing_reasoning_wins(self, make_store):
        store = make_store()
        store.insert(Message(role="assistant", content="<think>inline</think>hi", reasoning="from api"))

        msg = store.get()[0]
        assert msg.reasoning == "from api"
        assert msg.content == "hi"

    def test_reasoning_only_message_is_kept(self, make_store):
        store = make_store()
        assert store.insert(Message(role="assistant", content="<think>just thinking</think>"))

        msg = store.get()[0]
        assert msg.content is None
        assert msg.reasoning == "just thinking"


# ---------------------------------------------------------------------------
# capacity
# ---------------------------------------------------------------------------

class TestCapacity:

    def test_oldest_entry_is_evicted(self, make_store):
        store = make_store(history_size=2)
        store.insert(_user("one", 1))
        store.insert(_user("two", 2))
        store.insert(_user("three", 3))

        assert [m.content for m in store.get()] == ["two", "three"]

    def test_late_insert_older_than_window_is_evicted_immediately(self, make_store):
        store = make_store(history_size=2)
        store.insert(_user("two", 2))
        store.insert(_user("three", 3))
        store.insert(_user("one", 1))

        assert [m.content for m in store.get()] == ["two", "three"]

    def test_resize_trims(self, make_store):
        store = make_store(history_size=5)
        for i in range(5):
            store.insert(_user(str(i), i))
        store.resize(2)

        assert [m.content for m in store.get()] == ["3", "4"]


# ---------------------------------------------------------------------------
# add_assistant_response
# ---------------------------------------------------------------------------

class TestAddAssistantResponse:

    def test_tool_only_response_is_stored_with_null_content(self, make_store):
        store = make_store()
        call = ToolCall(id="call_1", function=FunctionCall(name="lookup", arguments="{}"))

        assert store.add_assistant_response(None, tool_calls=[call])
        msg = store.get()[0]
        assert msg.content is None
        assert msg.tool_calls[0].id == "call_1"

    def test_null_content_without_tool_calls_is_ignored(self, make_store):
        store = make_store()
        assert store.add_assistant_response(None) is False
        assert len(store) == 0

    def test_compliance_violations_are_still_stored(self, make_store):
        store = make_store()
        assert store.add_assistant_response("edgy", compliance_violations=["violence"])
        assert store.get()[0].compliance_violations == ["violence"]

    def test_group_metadata_is_copied(self, make_store):
        store = make_store()
        meta = GroupMetadata(
            group_id="g1", message_index=1, total_in_group=3,
            group_timestamp=at(0), processed_timestamp=at(2),
        )
        store.add_assistant_response("part", group_metadata=meta)

        msg = store.get()[0]
        assert (msg.group_id, msg.message_index, msg.total_in_group) == ("g1", 1, 3)
        assert msg.group_timestamp == at(0)
        assert msg.timestamp == at(2)


# ---------------------------------------------------------------------------
# get / replace / update / delete / clear
# ---------------------------------------------------------------------------

class TestCrud:

    def test_get_returns_a_copy(self, make_store):
        store = make_store()
        store.insert(_user("original", 0))

        copy = store.get()
        copy[0].content = "mutated"
        copy.append(_user("extra", 1))

        assert [m.content for m in store.get()] == ["original"]

    def test_replace_with_validation_is_all_or_nothing(self, make_store):
        store = make_store()
        store.insert(_user("keep me", 0))

        ok = store.replace([
            {"role": "user", "content": "fine", "timestamp": at(1)},
            {"role": "system", "content": "not storable"},
        ])

        assert ok is False
        assert [m.content for m in store.get()] == ["keep me"]

    def test_replace_rejects_malformed_tool_call(self, make_store):
        store = make_store()
        ok = store.replace([
            {"role": "assistant", "content": None, "tool_calls": [{"id": "c1", "function": {"name": ""}}]},
        ])
        assert ok is False

    def test_replace_with_validation_cleans_and_orders(self, make_store):
        store = make_store()
        ok = store.replace([
            {"role": "assistant", "content": "<think>why</think> later", "timestamp": at(2)},
            {"role": "user", "content": "earlier", "timestamp": at(1)},
        ])

        assert ok is True
        msgs = store.get()
        assert [m.content for m in msgs] == ["earlier", "later"]
        assert msgs[1].reasoning == "why"

    def test_replace_without_validation_copies_tail(self, make_store):
        store = make_store(history_size=2)
        ok = store.replace([_user("a", 0), _user("b", 1), _user("c", 2)], validate=False)

        assert ok is True
        assert [m.content for m in store.get()] == ["b", "c"]

    def test_replace_without_validation_sorts_and_drops_system(self, make_store):
        store = make_store()
        ok = store.replace([
            _user("late", 10),
            Message(role="system", content="sys", timestamp=at(5)),
            _user("early", 1),
            _user("also early", 1),
        ], validate=False)

        assert ok is True
        assert [(m.role, m.content) for m in store.get()] == [
            ("user", "early"), ("user", "also early"), ("user", "late"),
        ]

    def test_replace_on_disabled_history(self, make_store):
        store = make_store(history_size=0)
        assert store.replace([_user("a", 0)]) is False

    def test_update_reextracts_reasoning(self, make_store):
        store = make_store()
        store.insert(Message(role="assistant", content="plain", timestamp=at(0)))

        assert store.update(0, {"content": "<think>hmm</think> edited"})
        msg = store.get()[0]
        assert msg.content == "edited"
        assert msg.reasoning == "hmm"

    @pytest.mark.parametrize("index", [-1, 1, 99])
    def test_update_rejects_bad_index(self, make_store, index):
        store = make_store()
        store.insert(_user("only", 0))
        assert store.update(index, {"content": "x"}) is False

    def test_update_to_system_role_is_rejected(self, make_store):
        store = make_store()
        store.insert(_user("hi", 0))

        assert store.update(0, {"role": "system"}) is False
        assert store.get()[0].role == "user"

    def test_update_breaking_tool_rule_is_rejected(self, make_store):
        store = make_store()
        store.insert({"role": "tool", "content": "result", "tool_call_id": "c1", "timestamp": at(0)})

        assert store.update(0, {"content": "   "}) is False
        assert store.get()[0].content == "result"

    def test_update_timestamp_reorders(self, make_store):
        store = make_store()
        store.insert(_user("a", 1))
        store.insert(_user("b", 2))

        assert store.update(0, {"timestamp": at(3)})
        assert [m.content for m in store.get()] == ["b", "a"]

    def test_delete(self, make_store):
        store = make_store()
        store.insert(_user("a", 0))
        store.insert(_user("b", 1))

        assert store.delete(5) is False
        assert store.delete(0) is True
        assert [m.content for m in store.get()] == ["b"]

    def test_clear_returns_count(self, make_store):
        store = make_store()
        store.insert(_user("a", 0))
        store.insert(_user("b", 1))

        assert store.clear() == 2
        assert len(store) == 0


# ---------------------------------------------------------------------------
# reconstruct_grouped
# ---------------------------------------------------------------------------

class TestReconstruction:

    PARTS = ["Hey babe,", "I'm doing great!", "What about you?"]

    @pytest.mark.parametrize("order", list(itertools.permutations(range(3))))
    def test_fragments_rejoin_in_any_arrival_order(self, make_store, order):
        store = make_store()
        fragments = [_fragment(self.PARTS[i], i, processed=i) for i in order]

        merged = store.reconstruct_grouped(fragments)

        assert len(merged) == 1
        assert merged[0].content == "Hey babe, I'm doing great! What about you?"
        assert merged[0].group_id is None
        assert merged[0].message_index is None
        assert merged[0].timestamp == T0

    def test_group_takes_position_of_first_fragment(self, make_store):
        store = make_store()
        messages = [
            _user("how are you?", 0),
            _fragment(self.PARTS[0], 0, processed=1),
            _user("interrupting", 1.5),
            _fragment(self.PARTS[1], 1, processed=2),
        ]

        merged = store.reconstruct_grouped(messages)

        assert [m.content for m in merged] == [
            "how are you?", "Hey babe, I'm doing great!", "interrupting",
        ]

    def test_metadata_comes_from_first_and_last_fragment(self, make_store):
        store = make_store()
        call = ToolCall(id="call_9", function=FunctionCall(name="f", arguments="{}"))
        first = _fragment("a", 0).model_copy(update={"reasoning": "r"})
        last = _fragment("b", 1, total=2).model_copy(
            update={"tool_calls": [call], "compliance_violations": ["x"]}
        )

        merged = store.reconstruct_grouped([last, first])[0]

        assert merged.reasoning == "r"
        assert merged.tool_calls[0].id == "call_9"
        assert merged.compliance_violations == ["x"]

    def test_incomplete_group_uses_present_fragments(self, make_store):
        store = make_store()
        merged = store.reconstruct_grouped([_fragment(self.PARTS[0], 0)])

        assert merged[0].content == "Hey babe,"

    def test_store_round_trip_reconstructs_grouped_history(self, make_store):
        store = make_store()
        for i in (2, 0, 1):
            store.add_assistant_response(
                self.PARTS[i],
                group_metadata=GroupMetadata(
                    group_id="g", message_index=i, total_in_group=3,
                    group_timestamp=T0, processed_timestamp=at(i),
                ),
            )

        merged = store.reconstruct_grouped(store.get())
        assert [m.content for m in merged] == ["Hey babe, I'm doing great! What about you?"]


# ---------------------------------------------------------------------------
# persistence
# ---------------------------------------------------------------------------

def test_save_and_load(make_store, tmp_path):
    store = make_store()
    store.insert(_user("persist me", 0))
    store.add_assistant_response("ok", reasoning="thought")
    path = tmp_path / "history.json"
    store.save(path)

    restored = make_store()
    assert restored.load(path) is True
    assert [(m.role, m.content) for m in restored.get()] == [("user", "persist me"), ("assistant", "ok")]
    assert restored.get()[1].reasoning == "thought"


def test_load_corrupt_file_keeps_history(make_store, tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")
    store = make_store()
    store.insert(_user("still here", 0))

    assert store.load(path) is False
    assert [m.content for m in store.get()] == ["still here"]


def test_save_defaults_to_project_history_file(make_store, tmp_path, monkeypatch):
    monkeypatch.setattr(ProjectPath, "HISTORY_FILE", tmp_path / "data" / "history.json")
    store = make_store()
    store.insert(_user("default path", 0))
    store.save()

    restored = make_store()
    assert restored.load() is True
    assert [m.content for m in restored.get()] == ["default path"]
