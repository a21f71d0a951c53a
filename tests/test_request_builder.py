"""Tests for parley.chat.request_builder: ChatRequestBuilder."""

import pytest

from parley.chat.request_builder import FOLLOW_UP_MAX_TOKENS, ChatRequestBuilder
from parley.core.errors import ConfigurationError
from parley.schemas.configs.turns import ChatConfig
from parley.schemas.domain.chat import GroupMetadata, Message

from conftest import T0, at


def _builder(store, **overrides):
    config = ChatConfig(**{"system_prompt": "You are helpful.", **overrides})
    return ChatRequestBuilder(config, store)


def test_system_prompt_comes_first_and_new_messages_last(make_store):
    store = make_store()
    store.insert(Message(role="user", content="earlier", timestamp=at(0)))
    store.insert(Message(role="assistant", content="reply", timestamp=at(1)))

    request = _builder(store).build_request([Message(role="user", content="now")])

    assert request["messages"] == [
        {"role": "system", "content": "You are helpful."},
        {"role": "user", "content": "earlier"},
        {"role": "assistant", "content": "reply"},
        {"role": "user", "content": "now"},
    ]


def test_history_window_leaves_room_for_new_messages(make_store):
    store = make_store(history_size=3)
    for i in range(3):
        store.insert(Message(role="user", content=f"h{i}", timestamp=at(i)))

    messages = _builder(store).build_messages([{"role": "user", "content": "new1"}, {"role": "user", "content": "new2"}])

    assert [m["content"] for m in messages] == ["You are helpful.", "h2", "new1", "new2"]


def test_disabled_history_sends_only_system_and_new(make_store):
    store = make_store(history_size=0)
    messages = _builder(store).build_messages([{"role": "user", "content": "solo"}])

    assert [m["role"] for m in messages] == ["system", "user"]


def test_grouped_history_is_reconstructed(make_store):
    store = make_store()
    for i, text in enumerate(["Hey babe,", "I'm doing great!"]):
        store.add_assistant_response(text, group_metadata=GroupMetadata(
            group_id="g", message_index=i, total_in_group=2,
            group_timestamp=T0, processed_timestamp=at(i),
        ))

    messages = _builder(store).build_messages([])

    assert messages[1] == {"role": "assistant", "content": "Hey babe, I'm doing great!"}


def test_group_cut_by_window_edge_is_sent_whole(make_store):
    store = make_store(history_size=3)
    for i, text in enumerate(["Hey babe,", "I'm doing great!"]):
        store.add_assistant_response(text, group_metadata=GroupMetadata(
            group_id="g", message_index=i, total_in_group=2,
            group_timestamp=T0, processed_timestamp=at(i + 1),
        ))
    store.insert(Message(role="user", content="and you?", timestamp=at(3)))

    messages = _builder(store).build_messages([{"role": "user", "content": "hello?"}])

    assert messages[1:] == [
        {"role": "assistant", "content": "Hey babe, I'm doing great!"},
        {"role": "user", "content": "and you?"},
        {"role": "user", "content": "hello?"},
    ]


def test_request_parameters_and_none_dropping(make_store):
    request = _builder(make_store(), auto_turn=True, top_p=None, stop=None).build_request([])

    assert request["model"] == "gpt-4o-mini"
    assert request["temperature"] == 0.7
    assert request["max_tokens"] == 1024
    assert request["stream"] is True
    assert request["compliance"] is True
    assert request["autoTurn"] is True
    assert "top_p" not in request
    assert "stop" not in request
    assert "tools" not in request
    assert "reasoning" not in request


def test_reasoning_flags(make_store):
    request = _builder(make_store(), reasoning=True).build_request([])
    assert request["reasoning"] is True
    assert request["show_reasoning"] is True


@pytest.mark.parametrize("choice, expected", [(None, "auto"), ("none", "none"), ("required", "required")])
def test_tool_choice(make_store, choice, expected):
    tools = [{"type": "function", "function": {"name": "lookup", "parameters": {}}}]
    request = _builder(make_store(), tools=tools, tool_choice=choice).build_request([])

    assert request["tools"] == tools
    assert request["tool_choice"] == expected


def test_overrides_win(make_store):
    request = _builder(make_store()).build_request([], temperature=0.1, stream=False)
    assert request["temperature"] == 0.1
    assert request["stream"] is False


def test_follow_up_request(make_store):
    store = make_store()
    store.insert(Message(role="user", content="hi", timestamp=at(0)))

    request = _builder(store, max_tokens=4096).build_follow_up_request()

    assert request["stream"] is False
    assert request["max_tokens"] == FOLLOW_UP_MAX_TOKENS
    assert [m["content"] for m in request["messages"]] == ["You are helpful.", "hi"]


def test_follow_up_keeps_smaller_max_tokens(make_store):
    request = _builder(make_store(), max_tokens=64).build_follow_up_request()
    assert request["max_tokens"] == 64


@pytest.mark.parametrize("field", ["model", "system_prompt"])
def test_missing_required_configuration(make_store, field):
    builder = _builder(make_store(), **{field: ""})
    with pytest.raises(ConfigurationError):
        builder.build_request([{"role": "user", "content": "x"}])
