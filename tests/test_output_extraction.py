from __future__ import annotations

import json

import pytest

from autogensocial.orchestration import extraction
from autogensocial.orchestration.extraction import extract_post_copy, find_json_object, normalize_content
from tests.helpers.stubs import assistant_message


@pytest.fixture(autouse=True)
def _silence_metrics(monkeypatch: pytest.MonkeyPatch) -> list[tuple[str, str]]:
    recorded: list[tuple[str, str]] = []
    monkeypatch.setattr(extraction, "record_extraction", lambda *, outcome, strategy: recorded.append((outcome, strategy)))
    return recorded


def test_assistant_message_list_is_extracted() -> None:
    raw = [
        {
            "role": "assistant",
            "content": [
                {"text": {"value": '{"payload":{"postCopy":{"content":"X","comment":"Y","hashtags":["#a"]}}}'}}
            ],
        }
    ]

    result = extract_post_copy(raw)

    assert result.status == "success"
    assert result.payload == {"content": "X", "comment": "Y", "hashtags": ["#a"]}
    assert result.document == {"payload": {"postCopy": result.payload}}


def test_last_assistant_message_wins() -> None:
    messages = [
        {"role": "user", "content": "write something"},
        assistant_message('{"payload":{"postCopy":{"content":"first"}}}'),
        {"role": "user", "content": "again"},
        assistant_message('{"payload":{"postCopy":{"content":"second"}}}'),
    ]

    assert extract_post_copy(messages).payload == {"content": "second"}


def test_prose_wrapped_json_uses_fallback(_silence_metrics) -> None:
    text = 'Here you go:\n```json\n{"payload": {"postCopy": {"content": "X"}}}\n```\nEnjoy!'

    result = extract_post_copy(text)

    assert result.ok
    assert result.payload == {"content": "X"}
    assert _silence_metrics == [("success", "fallback")]


def test_mapping_and_top_level_post_copy_are_accepted() -> None:
    assert extract_post_copy({"postCopy": {"content": "X"}}).payload == {"content": "X"}
    assert extract_post_copy({"payload": {"postCopy": {"content": "Y"}}}).payload == {"content": "Y"}


def test_round_trip_of_encoded_payload() -> None:
    post_copy = {"content": "Sunrise pour-over", "comment": "Who's up?", "hashtags": ["#coffee", "#morning"]}

    result = extract_post_copy(json.dumps({"payload": {"postCopy": post_copy}}))

    assert result.payload == post_copy


@pytest.mark.parametrize(
    ("raw", "error"),
    [
        ("no json here", "Agent response did not contain a JSON object"),
        ('{"payload": {"summary": "done"}}', "Agent response is missing payload.postCopy"),
        ('{"payload": {"postCopy": "just text"}}', "payload.postCopy must be an object"),
        ([], "Agent response did not contain a JSON object"),
        (None, "Agent response did not contain a JSON object"),
        (42, "Agent response did not contain a JSON object"),
    ],
)
def test_failures_never_raise(raw, error) -> None:  # noqa: ANN001
    result = extract_post_copy(raw)

    assert result.status == "failed"
    assert result.payload is None
    assert result.error == error
    assert result.raw == raw


def test_normalize_content_falls_back_to_first_text_part() -> None:
    assert normalize_content([{"text": {"value": "hello"}}]) == "hello"
    assert normalize_content([{"role": "assistant", "content": "plain"}]) == "plain"
    assert normalize_content({"a": 1}) == {"a": 1}


def test_find_json_object_is_greedy() -> None:
    assert find_json_object('noise {"a": {"b": 1}} trailing') == {"a": {"b": 1}}
    assert find_json_object("} backwards {") is None
    assert find_json_object("{not json}") is None
