"""fix_json / parse_partial_json on truncated model output."""

import json

import pytest

from streamloop.core.partial_json import fix_json, parse_partial_json


# -- fix_json --------------------------------------------------------------


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("", ""),
        ("{", "{}"),
        ("[", "[]"),
        ('{"a', "{}"),
        ('{"a":', "{}"),
        ('{"a": 1', '{"a": 1}'),
        ('{"a": "hel', '{"a": "hel"}'),
        ('{"a": "x\\', '{"a": "x"}'),
        ('{"a": tr', '{"a": true}'),
        ('{"a": nu', '{"a": null}'),
        ('{"a": 1,', '{"a": 1}'),
        ("[1, 2", "[1, 2]"),
        ("[1, 2,", "[1, 2]"),
        ('[{"a": [1, {"b": "c', '[{"a": [1, {"b": "c"}]}]'),
        ("-", ""),
        ("12.", "12"),
    ],
)
def test_fix_json(text: str, expected: str) -> None:
    assert fix_json(text) == expected


@pytest.mark.parametrize(
    "text",
    ['{"a": 1}', "[1,2,3]", '"str"', "true", "null", '{"a": {"b": [1, "x"]}}'],
)
def test_complete_documents_are_unchanged(text: str) -> None:
    assert fix_json(text) == text


def is_prefix(partial: object, full: object) -> bool:
    """Whether ``partial`` could be what ``full`` looked like while streaming."""
    match partial:
        case dict():
            return isinstance(full, dict) and all(
                key in full and is_prefix(value, full[key])
                for key, value in partial.items()
            )
        case list():
            if not isinstance(full, list) or len(partial) > len(full):
                return False
            if not partial:
                return True
            last = len(partial) - 1
            return partial[:last] == full[:last] and is_prefix(partial[last], full[last])
        case str():
            return isinstance(full, str) and full.startswith(partial)
        case bool() | None:
            return partial == full
        case int():
            return type(full) is int and str(full).startswith(str(partial))
    return False


@pytest.mark.parametrize(
    "doc",
    [
        '{"name": "Ada Lovelace", "tags": ["math", "poetry"], "age": 36, "ok": false, "n": null}',
        r'[{"id": 1, "items": [10, 20, [30, 40]]}, {"id": -42, "note": "say \"hi\"\n"}]',
        '{"a": {"b": {"c": [true, false, null, 7]}}, "d": []}',
        '"plain text with spaces"',
    ],
)
def test_truncated_document_repairs_to_prefix(doc: str) -> None:
    full = json.loads(doc)
    for i in range(1, len(doc) + 1):
        result = parse_partial_json(doc[:i])
        assert result.state in ("successful-parse", "repaired-parse"), doc[:i]
        assert is_prefix(result.value, full), doc[:i]
    assert parse_partial_json(doc).value == full


# -- parse_partial_json ----------------------------------------------------


def test_none_input() -> None:
    result = parse_partial_json(None)
    assert result.state == "undefined-input"
    assert result.value is None


def test_successful_parse() -> None:
    result = parse_partial_json('{"a": 1}')
    assert result.state == "successful-parse"
    assert result.value == {"a": 1}


def test_repaired_parse() -> None:
    result = parse_partial_json('{"a": [1, 2')
    assert result.state == "repaired-parse"
    assert result.value == {"a": [1, 2]}


def test_failed_parse() -> None:
    result = parse_partial_json("hello")
    assert result.state == "failed-parse"
    assert result.value is None
