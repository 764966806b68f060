"""
Incremental JSON repair.

Models stream structured output one token at a time, so the text seen so far
is usually an unfinished JSON document. ``fix_json`` scans it once, keeping a
stack of parser states and the last index at which the prefix was still
unambiguous, then truncates there and closes whatever is still open.
"""

from __future__ import annotations

import dataclasses
import json
from typing import Any, Literal

_ROOT = "ROOT"
_FINISH = "FINISH"
_OBJECT_START = "INSIDE_OBJECT_START"
_OBJECT_KEY = "INSIDE_OBJECT_KEY"
_OBJECT_AFTER_KEY = "INSIDE_OBJECT_AFTER_KEY"
_OBJECT_BEFORE_VALUE = "INSIDE_OBJECT_BEFORE_VALUE"
_OBJECT_AFTER_VALUE = "INSIDE_OBJECT_AFTER_VALUE"
_OBJECT_AFTER_COMMA = "INSIDE_OBJECT_AFTER_COMMA"
_ARRAY_START = "INSIDE_ARRAY_START"
_ARRAY_AFTER_VALUE = "INSIDE_ARRAY_AFTER_VALUE"
_ARRAY_AFTER_COMMA = "INSIDE_ARRAY_AFTER_COMMA"
_STRING = "INSIDE_STRING"
_STRING_ESCAPE = "INSIDE_STRING_ESCAPE"
_NUMBER = "INSIDE_NUMBER"
_LITERAL = "INSIDE_LITERAL"

_OBJECT_STATES = frozenset(
    {
        _OBJECT_START,
        _OBJECT_KEY,
        _OBJECT_AFTER_KEY,
        _OBJECT_BEFORE_VALUE,
        _OBJECT_AFTER_VALUE,
        _OBJECT_AFTER_COMMA,
    }
)
_ARRAY_STATES = frozenset({_ARRAY_START, _ARRAY_AFTER_VALUE, _ARRAY_AFTER_COMMA})
_LITERALS = ("true", "false", "null")
_DIGITS = frozenset("0123456789")


class _Scanner:
    def __init__(self, text: str) -> None:
        self.text = text
        self.stack: list[str] = [_ROOT]
        self.last_valid_index = -1
        self.literal_start = 0

    def _swap(self, state: str) -> None:
        self.stack.pop()
        self.stack.append(state)

    def value_start(self, char: str, i: int, swap_state: str) -> None:
        match char:
            case '"':
                self.last_valid_index = i
                self._swap(swap_state)
                self.stack.append(_STRING)
            case "f" | "t" | "n":
                self.last_valid_index = i
                self.literal_start = i
                self._swap(swap_state)
                self.stack.append(_LITERAL)
            case "-":
                # a lone minus sign is not a number yet
                self._swap(swap_state)
                self.stack.append(_NUMBER)
            case c if c in _DIGITS:
                self.last_valid_index = i
                self._swap(swap_state)
                self.stack.append(_NUMBER)
            case "{":
                self.last_valid_index = i
                self._swap(swap_state)
                self.stack.append(_OBJECT_START)
            case "[":
                self.last_valid_index = i
                self._swap(swap_state)
                self.stack.append(_ARRAY_START)

    def after_object_value(self, char: str, i: int) -> None:
        match char:
            case ",":
                self._swap(_OBJECT_AFTER_COMMA)
            case "}":
                self.last_valid_index = i
                self.stack.pop()

    def after_array_value(self, char: str, i: int) -> None:
        match char:
            case ",":
                self._swap(_ARRAY_AFTER_COMMA)
            case "]":
                self.last_valid_index = i
                self.stack.pop()

    def step(self, char: str, i: int) -> None:
        match self.stack[-1]:
            case "ROOT":
                self.value_start(char, i, _FINISH)

            case "INSIDE_OBJECT_START":
                if char == '"':
                    self._swap(_OBJECT_KEY)
                elif char == "}":
                    self.last_valid_index = i
                    self.stack.pop()

            case "INSIDE_OBJECT_AFTER_COMMA":
                if char == '"':
                    self._swap(_OBJECT_KEY)

            case "INSIDE_OBJECT_KEY":
                if char == '"':
                    self._swap(_OBJECT_AFTER_KEY)

            case "INSIDE_OBJECT_AFTER_KEY":
                if char == ":":
                    self._swap(_OBJECT_BEFORE_VALUE)

            case "INSIDE_OBJECT_BEFORE_VALUE":
                self.value_start(char, i, _OBJECT_AFTER_VALUE)

            case "INSIDE_OBJECT_AFTER_VALUE":
                self.after_object_value(char, i)

            case "INSIDE_STRING":
                if char == '"':
                    self.stack.pop()
                    self.last_valid_index = i
                elif char == "\\":
                    self.stack.append(_STRING_ESCAPE)
                else:
                    self.last_valid_index = i

            case "INSIDE_ARRAY_START":
                if char == "]":
                    self.last_valid_index = i
                    self.stack.pop()
                else:
                    self.last_valid_index = i
                    self.value_start(char, i, _ARRAY_AFTER_VALUE)

            case "INSIDE_ARRAY_AFTER_VALUE":
                if char == ",":
                    self._swap(_ARRAY_AFTER_COMMA)
                elif char == "]":
                    self.last_valid_index = i
                    self.stack.pop()
                else:
                    self.last_valid_index = i

            case "INSIDE_ARRAY_AFTER_COMMA":
                self.value_start(char, i, _ARRAY_AFTER_VALUE)

            case "INSIDE_STRING_ESCAPE":
                self.stack.pop()
                self.last_valid_index = i

            case "INSIDE_NUMBER":
                self._number(char, i)

            case "INSIDE_LITERAL":
                partial = self.text[self.literal_start : i + 1]
                if any(lit.startswith(partial) for lit in _LITERALS):
                    self.last_valid_index = i
                else:
                    self.stack.pop()
                    if self.stack[-1] == _OBJECT_AFTER_VALUE:
                        self.after_object_value(char, i)
                    elif self.stack[-1] == _ARRAY_AFTER_VALUE:
                        self.after_array_value(char, i)

    def _number(self, char: str, i: int) -> None:
        if char in _DIGITS:
            self.last_valid_index = i
        elif char in "eE-.":
            pass
        elif char == ",":
            self.stack.pop()
            if self.stack[-1] == _ARRAY_AFTER_VALUE:
                self.after_array_value(char, i)
            if self.stack[-1] == _OBJECT_AFTER_VALUE:
                self.after_object_value(char, i)
        elif char == "}":
            self.stack.pop()
            if self.stack[-1] == _OBJECT_AFTER_VALUE:
                self.after_object_value(char, i)
        elif char == "]":
            self.stack.pop()
            if self.stack[-1] == _ARRAY_AFTER_VALUE:
                self.after_array_value(char, i)
        else:
            self.stack.pop()

    def close(self) -> str:
        result = self.text[: self.last_valid_index + 1]
        for state in reversed(self.stack):
            if state == _STRING:
                result += '"'
            elif state in _OBJECT_STATES:
                result += "}"
            elif state in _ARRAY_STATES:
                result += "]"
            elif state == _LITERAL:
                partial = self.text[self.literal_start :]
                for lit in _LITERALS:
                    if lit.startswith(partial):
                        result += lit[len(partial) :]
                        break
        return result


def fix_json(text: str) -> str:
    """Close an incomplete JSON document so that it can be parsed.

    Never raises. Input that is already a complete document comes back
    unchanged.
    """
    scanner = _Scanner(text)
    for i, char in enumerate(text):
        scanner.step(char, i)
    return scanner.close()


PartialParseState = Literal[
    "undefined-input", "successful-parse", "repaired-parse", "failed-parse"
]


@dataclasses.dataclass
class PartialJSONResult:
    value: Any
    state: PartialParseState


def parse_partial_json(text: str | None) -> PartialJSONResult:
    """Parse ``text`` as-is, falling back to ``fix_json``; report which path worked."""
    if text is None:
        return PartialJSONResult(value=None, state="undefined-input")

    try:
        return PartialJSONResult(value=json.loads(text), state="successful-parse")
    except json.JSONDecodeError:
        pass

    try:
        return PartialJSONResult(
            value=json.loads(fix_json(text)), state="repaired-parse"
        )
    except json.JSONDecodeError:
        return PartialJSONResult(value=None, state="failed-parse")
