"""Boolean condition expressions used by state transitions.

Grammar, lowest precedence first::

    or          := and ("||" and)*
    and         := unary ("&&" unary)*
    unary       := "!" unary | comparison
    comparison  := primary (("==" | "!=" | ">=" | "<=" | ">" | "<") primary)?
    primary     := "(" or ")" | number | string | boolean | identifier

Identifiers resolve against the runtime snapshot:

- `success` / `failure`: status is running / failed
- `status`: the status value (`"running"`, `"failed"`, ...)
- `iteration_count`
- `output.<key>`: an entry of `output_data`
- `a.b`: the `output_data` entry `a_b` (e.g. `build.success`)
- anything else: the `output_data` entry of that name

Evaluation is total: unknown identifiers resolve to None (falsy) and malformed
input degrades to a falsy value instead of raising.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .runtime import WorkflowRuntimeState

_NUMBER = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
_EPSILON = 0.0001

_OPERATORS = ("&&", "||", ">=", "<=", "==", "!=", "!", ">", "<", "(", ")")
_COMPARISONS = frozenset({"==", "!=", ">=", "<=", ">", "<"})


@dataclass(frozen=True, slots=True)
class _Token:
    kind: str  # "op", "number", "string", "bool", "ident" or "end"
    value: str


_END = _Token("end", "")


def evaluate_expression(expression: str | None, state: WorkflowRuntimeState) -> bool:
    """Evaluate `expression` against `state`. Empty expressions are true."""

    if expression is None or not expression.strip():
        return True
    parser = _Parser(_tokenize(expression), state)
    try:
        return is_truthy(parser.parse_or())
    except RecursionError:
        # Parentheses nested deeper than the interpreter stack allows.
        return False


def is_truthy(value: object) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, int | float):
        return value != 0
    if isinstance(value, str):
        return bool(value) and value.lower() != "false" and value != "0"
    return True


def _tokenize(text: str) -> list[_Token]:
    tokens: list[_Token] = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch.isspace():
            i += 1
            continue

        op = next((o for o in _OPERATORS if text.startswith(o, i)), None)
        if op is not None:
            tokens.append(_Token("op", op))
            i += len(op)
            continue

        if ch in "\"'":
            end = text.find(ch, i + 1)
            if end == -1:
                end = len(text)
            tokens.append(_Token("string", text[i + 1 : end]))
            i = end + 1
            continue

        if ch.isalnum() or ch in "_.":
            start = i
            while i < len(text) and (text[i].isalnum() or text[i] in "_."):
                i += 1
            tokens.append(_classify_word(text[start:i]))
            continue

        # Unknown characters are ignored.
        i += 1

    tokens.append(_END)
    return tokens


def _classify_word(word: str) -> _Token:
    lowered = word.lower()
    if lowered in ("true", "false"):
        return _Token("bool", lowered)
    if _NUMBER.match(word):
        return _Token("number", word)
    return _Token("ident", word)


class _Parser:
    def __init__(self, tokens: list[_Token], state: WorkflowRuntimeState) -> None:
        self._tokens = tokens
        self._pos = 0
        self._state = state

    @property
    def _current(self) -> _Token:
        return self._tokens[self._pos] if self._pos < len(self._tokens) else _END

    def _advance(self) -> _Token:
        token = self._current
        if self._pos < len(self._tokens):
            self._pos += 1
        return token

    def _at_op(self, op: str) -> bool:
        return self._current.kind == "op" and self._current.value == op

    def parse_or(self) -> object:
        left = self._parse_and()
        while self._at_op("||"):
            self._advance()
            right = self._parse_and()
            left = is_truthy(left) or is_truthy(right)
        return left

    def _parse_and(self) -> object:
        left = self._parse_unary()
        while self._at_op("&&"):
            self._advance()
            right = self._parse_unary()
            left = is_truthy(left) and is_truthy(right)
        return left

    def _parse_unary(self) -> object:
        negations = 0
        while self._at_op("!"):
            self._advance()
            negations += 1
        if not negations:
            return self._parse_comparison()
        value = is_truthy(self._parse_comparison())
        return value if negations % 2 == 0 else not value

    def _parse_comparison(self) -> object:
        left = self._parse_primary()
        if self._current.kind == "op" and self._current.value in _COMPARISONS:
            op = self._advance().value
            right = self._parse_primary()
            return _compare(left, op, right)
        return left

    def _parse_primary(self) -> object:
        token = self._current
        if token.kind == "op" and token.value == "(":
            self._advance()
            result = self.parse_or()
            if self._at_op(")"):
                self._advance()
            return result

        if token.kind == "number":
            self._advance()
            return float(token.value)
        if token.kind == "string":
            self._advance()
            return token.value
        if token.kind == "bool":
            self._advance()
            return token.value == "true"
        if token.kind == "ident":
            self._advance()
            return _resolve(token.value, self._state)

        # End of input or a stray operator.
        return None


def _resolve(name: str, state: WorkflowRuntimeState) -> object:
    lowered = name.lower()
    status = state.status.value

    if lowered == "success":
        return status == "running"
    if lowered == "failure":
        return status == "failed"
    if lowered == "status":
        return status
    if lowered == "iteration_count":
        return float(state.iteration_count)

    output = state.output_data
    if lowered.startswith("output.") and len(lowered) > len("output."):
        return output.get(name[len("output.") :])
    if "." in name:
        return output.get(name.replace(".", "_"))
    return output.get(name)


def _as_number(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str) and _NUMBER.match(value.strip()):
        return float(value)
    return None


def _as_text(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _compare(left: object, op: str, right: object) -> bool:
    left_num = _as_number(left)
    right_num = _as_number(right)
    if left_num is not None and right_num is not None:
        if op == ">":
            return left_num > right_num
        if op == ">=":
            return left_num >= right_num
        if op == "<":
            return left_num < right_num
        if op == "<=":
            return left_num <= right_num
        if op == "==":
            return abs(left_num - right_num) < _EPSILON
        return abs(left_num - right_num) >= _EPSILON

    if isinstance(left, bool) and isinstance(right, bool):
        if op == "==":
            return left == right
        if op == "!=":
            return left != right
        return False

    left_text = _as_text(left)
    right_text = _as_text(right)
    equal = (
        left_text.lower() == right_text.lower()
        if left_text is not None and right_text is not None
        else left_text is right_text
    )
    if op == "==":
        return equal
    if op == "!=":
        return not equal
    return False
