"""JSONPath utilities for evaluating mock scenario conditions."""

from __future__ import annotations

from typing import Any

from jsonpath_ng import parse as jsonpath_parse
from jsonpath_ng.exceptions import JsonPathParserError


class JSONPathMatcher:
    """Utility class for JSONPath lookups."""

    # Cache for compiled JSONPath expressions
    _cache: dict = {}

    @classmethod
    def compile(cls, path: str):
        """Compile and cache a JSONPath expression."""
        if path not in cls._cache:
            try:
                cls._cache[path] = jsonpath_parse(path)
            except JsonPathParserError as e:
                raise ValueError(f"Invalid JSONPath expression '{path}': {e}")
        return cls._cache[path]

    @classmethod
    def find_values(cls, data: Any, path: str) -> list[Any]:
        """Find all values matching a JSONPath expression."""
        expr = cls.compile(path)
        return [m.value for m in expr.find(data)]


def _parse_literal(text: str) -> Any:
    """Parse the right-hand side of a condition into a Python value."""
    if (text.startswith("'") and text.endswith("'")) or \
       (text.startswith('"') and text.endswith('"')):
        return text[1:-1]
    lowered = text.lower()
    if lowered == 'true':
        return True
    if lowered == 'false':
        return False
    if lowered == 'null':
        return None
    try:
        if '.' in text:
            return float(text)
        return int(text)
    except ValueError:
        return text


def evaluate_condition(data: Any, condition: str) -> bool:
    """
    Evaluate a simple JSONPath condition.

    Supports:
    - $.field == 'value'
    - $.field != 'value'
    - $.field > value
    - $.field < value
    - $.field >= value
    - $.field <= value
    - $.field              (true when the path resolves)

    Args:
        data: The data to evaluate against
        condition: The condition string

    Returns:
        Boolean result of the condition
    """
    if not condition:
        return True

    operators = ['==', '!=', '>=', '<=', '>', '<']
    operator = None
    for op in operators:
        if op in condition:
            operator = op
            break

    if not operator:
        return bool(JSONPathMatcher.find_values(data, condition.strip()))

    path, expected_text = condition.split(operator, 1)
    expected = _parse_literal(expected_text.strip())

    values = JSONPathMatcher.find_values(data, path.strip())
    if not values:
        return operator == '!='

    actual = values[0]

    try:
        if operator == '==':
            return actual == expected
        elif operator == '!=':
            return actual != expected
        elif operator == '>':
            return actual > expected
        elif operator == '<':
            return actual < expected
        elif operator == '>=':
            return actual >= expected
        elif operator == '<=':
            return actual <= expected
    except TypeError:
        return False

    return False
