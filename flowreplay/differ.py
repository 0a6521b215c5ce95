"""Structural differencing of actual workflow output against expected output."""

from __future__ import annotations

import json
from typing import Any

from .exceptions import MaxDepthExceededError
from .models import Difference, DiffKind, ValidationResult
from .utils import (
    build_path,
    compile_pattern,
    get_type_name,
    is_regex_literal,
    is_wildcard,
    wildcard_to_regex,
)

STRICT_MARKER = "__strict"
MATCH_ABSENT = "**"

# Coarse type classes used for the type check. Containers and null share a
# class so that null, array and object disagreements are reported by their
# dedicated branches instead of as a generic type mismatch.
_CONTAINER_TYPES = ("null", "array", "object")


def _type_class(value: Any) -> str:
    type_name = get_type_name(value)
    if type_name in _CONTAINER_TYPES:
        return "object"
    return type_name


def _same_json(actual: Any, expected: Any) -> bool:
    if actual is expected:
        return True
    try:
        return json.dumps(actual, sort_keys=True) == json.dumps(expected, sort_keys=True)
    except (TypeError, ValueError, RecursionError):
        return False


class Differ:
    """
    Recursive, depth-first comparison of an actual value against an expected
    value that may carry wildcard and pattern directives.

    Expected-side directives:
    - '*' or '**' as a value matches anything below that point
      ('**' also matches an absent key)
    - strings containing '*' are glob patterns
    - strings delimited by '/' are regular expressions
    - arrays holding a wildcard entry skip the length check
    - objects with '__strict': true reject keys they do not declare
      (scoped to that object only)
    """

    def __init__(self, max_depth: int = 100, fail_fast: bool = False):
        self.max_depth = max_depth
        self.fail_fast = fail_fast

        self.differences: list[Difference] = []
        self.fields_checked = 0
        self._aborted = False

    def diff(self, actual: Any, expected: Any, path: str = "", depth: int = 0) -> bool:
        """
        Compare actual against expected, recording every difference.

        Args:
            actual: The value produced by the workflow
            expected: The expected value, possibly holding directives
            path: Current dot/bracket path ('' for the root)
            depth: Current recursion depth

        Returns:
            True if no difference was found at or below path
        """
        if self._aborted:
            return False

        if depth > self.max_depth:
            # Identical subtrees match at any depth; only a real difference
            # below the limit is an error.
            if _same_json(actual, expected):
                return True
            raise MaxDepthExceededError(self.max_depth, path or "$")

        if is_wildcard(expected):
            return True

        if _type_class(actual) != _type_class(expected):
            self._add_difference(path, get_type_name(expected), get_type_name(actual),
                                 DiffKind.TYPE_MISMATCH)
            return False

        if actual is None or expected is None:
            self.fields_checked += 1
            if actual is not expected:
                self._add_difference(path, expected, actual, DiffKind.VALUE_MISMATCH)
                return False
            return True

        if isinstance(expected, list):
            return self._diff_arrays(actual, expected, path, depth)

        if isinstance(expected, dict):
            if not isinstance(actual, dict):
                self._add_difference(path, "object", get_type_name(actual), DiffKind.TYPE_MISMATCH)
                return False
            return self._diff_objects(actual, expected, path, depth)

        return self._diff_scalars(actual, expected, path)

    def _diff_arrays(self, actual: Any, expected: list, path: str, depth: int) -> bool:
        """Compare arrays index-by-index over the overlapping prefix."""
        if not isinstance(actual, list):
            self._add_difference(path, "array", get_type_name(actual), DiffKind.TYPE_MISMATCH)
            return False

        all_match = True

        has_wildcard = any(is_wildcard(item) for item in expected)
        if not has_wildcard and len(actual) != len(expected):
            self._add_difference(path, f"array[{len(expected)}]", f"array[{len(actual)}]",
                                 DiffKind.LENGTH_MISMATCH)
            all_match = False

        for i in range(min(len(actual), len(expected))):
            if self._aborted:
                return False
            if not self.diff(actual[i], expected[i], build_path(path, i), depth + 1):
                all_match = False

        return all_match

    def _diff_objects(self, actual: dict, expected: dict, path: str, depth: int) -> bool:
        """Compare every key the expected object declares."""
        all_match = True

        for key, expected_value in expected.items():
            if self._aborted:
                return False
            if key == STRICT_MARKER:
                continue

            child_path = build_path(path, key)

            if key not in actual:
                if expected_value == MATCH_ABSENT:
                    continue
                self._add_difference(child_path, expected_value, None, DiffKind.MISSING_PROPERTY)
                all_match = False
                continue

            if not self.diff(actual[key], expected_value, child_path, depth + 1):
                all_match = False

        if expected.get(STRICT_MARKER) is True:
            for key, actual_value in actual.items():
                if key not in expected:
                    self._add_difference(build_path(path, key), None, actual_value,
                                         DiffKind.UNEXPECTED_PROPERTY)
                    all_match = False

        return all_match

    def _diff_scalars(self, actual: Any, expected: Any, path: str) -> bool:
        """Compare primitive leaves, honouring glob and regex strings."""
        self.fields_checked += 1

        if actual == expected:
            return True

        if isinstance(expected, str):
            # A /regex/ literal takes precedence over glob matching, so
            # "/a*b/" is a regex and never a glob.
            if is_regex_literal(expected):
                if compile_pattern(expected[1:-1]).search(str(actual)):
                    return True
                self._add_difference(path, f"matches {expected}", actual, DiffKind.PATTERN_MISMATCH)
                return False

            if '*' in expected:
                if wildcard_to_regex(expected).match(str(actual)):
                    return True
                self._add_difference(path, expected, actual, DiffKind.VALUE_MISMATCH)
                return False

        self._add_difference(path, expected, actual, DiffKind.VALUE_MISMATCH)
        return False

    def _add_difference(self, path: str, expected: Any, actual: Any, kind: DiffKind):
        """Add a difference entry."""
        self.differences.append(Difference(
            path=path,
            expected=expected,
            actual=actual,
            kind=kind,
        ))

        if self.fail_fast:
            self._aborted = True


def find_differences(actual: Any, expected: Any, max_depth: int = 100) -> list[Difference]:
    """Return every difference between actual and expected."""
    differ = Differ(max_depth=max_depth)
    differ.diff(actual, expected)
    return differ.differences


def validate(actual: Any, expected: Any) -> ValidationResult:
    """
    Judge actual output against expected output.

    Returns:
        ValidationResult; message is only set when the comparison failed
    """
    try:
        differences = find_differences(actual, expected)
    except Exception as e:
        return ValidationResult(
            passed=False,
            expected=expected,
            actual=actual,
            message=f"Validation error: {e}",
        )

    if not differences:
        return ValidationResult(passed=True, expected=expected, actual=actual)

    return ValidationResult(
        passed=False,
        expected=expected,
        actual=actual,
        message=f"Found {len(differences)} difference(s)",
        differences=differences,
    )


def matches(actual: Any, expected: Any) -> bool:
    """Check whether actual satisfies expected without collecting differences."""
    differ = Differ(fail_fast=True)
    try:
        return differ.diff(actual, expected)
    except MaxDepthExceededError:
        return False
