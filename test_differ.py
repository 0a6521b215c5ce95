"""Tests for the structural output differ."""

import pytest
from flowreplay import Differ, DiffKind, MaxDepthExceededError, find_differences, matches, validate


def nest(leaf, depth, key="n"):
    """Wrap leaf in depth levels of objects, or of single-element arrays when key is None."""
    value = leaf
    for _ in range(depth):
        value = [value] if key is None else {key: value}
    return value


class TestBasicComparison:
    """Test comparison of plain values."""

    def test_identical_values_match(self):
        """Test that any value matches itself."""
        for value in [None, True, 0, 1.5, "text", [], {}, [1, {"a": [None, "x"]}], {"a": {"b": [1, 2]}}]:
            assert find_differences(value, value) == []

    def test_int_and_float_are_equal(self):
        """Test that an int equals the same float."""
        assert find_differences(1, 1.0) == []

    def test_different_scalar_values(self):
        """Test that differing scalars produce a value mismatch."""
        diffs = find_differences({"count": 2}, {"count": 3})
        assert len(diffs) == 1
        assert diffs[0].path == ".count"
        assert diffs[0].kind == DiffKind.VALUE_MISMATCH
        assert diffs[0].expected == 3
        assert diffs[0].actual == 2

    def test_type_mismatch(self):
        """Test that a string against a number is a type mismatch."""
        diffs = find_differences({"id": "1"}, {"id": 1})
        assert len(diffs) == 1
        assert diffs[0].kind == DiffKind.TYPE_MISMATCH
        assert diffs[0].expected == "number"
        assert diffs[0].actual == "string"

    def test_bool_is_not_a_number(self):
        """Test that a boolean does not match a number."""
        diffs = find_differences(True, 1)
        assert diffs[0].kind == DiffKind.TYPE_MISMATCH

    def test_null_against_object(self):
        """Test that null against an object is a value mismatch."""
        diffs = find_differences(None, {"a": 1})
        assert len(diffs) == 1
        assert diffs[0].kind == DiffKind.VALUE_MISMATCH

    def test_object_against_null(self):
        """Test that an object against null is a value mismatch."""
        diffs = find_differences({"a": 1}, None)
        assert len(diffs) == 1
        assert diffs[0].kind == DiffKind.VALUE_MISMATCH

    def test_array_against_object(self):
        """Test that an array against an object is a type mismatch."""
        diffs = find_differences([1], {"a": 1})
        assert diffs[0].kind == DiffKind.TYPE_MISMATCH
        assert diffs[0].expected == "object"
        assert diffs[0].actual == "array"

    def test_missing_property(self):
        """Test that a declared key absent from the actual value is reported."""
        diffs = find_differences({}, {"name": "x"})
        assert len(diffs) == 1
        assert diffs[0].kind == DiffKind.MISSING_PROPERTY
        assert diffs[0].path == ".name"

    def test_extra_properties_ignored_by_default(self):
        """Test that undeclared keys are ignored outside strict mode."""
        assert find_differences({"name": "x", "extra": 1}, {"name": "x"}) == []

    def test_nested_paths(self):
        """Test dot/bracket path construction."""
        actual = [{"json": {"items": [{"id": 1}, {"id": 2}]}}]
        expected = [{"json": {"items": [{"id": 1}, {"id": 3}]}}]
        diffs = find_differences(actual, expected)
        assert [d.path for d in diffs] == ["[0].json.items[1].id"]


class TestArrays:
    """Test array comparison."""

    def test_length_mismatch_still_compares_prefix(self):
        """Test that a length mismatch is reported along with prefix differences."""
        diffs = find_differences([1, 5, 3], [1, 2])
        kinds = [d.kind for d in diffs]
        assert DiffKind.LENGTH_MISMATCH in kinds
        assert DiffKind.VALUE_MISMATCH in kinds
        length = next(d for d in diffs if d.kind == DiffKind.LENGTH_MISMATCH)
        assert length.expected == "array[2]"
        assert length.actual == "array[3]"
        value = next(d for d in diffs if d.kind == DiffKind.VALUE_MISMATCH)
        assert value.path == "[1]"

    def test_wildcard_element_skips_length_check(self):
        """Test that a wildcard element allows arrays of any length."""
        assert find_differences([1, 2, 3, 4], [1, "*"]) == []

    def test_wildcard_element_does_not_skip_prefix(self):
        """Test that elements before a wildcard are still compared."""
        diffs = find_differences([9, 2, 3], [1, "*"])
        assert len(diffs) == 1
        assert diffs[0].path == "[0]"

    def test_array_against_scalar(self):
        """Test that a scalar against an array is a type mismatch."""
        diffs = find_differences("x", [1])
        assert diffs[0].kind == DiffKind.TYPE_MISMATCH


class TestWildcards:
    """Test wildcard directives on the expected side."""

    def test_star_matches_anything(self):
        """Test that '*' matches any value."""
        for value in [None, 1, "x", [1, 2], {"a": 1}]:
            assert find_differences(value, "*") == []

    def test_double_star_matches_anything(self):
        """Test that '**' matches any nested value."""
        assert find_differences({"deep": [1, {"x": 2}]}, "**") == []

    def test_double_star_matches_absent_key(self):
        """Test that '**' also matches an absent key."""
        assert find_differences({}, {"optional": "**"}) == []

    def test_star_requires_key_presence(self):
        """Test that '*' does not match an absent key."""
        diffs = find_differences({}, {"required": "*"})
        assert len(diffs) == 1
        assert diffs[0].kind == DiffKind.MISSING_PROPERTY

    def test_glob_pattern(self):
        """Test that a glob string matches a conforming value."""
        assert find_differences({"id": "user-123"}, {"id": "user-*"}) == []

    def test_glob_pattern_mismatch(self):
        """Test that a glob string rejects a non-conforming value."""
        diffs = find_differences({"id": "order-1"}, {"id": "user-*"})
        assert len(diffs) == 1
        assert diffs[0].kind == DiffKind.VALUE_MISMATCH

    def test_glob_escapes_regex_metacharacters(self):
        """Test that glob text outside '*' is matched literally."""
        assert find_differences("a.b-1", "a.b-*") == []
        assert len(find_differences("axb-1", "a.b-*")) == 1


class TestRegexPatterns:
    """Test /regex/ expected strings."""

    def test_regex_match(self):
        """Test that a /regex/ string matches a conforming value."""
        assert find_differences({"email": "ada@example.com"}, {"email": "/^[^@]+@example\\.com$/"}) == []

    def test_regex_mismatch(self):
        """Test that a /regex/ mismatch is a pattern mismatch."""
        diffs = find_differences({"email": "not-an-email"}, {"email": "/^[^@]+@[^@]+$/"})
        assert len(diffs) == 1
        assert diffs[0].kind == DiffKind.PATTERN_MISMATCH
        assert diffs[0].expected == "matches /^[^@]+@[^@]+$/"

    def test_regex_literal_takes_precedence_over_glob(self):
        """Test that a /regex/ containing '*' is matched as a regex, not a glob."""
        assert find_differences("aaab", "/^a*b$/") == []
        diffs = find_differences("a*b-x", "/^a*b$/")
        assert diffs[0].kind == DiffKind.PATTERN_MISMATCH

    def test_regex_is_unanchored_search(self):
        """Test that a /regex/ may match anywhere in the value."""
        assert find_differences("order 42 shipped", "/\\d+/") == []

    def test_regex_against_number_is_type_mismatch(self):
        """Test that a /regex/ against a number is a type mismatch."""
        diffs = find_differences({"n": 2024}, {"n": "/^20\\d\\d$/"})
        assert diffs[0].kind == DiffKind.TYPE_MISMATCH


class TestStrictMode:
    """Test the __strict object marker."""

    def test_strict_rejects_unexpected_keys(self):
        """Test that strict objects reject undeclared keys."""
        diffs = find_differences({"a": 1, "b": 2}, {"a": 1, "__strict": True})
        assert len(diffs) == 1
        assert diffs[0].kind == DiffKind.UNEXPECTED_PROPERTY
        assert diffs[0].path == ".b"
        assert diffs[0].actual == 2

    def test_strict_marker_is_not_compared(self):
        """Test that the strict marker itself is not a compared key."""
        assert find_differences({"a": 1}, {"a": 1, "__strict": True}) == []

    def test_strict_is_object_scoped(self):
        """Test that strict mode does not extend to nested objects."""
        actual = {"outer": {"x": 1, "extra": 2}}
        expected = {"outer": {"x": 1}, "__strict": True}
        assert find_differences(actual, expected) == []


class TestValidate:
    """Test the validate() verdict."""

    def test_passing_validation(self):
        """Test that a passing validation carries no message or differences."""
        result = validate([{"json": {"ok": True}}], [{"json": {"ok": True}}])
        assert result.passed is True
        assert result.message is None
        assert result.differences == []

    def test_users_scenario(self):
        """Test the documented users example with a differing name."""
        actual = [{"json": {"users": [{"id": 1, "name": "Ada"}]}}]
        expected = [{"json": {"users": [{"id": "*", "name": "Grace"}]}}]
        result = validate(actual, expected)
        assert result.passed is False
        assert len(result.differences) == 1
        diff = result.differences[0]
        assert diff.path == "[0].json.users[0].name"
        assert diff.expected == "Grace"
        assert diff.actual == "Ada"
        assert diff.kind == DiffKind.VALUE_MISMATCH
        assert result.message == "Found 1 difference(s)"

    def test_deep_identical_values_pass(self):
        """Test that identical values nested past the depth limit still validate."""
        actual, expected = nest({"leaf": 1}, 150), nest({"leaf": 1}, 150)
        assert actual is not expected
        assert validate(actual, expected).passed is True

        deep_list = nest([1, "x"], 120, key=None)
        assert validate(deep_list, deep_list).passed is True
        assert matches(actual, expected) is True

    def test_deep_differing_values_report_validation_error(self):
        """Test that a difference below the depth limit is reported as a validation error."""
        result = validate(nest({"leaf": 1}, 150), nest({"leaf": 2}, 150))
        assert result.passed is False
        assert result.message.startswith("Validation error: Maximum depth (100)")
        assert matches(nest({"leaf": 1}, 150), nest({"leaf": 2}, 150)) is False

    def test_to_dict_uses_type_key(self):
        """Test that serialized differences name their kind under 'type'."""
        result = validate({"a": 1}, {"a": 2})
        data = result.to_dict()
        assert data["differences"][0]["type"] == "value-mismatch"


class TestMatches:
    """Test the boolean matches() shortcut."""

    def test_matches_true(self):
        """Test that matches returns True for a conforming value."""
        assert matches({"to": "ops@example.com", "n": 1}, {"to": "*@example.com"}) is True

    def test_matches_false(self):
        """Test that matches returns False for a differing value."""
        assert matches({"to": "ops@other.org"}, {"to": "*@example.com"}) is False

    def test_fail_fast_stops_after_first_difference(self):
        """Test that fail_fast records only the first difference."""
        differ = Differ(fail_fast=True)
        assert differ.diff({"a": 1, "b": 2}, {"a": 0, "b": 0}) is False
        assert len(differ.differences) == 1

    def test_max_depth(self):
        """Test that a difference below max_depth raises MaxDepthExceededError."""
        differ = Differ(max_depth=2)
        with pytest.raises(MaxDepthExceededError, match="Maximum depth") as excinfo:
            differ.diff({"a": {"b": {"c": {"d": 1}}}}, {"a": {"b": {"c": {"d": 2}}}})
        assert excinfo.value.depth == 2
        assert excinfo.value.path == ".a.b.c"

    def test_max_depth_allows_identical_subtrees(self):
        """Test that an identical subtree below the depth limit is not an error."""
        assert Differ(max_depth=2).diff({"a": {"b": {"c": {"d": 1}}}}, {"a": {"b": {"c": {"d": 1}}}}) is True

    def test_max_depth_is_type_strict(self):
        """Test that true and 1 below the depth limit are not treated as equal."""
        with pytest.raises(MaxDepthExceededError):
            Differ(max_depth=0).diff({"a": True}, {"a": 1})
