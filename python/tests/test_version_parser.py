"""Tests for version parsing and range comparison."""

import pytest

from depmanager.exceptions import MalformedVersion
from depmanager.version_parser import (
    Comparison, RangeOperator, VersionParser, VersionRange, VersionSpec
)


def v(text):
    return VersionParser.parse(text)


class TestParse:
    """Tests for VersionParser.parse."""

    def test_parse_comma_separated(self):
        assert v("1,2,3").components == (1, 2, 3)

    def test_parse_dot_separated(self):
        """Dots are accepted so project() versions parse with the same function."""
        assert v("1.2.3").components == (1, 2, 3)

    def test_parse_ignores_whitespace(self):
        assert v(" 1, 2 ,3 ").components == (1, 2, 3)

    def test_parse_single_component(self):
        assert v("7").components == (7,)

    @pytest.mark.parametrize("text", ["1,x", "1,,2", "a", "1,-2", "1;2", "v1.2"])
    def test_parse_non_numeric_segment(self, text):
        with pytest.raises(MalformedVersion):
            v(text)

    @pytest.mark.parametrize("text", ["", "   ", None])
    def test_parse_empty(self, text):
        with pytest.raises(MalformedVersion):
            VersionParser.parse(text)

    def test_parse_optional_blank_is_none(self):
        assert VersionParser.parse_optional("") is None
        assert VersionParser.parse_optional(None) is None
        assert VersionParser.parse_optional("2,0") == v("2")

    def test_malformed_version_is_value_error(self):
        with pytest.raises(ValueError):
            v("one")


class TestCompare:
    """Tests for VersionParser.compare."""

    def test_zero_padding_equal(self):
        assert VersionParser.compare(v("1,2"), v("1,2,0")) is Comparison.EQUAL

    def test_first_differing_component_decides(self):
        assert VersionParser.compare(v("1,2,9"), v("1,3")) is Comparison.LESS
        assert VersionParser.compare(v("2"), v("1,99,99")) is Comparison.GREATER

    def test_longer_with_nonzero_tail_is_greater(self):
        assert VersionParser.compare(v("1,2,0,1"), v("1,2")) is Comparison.GREATER

    def test_total_order_is_antisymmetric(self):
        versions = [v(t) for t in ("0", "0,1", "1", "1,0,1", "1,2", "2,0,0", "10")]
        for a in versions:
            for b in versions:
                forward = VersionParser.compare(a, b)
                backward = VersionParser.compare(b, a)
                if forward is Comparison.EQUAL:
                    assert backward is Comparison.EQUAL
                else:
                    assert forward is not backward

    def test_version_spec_equality_and_hash_ignore_trailing_zeros(self):
        assert v("1,2") == v("1,2,0,0")
        assert hash(v("1,2")) == hash(v("1,2,0"))
        assert v("1,2") < v("1,10")
        assert sorted([v("2"), v("1,5"), v("1,10")]) == [v("1,5"), v("1,10"), v("2")]

    def test_str_is_dotted(self):
        assert str(v("1,2,3")) == "1.2.3"


class TestParseRange:
    """Tests for VersionParser.parse_range."""

    @pytest.mark.parametrize("text,operator", [
        ("==1,2", RangeOperator.EXACT),
        ("=1,2", RangeOperator.EXACT),
        (">=1,2", RangeOperator.AT_LEAST),
        ("<=1,2", RangeOperator.AT_MOST),
        ("~1,2", RangeOperator.COMPATIBLE),
        ("^1,2", RangeOperator.COMPATIBLE),
        ("1,2", RangeOperator.AT_LEAST),
    ])
    def test_operators(self, text, operator):
        version_range = VersionParser.parse_range(text)
        assert version_range.operator is operator
        assert version_range.bound == v("1,2")

    @pytest.mark.parametrize("text", [None, "", "  "])
    def test_empty_range_accepts_anything(self, text):
        assert VersionParser.parse_range(text).is_any

    def test_malformed_bound(self):
        with pytest.raises(MalformedVersion):
            VersionParser.parse_range(">=1,beta")

    def test_str_round_trip_text(self):
        assert str(VersionParser.parse_range(">= 1,2")) == ">=1,2"
        assert str(VersionRange.any()) == "any"


class TestSatisfies:
    """Tests for VersionParser.satisfies."""

    @pytest.mark.parametrize("text", ["0", "1", "1,2", "1,2,3", "4,0,0,7"])
    def test_exact_is_reflexive(self, text):
        assert VersionParser.satisfies(v(text), VersionRange.exact(v(text)))

    def test_exact_with_padding(self):
        assert VersionParser.satisfies(v("1,2,0"), VersionRange.exact(v("1,2")))
        assert not VersionParser.satisfies(v("1,2,1"), VersionRange.exact(v("1,2")))

    def test_at_least(self):
        version_range = VersionParser.parse_range(">=1,2")
        assert VersionParser.satisfies(v("1,2"), version_range)
        assert VersionParser.satisfies(v("3"), version_range)
        assert not VersionParser.satisfies(v("1,1,9"), version_range)

    def test_at_most(self):
        version_range = VersionParser.parse_range("<=1,2")
        assert VersionParser.satisfies(v("1,2"), version_range)
        assert VersionParser.satisfies(v("0,9"), version_range)
        assert not VersionParser.satisfies(v("1,2,1"), version_range)

    def test_compatible_requires_same_major(self):
        version_range = VersionParser.parse_range("~1,4")
        assert VersionParser.satisfies(v("1,4"), version_range)
        assert VersionParser.satisfies(v("1,9,2"), version_range)
        assert not VersionParser.satisfies(v("1,3,9"), version_range)
        assert not VersionParser.satisfies(v("2,0"), version_range)

    def test_absent_range_and_absent_version_accept(self):
        assert VersionParser.satisfies(v("1"), None)
        assert VersionParser.satisfies(v("1"), VersionRange.any())
        assert VersionParser.satisfies(None, VersionRange.exact(v("1")))

    def test_spec_values_are_immutable(self):
        version = VersionSpec((1, 2))
        with pytest.raises(AttributeError):
            version.components = (3,)
