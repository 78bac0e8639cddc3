"""Version parsing and range comparison for dependency declarations."""

import re
from dataclasses import dataclass
from enum import Enum
from itertools import zip_longest
from typing import Optional, Tuple

from .exceptions import MalformedVersion


class Comparison(Enum):
    """Result of comparing two versions."""

    LESS = "less"
    EQUAL = "equal"
    GREATER = "greater"


class RangeOperator(Enum):
    """Relational operator of a version range."""

    EXACT = "=="
    AT_LEAST = ">="
    AT_MOST = "<="
    COMPATIBLE = "~"


@dataclass(frozen=True)
class VersionSpec:
    """
    Dot/comma separated numeric version (major, minor, patch, tweak, ...).

    Attributes:
        components: Non-negative integer components, most significant first.
            Trailing zeros are optional and ignored by comparisons.
    """
    components: Tuple[int, ...]

    def __str__(self) -> str:
        return ".".join(str(c) for c in self.components)

    def __eq__(self, other) -> bool:
        if not isinstance(other, VersionSpec):
            return NotImplemented
        return VersionParser.compare(self, other) is Comparison.EQUAL

    def __hash__(self) -> int:
        # Equal versions must hash equally regardless of trailing zeros
        stripped = list(self.components)
        while stripped and stripped[-1] == 0:
            stripped.pop()
        return hash(tuple(stripped))

    def __lt__(self, other: 'VersionSpec') -> bool:
        return VersionParser.compare(self, other) is Comparison.LESS

    def __le__(self, other: 'VersionSpec') -> bool:
        return VersionParser.compare(self, other) is not Comparison.GREATER

    def __gt__(self, other: 'VersionSpec') -> bool:
        return VersionParser.compare(self, other) is Comparison.GREATER

    def __ge__(self, other: 'VersionSpec') -> bool:
        return VersionParser.compare(self, other) is not Comparison.LESS

    @property
    def major(self) -> int:
        return self.components[0] if self.components else 0


@dataclass(frozen=True)
class VersionRange:
    """
    A version bound plus a relational operator.

    A range without a bound accepts every version.
    """
    bound: Optional[VersionSpec] = None
    operator: RangeOperator = RangeOperator.AT_LEAST

    @classmethod
    def any(cls) -> 'VersionRange':
        return cls()

    @classmethod
    def exact(cls, version: VersionSpec) -> 'VersionRange':
        return cls(bound=version, operator=RangeOperator.EXACT)

    @classmethod
    def at_least(cls, version: VersionSpec) -> 'VersionRange':
        return cls(bound=version, operator=RangeOperator.AT_LEAST)

    @classmethod
    def at_most(cls, version: VersionSpec) -> 'VersionRange':
        return cls(bound=version, operator=RangeOperator.AT_MOST)

    @classmethod
    def compatible(cls, version: VersionSpec) -> 'VersionRange':
        return cls(bound=version, operator=RangeOperator.COMPATIBLE)

    @property
    def is_any(self) -> bool:
        return self.bound is None

    def __str__(self) -> str:
        if self.bound is None:
            return "any"
        return f"{self.operator.value}{','.join(str(c) for c in self.bound.components)}"


class VersionParser:
    """Parser and comparator for numeric versions and range expressions."""

    # Comma is the canonical separator (semicolons separate list arguments in
    # CMake). Dots are accepted so project(... VERSION 1.2.3) values parse too.
    SEPARATOR_PATTERN = re.compile(r'[,.]')

    # Longest operators first so '>=' is not read as '>'
    OPERATOR_PREFIXES = (
        ('==', RangeOperator.EXACT),
        ('>=', RangeOperator.AT_LEAST),
        ('<=', RangeOperator.AT_MOST),
        ('=', RangeOperator.EXACT),
        ('~', RangeOperator.COMPATIBLE),
        ('^', RangeOperator.COMPATIBLE),
    )

    @classmethod
    def parse(cls, text: str) -> VersionSpec:
        """
        Parse version text such as "1,2,3" or "1.2.3".

        Args:
            text: The version text

        Returns:
            The parsed VersionSpec

        Raises:
            MalformedVersion: If the text is empty or has a non-numeric segment
        """
        if text is None or not str(text).strip():
            raise MalformedVersion(str(text), "empty version")

        components = []
        for segment in cls.SEPARATOR_PATTERN.split(str(text).strip()):
            segment = segment.strip()
            if not (segment.isascii() and segment.isdigit()):
                raise MalformedVersion(text)
            components.append(int(segment))
        return VersionSpec(tuple(components))

    @classmethod
    def parse_optional(cls, text: Optional[str]) -> Optional[VersionSpec]:
        """Parse version text, returning None for absent or blank input."""
        if text is None or not str(text).strip():
            return None
        return cls.parse(text)

    @classmethod
    def parse_range(cls, text: Optional[str]) -> VersionRange:
        """
        Parse a range expression.

        Supported forms: "==V"/"=V" (exact), ">=V" (at-least), "<=V" (at-most),
        "~V"/"^V" (compatible with V up to the next major version) and a bare
        "V", which means at-least. Empty or absent text accepts any version.
        """
        if text is None or not str(text).strip():
            return VersionRange.any()

        stripped = str(text).strip()
        for prefix, operator in cls.OPERATOR_PREFIXES:
            if stripped.startswith(prefix):
                return VersionRange(bound=cls.parse(stripped[len(prefix):]), operator=operator)
        return VersionRange.at_least(cls.parse(stripped))

    @staticmethod
    def compare(a: VersionSpec, b: VersionSpec) -> Comparison:
        """Compare component-wise, padding the shorter version with zeros."""
        for left, right in zip_longest(a.components, b.components, fillvalue=0):
            if left < right:
                return Comparison.LESS
            if left > right:
                return Comparison.GREATER
        return Comparison.EQUAL

    @classmethod
    def satisfies(cls, candidate: Optional[VersionSpec], version_range: Optional[VersionRange]) -> bool:
        """
        Check whether a candidate version meets a range.

        An absent range, an unbounded range or an absent candidate version
        (the dependency exposes no version) always satisfies.
        """
        if version_range is None or version_range.is_any or candidate is None:
            return True

        result = cls.compare(candidate, version_range.bound)
        operator = version_range.operator

        if operator is RangeOperator.EXACT:
            return result is Comparison.EQUAL
        if operator is RangeOperator.AT_LEAST:
            return result is not Comparison.LESS
        if operator is RangeOperator.AT_MOST:
            return result is not Comparison.GREATER
        # COMPATIBLE: same major, remainder at least the bound
        return candidate.major == version_range.bound.major and result is not Comparison.LESS
