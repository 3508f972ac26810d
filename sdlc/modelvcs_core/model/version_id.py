"""
Release version identifiers and range filters.

A VersionId is ``(major, minor, patch)`` of non-negative integers, totally
ordered lexicographically. String form is ``major.minor.patch`` with a
configurable separator.

Invariants:
    - Components are never negative and never exceed MAX_VERSION_COMPONENT
    - Component strings are canonical decimals: no sign, no leading zero
    - next_major() zeroes minor and patch; next_minor() zeroes patch
    - parse_version_id(str(v, sep), sep) == v for every valid v

How to change safely:
    - Never change the default separator; it is part of stored tag names
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator, Optional, TypeVar

from ..errors import InvalidArgumentError

DEFAULT_SEPARATOR = "."
MAX_VERSION_COMPONENT = 2**31 - 1

_COMPONENT = re.compile(r"0|[1-9][0-9]{0,9}")


class VersionType(Enum):
    """Which component a new version increments."""

    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"


@dataclass(frozen=True, order=True)
class VersionId:
    """A ``major.minor.patch`` release identifier.

    Ordering is the dataclass field order, i.e. lexicographic on
    (major, minor, patch).
    """

    major: int
    minor: int
    patch: int

    def __post_init__(self) -> None:
        for name in ("major", "minor", "patch"):
            value = getattr(self, name)
            if (
                not isinstance(value, int)
                or isinstance(value, bool)
                or not 0 <= value <= MAX_VERSION_COMPONENT
            ):
                raise InvalidArgumentError(
                    f"Invalid version {name} component: {value!r}"
                )

    def next_major(self) -> VersionId:
        return VersionId(self.major + 1, 0, 0)

    def next_minor(self) -> VersionId:
        return VersionId(self.major, self.minor + 1, 0)

    def next_patch(self) -> VersionId:
        return VersionId(self.major, self.minor, self.patch + 1)

    def next(self, version_type: VersionType) -> VersionId:
        """Apply the increment rule named by ``version_type``."""
        if version_type is VersionType.MAJOR:
            return self.next_major()
        if version_type is VersionType.MINOR:
            return self.next_minor()
        if version_type is VersionType.PATCH:
            return self.next_patch()
        raise TypeError(f"Unknown version type: {version_type!r}")

    def to_string(self, separator: str = DEFAULT_SEPARATOR) -> str:
        return f"{self.major}{separator}{self.minor}{separator}{self.patch}"

    def __str__(self) -> str:
        return self.to_string()


def parse_version_id(value: str, separator: str = DEFAULT_SEPARATOR) -> VersionId:
    """Parse a version id string.

    Args:
        value: String such as ``"1.2.3"``
        separator: Component separator (non-empty)

    Returns:
        The parsed VersionId

    Raises:
        InvalidArgumentError: If the string is not three canonical integer
            components within MAX_VERSION_COMPONENT
    """
    if not separator:
        raise InvalidArgumentError("Version separator must not be empty")
    if not isinstance(value, str):
        raise InvalidArgumentError(f"Invalid version id: {value!r}")
    parts = value.split(separator)
    if len(parts) != 3 or not all(_COMPONENT.fullmatch(p) for p in parts):
        raise InvalidArgumentError(f"Invalid version id: {value!r}")
    components = [int(p) for p in parts]
    if any(c > MAX_VERSION_COMPONENT for c in components):
        raise InvalidArgumentError(f"Invalid version id: {value!r} (component out of range)")
    return VersionId(*components)


def try_parse_version_id(value: str, separator: str = DEFAULT_SEPARATOR) -> Optional[VersionId]:
    """Like parse_version_id, but return None instead of raising."""
    try:
        return parse_version_id(value, separator)
    except InvalidArgumentError:
        return None


T = TypeVar("T")


@dataclass(frozen=True)
class VersionBounds:
    """Inclusive numeric ranges on each version component.

    A ``None`` side is unconstrained. Each component is filtered
    independently, so ``min_minor=2`` matches ``1.2.0`` and ``3.5.0``.
    """

    min_major: Optional[int] = None
    max_major: Optional[int] = None
    min_minor: Optional[int] = None
    max_minor: Optional[int] = None
    min_patch: Optional[int] = None
    max_patch: Optional[int] = None

    def __post_init__(self) -> None:
        errors = []
        for name in ("major", "minor", "patch"):
            low = getattr(self, f"min_{name}")
            high = getattr(self, f"max_{name}")
            for side, bound in (("min", low), ("max", high)):
                if bound is not None and bound < 0:
                    errors.append(f"{side}_{name} must be non-negative: {bound}")
            if low is not None and high is not None and low > high:
                errors.append(f"min_{name} ({low}) is greater than max_{name} ({high})")
        if errors:
            raise InvalidArgumentError.from_errors(errors, "Invalid version bounds")

    @staticmethod
    def _within(value: int, low: Optional[int], high: Optional[int]) -> bool:
        return (low is None or value >= low) and (high is None or value <= high)

    def matches(self, version_id: VersionId) -> bool:
        return (
            self._within(version_id.major, self.min_major, self.max_major)
            and self._within(version_id.minor, self.min_minor, self.max_minor)
            and self._within(version_id.patch, self.min_patch, self.max_patch)
        )

    def is_unbounded(self) -> bool:
        return all(
            getattr(self, f"{side}_{name}") is None
            for side in ("min", "max")
            for name in ("major", "minor", "patch")
        )

    def filter(self, items: Iterable[T], key) -> Iterator[T]:
        """Yield items whose ``key(item)`` VersionId is within bounds."""
        for item in items:
            if self.matches(key(item)):
                yield item


UNBOUNDED = VersionBounds()
