"""
Path grammar for entities, packages and classifiers.

Grammar:
    path    := segment ("::" segment)*
    segment := one or more of [A-Za-z0-9_]   (entity names also allow "$")

Rules:
    - package path: every segment is a valid package segment
    - entity path: at least one package segment followed by one name
      segment, and it must not start with the reserved "meta::" prefix
    - classifier path: starts with "meta::" followed by a valid entity path
      tail (the "meta" segment counts as the package)

All checks are pure and total: they return a boolean and never raise.
"""

from __future__ import annotations

from typing import Iterator, Optional

PACKAGE_SEPARATOR = "::"
CLASSIFIER_PATH_PREFIX = "meta::"


def _is_package_char(c: str) -> bool:
    return c == "_" or (c.isascii() and c.isalnum())


def _is_entity_name_char(c: str) -> bool:
    return c == "$" or _is_package_char(c)


def is_valid_package_name(segment: Optional[str]) -> bool:
    """Whether a single segment is a valid package name."""
    return bool(segment) and all(_is_package_char(c) for c in segment)


def is_valid_entity_name(segment: Optional[str]) -> bool:
    """Whether a single segment is a valid entity name."""
    return bool(segment) and all(_is_entity_name_char(c) for c in segment)


def _is_valid_path(value: str, start: int, package_only: bool) -> bool:
    if start >= len(value):
        return False
    segments = value[start:].split(PACKAGE_SEPARATOR)
    *packages, last = segments
    if not all(is_valid_package_name(p) for p in packages):
        return False
    if package_only:
        return is_valid_package_name(last)
    # An entity needs at least one package before its name.
    return (start > 0 or bool(packages)) and is_valid_entity_name(last)


def is_valid_package_path(value: Optional[str]) -> bool:
    """Whether ``value`` is a valid package path (e.g. ``model::domain``)."""
    return isinstance(value, str) and _is_valid_path(value, 0, True)


def is_valid_entity_path(value: Optional[str]) -> bool:
    """Whether ``value`` is a valid entity path (e.g. ``model::domain::Foo``)."""
    return (
        isinstance(value, str)
        and not value.startswith(CLASSIFIER_PATH_PREFIX)
        and _is_valid_path(value, 0, False)
    )


def is_valid_classifier_path(value: Optional[str]) -> bool:
    """Whether ``value`` is a valid classifier path (e.g. ``meta::pure::Class``)."""
    return (
        isinstance(value, str)
        and value.startswith(CLASSIFIER_PATH_PREFIX)
        and _is_valid_path(value, len(CLASSIFIER_PATH_PREFIX), False)
    )


def iter_path_elements(path: str) -> Iterator[str]:
    """Yield the ``::``-separated elements of a path."""
    yield from path.split(PACKAGE_SEPARATOR)


def package_of(entity_path: str) -> str:
    """Return the package part of an entity path (everything before the name)."""
    index = entity_path.rfind(PACKAGE_SEPARATOR)
    return entity_path[:index] if index != -1 else ""


def name_of(entity_path: str) -> str:
    """Return the final name segment of an entity path."""
    index = entity_path.rfind(PACKAGE_SEPARATOR)
    return entity_path[index + len(PACKAGE_SEPARATOR):] if index != -1 else entity_path


def is_in_package(entity_path: str, package_path: str, include_sub_packages: bool = True) -> bool:
    """Whether an entity lives in ``package_path`` (or one of its sub-packages)."""
    package = package_of(entity_path)
    if package == package_path:
        return True
    return include_sub_packages and package.startswith(package_path + PACKAGE_SEPARATOR)
