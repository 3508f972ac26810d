"""
Pure whole-entity three-way merge.

Given the entity maps at BASE, LOCAL and UPSTREAM, decide per path:

    local == base              -> keep upstream (nothing to apply)
    upstream == base           -> replay the local change onto upstream
    local == upstream          -> both sides agree (nothing to apply)
    otherwise                  -> conflict

The entity is the unit of conflict. Equality compares classifier path and
content; there is no field-level or textual merging.

The project configuration is merged the same way as one whole document,
except that it never conflicts: when both sides changed it, LOCAL wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .types import Entity, EntityChange, EntityConflict, same_entity

EntityMap = Mapping[str, Entity]


@dataclass(frozen=True)
class MergeResult:
    """Outcome of a three-way merge.

    Attributes:
        changes: Edits that turn UPSTREAM into the merged snapshot, for every
            path that merged cleanly
        conflicts: Paths changed differently on both sides, sorted by path
        project_configuration: Configuration to commit with the merged
            snapshot, or None to keep the one UPSTREAM carries
    """

    changes: tuple[EntityChange, ...] = ()
    conflicts: tuple[EntityConflict, ...] = ()
    project_configuration: Optional[dict[str, Any]] = None

    @property
    def is_clean(self) -> bool:
        return not self.conflicts


def change_to(path: str, current: Optional[Entity], target: Optional[Entity]) -> Optional[EntityChange]:
    """The single change that turns ``current`` into ``target`` at ``path``."""
    if same_entity(current, target):
        return None
    if target is None:
        return EntityChange.delete(path)
    if current is None:
        return EntityChange.create(path, target.classifier_path, target.content)
    return EntityChange.modify(path, target.classifier_path, target.content)


def changes_between(source: EntityMap, target: EntityMap) -> list[EntityChange]:
    """Net change set from ``source`` to ``target``, ordered by path."""
    changes = []
    for path in sorted(set(source) | set(target)):
        change = change_to(path, source.get(path), target.get(path))
        if change is not None:
            changes.append(change)
    return changes


def three_way_merge(base: EntityMap, local: EntityMap, upstream: EntityMap) -> MergeResult:
    """Merge LOCAL's changes since BASE onto UPSTREAM."""
    changes = []
    conflicts = []
    for path in sorted(set(base) | set(local) | set(upstream)):
        b, l, u = base.get(path), local.get(path), upstream.get(path)
        if same_entity(l, b) or same_entity(l, u):
            continue
        if same_entity(u, b):
            change = change_to(path, u, l)
            if change is not None:
                changes.append(change)
            continue
        conflicts.append(EntityConflict(path=path, base=b, local=l, upstream=u))
    return MergeResult(changes=tuple(changes), conflicts=tuple(conflicts))


def merge_configuration(
    base: Mapping[str, Any], local: Mapping[str, Any], upstream: Mapping[str, Any]
) -> Optional[dict[str, Any]]:
    """LOCAL's project configuration if it must be carried onto UPSTREAM, else None."""
    if local == base or local == upstream:
        return None
    return dict(local)
