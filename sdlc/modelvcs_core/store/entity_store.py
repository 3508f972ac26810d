"""
Per-revision entity storage.

Two views over a path -> Entity map:
- EntitySnapshot: read-only view of one committed revision
- EntityChangeBatch: the in-progress edit set of a commit, sealed into a
  new snapshot when the commit succeeds

Invariants:
    - A sealed snapshot never changes; put/delete only exist on batches
    - Batch application is all-or-nothing: a failing change leaves the
      batch exactly as it was before apply() was called
    - Paths are unique within a snapshot

How to change safely:
    - Stores must build every new revision through EntityChangeBatch so the
      existence rules (CREATE on existing path, MODIFY on missing path) stay
      in one place
"""

from __future__ import annotations

import copy
from types import MappingProxyType
from typing import Callable, Iterable, Iterator, Mapping, Optional

from ..errors import ConflictError, InvalidArgumentError, NotFoundError
from ..model import paths
from ..model.types import Entity, EntityChange, EntityChangeType

EntityPredicate = Callable[[Entity], bool]


def validate_entity_change(change: EntityChange) -> list[str]:
    """Structural checks for one change. Returns error messages (empty if valid)."""
    errors = []
    path = change.entity_path
    if change.type in (EntityChangeType.CREATE, EntityChangeType.MODIFY):
        if not paths.is_valid_entity_path(path):
            errors.append(f"Invalid entity path for {change.type.value}: {path!r}")
        if not paths.is_valid_classifier_path(change.classifier_path):
            errors.append(
                f"Invalid classifier path for {change.type.value} of {path!r}: "
                f"{change.classifier_path!r}"
            )
        if change.content is None:
            errors.append(f"Missing content for {change.type.value} of {path!r}")
        elif paths.is_valid_entity_path(path):
            errors.extend(_validate_content_name(path, change.content))
    elif change.type is EntityChangeType.DELETE:
        if not path:
            errors.append("Missing entity path for DELETE")
    elif change.type is EntityChangeType.RENAME:
        new_path = change.new_entity_path
        if not paths.is_valid_entity_path(path):
            errors.append(f"Invalid entity path for RENAME: {path!r}")
        if not paths.is_valid_entity_path(new_path):
            errors.append(f"Invalid new entity path for RENAME of {path!r}: {new_path!r}")
        elif path == new_path:
            errors.append(f"Cannot rename {path!r} to itself")
    else:
        errors.append(f"Unknown change type: {change.type!r}")
    return errors


def _validate_content_name(path: str, content: Mapping) -> list[str]:
    # Content may carry its own package/name; when present they must agree with the path.
    errors = []
    package = content.get("package")
    name = content.get("name")
    if package is not None and package != paths.package_of(path):
        errors.append(f"Package mismatch for {path!r}: content has package {package!r}")
    if name is not None and name != paths.name_of(path):
        errors.append(f"Name mismatch for {path!r}: content has name {name!r}")
    return errors


def validate_entity_changes(changes: Iterable[EntityChange]) -> None:
    """Validate every change, raising one InvalidArgumentError listing all problems."""
    errors: list[str] = []
    for change in changes:
        errors.extend(validate_entity_change(change))
    if errors:
        raise InvalidArgumentError.from_errors(errors, "Invalid entity changes")


class EntityScan:
    """Lazy, finite, restartable sequence of entities.

    Every iteration starts a fresh pass over the snapshot.
    """

    def __init__(self, entities: Mapping[str, Entity], predicate: Optional[EntityPredicate]) -> None:
        self._entities = entities
        self._predicate = predicate

    def __iter__(self) -> Iterator[Entity]:
        for path in sorted(self._entities):
            entity = self._entities[path]
            if self._predicate is None or self._predicate(entity):
                yield entity


class EntitySnapshot:
    """Immutable entity set of one revision."""

    def __init__(self, entities: Mapping[str, Entity], revision_id: Optional[str] = None) -> None:
        self._entities = MappingProxyType(dict(entities))
        self.revision_id = revision_id

    @classmethod
    def of(cls, entities: Iterable[Entity], revision_id: Optional[str] = None) -> EntitySnapshot:
        return cls({e.path: e for e in entities}, revision_id)

    def get(self, path: str) -> Entity:
        entity = self._entities.get(path)
        if entity is None:
            raise NotFoundError(
                f"Entity {path!r} not found at revision {self.revision_id}",
                resource_type="entity",
                resource_id=path,
            )
        return entity

    def find(self, path: str) -> Optional[Entity]:
        return self._entities.get(path)

    def scan(self, predicate: Optional[EntityPredicate] = None) -> EntityScan:
        return EntityScan(self._entities, predicate)

    def paths(self) -> list[str]:
        return sorted(self._entities)

    def as_mapping(self) -> Mapping[str, Entity]:
        return self._entities

    def __contains__(self, path: object) -> bool:
        return path in self._entities

    def __len__(self) -> int:
        return len(self._entities)

    def __iter__(self) -> Iterator[Entity]:
        return iter(self.scan())


EMPTY_SNAPSHOT = EntitySnapshot({})


class EntityChangeBatch:
    """Edit set for one commit, started from a parent snapshot.

    Example:
        >>> batch = EntityChangeBatch(parent)
        >>> batch.apply([EntityChange.create("model::A", "meta::pure::Class", {})])
        >>> snapshot = batch.seal("rev-2")
    """

    def __init__(self, parent: EntitySnapshot = EMPTY_SNAPSHOT) -> None:
        self._working: dict[str, Entity] = dict(parent.as_mapping())
        self._sealed = False

    def _check_open(self) -> None:
        if self._sealed:
            raise ConflictError("Change batch has already been sealed")

    def put(self, entity: Entity) -> None:
        """Upsert an entity into the batch."""
        self._check_open()
        self._working[entity.path] = Entity(
            entity.path, entity.classifier_path, copy.deepcopy(entity.content)
        )

    def delete(self, path: str) -> None:
        self._check_open()
        if self._working.pop(path, None) is None:
            raise NotFoundError(
                f"Cannot delete entity {path!r}: not found",
                resource_type="entity",
                resource_id=path,
            )

    def apply(self, changes: Iterable[EntityChange]) -> None:
        """Apply a list of changes atomically.

        Raises:
            InvalidArgumentError: If any change is structurally invalid
            ConflictError: If a CREATE or RENAME target already exists
            NotFoundError: If a MODIFY, DELETE or RENAME source is missing
        """
        self._check_open()
        changes = list(changes)
        validate_entity_changes(changes)
        working = dict(self._working)
        for change in changes:
            _apply_one(working, change)
        self._working = working

    def find(self, path: str) -> Optional[Entity]:
        return self._working.get(path)

    def seal(self, revision_id: Optional[str] = None) -> EntitySnapshot:
        """Freeze the batch into a snapshot; the batch rejects further edits."""
        self._check_open()
        self._sealed = True
        return EntitySnapshot(self._working, revision_id)


def _missing(change: EntityChange) -> NotFoundError:
    return NotFoundError(
        f"Cannot {change.type.value.lower()} entity {change.entity_path!r}: not found",
        resource_type="entity",
        resource_id=change.entity_path,
    )


def _apply_one(working: dict[str, Entity], change: EntityChange) -> None:
    path = change.entity_path
    if change.type is EntityChangeType.CREATE:
        if path in working:
            raise ConflictError(f"Cannot create entity {path!r}: it already exists")
        working[path] = Entity(path, change.classifier_path, copy.deepcopy(change.content))
    elif change.type is EntityChangeType.MODIFY:
        if path not in working:
            raise _missing(change)
        working[path] = Entity(path, change.classifier_path, copy.deepcopy(change.content))
    elif change.type is EntityChangeType.DELETE:
        if working.pop(path, None) is None:
            raise _missing(change)
    elif change.type is EntityChangeType.RENAME:
        entity = working.get(path)
        if entity is None:
            raise _missing(change)
        if change.new_entity_path in working:
            raise ConflictError(
                f"Cannot rename entity {path!r} to {change.new_entity_path!r}: target already exists"
            )
        new_path = change.new_entity_path
        content = copy.deepcopy(entity.content)
        if "package" in content:
            content["package"] = paths.package_of(new_path)
        if "name" in content:
            content["name"] = paths.name_of(new_path)
        del working[path]
        working[new_path] = Entity(new_path, entity.classifier_path, content)
    else:
        raise TypeError(f"Unknown change type: {change.type!r}")
