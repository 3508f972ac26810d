"""
Atomic pointer transitions used by workspace state changes.

A transition never edits a live workspace pointer in place. It builds the
new state on a temporary pointer and then renames that pointer over the
target in one atomic step, so readers see either the old state or the new
one.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

from ..model.types import EntityChange
from ..store.base import Pointer, VersionedStore
from ..streams import temporary_pointer

logger = logging.getLogger(__name__)


def publish_pointer(
    store: VersionedStore,
    project_id: str,
    target: str,
    revision_id: str,
    base_revision_id: Optional[str] = None,
    changes: Sequence[EntityChange] = (),
    author: str = "system",
    message: str = "",
    replace: bool = True,
    project_configuration: Optional[dict[str, Any]] = None,
) -> Pointer:
    """Point ``target`` at ``revision_id`` plus ``changes``, atomically.

    Args:
        store: Store holding the project
        project_id: Project id
        target: Pointer name to (re)place
        revision_id: Revision the new state starts from
        base_revision_id: BASE recorded on the new pointer (defaults to revision_id)
        changes: Optional changes committed on top of revision_id first
        author: Author of that commit
        message: Message of that commit
        replace: Whether an existing ``target`` may be replaced
        project_configuration: Configuration committed with ``changes``, or
            None to inherit the one at revision_id

    Returns:
        The pointer now named ``target``

    Raises:
        ConflictError: If ``target`` exists and ``replace`` is False
    """
    scratch = temporary_pointer()
    store.create_pointer(project_id, scratch, revision_id, base_revision_id or revision_id)
    try:
        if changes or project_configuration is not None:
            store.commit(
                project_id, scratch, revision_id, list(changes), author, message,
                project_configuration=project_configuration,
            )
        return store.rename_pointer(project_id, scratch, target, replace=replace)
    except Exception:
        store.delete_pointer(project_id, scratch)
        raise
