"""
Reviews: proposals to merge a workspace into its stream.

Lifecycle:
    create          -> OPEN
    close           OPEN -> CLOSED
    reopen          CLOSED -> OPEN
    commit          OPEN -> COMMITTED (terminal)

Committing squashes the workspace's net change set (BASE -> HEAD) into one
revision on the stream, compare-and-swap on the stream head, and then
deletes the workspace.

Invariants:
    - At most one OPEN review per workspace
    - Only an up-to-date workspace that is not in conflict resolution can be
      committed; otherwise ConflictError and nothing changes
    - Approvals only change while the review is OPEN
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Iterable, Optional

from ..compare.comparison import ComparisonEngine
from ..errors import ConflictError, InvalidArgumentError, SdlcError
from ..locks import KeyedLock
from ..model.merge import changes_between
from ..model.types import (
    Comparison,
    DevelopmentStream,
    Review,
    ReviewState,
    WorkspaceSpecification,
    utc_now,
)
from ..store.base import VersionedStore
from ..streams import stream_pointer
from ..workspace.manager import WorkspaceManager

logger = logging.getLogger(__name__)


class ReviewManager:
    """Creates and drives reviews through their lifecycle."""

    def __init__(
        self,
        store: VersionedStore,
        workspaces: WorkspaceManager,
        comparisons: ComparisonEngine,
        locks: Optional[KeyedLock] = None,
        default_author: str = "system",
    ) -> None:
        self._store = store
        self._workspaces = workspaces
        self._comparisons = comparisons
        self._locks = locks or KeyedLock()
        self.default_author = default_author

    def _hold(self, project_id: str, review_id: str):
        return self._locks.hold(("review", project_id, review_id))

    def _require_state(self, review: Review, *states: ReviewState, action: str) -> None:
        if review.state not in states:
            raise ConflictError(
                f"Cannot {action} review {review.id} in project {review.project_id}: "
                f"review is {review.state.value}"
            )

    def _open_review_for(self, project_id: str, spec: WorkspaceSpecification) -> Optional[Review]:
        for review in self._store.list_reviews(project_id):
            if review.state is ReviewState.OPEN and review.workspace_spec == spec:
                return review
        return None

    def _save(self, review: Review, message: str, **extra) -> Review:
        review = self._store.update_review(review)
        logger.info(
            message,
            extra={
                "project_id": review.project_id,
                "review_id": review.id,
                "workspace_id": review.workspace_id,
                "state": review.state.value,
                **extra,
            },
        )
        return review

    # Queries

    def get_review(self, project_id: str, review_id: str) -> Review:
        return self._store.get_review(project_id, review_id)

    def get_reviews(
        self,
        project_id: str,
        state: Optional[ReviewState] = None,
        workspace_id: Optional[str] = None,
        stream: Optional[DevelopmentStream] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[Review]:
        """Reviews matching every given filter, oldest first.

        ``since``/``until`` bound the creation time inclusively.
        """
        if limit is not None and limit < 0:
            raise InvalidArgumentError(f"Invalid review limit: {limit}")
        if since is not None and until is not None and since > until:
            raise InvalidArgumentError(f"Invalid time range: since {since} is after until {until}")
        reviews = []
        for review in self._store.list_reviews(project_id):
            if state is not None and review.state is not state:
                continue
            if workspace_id is not None and review.workspace_id != workspace_id:
                continue
            if stream is not None and review.workspace_spec.source != stream:
                continue
            if since is not None and review.created_at < since:
                continue
            if until is not None and review.created_at > until:
                continue
            reviews.append(review)
        return reviews[:limit] if limit is not None else reviews

    # Lifecycle

    def create_review(
        self,
        project_id: str,
        spec: WorkspaceSpecification,
        title: str,
        description: str = "",
        labels: Iterable[str] = (),
        author: Optional[str] = None,
    ) -> Review:
        """Open a review for a workspace.

        Raises:
            InvalidArgumentError: If the title is empty or the workspace has no changes
            NotFoundError: If the workspace does not exist
            ConflictError: If the workspace already has an OPEN review
        """
        spec = spec.primary
        if not title or not title.strip():
            raise InvalidArgumentError("Review title must not be empty")
        with self._workspaces.hold(project_id, spec):
            workspace = self._workspaces.get_workspace(project_id, spec)
            if workspace.head_revision_id == workspace.base_revision_id:
                raise InvalidArgumentError(f"Cannot create review: {spec} has no changes")
            existing = self._open_review_for(project_id, spec)
            if existing is not None:
                raise ConflictError(f"{spec} already has open review {existing.id}")
            stream_head = self._store.get_pointer(project_id, stream_pointer(spec.source))
            review = self._store.create_review(Review(
                id="",
                project_id=project_id,
                workspace_spec=spec,
                title=title.strip(),
                author=author or self.default_author,
                base_revision_id=stream_head.revision_id if stream_head else workspace.base_revision_id,
                description=description,
                labels=tuple(labels),
            ))
        logger.info(
            "Review created",
            extra={"project_id": project_id, "review_id": review.id, "workspace_id": spec.workspace_id},
        )
        return review

    def edit_review(
        self,
        project_id: str,
        review_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        labels: Optional[Iterable[str]] = None,
    ) -> Review:
        with self._hold(project_id, review_id):
            review = self.get_review(project_id, review_id)
            self._require_state(review, ReviewState.OPEN, action="edit")
            if title is not None and not title.strip():
                raise InvalidArgumentError("Review title must not be empty")
            return self._save(
                replace(
                    review,
                    title=title.strip() if title is not None else review.title,
                    description=description if description is not None else review.description,
                    labels=tuple(labels) if labels is not None else review.labels,
                    last_updated_at=utc_now(),
                ),
                "Review edited",
            )

    def approve_review(self, project_id: str, review_id: str, user: str) -> Review:
        with self._hold(project_id, review_id):
            review = self.get_review(project_id, review_id)
            self._require_state(review, ReviewState.OPEN, action="approve")
            if user in review.approvals:
                return review
            return self._save(
                replace(review, approvals=review.approvals + (user,), last_updated_at=utc_now()),
                "Review approved", user=user,
            )

    def revoke_approval(self, project_id: str, review_id: str, user: str) -> Review:
        with self._hold(project_id, review_id):
            review = self.get_review(project_id, review_id)
            self._require_state(review, ReviewState.OPEN, action="revoke approval of")
            if user not in review.approvals:
                return review
            return self._save(
                replace(
                    review,
                    approvals=tuple(a for a in review.approvals if a != user),
                    last_updated_at=utc_now(),
                ),
                "Review approval revoked", user=user,
            )

    def close_review(self, project_id: str, review_id: str) -> Review:
        with self._hold(project_id, review_id):
            review = self.get_review(project_id, review_id)
            self._require_state(review, ReviewState.OPEN, action="close")
            now = utc_now()
            return self._save(
                replace(review, state=ReviewState.CLOSED, closed_at=now, last_updated_at=now),
                "Review closed",
            )

    def reopen_review(self, project_id: str, review_id: str) -> Review:
        with self._hold(project_id, review_id):
            review = self.get_review(project_id, review_id)
            self._require_state(review, ReviewState.CLOSED, action="reopen")
            spec = review.workspace_spec
            with self._workspaces.hold(project_id, spec):
                self._workspaces.get_workspace(project_id, spec)
                existing = self._open_review_for(project_id, spec)
                if existing is not None:
                    raise ConflictError(f"{spec} already has open review {existing.id}")
                return self._save(
                    replace(review, state=ReviewState.OPEN, closed_at=None, last_updated_at=utc_now()),
                    "Review reopened",
                )

    def commit_review(
        self,
        project_id: str,
        review_id: str,
        message: Optional[str] = None,
        author: Optional[str] = None,
    ) -> Review:
        """Squash-commit the review's workspace onto its stream.

        Raises:
            ConflictError: If the review is not OPEN, the workspace is outdated
                or in conflict resolution, the stream is released, or the
                stream moved during the commit
        """
        with self._hold(project_id, review_id):
            review = self.get_review(project_id, review_id)
            self._require_state(review, ReviewState.OPEN, action="commit")
            spec = review.workspace_spec
            with self._workspaces.hold(project_id, spec):
                workspace = self._workspaces.get_workspace(project_id, spec)
                if self._workspaces.is_in_conflict_resolution(project_id, spec):
                    raise ConflictError(f"Cannot commit review {review_id}: {spec} is in conflict resolution")
                if self._workspaces.is_outdated(project_id, spec):
                    raise ConflictError(
                        f"Cannot commit review {review_id}: {spec} is outdated; update it first"
                    )
                if self._workspaces.is_stream_released(project_id, spec.source):
                    raise ConflictError(f"Cannot commit review {review_id}: {spec.source} is released")
                base = self._store.read_entities(project_id, workspace.base_revision_id)
                head = self._store.read_entities(project_id, workspace.head_revision_id)
                changes = changes_between(base.as_mapping(), head.as_mapping())
                configuration = self._store.read_project_configuration(project_id, workspace.head_revision_id)
                try:
                    revision = self._store.commit(
                        project_id,
                        stream_pointer(spec.source),
                        workspace.base_revision_id,
                        changes,
                        author or review.author,
                        message or f"{review.title} (review {review.id})",
                        project_configuration=configuration,
                    )
                except SdlcError as e:
                    raise e.annotate("commit review", project_id=project_id, review_id=review_id)
                now = utc_now()
                committed = self._save(
                    replace(
                        review,
                        state=ReviewState.COMMITTED,
                        committed_at=now,
                        last_updated_at=now,
                        commit_revision_id=revision.id,
                    ),
                    "Review committed", revision_id=revision.id,
                )
                self._workspaces.delete_workspace(project_id, spec)
        return committed

    def close_stream_reviews(self, project_id: str, stream: DevelopmentStream, reason: str = "") -> list[str]:
        """Close every OPEN review whose workspace belongs to ``stream``."""
        closed = []
        for review in self.get_reviews(project_id, state=ReviewState.OPEN, stream=stream):
            try:
                self.close_review(project_id, review.id)
            except ConflictError:
                # Committed or closed concurrently.
                continue
            closed.append(review.id)
        if closed:
            logger.info(
                "Closed open reviews of stream",
                extra={"project_id": project_id, "stream": str(stream), "reviews": closed, "reason": reason},
            )
        return closed

    # Comparisons

    def get_review_comparison(self, project_id: str, review_id: str) -> Comparison:
        """Stream revision at review creation -> workspace HEAD (or the committed revision)."""
        review = self.get_review(project_id, review_id)
        if review.state is ReviewState.COMMITTED and review.commit_revision_id:
            to_revision_id = review.commit_revision_id
        else:
            to_revision_id = self._workspaces.get_workspace(project_id, review.workspace_spec).head_revision_id
        return self._comparisons.compare_revisions(project_id, review.base_revision_id, to_revision_id)

    def get_review_workspace_creation_comparison(self, project_id: str, review_id: str) -> Comparison:
        """Workspace BASE -> workspace HEAD for the review's workspace."""
        review = self.get_review(project_id, review_id)
        return self._comparisons.get_workspace_creation_comparison(project_id, review.workspace_spec)
