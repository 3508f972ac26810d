"""
Service wiring: one explicitly constructed handle over the whole core.

SdlcService owns the store, the background pool and every manager. There
are no module-level singletons; tests and embedding applications build
their own service (or individual managers) around their own store.

Usage:
    >>> settings = SdlcSettings(storage_backend="sqlite", data_dir="/var/lib/modelvcs")
    >>> setup_logging(settings)
    >>> with SdlcService(settings) as service:
    ...     service.projects.create_project("p1")
    ...     ws = service.workspaces.create_workspace("p1", "alice")

Invariants:
    - Managers share one KeyedLock, so review, patch and version operations
      serialize with workspace transitions on the same keys
    - stop() drains the background pool before closing the store

How to change safely:
    - Wire new managers in start() and expose them as attributes
    - Keep stop() idempotent
"""

from __future__ import annotations

import logging
from typing import Optional

import json_log_formatter

from .compare.comparison import ComparisonEngine
from .config import LogFormat, SdlcSettings
from .entities import EntityService
from .locks import KeyedLock
from .projects import ProjectManager
from .release.patches import PatchManager
from .release.versions import VersionManager
from .review.reviews import ReviewManager
from .store.base import VersionedStore, create_store
from .worker import BackgroundTaskProcessor
from .workspace.manager import WorkspaceManager

logger = logging.getLogger(__name__)


def setup_logging(settings: SdlcSettings) -> None:
    """Configure root logging from settings.

    Args:
        settings: Service settings
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == LogFormat.JSON:
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]


class SdlcService:
    """Lifecycle owner of the store, the background pool and the managers.

    Attributes:
        settings: Effective settings
        store: Versioned store (created from settings unless given)
        worker: Background task processor
        projects, versions, workspaces, patches, reviews, comparisons, entities:
            Managers, available after start()
    """

    def __init__(self, settings: Optional[SdlcSettings] = None, store: Optional[VersionedStore] = None) -> None:
        self.settings = settings or SdlcSettings.from_env()
        self.settings.check_consistency()
        self.store: VersionedStore = store or create_store(self.settings)
        self.locks = KeyedLock()
        self._running = False

        # Initialized in start()
        self.worker: Optional[BackgroundTaskProcessor] = None
        self.projects: Optional[ProjectManager] = None
        self.versions: Optional[VersionManager] = None
        self.workspaces: Optional[WorkspaceManager] = None
        self.patches: Optional[PatchManager] = None
        self.reviews: Optional[ReviewManager] = None
        self.comparisons: Optional[ComparisonEngine] = None
        self.entities: Optional[EntityService] = None

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> SdlcService:
        """Initialize the store and wire every manager."""
        if self._running:
            logger.warning("Service already running")
            return self

        self.settings.log_config()
        self.store.initialize()
        settings = self.settings
        author = settings.default_author

        self.worker = BackgroundTaskProcessor(
            max_workers=settings.background_workers,
            retry_delay_ms=settings.background_retry_delay_ms,
            max_retries=settings.background_max_retries,
        )
        self.comparisons = ComparisonEngine(self.store)
        self.versions = VersionManager(self.store, locks=self.locks)
        self.projects = ProjectManager(self.store, self.versions, default_author=author)
        self.workspaces = WorkspaceManager(
            self.store, worker=self.worker, locks=self.locks, default_author=author
        )
        self.patches = PatchManager(self.store, self.versions, self.workspaces, worker=self.worker)
        self.reviews = ReviewManager(
            self.store, self.workspaces, self.comparisons, locks=self.locks, default_author=author
        )
        self.patches.reviews = self.reviews
        self.entities = EntityService(
            self.store, self.workspaces, default_author=author,
            revision_page_limit=settings.revision_page_limit,
        )

        self._running = True
        logger.info(
            "Service started",
            extra={"storage_backend": settings.storage_backend.value, "background_workers": settings.background_workers},
        )
        return self

    def stop(self) -> None:
        """Drain background work and close the store."""
        if not self._running:
            return
        if self.worker is not None:
            self.worker.shutdown(wait=True)
        self.store.close()
        self._running = False
        logger.info("Service stopped")

    def __enter__(self) -> SdlcService:
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
