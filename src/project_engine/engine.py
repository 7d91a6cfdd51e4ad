"""
Project Engine facade.

Wires the stores, detectors, matcher, lifecycle coordinator and
notification dispatcher together. The surrounding event layer calls
handle_page_visit() for every page view and the lifecycle methods for
user decisions.

Ordering within one visit: candidate detection commits first, then the
notification gate, then dispatch. Dispatch runs in the background and
its failure never touches committed state.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional, TextIO

from .audit_logger import AuditLogger
from .candidate_detector import CandidateDetector
from .candidate_store import CandidateStore
from .config import EngineConfig, create_default_config
from .enums import LogLevel
from .kv_store import JsonFileKeyValueStore, KeyValueStore
from .lifecycle import LifecycleCoordinator
from .models import PageVisit, Project, ProjectCandidate, Session, SuggestionMatch
from .notifications import (
    CallbackChannel,
    NotificationDispatcher,
    NotificationPayload,
    WebhookChannel,
    project_detected_payload,
    project_suggestion_payload,
)
from .project_clusterer import ProjectClusterer
from .project_store import ProjectStore
from .resource_extractor import ResourceExtractor, UrlResourceExtractor
from .suggestion_matcher import SuggestionMatcher


@dataclass
class SessionContext:
    """The browsing session a visit belongs to, plus known history."""

    session_id: str
    history: list[Session] = field(default_factory=list)


@dataclass
class VisitOutcome:
    """What one page visit produced."""

    candidate: Optional[ProjectCandidate] = None
    suggestion: Optional[SuggestionMatch] = None

    @property
    def notified(self) -> bool:
        return self.candidate is not None or self.suggestion is not None


class ProjectEngine:
    """
    Entry point of the project detection and lifecycle engine.

    With ``config.serialize_writes`` every read-modify-write of a stored
    collection runs under one shared asyncio.Lock. Without it concurrent
    operations can overwrite each other's updates (last write wins).
    """

    def __init__(
        self,
        store: KeyValueStore,
        config: Optional[EngineConfig] = None,
        extractor: Optional[ResourceExtractor] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        clock: Optional[Callable[[], datetime]] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            store: Key-value store holding candidates and projects
            config: Engine configuration (defaults to create_default_config())
            extractor: Resource extractor (defaults to UrlResourceExtractor)
            dispatcher: Notification dispatcher (defaults to one without channels)
            clock: Returns the current time
            logger: Optional audit logger
        """
        self._config = config or create_default_config()
        self._logger = logger
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._extractor = extractor or UrlResourceExtractor()
        self._write_lock = asyncio.Lock() if self._config.serialize_writes else None

        persistence = self._config.persistence
        self._candidate_store = CandidateStore(
            store, self._config.candidates, persistence.candidates_key
        )
        self._project_store = ProjectStore(
            store, self._config.clusters, persistence.projects_key
        )

        self._detector = CandidateDetector(
            self._candidate_store,
            self._extractor,
            thresholds=self._config.candidates,
            clock=self._clock,
            write_lock=self._write_lock,
            logger=logger,
        )
        self._clusterer = ProjectClusterer(
            self._extractor, self._config.clusters, clock=self._clock
        )
        self._matcher = SuggestionMatcher(
            self._config.suggestions, clock=self._clock, logger=logger
        )
        self._lifecycle = LifecycleCoordinator(
            self._candidate_store,
            self._project_store,
            clock=self._clock,
            write_lock=self._write_lock,
            logger=logger,
        )
        self._dispatcher = dispatcher or NotificationDispatcher(self._config.retry, logger)

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        store: Optional[KeyValueStore] = None,
        listener: Optional[Callable[[NotificationPayload], Any]] = None,
        output_stream: Optional[TextIO] = None,
    ) -> "ProjectEngine":
        """
        Build an engine with the configured store, logger and channels.

        Args:
            config: Engine configuration
            store: Store override (defaults to the HMAC-protected state file)
            listener: In-process UI listener for notifications
            output_stream: Log output stream (defaults to sys.stderr)
        """
        logger = AuditLogger.from_config(config.logging, output_stream)
        if store is None:
            store = JsonFileKeyValueStore(
                config.persistence.state_file_path,
                config.persistence.hmac_secret,
            )

        dispatcher = NotificationDispatcher(config.retry, logger)
        dispatcher.register_channel(CallbackChannel(listener))
        if config.notifications.webhook is not None:
            dispatcher.register_channel(
                WebhookChannel(config.notifications.webhook, config.simulation_mode)
            )

        return cls(store, config=config, dispatcher=dispatcher, logger=logger)

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def lifecycle(self) -> LifecycleCoordinator:
        return self._lifecycle

    @property
    def detector(self) -> CandidateDetector:
        return self._detector

    @property
    def dispatcher(self) -> NotificationDispatcher:
        return self._dispatcher

    @property
    def candidate_store(self) -> CandidateStore:
        return self._candidate_store

    @property
    def project_store(self) -> ProjectStore:
        return self._project_store

    def now(self) -> datetime:
        return self._clock()

    async def handle_page_visit(self, visit: PageVisit, session: SessionContext) -> VisitOutcome:
        """
        Process one page view end to end.

        Runs candidate detection and the suggestion matcher, and schedules
        a notification for whichever of them fired. Never raises.
        """
        outcome = VisitOutcome()

        outcome.candidate = await self._detector.observe(
            visit, session.session_id, session.history
        )
        if outcome.candidate is not None:
            self._log_info("Project candidate ready", {
                "candidate_id": outcome.candidate.id,
                "session_id": session.session_id,
                "score": outcome.candidate.score,
            })
            self._dispatcher.dispatch_nowait(project_detected_payload(outcome.candidate))

        outcome.suggestion = await self.suggest_project(visit)
        if outcome.suggestion is not None:
            self._dispatcher.dispatch_nowait(
                project_suggestion_payload(outcome.suggestion, visit.url, visit.title)
            )

        return outcome

    async def suggest_project(self, visit: PageVisit) -> Optional[SuggestionMatch]:
        try:
            projects = await self._project_store.load(self._clock())
        except Exception as e:
            if self._logger:
                self._logger.log_error(
                    "ProjectEngine", "Suggestion check aborted", error=e,
                    additional_data={"url": visit.url},
                )
            return None
        return self._matcher.match_project(visit, projects)

    def detect_projects(self, sessions: list[Session]) -> list[Project]:
        """Batch-cluster a session history into project drafts (not saved)."""
        drafts = self._clusterer.detect_projects(sessions)
        self._log_info("Batch detection finished", {
            "sessions": len(sessions),
            "drafts": len(drafts),
        })
        return drafts

    async def wait_idle(self) -> None:
        """Wait for background notification deliveries."""
        await self._dispatcher.wait_idle()

    def _log_info(self, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(LogLevel.INFO, "ProjectEngine", message, data)
