"""
Promotion / Lifecycle Coordinator module.

Turns user decisions into state changes: promoting a ready candidate into
a project, snoozing or dismissing it, and the project edits that follow
(manual creation, accepting batch drafts, adding sites, handling
suggestions). Every operation returns a LifecycleResult; nothing raises
past this module.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from .audit_logger import AuditLogger
from .candidate_store import CandidateStore
from .enums import (
    CandidateStatus,
    LifecycleErrorCode,
    LogLevel,
    NotificationAction,
    SiteAddedBy,
)
from .exceptions import InvalidTransitionError
from .kv_store import write_guard
from .models import (
    DismissedSuggestion,
    LifecycleResult,
    NotificationHistoryEntry,
    Project,
    ProjectCandidate,
    ProjectSite,
)
from .project_store import ProjectStore, has_site, normalize_url
from .resource_extractor import normalize_hostname

# Related domains copied next to the primary domain on promotion
PROMOTED_RELATED_DOMAINS = 2


def _capitalize(word: str) -> str:
    return word[:1].upper() + word[1:]


def promoted_project_name(candidate: ProjectCandidate) -> str:
    if candidate.keywords:
        return _capitalize(candidate.keywords[0])
    return f"{candidate.primary_domain} Project"


def promoted_project_description(candidate: ProjectCandidate) -> str:
    if candidate.keywords:
        return f"Research on {', '.join(candidate.keywords[:3])} ({candidate.primary_domain})"
    return f"Work on {candidate.primary_domain}"


def project_from_candidate(candidate: ProjectCandidate, now: datetime) -> Project:
    """
    Build the project a candidate is promoted into.

    The first site is the earliest observed specific resource. Candidates
    keep no page titles, so its title is empty as for manual sites.
    """
    first_resource = candidate.specific_resources[0]
    return Project(
        id=f"project-{uuid.uuid4().hex[:16]}",
        name=promoted_project_name(candidate),
        description=promoted_project_description(candidate),
        start_date=candidate.first_seen,
        end_date=candidate.last_seen,
        created_at=now,
        session_ids=list(candidate.session_ids),
        keywords=list(candidate.keywords),
        top_domains=[candidate.primary_domain]
        + candidate.related_domains[:PROMOTED_RELATED_DOMAINS],
        sites=[
            ProjectSite(
                url=first_resource,
                title="",
                added_at=now,
                added_by=SiteAddedBy.AUTO,
                visit_count=candidate.visit_count,
            )
        ],
        auto_detected=True,
        score=candidate.score,
    )


def _site_domain(url: str) -> Optional[str]:
    normalized = normalize_url(url)
    host = normalized.split("/", 1)[0]
    return normalize_hostname(host) if host else None


class LifecycleCoordinator:
    """
    Applies user decisions to candidates and projects.

    Candidate and project collections are read, changed and written back
    as a whole under the shared write guard.
    """

    def __init__(
        self,
        candidate_store: CandidateStore,
        project_store: ProjectStore,
        clock: Optional[Callable[[], datetime]] = None,
        write_lock: Optional[asyncio.Lock] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the coordinator.

        Args:
            candidate_store: Persisted candidate collection
            project_store: Persisted project collection
            clock: Returns the current time
            write_lock: Shared single-writer lock; None keeps writes unguarded
            logger: Optional audit logger
        """
        self._candidates = candidate_store
        self._projects = project_store
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._write_lock = write_lock
        self._logger = logger

    # Candidate operations

    async def promote(self, candidate_id: str) -> LifecycleResult:
        """
        Promote a candidate into a project.

        The project is saved before the candidate is removed, so a failure
        between the two writes leaves a duplicate rather than a loss.
        """
        async def operation() -> LifecycleResult:
            now = self._clock()
            candidates = await self._candidates.load_live(now)
            candidate = self._find_candidate(candidates, candidate_id)
            if candidate is None:
                return self._candidate_not_found(candidate_id)
            if candidate.status == CandidateStatus.DISMISSED:
                return LifecycleResult(
                    success=False,
                    candidate=candidate,
                    error=LifecycleErrorCode.INVALID_TRANSITION,
                    message="Dismissed candidates cannot be promoted",
                )

            project = project_from_candidate(candidate, now)
            projects = await self._projects.load(now)
            await self._projects.save(projects + [project])
            await self._candidates.save([c for c in candidates if c.id != candidate_id])

            self._log_info("Candidate promoted", {
                "candidate_id": candidate_id,
                "project_id": project.id,
                "score": project.score,
            })
            return LifecycleResult(success=True, project=project, candidate=candidate)

        return await self._run("promote", operation)

    async def snooze(self, candidate_id: str, session_id: Optional[str] = None) -> LifecycleResult:
        """Send a ready candidate back to watching; the revisit bar rises."""
        return await self._transition_candidate(
            "snooze", candidate_id, session_id, NotificationAction.SNOOZED,
            lambda candidate: candidate.snooze(),
        )

    async def dismiss(self, candidate_id: str, session_id: Optional[str] = None) -> LifecycleResult:
        """Dismiss a candidate; it stays stored until age eviction."""
        return await self._transition_candidate(
            "dismiss", candidate_id, session_id, NotificationAction.DISMISSED,
            lambda candidate: candidate.dismiss(),
        )

    async def ready_candidates(self) -> list[ProjectCandidate]:
        """Ready candidates whose notification has not been shown yet."""
        try:
            candidates = await self._candidates.load_live(self._clock())
        except Exception as e:
            self._log_error("Failed to load candidates", e, {})
            return []
        return [
            c for c in candidates
            if c.status == CandidateStatus.READY and not c.notification_shown
        ]

    # Project operations

    async def create_project(
        self,
        name: str,
        site_urls: tuple[str, ...] = (),
        description: Optional[str] = None,
        keywords: tuple[str, ...] = (),
    ) -> LifecycleResult:
        """Create a project by hand (score 100, not auto-detected)."""
        async def operation() -> LifecycleResult:
            now = self._clock()
            sites: list[ProjectSite] = []
            for url in site_urls:
                if any(normalize_url(s.url) == normalize_url(url) for s in sites):
                    continue
                sites.append(ProjectSite(url=url, title="", added_at=now, added_by=SiteAddedBy.USER))

            top_domains: list[str] = []
            for site in sites:
                domain = _site_domain(site.url)
                if domain and domain not in top_domains:
                    top_domains.append(domain)

            project = Project(
                id=f"project-{uuid.uuid4().hex[:16]}",
                name=name,
                description=description,
                start_date=now,
                end_date=now,
                created_at=now,
                keywords=list(keywords),
                top_domains=top_domains,
                sites=sites,
                auto_detected=False,
                score=100,
            )
            projects = await self._projects.load(now)
            await self._projects.save(projects + [project])
            self._log_info("Project created", {"project_id": project.id})
            return LifecycleResult(success=True, project=project)

        return await self._run("create_project", operation)

    async def accept_detected_project(self, draft: Project) -> LifecycleResult:
        """Persist a batch-detected project draft."""
        async def operation() -> LifecycleResult:
            now = self._clock()
            projects = [p for p in await self._projects.load(now) if p.id != draft.id]
            await self._projects.save(projects + [draft])
            self._log_info("Detected project accepted", {
                "project_id": draft.id,
                "score": draft.score,
            })
            return LifecycleResult(success=True, project=draft)

        return await self._run("accept_detected_project", operation)

    async def update_project(
        self,
        project_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        keywords: Optional[list[str]] = None,
    ) -> LifecycleResult:
        async def operation() -> LifecycleResult:
            now = self._clock()
            projects = await self._projects.load(now)
            project = self._find_project(projects, project_id)
            if project is None:
                return self._project_not_found(project_id)

            if name is not None:
                project.name = name
            if description is not None:
                project.description = description
            if keywords is not None:
                project.keywords = list(keywords)

            await self._projects.save(projects)
            return LifecycleResult(success=True, project=project)

        return await self._run("update_project", operation)

    async def delete_project(self, project_id: str) -> LifecycleResult:
        async def operation() -> LifecycleResult:
            now = self._clock()
            projects = await self._projects.load(now)
            project = self._find_project(projects, project_id)
            if project is None:
                return self._project_not_found(project_id)
            await self._projects.save([p for p in projects if p.id != project_id])
            self._log_info("Project deleted", {"project_id": project_id})
            return LifecycleResult(success=True, project=project)

        return await self._run("delete_project", operation)

    async def get_project(self, project_id: str) -> Optional[Project]:
        try:
            return await self._projects.get(project_id, self._clock())
        except Exception as e:
            self._log_error("Failed to load project", e, {"project_id": project_id})
            return None

    async def list_projects(self) -> list[Project]:
        try:
            return await self._projects.load(self._clock())
        except Exception as e:
            self._log_error("Failed to load projects", e, {})
            return []

    async def add_site(
        self,
        project_id: str,
        url: str,
        title: str = "",
        added_by: SiteAddedBy = SiteAddedBy.USER,
    ) -> LifecycleResult:
        """
        Append a site to a project.

        The same URL may belong to several projects but only once to each.
        Adding a site counts as activity and moves the end date forward.
        """
        async def operation() -> LifecycleResult:
            now = self._clock()
            projects = await self._projects.load(now)
            project = self._find_project(projects, project_id)
            if project is None:
                return self._project_not_found(project_id)
            if has_site(project, url):
                return LifecycleResult(
                    success=False,
                    project=project,
                    error=LifecycleErrorCode.DUPLICATE_SITE,
                    message="Site already in this project",
                )

            project.sites.append(
                ProjectSite(url=url, title=title, added_at=now, added_by=added_by)
            )
            project.end_date = max(project.end_date, now)
            domain = _site_domain(url)
            if domain and domain not in project.top_domains:
                project.top_domains.append(domain)

            await self._projects.save(projects)
            self._log_info("Site added to project", {"project_id": project_id, "url": url})
            return LifecycleResult(success=True, project=project)

        return await self._run("add_site", operation)

    async def accept_suggestion(self, project_id: str, url: str, title: str = "") -> LifecycleResult:
        return await self.add_site(project_id, url, title, SiteAddedBy.USER)

    async def dismiss_suggestion(self, project_id: str, url: str) -> LifecycleResult:
        """Remember that the user declined ``url`` for this project."""
        async def operation() -> LifecycleResult:
            now = self._clock()
            projects = await self._projects.load(now)
            project = self._find_project(projects, project_id)
            if project is None:
                return self._project_not_found(project_id)
            project.dismissed_suggestions.append(DismissedSuggestion(url=url, timestamp=now))
            await self._projects.save(projects)
            return LifecycleResult(success=True, project=project)

        return await self._run("dismiss_suggestion", operation)

    # Helpers

    async def _transition_candidate(
        self,
        operation_name: str,
        candidate_id: str,
        session_id: Optional[str],
        action: NotificationAction,
        apply: Callable[[ProjectCandidate], None],
    ) -> LifecycleResult:
        async def operation() -> LifecycleResult:
            now = self._clock()
            candidates = await self._candidates.load_live(now)
            candidate = self._find_candidate(candidates, candidate_id)
            if candidate is None:
                return self._candidate_not_found(candidate_id)

            try:
                apply(candidate)
            except InvalidTransitionError as e:
                return LifecycleResult(
                    success=False,
                    candidate=candidate,
                    error=LifecycleErrorCode.INVALID_TRANSITION,
                    message=e.message,
                )

            if session_id is not None:
                candidate.notification_history.append(
                    NotificationHistoryEntry(session_id=session_id, timestamp=now, action=action)
                )

            await self._candidates.save(candidates)
            self._log_info(f"Candidate {action.value}", {
                "candidate_id": candidate_id,
                "snooze_count": candidate.snooze_count,
            })
            return LifecycleResult(success=True, candidate=candidate)

        return await self._run(operation_name, operation)

    async def _run(
        self,
        operation_name: str,
        operation: Callable[[], Awaitable[LifecycleResult]],
    ) -> LifecycleResult:
        try:
            async with write_guard(self._write_lock):
                return await operation()
        except Exception as e:
            self._log_error(f"{operation_name} aborted", e, {"operation": operation_name})
            return LifecycleResult(
                success=False,
                error=LifecycleErrorCode.STORAGE_ERROR,
                message=str(e),
            )

    @staticmethod
    def _find_candidate(
        candidates: list[ProjectCandidate], candidate_id: str
    ) -> Optional[ProjectCandidate]:
        return next((c for c in candidates if c.id == candidate_id), None)

    @staticmethod
    def _find_project(projects: list[Project], project_id: str) -> Optional[Project]:
        return next((p for p in projects if p.id == project_id), None)

    @staticmethod
    def _candidate_not_found(candidate_id: str) -> LifecycleResult:
        return LifecycleResult(
            success=False,
            error=LifecycleErrorCode.CANDIDATE_NOT_FOUND,
            message=f"Unknown candidate: {candidate_id}",
        )

    @staticmethod
    def _project_not_found(project_id: str) -> LifecycleResult:
        return LifecycleResult(
            success=False,
            error=LifecycleErrorCode.PROJECT_NOT_FOUND,
            message=f"Unknown project: {project_id}",
        )

    def _log_info(self, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(LogLevel.INFO, "LifecycleCoordinator", message, data)

    def _log_error(self, message: str, error: Exception, data: dict) -> None:
        if self._logger:
            self._logger.log_error("LifecycleCoordinator", message, error=error, additional_data=data)
