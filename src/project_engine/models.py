"""
Data models for the project engine.

This module defines the browsing inputs (page visits, sessions), resource
identifiers, in-flight project candidates, confirmed projects and the
result types returned by the public operations.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .enums import (
    CandidateStatus,
    LifecycleErrorCode,
    NotificationAction,
    ProjectStatus,
    ResourceSpecificity,
    SiteAddedBy,
)
from .exceptions import InvalidTransitionError


@dataclass
class PageVisit:
    """A single page view reported by the browser event layer."""

    url: str
    title: str
    timestamp: datetime


@dataclass
class Session:
    """A browsing session: an ordered run of page visits."""

    id: str
    pages: list[PageVisit]
    start_time: datetime
    end_time: datetime
    label_id: Optional[str] = None


@dataclass
class ExtractedResource:
    """Semantic key for a URL, coarser than the URL but finer than the domain."""

    identifier: str  # e.g. 'github.com/owner/repo'
    domain: str  # hostname without 'www.'
    specificity: ResourceSpecificity


@dataclass
class AggregatedResource:
    """Visit statistics for one resource across a set of sessions."""

    identifier: str
    domain: str
    specificity: ResourceSpecificity
    visit_count: int
    first_visit: datetime
    last_visit: datetime
    session_ids: set[str] = field(default_factory=set)
    page_visits: list[PageVisit] = field(default_factory=list)


@dataclass
class NotificationHistoryEntry:
    """One entry in a candidate's notification log."""

    session_id: str
    timestamp: datetime
    action: NotificationAction


@dataclass
class ScoreBreakdown:
    """Independently rounded score components, for display only."""

    visits: int
    sessions: int
    resources: int
    time_span: int
    total: int


@dataclass
class ProjectCandidate:
    """
    A provisional project accumulating evidence from page visits.

    Status changes go through the mutators below, which enforce the
    transition table of CandidateStatus.
    """

    id: str
    primary_domain: str
    specific_resources: list[str]
    session_ids: list[str]
    visit_count: int
    first_seen: datetime
    last_seen: datetime
    keywords: list[str] = field(default_factory=list)
    related_domains: list[str] = field(default_factory=list)
    score: int = 0
    score_breakdown: Optional[ScoreBreakdown] = None
    status: CandidateStatus = CandidateStatus.WATCHING
    notification_shown: bool = False
    notification_history: list[NotificationHistoryEntry] = field(default_factory=list)
    snooze_count: int = 0

    def add_resource(self, identifier: str) -> None:
        if identifier not in self.specific_resources:
            self.specific_resources.append(identifier)

    def add_session(self, session_id: str) -> None:
        if session_id not in self.session_ids:
            self.session_ids.append(session_id)

    def add_keywords(self, words: list[str]) -> None:
        for word in words:
            if word not in self.keywords:
                self.keywords.append(word)

    def was_shown_in_session(self, session_id: str) -> bool:
        """Check whether a notification was already shown in this session."""
        return any(
            entry.session_id == session_id and entry.action == NotificationAction.SHOWN
            for entry in self.notification_history
        )

    def mark_ready(self) -> None:
        self._transition(CandidateStatus.READY)

    def record_shown(self, session_id: str, timestamp: datetime) -> None:
        """Record that the UI was asked to show this candidate."""
        self.notification_shown = True
        self.notification_history.append(
            NotificationHistoryEntry(
                session_id=session_id,
                timestamp=timestamp,
                action=NotificationAction.SHOWN,
            )
        )

    def snooze(self) -> None:
        """
        Defer a ready candidate.

        Each snooze raises the revisit bar; the notification history is
        kept so a snoozed candidate is not shown again in the same session.
        """
        self._transition(CandidateStatus.WATCHING)
        self.snooze_count += 1
        self.notification_shown = False

    def dismiss(self) -> None:
        self._transition(CandidateStatus.DISMISSED)

    def _transition(self, target: CandidateStatus) -> None:
        if not self.status.can_transition_to(target):
            raise InvalidTransitionError(
                code="invalid_transition",
                message=f"Cannot move candidate from {self.status.value} to {target.value}",
                details={"candidate_id": self.id, "from": self.status.value, "to": target.value},
            )
        self.status = target


@dataclass
class ProjectSite:
    """A site that belongs to a project."""

    url: str
    title: str
    added_at: datetime
    added_by: SiteAddedBy
    visit_count: int = 1


@dataclass
class DismissedSuggestion:
    """A URL the user declined to add to a project."""

    url: str
    timestamp: datetime


@dataclass
class Project:
    """A confirmed project representing sustained user work."""

    id: str
    name: str
    start_date: datetime
    end_date: datetime
    created_at: datetime
    session_ids: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    top_domains: list[str] = field(default_factory=list)
    sites: list[ProjectSite] = field(default_factory=list)
    status: ProjectStatus = ProjectStatus.ACTIVE  # recomputed on every read
    auto_detected: bool = False
    score: int = 100
    description: Optional[str] = None
    dismissed_suggestions: list[DismissedSuggestion] = field(default_factory=list)


@dataclass
class SuggestionMatch:
    """Best project to propose for the current page."""

    project: Project
    score: float


@dataclass
class LifecycleResult:
    """Outcome of a lifecycle operation; failures are values, not exceptions."""

    success: bool
    project: Optional[Project] = None
    candidate: Optional[ProjectCandidate] = None
    error: Optional[LifecycleErrorCode] = None
    message: Optional[str] = None
