"""
Enumeration types for the project engine.

These enums replace free-form status strings with type-safe constants for
candidate and project lifecycles, resource tiers, notifications and errors.
"""

from enum import Enum


class CandidateStatus(Enum):
    """Lifecycle status of a project candidate."""

    WATCHING = "watching"
    READY = "ready"
    DISMISSED = "dismissed"

    def can_transition_to(self, target: "CandidateStatus") -> bool:
        """Check whether moving from this status to ``target`` is allowed."""
        return target in _CANDIDATE_TRANSITIONS[self]


_CANDIDATE_TRANSITIONS: dict[CandidateStatus, frozenset[CandidateStatus]] = {
    CandidateStatus.WATCHING: frozenset({CandidateStatus.READY, CandidateStatus.DISMISSED}),
    CandidateStatus.READY: frozenset({CandidateStatus.WATCHING, CandidateStatus.DISMISSED}),
    CandidateStatus.DISMISSED: frozenset(),
}


class ProjectStatus(Enum):
    """Activity status of a project, derived from its end date."""

    ACTIVE = "active"
    STALE = "stale"
    COMPLETED = "completed"


class ResourceSpecificity(Enum):
    """How meaningful a URL is as a project signal."""

    HOMEPAGE = "homepage"
    CATEGORY = "category"
    SPECIFIC = "specific"
    DEEP = "deep"


class SiteAddedBy(Enum):
    """Who added a site to a project."""

    AUTO = "auto"
    USER = "user"


class NotificationAction(Enum):
    """Actions recorded in a candidate's notification history."""

    SHOWN = "shown"
    SNOOZED = "snoozed"
    DISMISSED = "dismissed"


class NotificationKind(Enum):
    """Identifiers of notifications sent to the UI layer."""

    PROJECT_DETECTED = "project-detected"
    PROJECT_SUGGESTION = "project-suggestion"


class LifecycleErrorCode(Enum):
    """Failure codes returned by lifecycle operations."""

    CANDIDATE_NOT_FOUND = "candidate_not_found"
    PROJECT_NOT_FOUND = "project_not_found"
    INVALID_TRANSITION = "invalid_transition"
    DUPLICATE_SITE = "duplicate_site"
    STORAGE_ERROR = "storage_error"


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"

    @property
    def rank(self) -> int:
        """Numeric severity used for level filtering."""
        return _LEVEL_RANKS[self]


_LEVEL_RANKS = {
    LogLevel.DEBUG: 10,
    LogLevel.INFO: 20,
    LogLevel.WARN: 30,
    LogLevel.ERROR: 40,
}
