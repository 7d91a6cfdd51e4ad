"""
Project Engine - project detection and lifecycle for browsing history.

This package turns page visits and browsing sessions into durable projects
using incremental candidate scoring, batch temporal clustering, a
conservative add-to-project suggestion matcher and a promotion workflow.
"""

__version__ = "0.1.0"
__author__ = "Project Engine Team"

from project_engine.exceptions import (
    ProjectEngineError,
    PersistenceError,
    TamperingError,
    InvalidTransitionError,
    NotificationError,
    ConfigurationError,
)
from project_engine.enums import (
    CandidateStatus,
    ProjectStatus,
    ResourceSpecificity,
    SiteAddedBy,
    NotificationAction,
    NotificationKind,
    LifecycleErrorCode,
    LogLevel,
)
from project_engine.config import (
    CandidateThresholds,
    ClusterThresholds,
    SuggestionConfig,
    RetryConfig,
    WebhookConfig,
    NotificationConfig,
    PersistenceConfig,
    LoggingConfig,
    EngineConfig,
    create_default_config,
    load_config_from_file,
    save_config_to_file,
    load_config_from_env,
)
from project_engine.models import (
    PageVisit,
    Session,
    ExtractedResource,
    AggregatedResource,
    NotificationHistoryEntry,
    ScoreBreakdown,
    ProjectCandidate,
    ProjectSite,
    DismissedSuggestion,
    Project,
    SuggestionMatch,
    LifecycleResult,
)
from project_engine.audit_logger import (
    AuditLogger,
    LogEntry,
)
from project_engine.resource_extractor import (
    ResourceExtractor,
    UrlResourceExtractor,
)
from project_engine.kv_store import (
    KeyValueStore,
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
)
from project_engine.candidate_store import CandidateStore
from project_engine.project_store import ProjectStore
from project_engine.candidate_detector import (
    CandidateDetector,
    calculate_candidate_score,
)
from project_engine.project_clusterer import (
    ProjectClusterer,
    detect_projects,
)
from project_engine.suggestion_matcher import SuggestionMatcher
from project_engine.lifecycle import LifecycleCoordinator
from project_engine.notifications import (
    NotificationPayload,
    NotificationResult,
    NotificationChannel,
    CallbackChannel,
    WebhookChannel,
    NotificationDispatcher,
)
from project_engine.engine import (
    ProjectEngine,
    SessionContext,
    VisitOutcome,
)

__all__ = [
    # Exceptions
    "ProjectEngineError",
    "PersistenceError",
    "TamperingError",
    "InvalidTransitionError",
    "NotificationError",
    "ConfigurationError",
    # Enums
    "CandidateStatus",
    "ProjectStatus",
    "ResourceSpecificity",
    "SiteAddedBy",
    "NotificationAction",
    "NotificationKind",
    "LifecycleErrorCode",
    "LogLevel",
    # Config
    "CandidateThresholds",
    "ClusterThresholds",
    "SuggestionConfig",
    "RetryConfig",
    "WebhookConfig",
    "NotificationConfig",
    "PersistenceConfig",
    "LoggingConfig",
    "EngineConfig",
    "create_default_config",
    "load_config_from_file",
    "save_config_to_file",
    "load_config_from_env",
    # Models
    "PageVisit",
    "Session",
    "ExtractedResource",
    "AggregatedResource",
    "NotificationHistoryEntry",
    "ScoreBreakdown",
    "ProjectCandidate",
    "ProjectSite",
    "DismissedSuggestion",
    "Project",
    "SuggestionMatch",
    "LifecycleResult",
    # Logging
    "AuditLogger",
    "LogEntry",
    # Collaborators
    "ResourceExtractor",
    "UrlResourceExtractor",
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "CandidateStore",
    "ProjectStore",
    # Detection and lifecycle
    "CandidateDetector",
    "calculate_candidate_score",
    "ProjectClusterer",
    "detect_projects",
    "SuggestionMatcher",
    "LifecycleCoordinator",
    # Notifications
    "NotificationPayload",
    "NotificationResult",
    "NotificationChannel",
    "CallbackChannel",
    "WebhookChannel",
    "NotificationDispatcher",
    # Engine
    "ProjectEngine",
    "SessionContext",
    "VisitOutcome",
]
