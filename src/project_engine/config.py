"""
Configuration for the project engine.

This module defines all configuration structures (detection thresholds,
suggestion tuning, persistence, notifications, logging) and the helpers
that build them from defaults, a JSON file or the process environment.
"""

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .exceptions import ConfigurationError


DEFAULT_STATE_FILE = Path.home() / ".project_engine" / "state.json"
DEFAULT_CONFIG_FILE = Path.home() / ".project_engine" / "config.json"
DEFAULT_HMAC_SECRET = "default-secret-change-me"


@dataclass
class CandidateThresholds:
    """Thresholds for the incremental candidate detector."""

    min_visits: int = 3
    min_score: int = 50
    max_age_days: float = 7.0
    dismissed_max_age_days: float = 7.0
    snooze_visit_penalty: int = 2
    seed_keyword_limit: int = 5
    related_domain_limit: int = 5


@dataclass
class ClusterThresholds:
    """Thresholds for the batch project clusterer."""

    min_sessions: int = 2
    min_resources: int = 2
    min_resource_visits: int = 2
    min_score: int = 50
    min_duration_hours: float = 2.0
    max_gap_days: float = 30.0
    active_threshold_days: float = 7.0
    completed_threshold_days: float = 30.0
    keyword_limit: int = 10
    top_domain_limit: int = 5


@dataclass
class SuggestionConfig:
    """Tuning for the conservative add-to-project suggestion matcher."""

    threshold: float = 0.7
    dismissal_cooldown_hours: float = 24.0
    min_keyword_overlap: int = 2
    domain_weight: float = 0.3
    keyword_weight: float = 0.4
    url_weight: float = 0.3
    code_hosting_domains: list[str] = field(default_factory=lambda: ["github.com"])
    code_hosting_meta_pages: list[str] = field(
        default_factory=lambda: [
            "explore", "trending", "topics", "collections", "events", "sponsors",
        ]
    )


@dataclass
class RetryConfig:
    """Retry behavior for notification delivery."""

    max_retries: int = 2
    base_delay_seconds: float = 0.5
    max_delay_seconds: float = 10.0


@dataclass
class WebhookConfig:
    """Webhook notification channel configuration."""

    url: str
    headers: dict[str, str] = field(default_factory=dict)
    timeout_seconds: float = 10.0


@dataclass
class NotificationConfig:
    """Notification channels configuration."""

    webhook: Optional[WebhookConfig] = None


@dataclass
class PersistenceConfig:
    """Key-value store configuration."""

    state_file_path: Path = DEFAULT_STATE_FILE
    hmac_secret: str = DEFAULT_HMAC_SECRET
    candidates_key: str = "project-candidates"
    projects_key: str = "projects"


@dataclass
class LoggingConfig:
    """Logging and audit configuration."""

    level: str = "info"
    audit_mode: bool = False
    audit_signing_key: Optional[str] = None
    output_format: str = "text"  # 'json', 'text', 'both'
    redact_urls: bool = True


@dataclass
class EngineConfig:
    """Main configuration combining all sub-configurations."""

    candidates: CandidateThresholds = field(default_factory=CandidateThresholds)
    clusters: ClusterThresholds = field(default_factory=ClusterThresholds)
    suggestions: SuggestionConfig = field(default_factory=SuggestionConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    serialize_writes: bool = True
    simulation_mode: bool = False


def create_default_config(
    state_file: Optional[Path] = None,
    hmac_secret: str = DEFAULT_HMAC_SECRET,
) -> EngineConfig:
    """
    Create a default engine configuration.

    Args:
        state_file: Path to the state file for persistence
        hmac_secret: Secret for HMAC protection of the state file

    Returns:
        EngineConfig with default settings
    """
    return EngineConfig(
        persistence=PersistenceConfig(
            state_file_path=state_file or DEFAULT_STATE_FILE,
            hmac_secret=hmac_secret,
        ),
    )


def config_from_dict(data: dict) -> EngineConfig:
    """
    Build an EngineConfig from a parsed JSON document.

    Missing sections fall back to defaults; unknown keys are rejected.

    Raises:
        ConfigurationError: If a section contains unknown or malformed keys
    """
    try:
        persistence_data = dict(data.get("persistence", {}))
        if "state_file_path" in persistence_data:
            persistence_data["state_file_path"] = Path(persistence_data["state_file_path"])

        notifications_data = data.get("notifications", {}) or {}
        webhook_data = notifications_data.get("webhook")
        notifications = NotificationConfig(
            webhook=WebhookConfig(**webhook_data) if webhook_data else None,
        )

        return EngineConfig(
            candidates=CandidateThresholds(**data.get("candidates", {})),
            clusters=ClusterThresholds(**data.get("clusters", {})),
            suggestions=SuggestionConfig(**data.get("suggestions", {})),
            retry=RetryConfig(**data.get("retry", {})),
            notifications=notifications,
            persistence=PersistenceConfig(**persistence_data),
            logging=LoggingConfig(**data.get("logging", {})),
            serialize_writes=data.get("serialize_writes", True),
            simulation_mode=data.get("simulation_mode", False),
        )
    except TypeError as e:
        raise ConfigurationError(
            code="invalid_config",
            message=f"Invalid configuration: {e}",
            details={"sections": sorted(data.keys())},
        )


def config_to_dict(config: EngineConfig) -> dict:
    """Convert an EngineConfig to a JSON-serializable dictionary."""
    data = asdict(config)
    data["persistence"]["state_file_path"] = str(config.persistence.state_file_path)
    return data


def load_config_from_file(config_path: Path) -> Optional[EngineConfig]:
    """
    Load configuration from a JSON file.

    Args:
        config_path: Path to the configuration file

    Returns:
        EngineConfig if the file exists, None otherwise

    Raises:
        ConfigurationError: If the file cannot be parsed
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return None
    except json.JSONDecodeError as e:
        raise ConfigurationError(
            code="parse_error",
            message=f"Failed to parse config file: {e}",
            details={"config_path": str(config_path)},
        )

    if not isinstance(data, dict):
        raise ConfigurationError(
            code="parse_error",
            message="Config file must contain a JSON object",
            details={"config_path": str(config_path)},
        )

    return config_from_dict(data)


def save_config_to_file(config: EngineConfig, config_path: Path) -> None:
    """
    Save configuration to a JSON file.

    Raises:
        ConfigurationError: If the file cannot be written
    """
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(config_to_dict(config), f, indent=2, ensure_ascii=False)
    except OSError as e:
        raise ConfigurationError(
            code="io_error",
            message=f"Failed to write config file: {e}",
            details={"config_path": str(config_path)},
        )


def load_config_from_env(
    base: Optional[EngineConfig] = None,
    dotenv_path: Optional[Path] = None,
) -> EngineConfig:
    """
    Apply PROJECT_ENGINE_* environment overrides to a configuration.

    Values from a .env file are loaded first; variables already present in
    the environment win.

    Args:
        base: Configuration to override (defaults to create_default_config())
        dotenv_path: Optional explicit .env file

    Returns:
        The updated EngineConfig
    """
    load_dotenv(dotenv_path=dotenv_path)
    config = base or create_default_config()

    state_file = os.getenv("PROJECT_ENGINE_STATE_FILE", "").strip()
    if state_file:
        config.persistence.state_file_path = Path(state_file)

    secret = os.getenv("PROJECT_ENGINE_HMAC_SECRET", "").strip()
    if secret:
        config.persistence.hmac_secret = secret

    level = os.getenv("PROJECT_ENGINE_LOG_LEVEL", "").strip().lower()
    if level:
        config.logging.level = level

    webhook_url = os.getenv("PROJECT_ENGINE_WEBHOOK_URL", "").strip()
    if webhook_url:
        config.notifications.webhook = WebhookConfig(url=webhook_url)

    if os.getenv("PROJECT_ENGINE_SIMULATION", "0") == "1":
        config.simulation_mode = True

    return config
