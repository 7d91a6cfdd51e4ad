"""
Project Store module.

Persists confirmed projects under a single key. Project status is not
authoritative in storage: it is recomputed from the end date on every
read.
"""

from datetime import datetime
from typing import Optional
from urllib.parse import urlsplit

from .config import ClusterThresholds
from .enums import ProjectStatus
from .exceptions import PersistenceError
from .kv_store import KeyValueStore
from .models import Project
from .resource_extractor import normalize_hostname
from .serialization import project_from_dict, project_to_dict


SECONDS_PER_DAY = 24 * 60 * 60


def determine_status(
    end_date: datetime,
    now: datetime,
    thresholds: ClusterThresholds,
) -> ProjectStatus:
    """Project status from the days elapsed since its last activity."""
    days_since = (now - end_date).total_seconds() / SECONDS_PER_DAY
    if days_since <= thresholds.active_threshold_days:
        return ProjectStatus.ACTIVE
    if days_since <= thresholds.completed_threshold_days:
        return ProjectStatus.STALE
    return ProjectStatus.COMPLETED


def normalize_url(url: str) -> str:
    """
    Comparable form of a site URL: host and path, no scheme or query.

    Accepts scheme-less URLs such as 'github.com/owner/repo'.
    """
    candidate = url if url.startswith("http") else f"https://{url}"
    try:
        parts = urlsplit(candidate)
        hostname = parts.hostname
    except ValueError:
        hostname = None
    if not hostname:
        stripped = url.split("://", 1)[-1]
        return stripped.split("?", 1)[0].split("#", 1)[0].rstrip("/")
    return normalize_hostname(hostname) + parts.path.rstrip("/")


def has_site(project: Project, url: str) -> bool:
    """Whether ``url`` is already one of the project's sites (normalized)."""
    target = normalize_url(url)
    return any(normalize_url(site.url) == target for site in project.sites)


class ProjectStore:
    """Whole-collection persistence for projects."""

    def __init__(
        self,
        store: KeyValueStore,
        thresholds: ClusterThresholds,
        key: str = "projects",
    ) -> None:
        """
        Initialize the project store.

        Args:
            store: Underlying key-value store
            thresholds: Status thresholds (active / stale / completed)
            key: Storage key of the project collection
        """
        self._store = store
        self._thresholds = thresholds
        self._key = key

    async def load(self, now: datetime) -> list[Project]:
        """
        Load all projects with their status recomputed for ``now``.

        Raises:
            PersistenceError: If the store fails or holds malformed data
        """
        raw = await self._store.get(self._key)
        if raw is None:
            return []
        if not isinstance(raw, list):
            raise PersistenceError(
                code="invalid_collection",
                message=f"Expected a list under {self._key!r}",
                details={"key": self._key, "type": type(raw).__name__},
            )
        projects = [project_from_dict(item) for item in raw]
        for project in projects:
            project.status = determine_status(project.end_date, now, self._thresholds)
        return projects

    async def load_active(self, now: datetime) -> list[Project]:
        return [p for p in await self.load(now) if p.status == ProjectStatus.ACTIVE]

    async def get(self, project_id: str, now: datetime) -> Optional[Project]:
        for project in await self.load(now):
            if project.id == project_id:
                return project
        return None

    async def save(self, projects: list[Project]) -> None:
        """Replace the whole project collection."""
        await self._store.set(self._key, [project_to_dict(p) for p in projects])
