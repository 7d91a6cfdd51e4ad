"""
Candidate Store module.

Persists the collection of in-flight project candidates under a single
key. Reads drop candidates whose age exceeds the eviction window; the
next whole-collection write makes the eviction durable.
"""

from datetime import datetime, timedelta
from typing import Optional

from .config import CandidateThresholds
from .enums import CandidateStatus
from .exceptions import PersistenceError
from .kv_store import KeyValueStore
from .models import ProjectCandidate
from .serialization import candidate_from_dict, candidate_to_dict


class CandidateStore:
    """Whole-collection persistence for project candidates."""

    def __init__(
        self,
        store: KeyValueStore,
        thresholds: CandidateThresholds,
        key: str = "project-candidates",
    ) -> None:
        """
        Initialize the candidate store.

        Args:
            store: Underlying key-value store
            thresholds: Detector thresholds (eviction windows)
            key: Storage key of the candidate collection
        """
        self._store = store
        self._thresholds = thresholds
        self._key = key

    @property
    def key(self) -> str:
        return self._key

    async def load_all(self) -> list[ProjectCandidate]:
        """
        Load every stored candidate, expired ones included.

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
        return [candidate_from_dict(item) for item in raw]

    async def load_live(self, now: datetime) -> list[ProjectCandidate]:
        """Load candidates that are still inside their age window."""
        return [c for c in await self.load_all() if not self.is_expired(c, now)]

    async def get(self, candidate_id: str, now: datetime) -> Optional[ProjectCandidate]:
        for candidate in await self.load_live(now):
            if candidate.id == candidate_id:
                return candidate
        return None

    async def save(self, candidates: list[ProjectCandidate]) -> None:
        """Replace the whole candidate collection."""
        await self._store.set(self._key, [candidate_to_dict(c) for c in candidates])

    def is_expired(self, candidate: ProjectCandidate, now: datetime) -> bool:
        """
        Age-based eviction check.

        Dismissed candidates use their own window so they can be dropped
        sooner (or later) than live ones.
        """
        if candidate.status == CandidateStatus.DISMISSED:
            max_age_days = self._thresholds.dismissed_max_age_days
        else:
            max_age_days = self._thresholds.max_age_days
        return now - candidate.last_seen >= timedelta(days=max_age_days)
