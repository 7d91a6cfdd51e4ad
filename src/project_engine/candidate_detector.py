"""
Incremental candidate detection.

Runs on every page visit: classifies the visited resource, updates or seeds
the candidate tracking it, rescores it, advances its status and decides
whether the UI should be told about it. A candidate is announced at most
once per browsing session.
"""

import asyncio
import math
import uuid
from collections import Counter
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from .audit_logger import AuditLogger
from .candidate_store import CandidateStore
from .config import CandidateThresholds
from .enums import CandidateStatus, LogLevel, ResourceSpecificity
from .keywords import title_keywords
from .kv_store import write_guard
from .models import (
    ExtractedResource,
    PageVisit,
    ProjectCandidate,
    ScoreBreakdown,
    Session,
)
from .resource_extractor import ResourceExtractor


UNTRACKED_SPECIFICITIES = frozenset({
    ResourceSpecificity.HOMEPAGE,
    ResourceSpecificity.CATEGORY,
})


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (2.5 -> 3)."""
    return int(math.floor(value + 0.5))


def calculate_candidate_score(candidate: ProjectCandidate) -> tuple[int, ScoreBreakdown]:
    """
    Confidence score for a candidate (0-100).

    Four independently capped terms; square-root scaling makes early
    evidence count most:
    - visits:    sqrt(min(1, visits/10)) * 40     (3 visits ~ 22, 10 visits = 40)
    - sessions:  sqrt(min(1, sessions/5)) * 30    (2 sessions ~ 19)
    - resources: sqrt(min(1, resources/3)) * 20   (1 resource ~ 11.5)
    - time span: min(10, hours/24 * 10)           (linear, 24h = 10)

    The score rounds the float sum once. The breakdown rounds each term on
    its own and is only for display, so its terms can add up to one less
    or one more than the score.

    Returns:
        Tuple of (score, breakdown)
    """
    visit_score = math.sqrt(min(1.0, candidate.visit_count / 10)) * 40
    session_score = math.sqrt(min(1.0, len(candidate.session_ids) / 5)) * 30
    resource_score = math.sqrt(min(1.0, len(candidate.specific_resources) / 3)) * 20

    hours = (candidate.last_seen - candidate.first_seen).total_seconds() / 3600
    time_score = min(10.0, max(0.0, hours) / 24 * 10)

    total = visit_score + session_score + resource_score + time_score
    breakdown = ScoreBreakdown(
        visits=round_half_up(visit_score),
        sessions=round_half_up(session_score),
        resources=round_half_up(resource_score),
        time_span=round_half_up(time_score),
        total=round_half_up(total),
    )
    return round_half_up(total), breakdown


class CandidateDetector:
    """
    Per-visit project candidate detector.

    Candidates are matched on the resource identifier, not the domain, so
    two repositories on the same code host are tracked as two candidates.
    """

    def __init__(
        self,
        store: CandidateStore,
        extractor: ResourceExtractor,
        thresholds: Optional[CandidateThresholds] = None,
        clock: Optional[Callable[[], datetime]] = None,
        write_lock: Optional[asyncio.Lock] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the detector.

        Args:
            store: Persisted candidate collection
            extractor: Resource extractor collaborator
            thresholds: Detection thresholds
            clock: Returns the current time (used for eviction and history)
            write_lock: Shared single-writer lock; None keeps writes unguarded
            logger: Optional audit logger
        """
        self._store = store
        self._extractor = extractor
        self._thresholds = thresholds or CandidateThresholds()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._write_lock = write_lock
        self._logger = logger

    async def observe(
        self,
        visit: PageVisit,
        session_id: str,
        session_history: Iterable[Session] = (),
    ) -> Optional[ProjectCandidate]:
        """
        Process one page visit.

        Args:
            visit: The page visit
            session_id: Id of the session the visit belongs to
            session_history: Known sessions, used to find related domains

        Returns:
            The candidate if the UI should be notified about it now, else None
        """
        if visit.timestamp.tzinfo is None:
            visit = replace(visit, timestamp=visit.timestamp.replace(tzinfo=timezone.utc))

        resource = self._extractor.extract_resource_identifier(visit.url)
        if resource is None:
            self._log(LogLevel.DEBUG, "Unresolvable URL ignored", {"url": visit.url})
            return None
        if resource.specificity in UNTRACKED_SPECIFICITIES:
            self._log(
                LogLevel.DEBUG,
                "Homepage/category resource skipped",
                {"url": visit.url, "specificity": resource.specificity.value},
            )
            return None

        history = list(session_history)
        now = self._clock()

        try:
            async with write_guard(self._write_lock):
                candidates = await self._store.load_live(now)
                candidate = next(
                    (c for c in candidates if resource.identifier in c.specific_resources),
                    None,
                )

                # Dismissed candidates keep counting; the notification gate stays closed
                if candidate is not None:
                    self._update_candidate(candidate, resource, visit, session_id)
                else:
                    candidate = self._seed_candidate(resource, visit, session_id)

                self._refresh_related_domains(candidate, history)
                candidate.score, candidate.score_breakdown = calculate_candidate_score(candidate)
                self._advance_status(candidate)

                notify = self.should_notify(candidate, session_id)
                if notify:
                    candidate.record_shown(session_id, now)

                others = [c for c in candidates if c.id != candidate.id]
                await self._store.save(others + [candidate])
        except Exception as e:
            if self._logger:
                self._logger.log_error(
                    "CandidateDetector",
                    "Candidate update aborted",
                    error=e,
                    additional_data={"url": visit.url, "session_id": session_id},
                )
            return None

        self._log(
            LogLevel.DEBUG,
            "Candidate observed",
            {
                "candidate_id": candidate.id,
                "resource": resource.identifier,
                "status": candidate.status.value,
                "score": candidate.score,
                "visit_count": candidate.visit_count,
                "notify": notify,
            },
        )
        return candidate if notify else None

    def effective_visit_threshold(self, candidate: ProjectCandidate) -> int:
        """Visits needed to become ready; every snooze raises the bar."""
        return (
            self._thresholds.min_visits
            + self._thresholds.snooze_visit_penalty * candidate.snooze_count
        )

    def should_notify(self, candidate: ProjectCandidate, session_id: str) -> bool:
        """Notification gate: ready, not shown, and not shown in this session."""
        return (
            candidate.status == CandidateStatus.READY
            and not candidate.notification_shown
            and not candidate.was_shown_in_session(session_id)
        )

    def _update_candidate(
        self,
        candidate: ProjectCandidate,
        resource: ExtractedResource,
        visit: PageVisit,
        session_id: str,
    ) -> None:
        candidate.add_resource(resource.identifier)
        candidate.add_session(session_id)
        # Every qualifying visit counts, revisits included
        candidate.visit_count += 1
        candidate.last_seen = max(candidate.last_seen, visit.timestamp)
        if visit.title:
            candidate.add_keywords(title_keywords(visit.title))

    def _seed_candidate(
        self,
        resource: ExtractedResource,
        visit: PageVisit,
        session_id: str,
    ) -> ProjectCandidate:
        keywords = title_keywords(visit.title) if visit.title else []
        return ProjectCandidate(
            id=f"candidate-{uuid.uuid4().hex[:16]}",
            primary_domain=resource.domain,
            specific_resources=[resource.identifier],
            session_ids=[session_id],
            visit_count=1,
            first_seen=visit.timestamp,
            last_seen=visit.timestamp,
            keywords=keywords[: self._thresholds.seed_keyword_limit],
        )

    def _advance_status(self, candidate: ProjectCandidate) -> None:
        if (
            candidate.status == CandidateStatus.WATCHING
            and not candidate.notification_shown
            and candidate.score >= self._thresholds.min_score
            and candidate.visit_count >= self.effective_visit_threshold(candidate)
        ):
            candidate.mark_ready()

    def _refresh_related_domains(
        self,
        candidate: ProjectCandidate,
        history: list[Session],
    ) -> None:
        """Other domains seen in the candidate's sessions, most frequent first."""
        session_ids = set(candidate.session_ids)
        counts: Counter[str] = Counter()
        for session in history:
            if session.id not in session_ids:
                continue
            for page in session.pages:
                extracted = self._extractor.extract_resource_identifier(page.url)
                if extracted is not None and extracted.domain != candidate.primary_domain:
                    counts[extracted.domain] += 1

        if counts:
            limit = self._thresholds.related_domain_limit
            candidate.related_domains = [d for d, _ in counts.most_common(limit)]

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, "CandidateDetector", message, data)
