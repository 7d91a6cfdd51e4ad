"""
Batch project clustering.

Groups a full browsing history into project drafts by resource overlap
and temporal proximity, then scores each cluster. Detection is a pure
function of its inputs: nothing is persisted here.
"""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .config import ClusterThresholds
from .enums import ResourceSpecificity, SiteAddedBy
from .keywords import top_keywords
from .models import AggregatedResource, Project, ProjectSite, Session
from .project_store import determine_status
from .resource_extractor import ResourceExtractor, UrlResourceExtractor


DEEP_SPECIFICITIES = frozenset({ResourceSpecificity.SPECIFIC, ResourceSpecificity.DEEP})

_COMMON_TLD_SUFFIX = re.compile(r"\.(com|org|net|dev|io)$")

FALLBACK_PROJECT_NAME = "Research Project"


@dataclass
class SessionCluster:
    """A group of resources and sessions that may form a project."""

    resources: list[AggregatedResource]
    sessions: list[Session]
    start_date: datetime
    end_date: datetime
    score: int = 0
    keywords: list[str] = field(default_factory=list)
    top_domains: list[str] = field(default_factory=list)
    dominant_label: Optional[str] = None

    def has_any_session(self, session_ids: set[str]) -> bool:
        return any(s.id in session_ids for s in self.sessions)


def score_cluster(cluster: SessionCluster, thresholds: ClusterThresholds) -> int:
    """
    Score a cluster (0-100).

    1. Specificity (max 40): 8 per specific/deep resource with 3+ visits
    2. Temporal consistency (max 30): 2-14 days is the sweet spot
    3. Session count (max 20)
    4. Label consistency (max 10)
    """
    score = 0

    specific = [
        r for r in cluster.resources
        if r.specificity in DEEP_SPECIFICITIES and r.visit_count >= 3
    ]
    score += min(len(specific) * 8, 40)

    duration = cluster.end_date - cluster.start_date
    duration_days = duration.total_seconds() / (24 * 3600)
    duration_hours = duration.total_seconds() / 3600

    if duration_hours < thresholds.min_duration_hours:
        score += 5
    elif 2 <= duration_days <= 14:
        score += 30
    elif 14 < duration_days <= 30:
        score += 20
    else:
        score += 10

    session_count = len(cluster.sessions)
    if session_count >= 5:
        score += 20
    elif session_count >= 3:
        score += 15
    elif session_count == 2:
        score += 10

    labels = [s.label_id for s in cluster.sessions if s.label_id]
    if len(set(labels)) == 1 and len(labels) >= 2:
        score += 10
        cluster.dominant_label = labels[0]
    elif labels:
        score += 5

    return min(score, 100)


def generate_project_name(keywords: list[str], top_domains: list[str]) -> str:
    """Project name from the top keyword, else the top domain."""
    if keywords:
        top = keywords[0]
        return top[:1].upper() + top[1:]
    if top_domains:
        domain = _COMMON_TLD_SUFFIX.sub("", top_domains[0])
        return domain[:1].upper() + domain[1:] + " Project"
    return FALLBACK_PROJECT_NAME


def top_domains_by_visits(resources: list[AggregatedResource], limit: int) -> list[str]:
    counts: dict[str, int] = {}
    for resource in resources:
        counts[resource.domain] = counts.get(resource.domain, 0) + resource.visit_count
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return [domain for domain, _ in ranked[:limit]]


class ProjectClusterer:
    """
    Batch detector turning session history into scored project drafts.

    A greedy single pass over meaningful resources: each resource joins
    the first cluster that shares a session with it or ended close enough
    in time, otherwise it starts a new cluster. A session belongs to at
    most one cluster.
    """

    def __init__(
        self,
        extractor: Optional[ResourceExtractor] = None,
        thresholds: Optional[ClusterThresholds] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._extractor = extractor or UrlResourceExtractor()
        self._thresholds = thresholds or ClusterThresholds()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def detect_projects(self, sessions: list[Session]) -> list[Project]:
        """
        Detect project drafts in a browsing history.

        Args:
            sessions: Every known session

        Returns:
            Scored drafts that pass the minimum score, session and
            resource thresholds; empty for too short a history
        """
        if len(sessions) < self._thresholds.min_sessions:
            return []

        now = self._clock()
        projects: list[Project] = []

        for cluster in self.cluster_sessions(sessions):
            cluster.keywords = top_keywords(
                (page.title for s in cluster.sessions for page in s.pages),
                self._thresholds.keyword_limit,
            )
            cluster.top_domains = top_domains_by_visits(
                cluster.resources, self._thresholds.top_domain_limit
            )
            cluster.score = score_cluster(cluster, self._thresholds)

            if cluster.score < self._thresholds.min_score:
                continue
            if len(cluster.sessions) < self._thresholds.min_sessions:
                continue
            if len(cluster.resources) < self._thresholds.min_resources:
                continue

            projects.append(self._build_project(cluster, now))

        return projects

    def cluster_sessions(self, sessions: list[Session]) -> list[SessionCluster]:
        resources = self._extractor.filter_meaningful_resources(
            self._extractor.aggregate_resources_across_sessions(sessions),
            self._thresholds.min_resource_visits,
            self._thresholds.min_sessions,
        )
        resources = [r for r in resources if not self._extractor.is_routine_resource(r)]

        clusters: list[SessionCluster] = []
        claimed: set[str] = set()
        max_gap = timedelta(days=self._thresholds.max_gap_days)

        for resource in resources:
            unclaimed = [
                s for s in sessions
                if s.id in resource.session_ids and s.id not in claimed
            ]
            if len(unclaimed) < self._thresholds.min_sessions:
                continue

            target = next(
                (
                    c for c in clusters
                    if c.has_any_session(resource.session_ids)
                    or abs(c.end_date - resource.last_visit) <= max_gap
                ),
                None,
            )

            if target is None:
                clusters.append(
                    SessionCluster(
                        resources=[resource],
                        sessions=list(unclaimed),
                        start_date=resource.first_visit,
                        end_date=resource.last_visit,
                    )
                )
                claimed.update(s.id for s in unclaimed)
                continue

            target.resources.append(resource)
            known = {s.id for s in target.sessions}
            for session in unclaimed:
                if session.id not in known:
                    target.sessions.append(session)
                    claimed.add(session.id)
            target.start_date = min(target.start_date, resource.first_visit)
            target.end_date = max(target.end_date, resource.last_visit)

        return clusters

    def _build_project(self, cluster: SessionCluster, now: datetime) -> Project:
        return Project(
            id=f"project-{uuid.uuid4().hex[:16]}",
            name=generate_project_name(cluster.keywords, cluster.top_domains),
            start_date=cluster.start_date,
            end_date=cluster.end_date,
            created_at=now,
            session_ids=[s.id for s in cluster.sessions],
            keywords=list(cluster.keywords),
            top_domains=list(cluster.top_domains),
            sites=[self._site_for(resource, now) for resource in cluster.resources],
            status=determine_status(cluster.end_date, now, self._thresholds),
            auto_detected=True,
            score=cluster.score,
        )

    @staticmethod
    def _site_for(resource: AggregatedResource, now: datetime) -> ProjectSite:
        latest = max(resource.page_visits, key=lambda p: p.timestamp, default=None)
        return ProjectSite(
            url=latest.url if latest is not None else resource.identifier,
            title=latest.title if latest is not None else "",
            added_at=now,
            added_by=SiteAddedBy.AUTO,
            visit_count=resource.visit_count,
        )


def detect_projects(
    sessions: list[Session],
    extractor: Optional[ResourceExtractor] = None,
    thresholds: Optional[ClusterThresholds] = None,
) -> list[Project]:
    """Module-level shortcut for ProjectClusterer(...).detect_projects()."""
    return ProjectClusterer(extractor, thresholds).detect_projects(sessions)
