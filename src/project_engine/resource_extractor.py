"""
Resource extraction for the project engine.

Maps URLs to semantic resource identifiers with a specificity tier and
aggregates visit statistics across sessions. The engine only talks to the
ResourceExtractor protocol; UrlResourceExtractor is the default, site
agnostic implementation.
"""

from abc import abstractmethod
from typing import Iterable, Optional, Protocol, runtime_checkable
from urllib.parse import parse_qs, urlsplit

import idna

from .enums import ResourceSpecificity
from .models import AggregatedResource, ExtractedResource, PageVisit, Session


# Query parameters that usually carry a content id (video, post, playlist...)
ID_PARAMS = ("v", "id", "q", "p", "post", "article", "list", "playlist")

HOMEPAGE_PATHS = frozenset({"", "/", "/index.html"})

SECONDS_PER_DAY = 24 * 60 * 60


@runtime_checkable
class ResourceExtractor(Protocol):
    """Protocol for URL-to-resource classification."""

    @abstractmethod
    def extract_resource_identifier(self, url: str) -> Optional[ExtractedResource]:
        """Classify a URL; None when the URL cannot be parsed."""
        ...

    @abstractmethod
    def aggregate_resources_across_sessions(
        self, sessions: Iterable[Session]
    ) -> list[AggregatedResource]:
        """Per-resource visit statistics, in first-seen order."""
        ...

    @abstractmethod
    def filter_meaningful_resources(
        self,
        resources: list[AggregatedResource],
        min_visits: int,
        min_sessions: int,
    ) -> list[AggregatedResource]:
        ...

    @abstractmethod
    def is_routine_resource(self, resource: AggregatedResource) -> bool:
        """Whether a resource is habitual (mail inbox, feeds) rather than project work."""
        ...


def normalize_hostname(hostname: str) -> str:
    """
    Lowercase a hostname, drop a leading 'www.' and IDNA-encode it.

    Hosts that IDNA rejects are kept lowercased rather than discarded.
    """
    host = hostname.lower().rstrip(".")
    if host.startswith("www."):
        host = host[4:]
    if any(ord(c) > 127 for c in host):
        try:
            host = idna.encode(host, uts46=True).decode("ascii")
        except idna.IDNAError:
            pass
    return host


class UrlResourceExtractor:
    """
    Site-agnostic resource extractor.

    Tiers:
    - homepage: bare root ('/', '/index.html')
    - category: a single path segment ('youtube.com/trending')
    - specific: an id-like query parameter, or two to three path segments
    - deep: four or more path segments (first four kept)
    """

    def __init__(self, routine_visits_per_day: float = 10.0) -> None:
        """
        Args:
            routine_visits_per_day: Visit rate above which a resource is routine
        """
        self._routine_visits_per_day = routine_visits_per_day

    def extract_resource_identifier(self, url: str) -> Optional[ExtractedResource]:
        try:
            parts = urlsplit(url)
            hostname = parts.hostname
        except ValueError:
            return None

        if not parts.scheme or not hostname:
            return None

        domain = normalize_hostname(hostname)
        path = parts.path

        if path in HOMEPAGE_PATHS:
            return ExtractedResource(f"{domain}/", domain, ResourceSpecificity.HOMEPAGE)

        segments = [s for s in path.split("/") if s]

        if len(segments) == 1:
            return ExtractedResource(
                f"{domain}/{segments[0]}", domain, ResourceSpecificity.CATEGORY
            )

        params = parse_qs(parts.query, keep_blank_values=True)
        id_param = next((p for p in ID_PARAMS if p in params), None)
        if id_param is not None:
            first_segment = segments[0] if segments else "page"
            value = params[id_param][0]
            return ExtractedResource(
                f"{domain}/{first_segment}?{id_param}={value}",
                domain,
                ResourceSpecificity.SPECIFIC,
            )

        if len(segments) >= 4:
            return ExtractedResource(
                f"{domain}/{'/'.join(segments[:4])}", domain, ResourceSpecificity.DEEP
            )

        if len(segments) >= 2:
            return ExtractedResource(
                f"{domain}/{'/'.join(segments[:3])}", domain, ResourceSpecificity.SPECIFIC
            )

        return ExtractedResource(f"{domain}{path}", domain, ResourceSpecificity.CATEGORY)

    def aggregate_resources_across_sessions(
        self, sessions: Iterable[Session]
    ) -> list[AggregatedResource]:
        resources: dict[str, AggregatedResource] = {}

        for session in sessions:
            for page in session.pages:
                extracted = self.extract_resource_identifier(page.url)
                if extracted is None:
                    continue
                self._record_visit(resources, extracted, page, session.id)

        return list(resources.values())

    @staticmethod
    def _record_visit(
        resources: dict[str, AggregatedResource],
        extracted: ExtractedResource,
        page: PageVisit,
        session_id: str,
    ) -> None:
        existing = resources.get(extracted.identifier)
        if existing is None:
            resources[extracted.identifier] = AggregatedResource(
                identifier=extracted.identifier,
                domain=extracted.domain,
                specificity=extracted.specificity,
                visit_count=1,
                first_visit=page.timestamp,
                last_visit=page.timestamp,
                session_ids={session_id},
                page_visits=[page],
            )
            return

        existing.visit_count += 1
        existing.first_visit = min(existing.first_visit, page.timestamp)
        existing.last_visit = max(existing.last_visit, page.timestamp)
        existing.session_ids.add(session_id)
        existing.page_visits.append(page)

    def filter_meaningful_resources(
        self,
        resources: list[AggregatedResource],
        min_visits: int = 2,
        min_sessions: int = 2,
    ) -> list[AggregatedResource]:
        """Drop homepages, rarely visited and single-session resources."""
        return [
            r
            for r in resources
            if r.specificity != ResourceSpecificity.HOMEPAGE
            and r.visit_count >= min_visits
            and len(r.session_ids) >= min_sessions
        ]

    def is_routine_resource(self, resource: AggregatedResource) -> bool:
        duration_days = (
            resource.last_visit - resource.first_visit
        ).total_seconds() / SECONDS_PER_DAY

        # Less than a day of history says nothing about habits
        if duration_days < 1:
            return False

        return resource.visit_count / duration_days > self._routine_visits_per_day
