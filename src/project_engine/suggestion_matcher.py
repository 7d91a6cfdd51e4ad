"""
Conservative "add this site to a project" suggestions.

A false suggestion is more annoying than a missed one, so every factor
can veto the match on its own and the final threshold is high.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from urllib.parse import urlsplit

from .audit_logger import AuditLogger
from .config import SuggestionConfig
from .enums import LogLevel, ProjectStatus
from .keywords import significant_words
from .models import PageVisit, Project, SuggestionMatch
from .project_store import has_site, normalize_url
from .resource_extractor import normalize_hostname


def _path_segments(url: str) -> list[str]:
    candidate = url if url.startswith("http") else f"https://{url}"
    try:
        path = urlsplit(candidate).path
    except ValueError:
        return []
    return [s for s in path.split("/") if s]


def _site_domain(url: str) -> str:
    candidate = url if url.startswith("http") else f"https://{url}"
    try:
        hostname = urlsplit(candidate).hostname
    except ValueError:
        hostname = None
    if not hostname:
        return url.split("/")[0]
    return normalize_hostname(hostname)


class SuggestionMatcher:
    """
    Scores the current page against active projects.

    Score in [0, 1] from three weighted factors:
    - domain/path (0.3): on code-hosting domains the owner/repo pair must
      match a project site exactly, else the whole score is 0
    - keywords (0.4): page title words shared with the project's keywords
      and site titles; fewer than two shared words vetoes the match
    - URL (0.3): share of project keywords found in the URL; none vetoes
    """

    def __init__(
        self,
        config: Optional[SuggestionConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._config = config or SuggestionConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._logger = logger

    def match_project(
        self,
        visit: PageVisit,
        projects: list[Project],
    ) -> Optional[SuggestionMatch]:
        """
        Find the project the visited page most likely belongs to.

        Args:
            visit: The current page visit
            projects: Known projects; only active ones are considered

        Returns:
            The best match if it reaches the threshold, else None
        """
        active = [p for p in projects if p.status == ProjectStatus.ACTIVE]
        if not active:
            return None

        url = visit.url
        if self.is_generic_page(url):
            self._log("Skipping generic page", {"url": url})
            return None

        if any(has_site(p, url) for p in active):
            self._log("URL already in a project", {"url": url})
            return None

        if self.recently_dismissed(url, active):
            self._log("URL recently dismissed", {"url": url})
            return None

        best: Optional[SuggestionMatch] = None
        for project in active:
            score = self.calculate_similarity(visit, project)
            if best is None or score > best.score:
                best = SuggestionMatch(project=project, score=score)

        if best is not None and best.score >= self._config.threshold:
            self._log(
                "Suggestion found",
                {"url": url, "project_id": best.project.id, "score": round(best.score, 3)},
            )
            return best
        return None

    def is_generic_page(self, url: str) -> bool:
        """Homepages, and profile or meta pages on code-hosting domains."""
        candidate = url if url.startswith("http") else f"https://{url}"
        try:
            hostname = urlsplit(candidate).hostname or ""
        except ValueError:
            return False

        segments = _path_segments(url)
        if hostname and self._is_code_hosting(normalize_hostname(hostname)):
            if len(segments) < 2:
                return True
            if segments[0] in self._config.code_hosting_meta_pages:
                return True

        return len(segments) == 0

    def recently_dismissed(self, url: str, projects: list[Project]) -> bool:
        target = normalize_url(url)
        cooldown = timedelta(hours=self._config.dismissal_cooldown_hours)
        now = self._clock()
        return any(
            normalize_url(d.url) == target and now - d.timestamp < cooldown
            for p in projects
            for d in p.dismissed_suggestions
        )

    def calculate_similarity(self, visit: PageVisit, project: Project) -> float:
        try:
            hostname = urlsplit(visit.url).hostname
        except ValueError:
            hostname = None
        if not hostname:
            return 0.0

        page_domain = normalize_hostname(hostname)
        score = 0.0

        if self._is_code_hosting(page_domain):
            segments = _path_segments(visit.url)
            if len(segments) < 2:
                return 0.0
            page_repo = "/".join(segments[:2])
            project_repos = {
                "/".join(_path_segments(site.url)[:2])
                for site in project.sites
                if page_domain in site.url
            }
            if page_repo not in project_repos:
                return 0.0
            score += self._config.domain_weight
        elif page_domain in {_site_domain(site.url) for site in project.sites}:
            score += self._config.domain_weight

        page_words = significant_words(visit.title or "")
        project_words = set(project.keywords)
        for site in project.sites:
            project_words.update(significant_words(site.title))

        overlap = sum(1 for word in page_words if word in project_words)
        if overlap < self._config.min_keyword_overlap:
            return 0.0
        keyword_score = min(1.0, overlap / min(len(page_words), 3))
        score += keyword_score * self._config.keyword_weight

        url_lower = visit.url.lower()
        matching = sum(1 for k in project.keywords if k.lower() in url_lower)
        if matching == 0:
            return 0.0
        score += matching / len(project.keywords) * self._config.url_weight

        return score

    def _is_code_hosting(self, domain: str) -> bool:
        return domain in self._config.code_hosting_domains

    def _log(self, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(LogLevel.DEBUG, "SuggestionMatcher", message, data)
