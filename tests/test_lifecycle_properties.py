"""
Property-based tests for the Promotion / Lifecycle Coordinator module.

Covers candidate promotion, snooze and dismiss transitions, manual
project edits and the failure values returned instead of exceptions.
"""

import asyncio
import io
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from project_engine.audit_logger import AuditLogger
from project_engine.candidate_store import CandidateStore
from project_engine.config import CandidateThresholds, ClusterThresholds
from project_engine.enums import (
    CandidateStatus,
    LifecycleErrorCode,
    LogLevel,
    NotificationAction,
    SiteAddedBy,
)
from project_engine.exceptions import PersistenceError
from project_engine.kv_store import InMemoryKeyValueStore
from project_engine.lifecycle import LifecycleCoordinator, project_from_candidate
from project_engine.models import Project, ProjectCandidate
from project_engine.project_store import ProjectStore


BASE_TIME = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)
NOW = BASE_TIME + timedelta(hours=6)


class BrokenStore:
    """Store whose reads and writes always fail."""

    async def get(self, key: str) -> Any:
        raise PersistenceError(code="io_error", message="disk unavailable")

    async def set(self, key: str, value: Any) -> None:
        raise PersistenceError(code="io_error", message="disk unavailable")


def run_async(coro):
    """Helper to run async code in tests."""
    return asyncio.new_event_loop().run_until_complete(coro)


def make_candidate(
    candidate_id: str = "candidate-1",
    status: CandidateStatus = CandidateStatus.READY,
    keywords: Optional[list[str]] = None,
) -> ProjectCandidate:
    return ProjectCandidate(
        id=candidate_id,
        primary_domain="github.com",
        specific_resources=["github.com/acme/parser", "github.com/acme/parser/issues"],
        session_ids=["s1", "s2"],
        visit_count=5,
        first_seen=BASE_TIME,
        last_seen=BASE_TIME + timedelta(hours=2),
        keywords=["parser", "combinator", "grammar", "release"] if keywords is None else keywords,
        related_domains=["docs.python.org", "stackoverflow.com", "pypi.org"],
        score=64,
        status=status,
    )


def build(
    candidates: Optional[list[ProjectCandidate]] = None,
    store: Optional[Any] = None,
    logger: Optional[AuditLogger] = None,
) -> tuple[LifecycleCoordinator, CandidateStore, ProjectStore]:
    kv = store or InMemoryKeyValueStore()
    candidate_store = CandidateStore(kv, CandidateThresholds())
    project_store = ProjectStore(kv, ClusterThresholds())
    if candidates:
        run_async(candidate_store.save(candidates))
    coordinator = LifecycleCoordinator(
        candidate_store, project_store, clock=lambda: NOW, logger=logger
    )
    return coordinator, candidate_store, project_store


class TestPromotionProperty:
    """
    Property-based tests for candidate promotion.

    **Feature: project-engine, Property 17: Promotion moves a candidate into a project**
    """

    def test_promote_builds_project_from_candidate(self) -> None:
        coordinator, candidate_store, project_store = build([make_candidate()])

        result = run_async(coordinator.promote("candidate-1"))

        assert result.success is True
        project = result.project
        assert project.name == "Parser"
        assert project.description == "Research on parser, combinator, grammar (github.com)"
        assert project.sites[0].url == "github.com/acme/parser"
        assert project.sites[0].title == ""
        assert project.sites[0].added_by == SiteAddedBy.AUTO
        assert project.sites[0].visit_count == 5
        assert project.top_domains == ["github.com", "docs.python.org", "stackoverflow.com"]
        assert project.score == 64
        assert project.auto_detected is True
        assert project.session_ids == ["s1", "s2"]
        assert project.start_date == BASE_TIME
        assert project.end_date == BASE_TIME + timedelta(hours=2)

        assert run_async(candidate_store.load_all()) == []
        stored = run_async(project_store.load(NOW))
        assert [p.id for p in stored] == [project.id]

    def test_name_falls_back_to_domain(self) -> None:
        project = project_from_candidate(make_candidate(keywords=[]), NOW)
        assert project.name == "github.com Project"
        assert project.description == "Work on github.com"

    @given(status=st.sampled_from([CandidateStatus.WATCHING, CandidateStatus.READY]))
    @settings(max_examples=10)
    def test_live_candidates_can_be_promoted(self, status: CandidateStatus) -> None:
        coordinator, _, _ = build([make_candidate(status=status)])
        assert run_async(coordinator.promote("candidate-1")).success is True

    def test_dismissed_candidate_cannot_be_promoted(self) -> None:
        coordinator, candidate_store, project_store = build([make_candidate()])

        assert run_async(coordinator.dismiss("candidate-1")).success is True
        result = run_async(coordinator.promote("candidate-1"))

        assert result.success is False
        assert result.error == LifecycleErrorCode.INVALID_TRANSITION
        assert run_async(project_store.load(NOW)) == []
        stored = run_async(candidate_store.load_all())
        assert [c.status for c in stored] == [CandidateStatus.DISMISSED]

    def test_promoting_twice_fails_the_second_time(self) -> None:
        coordinator, _, project_store = build([make_candidate()])

        run_async(coordinator.promote("candidate-1"))
        second = run_async(coordinator.promote("candidate-1"))

        assert second.error == LifecycleErrorCode.CANDIDATE_NOT_FOUND
        assert len(run_async(project_store.load(NOW))) == 1

    def test_other_candidates_survive_promotion(self) -> None:
        coordinator, candidate_store, _ = build([
            make_candidate("candidate-1"),
            make_candidate("candidate-2", status=CandidateStatus.WATCHING),
        ])

        run_async(coordinator.promote("candidate-1"))

        assert [c.id for c in run_async(candidate_store.load_all())] == ["candidate-2"]


class TestCandidateTransitionProperty:
    """
    Property-based tests for snooze and dismiss.

    **Feature: project-engine, Property 18: Candidate transitions follow the status table**
    """

    def test_snooze_returns_ready_candidate_to_watching(self) -> None:
        candidate = make_candidate()
        candidate.notification_shown = True
        coordinator, candidate_store, _ = build([candidate])

        result = run_async(coordinator.snooze("candidate-1", session_id="s2"))

        assert result.success is True
        stored = run_async(candidate_store.load_all())[0]
        assert stored.status == CandidateStatus.WATCHING
        assert stored.snooze_count == 1
        assert stored.notification_shown is False
        assert [e.action for e in stored.notification_history] == [NotificationAction.SNOOZED]
        assert stored.notification_history[0].session_id == "s2"

    def test_snooze_without_session_adds_no_history(self) -> None:
        coordinator, candidate_store, _ = build([make_candidate()])

        run_async(coordinator.snooze("candidate-1"))

        assert run_async(candidate_store.load_all())[0].notification_history == []

    def test_snooze_requires_ready(self) -> None:
        coordinator, candidate_store, _ = build([make_candidate(status=CandidateStatus.WATCHING)])

        result = run_async(coordinator.snooze("candidate-1"))

        assert result.success is False
        assert result.error == LifecycleErrorCode.INVALID_TRANSITION
        assert run_async(candidate_store.load_all())[0].snooze_count == 0

    @given(status=st.sampled_from([CandidateStatus.WATCHING, CandidateStatus.READY]))
    @settings(max_examples=10)
    def test_dismiss_is_terminal(self, status: CandidateStatus) -> None:
        coordinator, candidate_store, _ = build([make_candidate(status=status)])

        assert run_async(coordinator.dismiss("candidate-1", session_id="s1")).success is True
        again = run_async(coordinator.dismiss("candidate-1"))

        assert again.error == LifecycleErrorCode.INVALID_TRANSITION
        stored = run_async(candidate_store.load_all())[0]
        assert stored.status == CandidateStatus.DISMISSED
        assert [e.action for e in stored.notification_history] == [NotificationAction.DISMISSED]

    @pytest.mark.parametrize("operation", ["promote", "snooze", "dismiss"])
    def test_unknown_candidate_is_a_failure_value(self, operation: str) -> None:
        coordinator, _, _ = build([make_candidate()])

        result = run_async(getattr(coordinator, operation)("candidate-missing"))

        assert result.success is False
        assert result.error == LifecycleErrorCode.CANDIDATE_NOT_FOUND

    def test_ready_candidates_skip_shown_ones(self) -> None:
        shown = make_candidate("candidate-2")
        shown.notification_shown = True
        coordinator, _, _ = build([
            make_candidate("candidate-1"),
            shown,
            make_candidate("candidate-3", status=CandidateStatus.WATCHING),
        ])

        ready = run_async(coordinator.ready_candidates())

        assert [c.id for c in ready] == ["candidate-1"]


class TestProjectEditProperty:
    """
    Property-based tests for manual project operations.

    **Feature: project-engine, Property 19: Project edits keep sites unique per project**
    """

    def test_create_project_is_manual_with_full_score(self) -> None:
        coordinator, _, project_store = build()

        result = run_async(coordinator.create_project(
            "Thesis",
            site_urls=(
                "https://scholar.example.org/papers/42",
                "https://scholar.example.org/papers/42/",
                "https://www.overleaf.com/project/abc",
            ),
            keywords=("thesis",),
        ))

        assert result.success is True
        project = result.project
        assert project.score == 100
        assert project.auto_detected is False
        assert len(project.sites) == 2
        assert all(site.added_by == SiteAddedBy.USER for site in project.sites)
        assert project.top_domains == ["scholar.example.org", "overleaf.com"]
        assert run_async(project_store.get(project.id, NOW)) is not None

    @given(urls=st.lists(
        st.sampled_from([
            "https://github.com/acme/parser",
            "https://github.com/acme/parser/",
            "https://www.github.com/acme/parser",
            "https://parsing.dev/guide/intro",
            "https://parsing.dev/guide/intro?ref=nav",
            "https://docs.python.org/3/library/re.html",
        ]),
        max_size=8,
    ))
    @settings(max_examples=50)
    def test_add_site_never_duplicates(self, urls: list[str]) -> None:
        """
        *For any* sequence of additions, a project holds each normalized
        URL at most once and duplicates fail with DUPLICATE_SITE.
        """
        coordinator, _, _ = build()
        project = run_async(coordinator.create_project("Parser")).project

        seen: set[str] = set()
        for url in urls:
            key = url.replace("www.", "").split("?")[0].rstrip("/")
            result = run_async(coordinator.add_site(project.id, url))
            if key in seen:
                assert result.error == LifecycleErrorCode.DUPLICATE_SITE
            else:
                assert result.success is True
                seen.add(key)

        stored = run_async(coordinator.get_project(project.id))
        assert len(stored.sites) == len(seen)

    def test_same_url_may_join_several_projects(self) -> None:
        coordinator, _, _ = build()
        first = run_async(coordinator.create_project("Parser")).project
        second = run_async(coordinator.create_project("Benchmarks")).project
        url = "https://github.com/acme/parser"

        assert run_async(coordinator.add_site(first.id, url)).success is True
        assert run_async(coordinator.accept_suggestion(second.id, url)).success is True

    def test_add_site_counts_as_activity(self) -> None:
        coordinator, _, project_store = build()
        draft = Project(
            id="project-old",
            name="Old",
            start_date=BASE_TIME - timedelta(days=40),
            end_date=BASE_TIME - timedelta(days=20),
            created_at=BASE_TIME - timedelta(days=40),
            top_domains=["github.com"],
        )
        run_async(coordinator.accept_detected_project(draft))

        result = run_async(coordinator.add_site(
            "project-old", "https://parsing.dev/guide/intro", "Parser Guide"
        ))

        assert result.success is True
        assert result.project.end_date == NOW
        assert result.project.top_domains == ["github.com", "parsing.dev"]
        assert result.project.sites[-1].title == "Parser Guide"
        assert run_async(project_store.load_active(NOW))[0].id == "project-old"

    def test_dismiss_suggestion_is_remembered(self) -> None:
        coordinator, _, _ = build()
        project = run_async(coordinator.create_project("Parser")).project

        result = run_async(coordinator.dismiss_suggestion(project.id, "https://example.org/a/b"))

        assert result.success is True
        stored = run_async(coordinator.get_project(project.id))
        assert [d.url for d in stored.dismissed_suggestions] == ["https://example.org/a/b"]
        assert stored.dismissed_suggestions[0].timestamp == NOW

    def test_update_and_delete(self) -> None:
        coordinator, _, _ = build()
        project = run_async(coordinator.create_project("Parser")).project

        updated = run_async(coordinator.update_project(
            project.id, name="Parser v2", keywords=["parser", "v2"]
        ))
        assert updated.project.name == "Parser v2"
        assert updated.project.keywords == ["parser", "v2"]
        assert updated.project.description is None

        assert run_async(coordinator.delete_project(project.id)).success is True
        assert run_async(coordinator.list_projects()) == []

    def test_accepting_a_draft_twice_replaces_it(self) -> None:
        coordinator, _, _ = build()
        draft = Project(
            id="project-draft", name="Draft", start_date=NOW, end_date=NOW, created_at=NOW,
        )
        run_async(coordinator.accept_detected_project(draft))
        draft.name = "Renamed"
        run_async(coordinator.accept_detected_project(draft))

        assert [p.name for p in run_async(coordinator.list_projects())] == ["Renamed"]

    @pytest.mark.parametrize("operation,args", [
        ("add_site", ("https://example.org/a/b",)),
        ("accept_suggestion", ("https://example.org/a/b",)),
        ("dismiss_suggestion", ("https://example.org/a/b",)),
        ("update_project", ()),
        ("delete_project", ()),
    ])
    def test_unknown_project_is_a_failure_value(self, operation: str, args: tuple) -> None:
        coordinator, _, _ = build()

        result = run_async(getattr(coordinator, operation)("project-missing", *args))

        assert result.success is False
        assert result.error == LifecycleErrorCode.PROJECT_NOT_FOUND


class TestStorageFailureProperty:
    """
    Property-based tests for storage failures.

    **Feature: project-engine, Property 20: Storage failures become failure values**
    """

    def test_store_failure_is_returned_and_logged(self) -> None:
        stream = io.StringIO()
        logger = AuditLogger(min_level=LogLevel.DEBUG, output_format="json", output_stream=stream)
        coordinator, _, _ = build(store=BrokenStore(), logger=logger)

        result = run_async(coordinator.promote("candidate-1"))

        assert result.success is False
        assert result.error == LifecycleErrorCode.STORAGE_ERROR
        assert "disk unavailable" in result.message
        assert any(
            e.level == LogLevel.ERROR and e.component == "LifecycleCoordinator"
            for e in logger.entries
        )

    def test_reads_degrade_to_empty(self) -> None:
        coordinator, _, _ = build(store=BrokenStore())

        assert run_async(coordinator.list_projects()) == []
        assert run_async(coordinator.get_project("project-1")) is None
        assert run_async(coordinator.ready_candidates()) == []
