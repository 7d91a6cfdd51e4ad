"""
Property-based tests for the Project Engine facade.

Exercises the per-visit pipeline end to end, failure containment at the
engine boundary and the single-writer guarantee of serialized writes.
"""

import asyncio
import tempfile
from datetime import datetime, timedelta, timezone
from io import StringIO
from pathlib import Path
from typing import Any, Optional

from hypothesis import given, settings
from hypothesis import strategies as st

from project_engine.audit_logger import AuditLogger
from project_engine.config import (
    EngineConfig,
    RetryConfig,
    WebhookConfig,
    create_default_config,
)
from project_engine.engine import ProjectEngine, SessionContext
from project_engine.enums import CandidateStatus, LogLevel, NotificationKind
from project_engine.exceptions import PersistenceError
from project_engine.kv_store import InMemoryKeyValueStore, JsonFileKeyValueStore
from project_engine.models import PageVisit
from project_engine.notifications import (
    CallbackChannel,
    NotificationDispatcher,
    NotificationPayload,
)


BASE_TIME = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)
NOW = BASE_TIME + timedelta(hours=2)

REPO_URL = "https://github.com/acme/parser"
ISSUE_URL = "https://github.com/acme/parser/issues/7"


class BrokenStore:
    """Store whose reads and writes always fail."""

    async def get(self, key: str) -> Any:
        raise PersistenceError(code="io_error", message="disk unavailable")

    async def set(self, key: str, value: Any) -> None:
        raise PersistenceError(code="io_error", message="disk unavailable")


class YieldingStore(InMemoryKeyValueStore):
    """In-memory store that yields to the event loop inside every read."""

    async def get(self, key: str) -> Any:
        value = await super().get(key)
        await asyncio.sleep(0)
        return value


def run_async(coro):
    """Helper to run async code in tests."""
    return asyncio.new_event_loop().run_until_complete(coro)


def page(url: str, minutes: float, title: str = "Parser Combinator Library") -> PageVisit:
    return PageVisit(url=url, title=title, timestamp=BASE_TIME + timedelta(minutes=minutes))


def build_engine(
    received: list[NotificationPayload],
    store: Optional[Any] = None,
    config: Optional[EngineConfig] = None,
) -> tuple[ProjectEngine, AuditLogger]:
    logger = AuditLogger(output_format="json", output_stream=StringIO())
    dispatcher = NotificationDispatcher(logger=logger)
    dispatcher.register_channel(CallbackChannel(received.append))
    engine = ProjectEngine(
        store or InMemoryKeyValueStore(),
        config=config,
        dispatcher=dispatcher,
        clock=lambda: NOW,
        logger=logger,
    )
    return engine, logger


class TestVisitPipelineProperty:
    """
    Property-based tests for handle_page_visit.

    **Feature: project-engine, Property 29: Visits flow into candidates, projects and suggestions**
    """

    def test_candidate_is_announced_once_then_promoted_and_suggested(self) -> None:
        received: list[NotificationPayload] = []

        async def scenario():
            engine, _ = build_engine(received)
            outcomes = [
                await engine.handle_page_visit(page(REPO_URL, 0), SessionContext("s1")),
                await engine.handle_page_visit(page(REPO_URL, 30), SessionContext("s2")),
                await engine.handle_page_visit(page(REPO_URL, 60), SessionContext("s2")),
                await engine.handle_page_visit(page(REPO_URL, 70), SessionContext("s2")),
            ]
            await engine.wait_idle()

            candidate = outcomes[2].candidate
            promoted = await engine.lifecycle.promote(candidate.id)

            suggestion = await engine.handle_page_visit(
                page(ISSUE_URL, 90, "Parser combinator library crash"), SessionContext("s2")
            )
            await engine.wait_idle()
            return outcomes, promoted, suggestion

        outcomes, promoted, suggestion = run_async(scenario())

        assert [o.notified for o in outcomes] == [False, False, True, False]
        assert outcomes[2].candidate.status == CandidateStatus.READY
        assert promoted.success is True
        assert promoted.project.sites[0].url == "github.com/acme/parser"

        assert suggestion.suggestion is not None
        assert suggestion.suggestion.project.id == promoted.project.id
        assert [p.id for p in received] == [
            NotificationKind.PROJECT_DETECTED,
            NotificationKind.PROJECT_SUGGESTION,
        ]
        assert received[1].payload["url"] == ISSUE_URL

    @given(path=st.sampled_from(["", "/", "/trending", "/explore"]))
    @settings(max_examples=10)
    def test_homepage_and_category_visits_touch_nothing(self, path: str) -> None:
        received: list[NotificationPayload] = []
        store = InMemoryKeyValueStore()

        async def scenario():
            engine, _ = build_engine(received, store=store)
            outcome = await engine.handle_page_visit(
                page(f"https://github.com{path}", 0), SessionContext("s1")
            )
            await engine.wait_idle()
            return outcome

        outcome = run_async(scenario())

        assert outcome.notified is False
        assert store.keys() == []
        assert received == []

    def test_batch_detection_is_not_persisted(self) -> None:
        received: list[NotificationPayload] = []
        store = InMemoryKeyValueStore()
        engine, logger = build_engine(received, store=store)

        assert engine.detect_projects([]) == []
        assert store.keys() == []
        assert logger.entries[-1].message == "Batch detection finished"


class TestFailureContainmentProperty:
    """
    Property-based tests for failures at the engine boundary.

    **Feature: project-engine, Property 30: Store failures never escape a visit**
    """

    def test_broken_store_yields_empty_outcome(self) -> None:
        received: list[NotificationPayload] = []

        async def scenario():
            engine, logger = build_engine(received, store=BrokenStore())
            outcome = await engine.handle_page_visit(page(REPO_URL, 0), SessionContext("s1"))
            await engine.wait_idle()
            return outcome, logger

        outcome, logger = run_async(scenario())

        assert outcome.notified is False
        components = {e.component for e in logger.entries if e.level == LogLevel.ERROR}
        assert components == {"CandidateDetector", "ProjectEngine"}
        assert received == []

    def test_failing_listener_does_not_undo_detection(self) -> None:
        def listener(payload: NotificationPayload) -> None:
            raise RuntimeError("UI crashed")

        async def scenario():
            logger = AuditLogger(output_format="json", output_stream=StringIO())
            dispatcher = NotificationDispatcher(
                RetryConfig(max_retries=2, base_delay_seconds=0.001, max_delay_seconds=0.01),
                logger,
            )
            dispatcher.register_channel(CallbackChannel(listener))
            engine = ProjectEngine(
                InMemoryKeyValueStore(), dispatcher=dispatcher,
                clock=lambda: NOW, logger=logger,
            )
            for minutes, session in ((0, "s1"), (30, "s2"), (60, "s2")):
                outcome = await engine.handle_page_visit(
                    page(REPO_URL, minutes), SessionContext(session)
                )
            await engine.wait_idle()
            stored = await engine.candidate_store.load_all()
            return outcome, stored

        outcome, stored = run_async(scenario())

        assert outcome.notified is True
        assert stored[0].status == CandidateStatus.READY
        assert stored[0].notification_shown is True


class TestSerializedWritesProperty:
    """
    Property-based tests for concurrent read-modify-write cycles.

    **Feature: project-engine, Property 31: Serialized writes never lose updates**
    """

    @staticmethod
    def _add_two_sites_concurrently(serialize_writes: bool) -> int:
        async def scenario() -> int:
            config = create_default_config()
            config.serialize_writes = serialize_writes
            engine, _ = build_engine([], store=YieldingStore(), config=config)
            project = (await engine.lifecycle.create_project("Parser")).project

            await asyncio.gather(
                engine.lifecycle.add_site(project.id, "https://github.com/acme/parser"),
                engine.lifecycle.add_site(project.id, "https://parsing.dev/guide/intro"),
            )
            stored = await engine.lifecycle.get_project(project.id)
            return len(stored.sites)

        return run_async(scenario())

    def test_serialized_writes_keep_both_sites(self) -> None:
        assert self._add_two_sites_concurrently(serialize_writes=True) == 2

    def test_unserialized_writes_lose_an_update(self) -> None:
        assert self._add_two_sites_concurrently(serialize_writes=False) == 1

    def test_concurrent_visits_count_every_visit(self) -> None:
        async def scenario() -> int:
            engine, _ = build_engine([], store=YieldingStore())
            await asyncio.gather(*[
                engine.handle_page_visit(page(REPO_URL, i), SessionContext("s1"))
                for i in range(5)
            ])
            await engine.wait_idle()
            candidates = await engine.candidate_store.load_all()
            return candidates[0].visit_count

        assert run_async(scenario()) == 5


class TestEngineConfigurationProperty:
    """
    Property-based tests for building an engine from configuration.

    **Feature: project-engine, Property 32: Configured channels and store are wired**
    """

    def test_from_config_wires_store_and_channels(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            config = create_default_config(state_file=Path(tmpdir) / "state.json")
            config.notifications.webhook = WebhookConfig(url="https://hooks.example.com/engine")
            config.simulation_mode = True

            engine = ProjectEngine.from_config(config, output_stream=StringIO())

            assert [c.get_name() for c in engine.dispatcher.channels] == ["callback", "webhook"]
            assert engine.config is config

            result = run_async(engine.lifecycle.create_project("Parser"))
            assert result.success is True

            reopened = JsonFileKeyValueStore(config.persistence.state_file_path, config.persistence.hmac_secret)
            stored = run_async(reopened.get(config.persistence.projects_key))
            assert [p["name"] for p in stored] == ["Parser"]

    def test_without_webhook_only_the_callback_channel_exists(self) -> None:
        engine = ProjectEngine.from_config(
            create_default_config(), store=InMemoryKeyValueStore(), output_stream=StringIO()
        )
        assert [c.get_name() for c in engine.dispatcher.channels] == ["callback"]
