"""
Property-based tests for the Resource Extractor module.

Uses Hypothesis to verify URL classification tiers, aggregation and the
meaningful/routine resource filters.
"""

from datetime import datetime, timedelta, timezone

from hypothesis import given, settings
from hypothesis import strategies as st

from project_engine.enums import ResourceSpecificity
from project_engine.models import AggregatedResource, PageVisit, Session
from project_engine.resource_extractor import (
    ID_PARAMS,
    UrlResourceExtractor,
    normalize_hostname,
)


BASE_TIME = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


@st.composite
def domain_strategy(draw) -> str:
    """Generate simple lowercase domains."""
    label = draw(st.text(
        alphabet=st.sampled_from("abcdefghijklmnopqrstuvwxyz0123456789"),
        min_size=1,
        max_size=15,
    ))
    tld = draw(st.sampled_from(["com", "org", "dev", "io", "de"]))
    return f"site{label}.{tld}"


@st.composite
def segment_strategy(draw) -> str:
    """Generate URL path segments (no id query parameters involved)."""
    return draw(st.text(
        alphabet=st.sampled_from("abcdefghijklmnopqrstuvwxyz0123456789-_"),
        min_size=1,
        max_size=12,
    ))


def make_resource(visits: int, span: timedelta) -> AggregatedResource:
    return AggregatedResource(
        identifier="example.com/a/b",
        domain="example.com",
        specificity=ResourceSpecificity.SPECIFIC,
        visit_count=visits,
        first_visit=BASE_TIME,
        last_visit=BASE_TIME + span,
        session_ids={"s1", "s2"},
    )


class TestSpecificityTiersProperty:
    """
    Property-based tests for URL classification.

    **Feature: project-engine, Property 1: Specificity tiers follow path depth**
    """

    @given(
        domain=domain_strategy(),
        path=st.sampled_from(["", "/", "/index.html"]),
    )
    @settings(max_examples=100)
    def test_root_paths_are_homepages(self, domain: str, path: str) -> None:
        """
        *For any* domain, the bare root is a homepage keyed by 'domain/'.
        """
        extractor = UrlResourceExtractor()
        resource = extractor.extract_resource_identifier(f"https://{domain}{path}")

        assert resource is not None
        assert resource.specificity == ResourceSpecificity.HOMEPAGE
        assert resource.identifier == f"{domain}/"
        assert resource.domain == domain

    @given(domain=domain_strategy(), segment=segment_strategy())
    @settings(max_examples=100)
    def test_single_segment_is_category(self, domain: str, segment: str) -> None:
        """
        *For any* single-segment path, the resource is a category, even
        with an id-like query parameter.
        """
        extractor = UrlResourceExtractor()
        resource = extractor.extract_resource_identifier(f"https://{domain}/{segment}?v=abc")

        assert resource is not None
        assert resource.specificity == ResourceSpecificity.CATEGORY
        assert resource.identifier == f"{domain}/{segment}"

    @given(
        domain=domain_strategy(),
        segments=st.lists(segment_strategy(), min_size=2, max_size=3),
    )
    @settings(max_examples=100)
    def test_two_or_three_segments_are_specific(self, domain: str, segments: list[str]) -> None:
        extractor = UrlResourceExtractor()
        resource = extractor.extract_resource_identifier(f"https://{domain}/{'/'.join(segments)}")

        assert resource is not None
        assert resource.specificity == ResourceSpecificity.SPECIFIC
        assert resource.identifier == f"{domain}/{'/'.join(segments)}"

    @given(
        domain=domain_strategy(),
        segments=st.lists(segment_strategy(), min_size=4, max_size=8),
    )
    @settings(max_examples=100)
    def test_four_or_more_segments_are_deep(self, domain: str, segments: list[str]) -> None:
        """
        *For any* path with 4+ segments, only the first four form the identifier.
        """
        extractor = UrlResourceExtractor()
        resource = extractor.extract_resource_identifier(f"https://{domain}/{'/'.join(segments)}")

        assert resource is not None
        assert resource.specificity == ResourceSpecificity.DEEP
        assert resource.identifier == f"{domain}/{'/'.join(segments[:4])}"

    @given(
        domain=domain_strategy(),
        segments=st.lists(segment_strategy(), min_size=2, max_size=6),
        param=st.sampled_from(ID_PARAMS),
        value=segment_strategy(),
    )
    @settings(max_examples=100)
    def test_id_parameter_makes_resource_specific(
        self, domain: str, segments: list[str], param: str, value: str
    ) -> None:
        extractor = UrlResourceExtractor()
        url = f"https://{domain}/{'/'.join(segments)}?{param}={value}"
        resource = extractor.extract_resource_identifier(url)

        assert resource is not None
        assert resource.specificity == ResourceSpecificity.SPECIFIC
        assert resource.identifier == f"{domain}/{segments[0]}?{param}={value}"

    def test_www_prefix_and_case_are_normalized(self) -> None:
        extractor = UrlResourceExtractor()
        a = extractor.extract_resource_identifier("https://WWW.GitHub.com/owner/repo")
        b = extractor.extract_resource_identifier("https://github.com/owner/repo")

        assert a is not None and b is not None
        assert a.identifier == b.identifier == "github.com/owner/repo"

    def test_idn_hostname_is_punycode(self) -> None:
        assert normalize_hostname("www.bücher.de") == "xn--bcher-kva.de"

    @given(text=st.sampled_from([
        "not a url", "", "github.com/owner/repo", "mailto:someone@example.com",
        "http://[::1", "://missing-scheme",
    ]))
    @settings(max_examples=20)
    def test_unparseable_urls_return_none(self, text: str) -> None:
        """
        *For any* string without scheme and host, extraction fails soft.
        """
        assert UrlResourceExtractor().extract_resource_identifier(text) is None


class TestAggregationProperty:
    """
    Property-based tests for cross-session aggregation.

    **Feature: project-engine, Property 2: Aggregation counts every visit once**
    """

    @given(
        visits_per_session=st.lists(st.integers(min_value=1, max_value=5), min_size=1, max_size=5),
    )
    @settings(max_examples=100)
    def test_visit_counts_and_sessions_add_up(self, visits_per_session: list[int]) -> None:
        sessions = []
        offset = 0
        for index, count in enumerate(visits_per_session):
            pages = []
            for _ in range(count):
                pages.append(PageVisit(
                    url="https://example.com/team/project",
                    title="Project",
                    timestamp=BASE_TIME + timedelta(minutes=offset),
                ))
                offset += 1
            sessions.append(Session(
                id=f"s{index}",
                pages=pages,
                start_time=pages[0].timestamp,
                end_time=pages[-1].timestamp,
            ))

        resources = UrlResourceExtractor().aggregate_resources_across_sessions(sessions)

        assert len(resources) == 1
        resource = resources[0]
        assert resource.visit_count == sum(visits_per_session)
        assert resource.session_ids == {f"s{i}" for i in range(len(visits_per_session))}
        assert resource.first_visit == BASE_TIME
        assert resource.last_visit == BASE_TIME + timedelta(minutes=offset - 1)

    def test_unparseable_pages_are_skipped(self) -> None:
        session = Session(
            id="s1",
            pages=[PageVisit(url="garbage", title="", timestamp=BASE_TIME)],
            start_time=BASE_TIME,
            end_time=BASE_TIME,
        )
        assert UrlResourceExtractor().aggregate_resources_across_sessions([session]) == []


class TestResourceFilterProperty:
    """
    Property-based tests for meaningful and routine resource filters.

    **Feature: project-engine, Property 3: Routine resources are excluded**
    """

    @given(
        visits=st.integers(min_value=1, max_value=10),
        sessions=st.integers(min_value=1, max_value=4),
    )
    @settings(max_examples=100)
    def test_meaningful_filter_applies_minimums(self, visits: int, sessions: int) -> None:
        resource = make_resource(visits, timedelta(hours=1))
        resource.session_ids = {f"s{i}" for i in range(sessions)}

        kept = UrlResourceExtractor().filter_meaningful_resources([resource], 2, 2)

        assert (kept == [resource]) == (visits >= 2 and sessions >= 2)

    def test_homepages_are_never_meaningful(self) -> None:
        resource = make_resource(20, timedelta(days=3))
        resource.specificity = ResourceSpecificity.HOMEPAGE
        assert UrlResourceExtractor().filter_meaningful_resources([resource], 2, 2) == []

    @given(visits=st.integers(min_value=1, max_value=500))
    @settings(max_examples=100)
    def test_short_history_is_never_routine(self, visits: int) -> None:
        resource = make_resource(visits, timedelta(hours=23))
        assert UrlResourceExtractor().is_routine_resource(resource) is False

    @given(
        days=st.integers(min_value=1, max_value=30),
        rate=st.integers(min_value=1, max_value=30),
    )
    @settings(max_examples=100)
    def test_routine_means_more_than_ten_visits_per_day(self, days: int, rate: int) -> None:
        resource = make_resource(days * rate, timedelta(days=days))
        assert UrlResourceExtractor().is_routine_resource(resource) == (rate > 10)
