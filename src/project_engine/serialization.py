"""
Conversion between engine dataclasses and JSON-compatible dictionaries.

Timestamps are stored as ISO 8601 strings; enums as their values.
Malformed records raise PersistenceError so callers can abort cleanly.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from .enums import CandidateStatus, NotificationAction, ProjectStatus, SiteAddedBy
from .exceptions import PersistenceError
from .models import (
    DismissedSuggestion,
    NotificationHistoryEntry,
    PageVisit,
    Project,
    ProjectCandidate,
    ProjectSite,
    ScoreBreakdown,
    Session,
)


def format_timestamp(value: datetime) -> str:
    return value.isoformat()


def parse_timestamp(value: Any) -> datetime:
    """
    Parse an ISO string or epoch milliseconds into an aware datetime.

    Naive values are taken to be UTC.
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _optional_timestamp(value: Any) -> Optional[datetime]:
    return None if value is None else parse_timestamp(value)


def candidate_to_dict(candidate: ProjectCandidate) -> dict:
    breakdown = candidate.score_breakdown
    return {
        "id": candidate.id,
        "primary_domain": candidate.primary_domain,
        "specific_resources": list(candidate.specific_resources),
        "session_ids": list(candidate.session_ids),
        "visit_count": candidate.visit_count,
        "first_seen": format_timestamp(candidate.first_seen),
        "last_seen": format_timestamp(candidate.last_seen),
        "keywords": list(candidate.keywords),
        "related_domains": list(candidate.related_domains),
        "score": candidate.score,
        "score_breakdown": None if breakdown is None else {
            "visits": breakdown.visits,
            "sessions": breakdown.sessions,
            "resources": breakdown.resources,
            "time_span": breakdown.time_span,
            "total": breakdown.total,
        },
        "status": candidate.status.value,
        "notification_shown": candidate.notification_shown,
        "notification_history": [
            {
                "session_id": entry.session_id,
                "timestamp": format_timestamp(entry.timestamp),
                "action": entry.action.value,
            }
            for entry in candidate.notification_history
        ],
        "snooze_count": candidate.snooze_count,
    }


def candidate_from_dict(data: dict) -> ProjectCandidate:
    try:
        breakdown = data.get("score_breakdown")
        return ProjectCandidate(
            id=data["id"],
            primary_domain=data["primary_domain"],
            specific_resources=list(dict.fromkeys(data.get("specific_resources", []))),
            session_ids=list(dict.fromkeys(data.get("session_ids", []))),
            visit_count=int(data.get("visit_count", 0)),
            first_seen=parse_timestamp(data["first_seen"]),
            last_seen=parse_timestamp(data["last_seen"]),
            keywords=list(data.get("keywords", [])),
            related_domains=list(data.get("related_domains", [])),
            score=int(data.get("score", 0)),
            score_breakdown=None if breakdown is None else ScoreBreakdown(**breakdown),
            status=CandidateStatus(data.get("status", CandidateStatus.WATCHING.value)),
            notification_shown=bool(data.get("notification_shown", False)),
            notification_history=[
                NotificationHistoryEntry(
                    session_id=entry["session_id"],
                    timestamp=parse_timestamp(entry["timestamp"]),
                    action=NotificationAction(entry["action"]),
                )
                for entry in data.get("notification_history") or []
            ],
            snooze_count=int(data.get("snooze_count") or 0),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise PersistenceError(
            code="invalid_record",
            message=f"Malformed candidate record: {e}",
            details={"candidate_id": data.get("id") if isinstance(data, dict) else None},
        )


def site_to_dict(site: ProjectSite) -> dict:
    return {
        "url": site.url,
        "title": site.title,
        "added_at": format_timestamp(site.added_at),
        "added_by": site.added_by.value,
        "visit_count": site.visit_count,
    }


def project_to_dict(project: Project) -> dict:
    return {
        "id": project.id,
        "name": project.name,
        "description": project.description,
        "start_date": format_timestamp(project.start_date),
        "end_date": format_timestamp(project.end_date),
        "created_at": format_timestamp(project.created_at),
        "session_ids": list(project.session_ids),
        "keywords": list(project.keywords),
        "top_domains": list(project.top_domains),
        "sites": [site_to_dict(site) for site in project.sites],
        "status": project.status.value,
        "auto_detected": project.auto_detected,
        "score": project.score,
        "dismissed_suggestions": [
            {"url": d.url, "timestamp": format_timestamp(d.timestamp)}
            for d in project.dismissed_suggestions
        ],
    }


def project_from_dict(data: dict) -> Project:
    try:
        return Project(
            id=data["id"],
            name=data["name"],
            description=data.get("description"),
            start_date=parse_timestamp(data["start_date"]),
            end_date=parse_timestamp(data["end_date"]),
            created_at=parse_timestamp(data.get("created_at", data["start_date"])),
            session_ids=list(data.get("session_ids", [])),
            keywords=list(data.get("keywords", [])),
            top_domains=list(data.get("top_domains", [])),
            sites=[
                ProjectSite(
                    url=site["url"],
                    title=site.get("title", ""),
                    added_at=parse_timestamp(site["added_at"]),
                    added_by=SiteAddedBy(site.get("added_by", SiteAddedBy.AUTO.value)),
                    visit_count=int(site.get("visit_count", 1)),
                )
                for site in data.get("sites") or []
            ],
            status=ProjectStatus(data.get("status", ProjectStatus.ACTIVE.value)),
            auto_detected=bool(data.get("auto_detected", False)),
            score=int(data.get("score", 100)),
            dismissed_suggestions=[
                DismissedSuggestion(url=d["url"], timestamp=parse_timestamp(d["timestamp"]))
                for d in data.get("dismissed_suggestions") or []
            ],
        )
    except (KeyError, TypeError, ValueError) as e:
        raise PersistenceError(
            code="invalid_record",
            message=f"Malformed project record: {e}",
            details={"project_id": data.get("id") if isinstance(data, dict) else None},
        )


def page_visit_from_dict(data: dict) -> PageVisit:
    return PageVisit(
        url=data["url"],
        title=data.get("title") or "",
        timestamp=parse_timestamp(data["timestamp"]),
    )


def session_from_dict(data: dict) -> Session:
    """Build a Session from an exported history record (ISO or epoch-ms times)."""
    pages = [page_visit_from_dict(page) for page in data.get("pages", [])]
    start = _optional_timestamp(data.get("start_time"))
    end = _optional_timestamp(data.get("end_time"))
    if start is None:
        start = min((p.timestamp for p in pages), default=datetime.now(timezone.utc))
    if end is None:
        end = max((p.timestamp for p in pages), default=start)
    return Session(
        id=str(data["id"]),
        pages=pages,
        start_time=start,
        end_time=end,
        label_id=data.get("label_id"),
    )
