# src/crawler/lifecycle.py
# Responsibility: URL lifecycle state machine (queued -> running -> completed|failed, rerun -> queued).

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Optional

from src.crawler.errors import InvalidTransitionError
from src.crawler.models import CrawlItem, CrawlStatus

ALLOWED_TRANSITIONS: Dict[CrawlStatus, FrozenSet[CrawlStatus]] = {
    CrawlStatus.QUEUED: frozenset({CrawlStatus.RUNNING, CrawlStatus.QUEUED}),
    CrawlStatus.RUNNING: frozenset({CrawlStatus.COMPLETED, CrawlStatus.FAILED, CrawlStatus.QUEUED}),
    CrawlStatus.COMPLETED: frozenset({CrawlStatus.QUEUED}),
    CrawlStatus.FAILED: frozenset({CrawlStatus.QUEUED}),
}

UNKNOWN_ERROR = "unknown error"


@dataclass(frozen=True)
class Transition:
    """
    A computed status change.
    Carries the full set of lifecycle columns so storage can apply it in one
    conditional write (only while the stored status still equals `source`).
    """

    source: CrawlStatus
    target: CrawlStatus
    at: datetime
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    error_message: Optional[str] = None

    def applied_to(self, item: CrawlItem) -> CrawlItem:
        return replace(
            item,
            status=self.target,
            updated_at=self.at,
            started_at=self.started_at,
            completed_at=self.completed_at,
            error_message=self.error_message,
        )


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_url(raw_url: str) -> str:
    """Defaults the scheme to https:// when none is given."""
    url = raw_url.strip()
    if not url.startswith(("http://", "https://")):
        url = "https://" + url
    return url


def _check(item: CrawlItem, target: CrawlStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[item.status]:
        raise InvalidTransitionError(item.status.value, target.value)


def start(item: CrawlItem, now: Optional[datetime] = None) -> Transition:
    """queued -> running. Set on dequeue, before the fetch begins."""
    now = now or utcnow()
    _check(item, CrawlStatus.RUNNING)
    return Transition(
        source=item.status,
        target=CrawlStatus.RUNNING,
        at=now,
        started_at=now,
        completed_at=None,
    )


def complete(item: CrawlItem, now: Optional[datetime] = None) -> Transition:
    """running -> completed. Only after results are durably persisted."""
    now = now or utcnow()
    _check(item, CrawlStatus.COMPLETED)
    return Transition(
        source=item.status,
        target=CrawlStatus.COMPLETED,
        at=now,
        started_at=item.started_at,
        completed_at=now,
    )


def fail(item: CrawlItem, message: str, now: Optional[datetime] = None) -> Transition:
    """running -> failed, recording a human-readable cause."""
    now = now or utcnow()
    _check(item, CrawlStatus.FAILED)
    return Transition(
        source=item.status,
        target=CrawlStatus.FAILED,
        at=now,
        started_at=item.started_at,
        completed_at=now,
        error_message=(message or "").strip() or UNKNOWN_ERROR,
    )


def requeue(item: CrawlItem, now: Optional[datetime] = None) -> Transition:
    """
    Explicit rerun: any state -> queued.
    Clears timestamps and the error; stale analysis is dropped when the item is next started.
    """
    now = now or utcnow()
    _check(item, CrawlStatus.QUEUED)
    return Transition(
        source=item.status,
        target=CrawlStatus.QUEUED,
        at=now,
        started_at=None,
        completed_at=None,
    )
