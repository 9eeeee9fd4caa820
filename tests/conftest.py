import threading
from copy import deepcopy
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Set, Tuple

import pytest

from src.crawler.errors import FetchError, PersistenceError
from src.crawler.lifecycle import Transition, normalize_url, utcnow
from src.crawler.link_checker import LivenessChecker, ProbeResult
from src.crawler.models import AnalysisResult, BrokenLinkRecord, CrawlItem, CrawlStatus, FetchedPage
from src.crawler.parser import DefaultHTMLAnalyzer
from src.crawler.repository import CrawlStore


class InMemoryCrawlStore(CrawlStore):
    """Thread-safe CrawlStore with the same conditional-write semantics as the Postgres repository."""

    def __init__(self):
        self.items: Dict[int, CrawlItem] = {}
        self.analyses: Dict[int, AnalysisResult] = {}
        self.broken: Dict[int, List[BrokenLinkRecord]] = {}
        self.fail_save = False
        self.failing_targets: Set[CrawlStatus] = set()
        self._next_id = 1
        self._lock = threading.Lock()

    def list_queued(self) -> List[CrawlItem]:
        with self._lock:
            queued = [i for i in self.items.values() if i.status == CrawlStatus.QUEUED]
            return [deepcopy(i) for i in sorted(queued, key=lambda i: (i.created_at, i.id))]

    def set_status(self, item_id: int, transition: Transition) -> bool:
        with self._lock:
            if transition.target in self.failing_targets:
                raise PersistenceError(f"simulated write failure ({transition.target.value})")
            item = self.items.get(item_id)
            if item is None or item.status != transition.source:
                return False
            self.items[item_id] = transition.applied_to(item)
            if transition.target in (CrawlStatus.RUNNING, CrawlStatus.FAILED):
                self.analyses.pop(item_id, None)
                self.broken.pop(item_id, None)
            return True

    def save_analysis(self, item_id: int, analysis: AnalysisResult, broken_links: Sequence[BrokenLinkRecord]) -> None:
        with self._lock:
            if self.fail_save:
                raise PersistenceError("simulated save failure")
            item = self.items.get(item_id)
            if item is None or item.status != CrawlStatus.RUNNING:
                raise PersistenceError(f"item {item_id} is not running")
            self.analyses[item_id] = deepcopy(analysis)
            self.broken[item_id] = list(broken_links)

    def create(self, raw_url: str, created_at: Optional[datetime] = None) -> CrawlItem:
        with self._lock:
            now = created_at or utcnow()
            item = CrawlItem(
                id=self._next_id,
                target_url=normalize_url(raw_url),
                status=CrawlStatus.QUEUED,
                created_at=now,
                updated_at=now,
            )
            self.items[item.id] = item
            self._next_id += 1
            return deepcopy(item)

    def get(self, item_id: int) -> Optional[CrawlItem]:
        with self._lock:
            item = self.items.get(item_id)
            return deepcopy(item) if item else None

    def list_items(self, page, page_size, status=None, search=None) -> Tuple[List[CrawlItem], int]:
        with self._lock:
            items = list(self.items.values())
            if status:
                items = [i for i in items if i.status == status]
            if search:
                needle = search.lower()
                items = [
                    i for i in items
                    if needle in i.target_url.lower()
                    or needle in ((self.analyses.get(i.id) or AnalysisResult()).page_title or "").lower()
                ]
            items.sort(key=lambda i: (i.created_at, i.id), reverse=True)
            start = (page - 1) * page_size
            return [deepcopy(i) for i in items[start:start + page_size]], len(items)

    def delete(self, item_ids: Sequence[int]) -> int:
        with self._lock:
            deleted = 0
            for item_id in item_ids:
                if self.items.pop(item_id, None) is not None:
                    deleted += 1
                self.analyses.pop(item_id, None)
                self.broken.pop(item_id, None)
            return deleted

    def rerun(self, item_ids: Sequence[int], now: Optional[datetime] = None) -> int:
        with self._lock:
            now = now or utcnow()
            count = 0
            for item_id in item_ids:
                item = self.items.get(item_id)
                if item is None:
                    continue
                item.status = CrawlStatus.QUEUED
                item.updated_at = now
                item.started_at = None
                item.completed_at = None
                item.error_message = None
                count += 1
            return count

    def get_analysis(self, item_id: int) -> Optional[AnalysisResult]:
        with self._lock:
            analysis = self.analyses.get(item_id)
            return deepcopy(analysis) if analysis else None

    def get_broken_links(self, item_id: int) -> List[BrokenLinkRecord]:
        with self._lock:
            return list(self.broken.get(item_id, []))

    def list_stale_running(self, started_before: datetime) -> List[CrawlItem]:
        with self._lock:
            return [
                deepcopy(i) for i in self.items.values()
                if i.status == CrawlStatus.RUNNING and i.started_at and i.started_at < started_before
            ]

    def status_counts(self) -> Dict[str, int]:
        with self._lock:
            counts = {s.value: 0 for s in CrawlStatus}
            for item in self.items.values():
                counts[item.status.value] += 1
            return counts


class StaticLivenessChecker(LivenessChecker):
    """Answers probes from a fixed table; unknown URLs are alive (200)."""

    def __init__(self, statuses: Optional[Dict[str, int]] = None, errors: Optional[Dict[str, str]] = None):
        self.statuses = statuses or {}
        self.errors = errors or {}
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def check(self, url: str) -> ProbeResult:
        with self._lock:
            self.calls.append(url)
        if url in self.errors:
            return ProbeResult(url=url, error=self.errors[url])
        return ProbeResult(url=url, status_code=self.statuses.get(url, 200))


class FakeFetcher:
    """Serves fixed documents per URL; unknown URLs fail like a 404."""

    def __init__(self, pages: Optional[Dict[str, str]] = None, default: Optional[str] = None):
        self.pages = pages or {}
        self.default = default
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def fetch(self, url: str) -> FetchedPage:
        with self._lock:
            self.calls.append(url)
        html = self.pages.get(url, self.default)
        if html is None:
            raise FetchError("HTTP 404: Not Found")
        return FetchedPage(url=url, content=html.encode("utf-8"), status_code=200, encoding="utf-8")


@pytest.fixture
def store():
    return InMemoryCrawlStore()


@pytest.fixture
def checker():
    return StaticLivenessChecker()


@pytest.fixture
def analyzer(checker):
    return DefaultHTMLAnalyzer(checker=checker)


@pytest.fixture
def hours_ago():
    def _ago(hours: float) -> datetime:
        return utcnow() - timedelta(hours=hours)
    return _ago
