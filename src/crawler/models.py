# src/crawler/models.py
# Responsibility: Domain records shared by the crawl pipeline, storage and API layers.

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class CrawlStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (CrawlStatus.COMPLETED, CrawlStatus.FAILED)


@dataclass
class CrawlItem:
    """One URL under management and its lifecycle state."""

    id: int
    target_url: str
    status: CrawlStatus
    created_at: datetime
    updated_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None


@dataclass
class AnalysisResult:
    """Structural facts extracted from a successfully fetched page."""

    html_version: Optional[str] = None
    page_title: Optional[str] = None
    h1_count: int = 0
    h2_count: int = 0
    h3_count: int = 0
    h4_count: int = 0
    h5_count: int = 0
    h6_count: int = 0
    internal_links_count: int = 0
    external_links_count: int = 0
    broken_links_count: int = 0
    has_login_form: bool = False


@dataclass
class BrokenLinkRecord:
    link_url: str
    status_code: Optional[int] = None
    error_message: Optional[str] = None


@dataclass
class LinkReport:
    """Per-anchor classification; lists hold occurrences, not unique URLs."""

    internal: List[str] = field(default_factory=list)
    external: List[str] = field(default_factory=list)
    broken: List[BrokenLinkRecord] = field(default_factory=list)


@dataclass
class PageAnalysis:
    result: AnalysisResult
    broken_links: List[BrokenLinkRecord] = field(default_factory=list)


@dataclass
class FetchedPage:
    url: str
    content: bytes
    status_code: int
    encoding: Optional[str] = None
