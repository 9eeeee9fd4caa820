# src/crawler/repository.py
# Responsibility: Encapsulates database operations and state transitions for crawl items.
# This module is the "lower layer" imported by the job (worker), the scheduler and the API.

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

import psycopg2
from psycopg2.extras import RealDictCursor

from src.crawler.errors import PersistenceError
from src.crawler.lifecycle import Transition, normalize_url, utcnow
from src.crawler.models import AnalysisResult, BrokenLinkRecord, CrawlItem, CrawlStatus
from src.services.db import DBTransaction

ITEM_COLUMNS = "id, url, status, created_at, updated_at, started_at, completed_at, error_message"
ANALYSIS_COLUMNS = (
    "html_version, page_title, h1_count, h2_count, h3_count, h4_count, h5_count, h6_count, "
    "internal_links_count, external_links_count, broken_links_count, has_login_form"
)


class CrawlStore(ABC):
    """
    Storage collaborator for the crawl pipeline.
    Status writes are conditional: a transition only applies while the stored
    status still equals `transition.source`.
    """

    # --- Pipeline operations ---
    @abstractmethod
    def list_queued(self) -> List[CrawlItem]:
        """Queued items, oldest first."""

    @abstractmethod
    def set_status(self, item_id: int, transition: Transition) -> bool:
        """Applies a lifecycle transition. Returns False if the item moved on meanwhile."""

    @abstractmethod
    def save_analysis(self, item_id: int, analysis: AnalysisResult, broken_links: Sequence[BrokenLinkRecord]) -> None:
        """Replaces the item's analysis. Raises PersistenceError unless the item is running."""

    # --- Management operations ---
    @abstractmethod
    def create(self, raw_url: str) -> CrawlItem:
        pass

    @abstractmethod
    def get(self, item_id: int) -> Optional[CrawlItem]:
        pass

    @abstractmethod
    def list_items(
        self, page: int, page_size: int, status: Optional[CrawlStatus] = None, search: Optional[str] = None
    ) -> Tuple[List[CrawlItem], int]:
        pass

    @abstractmethod
    def delete(self, item_ids: Sequence[int]) -> int:
        pass

    @abstractmethod
    def rerun(self, item_ids: Sequence[int], now: Optional[datetime] = None) -> int:
        """Resets items to queued and clears their timestamps and error."""

    @abstractmethod
    def get_analysis(self, item_id: int) -> Optional[AnalysisResult]:
        pass

    @abstractmethod
    def get_broken_links(self, item_id: int) -> List[BrokenLinkRecord]:
        pass

    @abstractmethod
    def list_stale_running(self, started_before: datetime) -> List[CrawlItem]:
        pass

    @abstractmethod
    def status_counts(self) -> Dict[str, int]:
        pass


def _row_to_item(row) -> CrawlItem:
    return CrawlItem(
        id=row["id"],
        target_url=row["url"],
        status=CrawlStatus(row["status"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        error_message=row["error_message"],
    )


class PostgresCrawlRepository(CrawlStore):
    """
    Data Access Layer for crawl state.
    Handles all interactions with the 'crawl_items', 'analysis_results' and 'broken_links' tables.
    """

    def list_queued(self) -> List[CrawlItem]:
        sql = f"""
            SELECT {ITEM_COLUMNS}
            FROM crawl_items
            WHERE status = 'queued'
            ORDER BY created_at ASC, id ASC
        """
        with DBTransaction() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql)
                return [_row_to_item(row) for row in cur.fetchall()]

    def set_status(self, item_id: int, transition: Transition) -> bool:
        sql = """
            UPDATE crawl_items
            SET status = %s,
                updated_at = %s,
                started_at = %s,
                completed_at = %s,
                error_message = %s
            WHERE id = %s AND status = %s
        """
        try:
            with DBTransaction() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, (
                        transition.target.value,
                        transition.at,
                        transition.started_at,
                        transition.completed_at,
                        transition.error_message,
                        item_id,
                        transition.source.value,
                    ))
                    applied = cur.rowcount == 1

                    # Artifacts of a previous run are dropped lazily, when the item starts again.
                    # A failed attempt never keeps an analysis.
                    if applied and transition.target in (CrawlStatus.RUNNING, CrawlStatus.FAILED):
                        self._clear_artifacts(cur, item_id)
                    return applied
        except psycopg2.Error as e:
            raise PersistenceError(f"failed to update status of item {item_id}: {e}") from e

    def save_analysis(self, item_id: int, analysis: AnalysisResult, broken_links: Sequence[BrokenLinkRecord]) -> None:
        sql_analysis = f"""
            INSERT INTO analysis_results (url_id, {ANALYSIS_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """
        sql_broken = """
            INSERT INTO broken_links (url_id, link_url, status_code, error_message)
            VALUES (%s, %s, %s, %s)
        """
        try:
            with DBTransaction() as conn:
                with conn.cursor() as cur:
                    # Lock the item row so a concurrent rerun cannot interleave
                    cur.execute("SELECT status FROM crawl_items WHERE id = %s FOR UPDATE", (item_id,))
                    row = cur.fetchone()
                    if not row:
                        raise PersistenceError(f"item {item_id} no longer exists")
                    if row[0] != CrawlStatus.RUNNING.value:
                        raise PersistenceError(f"item {item_id} is '{row[0]}', not running")

                    self._clear_artifacts(cur, item_id)
                    cur.execute(sql_analysis, (
                        item_id,
                        analysis.html_version,
                        analysis.page_title,
                        analysis.h1_count,
                        analysis.h2_count,
                        analysis.h3_count,
                        analysis.h4_count,
                        analysis.h5_count,
                        analysis.h6_count,
                        analysis.internal_links_count,
                        analysis.external_links_count,
                        analysis.broken_links_count,
                        analysis.has_login_form,
                    ))
                    for link in broken_links:
                        cur.execute(sql_broken, (item_id, link.link_url, link.status_code, link.error_message))
        except psycopg2.Error as e:
            raise PersistenceError(f"failed to save analysis results: {e}") from e

    def _clear_artifacts(self, cur, item_id: int):
        cur.execute("DELETE FROM broken_links WHERE url_id = %s", (item_id,))
        cur.execute("DELETE FROM analysis_results WHERE url_id = %s", (item_id,))

    def create(self, raw_url: str) -> CrawlItem:
        now = utcnow()
        sql = f"""
            INSERT INTO crawl_items (url, status, created_at, updated_at)
            VALUES (%s, 'queued', %s, %s)
            RETURNING {ITEM_COLUMNS}
        """
        with DBTransaction() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, (normalize_url(raw_url), now, now))
                return _row_to_item(cur.fetchone())

    def get(self, item_id: int) -> Optional[CrawlItem]:
        with DBTransaction() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(f"SELECT {ITEM_COLUMNS} FROM crawl_items WHERE id = %s", (item_id,))
                row = cur.fetchone()
                return _row_to_item(row) if row else None

    def list_items(
        self, page: int, page_size: int, status: Optional[CrawlStatus] = None, search: Optional[str] = None
    ) -> Tuple[List[CrawlItem], int]:
        where = ["1=1"]
        args: list = []
        if status:
            where.append("c.status = %s")
            args.append(status.value)
        if search:
            where.append("(c.url ILIKE %s OR a.page_title ILIKE %s)")
            term = f"%{search}%"
            args.extend([term, term])
        where_clause = " AND ".join(where)

        base = f"FROM crawl_items c LEFT JOIN analysis_results a ON a.url_id = c.id WHERE {where_clause}"
        item_columns = ", ".join(f"c.{col.strip()}" for col in ITEM_COLUMNS.split(","))
        offset = (page - 1) * page_size

        with DBTransaction() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(f"SELECT COUNT(*) AS total {base}", args)
                total = cur.fetchone()["total"]
                cur.execute(
                    f"SELECT {item_columns} {base} ORDER BY c.created_at DESC, c.id DESC LIMIT %s OFFSET %s",
                    args + [page_size, offset],
                )
                return [_row_to_item(row) for row in cur.fetchall()], total

    def delete(self, item_ids: Sequence[int]) -> int:
        if not item_ids:
            return 0
        with DBTransaction() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM crawl_items WHERE id = ANY(%s)", (list(item_ids),))
                return cur.rowcount

    def rerun(self, item_ids: Sequence[int], now: Optional[datetime] = None) -> int:
        if not item_ids:
            return 0
        sql = """
            UPDATE crawl_items
            SET status = 'queued',
                updated_at = %s,
                started_at = NULL,
                completed_at = NULL,
                error_message = NULL
            WHERE id = ANY(%s)
        """
        with DBTransaction() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (now or utcnow(), list(item_ids)))
                return cur.rowcount

    def get_analysis(self, item_id: int) -> Optional[AnalysisResult]:
        with DBTransaction() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(f"SELECT {ANALYSIS_COLUMNS} FROM analysis_results WHERE url_id = %s", (item_id,))
                row = cur.fetchone()
                return AnalysisResult(**row) if row else None

    def get_broken_links(self, item_id: int) -> List[BrokenLinkRecord]:
        sql = """
            SELECT link_url, status_code, error_message
            FROM broken_links
            WHERE url_id = %s
            ORDER BY id ASC
        """
        with DBTransaction() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, (item_id,))
                return [BrokenLinkRecord(**row) for row in cur.fetchall()]

    def list_stale_running(self, started_before: datetime) -> List[CrawlItem]:
        sql = f"""
            SELECT {ITEM_COLUMNS}
            FROM crawl_items
            WHERE status = 'running' AND started_at < %s
            ORDER BY started_at ASC
        """
        with DBTransaction() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, (started_before,))
                return [_row_to_item(row) for row in cur.fetchall()]

    def status_counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in CrawlStatus}
        with DBTransaction() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT status, COUNT(*) FROM crawl_items GROUP BY status")
                for status, count in cur.fetchall():
                    counts[status] = count
        return counts
