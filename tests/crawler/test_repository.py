from datetime import datetime, timezone
from unittest.mock import MagicMock

import psycopg2
import pytest

from src.crawler import lifecycle, repository
from src.crawler.errors import PersistenceError
from src.crawler.models import AnalysisResult, BrokenLinkRecord, CrawlItem, CrawlStatus
from src.crawler.repository import PostgresCrawlRepository

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def cur(monkeypatch):
    """Cursor behind a mocked DBTransaction; exceptions propagate out of both context managers."""
    cursor = MagicMock()
    conn = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor
    conn.cursor.return_value.__exit__.return_value = False

    transaction = MagicMock()
    transaction.__enter__.return_value = conn
    transaction.__exit__.return_value = False
    monkeypatch.setattr(repository, "DBTransaction", MagicMock(return_value=transaction))
    return cursor


def make_item(status):
    return CrawlItem(
        id=7,
        target_url="https://example.com",
        status=status,
        created_at=NOW,
        updated_at=NOW,
        started_at=NOW if status != CrawlStatus.QUEUED else None,
    )


def executed_sql(cur):
    return [" ".join(c.args[0].split()) for c in cur.execute.call_args_list]


def test_set_status_is_conditional_on_the_source_status(cur):
    cur.rowcount = 1
    transition = lifecycle.start(make_item(CrawlStatus.QUEUED), NOW)

    assert PostgresCrawlRepository().set_status(7, transition) is True

    sql, params = cur.execute.call_args_list[0].args
    assert "WHERE id = %s AND status = %s" in sql
    assert params == ("running", NOW, NOW, None, None, 7, "queued")


def test_starting_clears_previous_artifacts(cur):
    cur.rowcount = 1

    PostgresCrawlRepository().set_status(7, lifecycle.start(make_item(CrawlStatus.QUEUED), NOW))

    assert executed_sql(cur)[1:] == [
        "DELETE FROM broken_links WHERE url_id = %s",
        "DELETE FROM analysis_results WHERE url_id = %s",
    ]


def test_failing_clears_artifacts(cur):
    cur.rowcount = 1

    PostgresCrawlRepository().set_status(7, lifecycle.fail(make_item(CrawlStatus.RUNNING), "boom", NOW))

    params = cur.execute.call_args_list[0].args[1]
    assert params[0] == "failed"
    assert params[4] == "boom"
    assert len(cur.execute.call_args_list) == 3


def test_completing_keeps_the_saved_analysis(cur):
    cur.rowcount = 1

    PostgresCrawlRepository().set_status(7, lifecycle.complete(make_item(CrawlStatus.RUNNING), NOW))

    assert len(cur.execute.call_args_list) == 1


def test_set_status_reports_a_lost_race(cur):
    cur.rowcount = 0

    applied = PostgresCrawlRepository().set_status(7, lifecycle.start(make_item(CrawlStatus.QUEUED), NOW))

    assert applied is False
    # No artifacts touched when the status moved on
    assert len(cur.execute.call_args_list) == 1


def test_set_status_wraps_database_errors(cur):
    cur.execute.side_effect = psycopg2.OperationalError("connection lost")

    with pytest.raises(PersistenceError, match="connection lost"):
        PostgresCrawlRepository().set_status(7, lifecycle.start(make_item(CrawlStatus.QUEUED), NOW))


def test_save_analysis_locks_row_and_replaces_results(cur):
    cur.fetchone.return_value = ("running",)
    analysis = AnalysisResult(html_version="html", page_title="Home", h1_count=1, broken_links_count=1)
    broken = [BrokenLinkRecord(link_url="https://other.com/x", status_code=404, error_message="HTTP 404")]

    PostgresCrawlRepository().save_analysis(7, analysis, broken)

    sql = executed_sql(cur)
    assert sql[0] == "SELECT status FROM crawl_items WHERE id = %s FOR UPDATE"
    assert sql[1].startswith("DELETE FROM broken_links")
    assert sql[2].startswith("DELETE FROM analysis_results")
    assert sql[3].startswith("INSERT INTO analysis_results")
    assert sql[4].startswith("INSERT INTO broken_links")

    analysis_params = cur.execute.call_args_list[3].args[1]
    assert analysis_params[:3] == (7, "html", "Home")
    assert cur.execute.call_args_list[4].args[1] == (7, "https://other.com/x", 404, "HTTP 404")


@pytest.mark.parametrize("row", [("queued",), ("completed",), ("failed",)])
def test_save_analysis_rejects_items_that_are_not_running(cur, row):
    cur.fetchone.return_value = row

    with pytest.raises(PersistenceError, match="not running"):
        PostgresCrawlRepository().save_analysis(7, AnalysisResult(), [])

    assert len(cur.execute.call_args_list) == 1


def test_save_analysis_rejects_deleted_items(cur):
    cur.fetchone.return_value = None

    with pytest.raises(PersistenceError, match="no longer exists"):
        PostgresCrawlRepository().save_analysis(7, AnalysisResult(), [])


def test_rerun_resets_lifecycle_columns(cur):
    cur.rowcount = 2

    assert PostgresCrawlRepository().rerun([1, 2], NOW) == 2

    sql, params = cur.execute.call_args.args
    assert "started_at = NULL" in sql and "error_message = NULL" in sql
    assert params == (NOW, [1, 2])
