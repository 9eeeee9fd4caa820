# src/crawler/job.py
# Responsibility: Defines the atomic crawl task (fetch -> analyze -> persist -> transition) run by workers.

from typing import Optional

from src.crawler import lifecycle
from src.crawler.crawler import PageFetcher
from src.crawler.errors import CrawlError, InvalidTransitionError
from src.crawler.lease import ItemLease
from src.crawler.models import CrawlItem, CrawlStatus
from src.crawler.parser import BaseAnalyzer
from src.crawler.repository import CrawlStore


def perform_crawl_job(
    item: CrawlItem,
    store: CrawlStore,
    fetcher: PageFetcher,
    analyzer: BaseAnalyzer,
    lease: Optional[ItemLease] = None,
) -> Optional[CrawlStatus]:
    """
    Executes the full crawl pipeline for a single item.
    Never raises: every failure is recorded as a `failed` transition or logged.

    Args:
        item (CrawlItem): A queued item.
        store (CrawlStore): Storage collaborator.
        fetcher (PageFetcher): Page fetcher.
        analyzer (BaseAnalyzer): Page analyzer.
        lease (ItemLease): Optional cross-process lease.

    Returns:
        Optional[CrawlStatus]: The terminal status reached, or None if the item was
        skipped, superseded by a rerun, or left running because storage failed.
    """
    print(f"[Worker] Starting job for: {item.target_url} (ID: {item.id})")

    if lease is not None and not lease.acquire(item.id):
        print(f"[Worker] Item {item.id} is leased by another worker, skipping.")
        return None

    try:
        status = _run(item, store, fetcher, analyzer)
    finally:
        if lease is not None:
            lease.release(item.id)

    print(f"[Worker] Finished {item.target_url}. Status: {status.value if status else 'unchanged'}")
    return status


def _run(item: CrawlItem, store: CrawlStore, fetcher: PageFetcher, analyzer: BaseAnalyzer) -> Optional[CrawlStatus]:
    # 1. queued -> running
    try:
        transition = lifecycle.start(item)
        if not store.set_status(item.id, transition):
            print(f"[Worker] Item {item.id} is no longer queued, skipping.")
            return None
    except InvalidTransitionError as e:
        print(f"[Worker] Item {item.id} skipped: {e}")
        return None
    except Exception as e:
        print(f"[Worker] Error updating status to running for item {item.id}: {e}")
        return None
    item = transition.applied_to(item)

    # 2. Fetch and analyze
    url = lifecycle.normalize_url(item.target_url)
    try:
        page = fetcher.fetch(url)
        analysis = analyzer.analyze(page.content, url, page.encoding)
    except CrawlError as e:
        return _fail(store, item, str(e))
    except Exception as e:
        return _fail(store, item, f"unexpected error: {e}")

    # 3. Persist
    try:
        store.save_analysis(item.id, analysis.result, analysis.broken_links)
    except Exception as e:
        print(f"[Worker] Error saving analysis results for item {item.id}: {e}")
        return _fail(store, item, f"failed to save analysis results: {e}")

    # 4. running -> completed
    try:
        if not store.set_status(item.id, lifecycle.complete(item)):
            print(f"[Worker] Item {item.id} was reset while running; result discarded.")
            return None
    except Exception as e:
        return _fail(store, item, f"failed to mark completed: {e}")

    return CrawlStatus.COMPLETED


def _fail(store: CrawlStore, item: CrawlItem, message: str) -> Optional[CrawlStatus]:
    """Best-effort running -> failed write."""
    print(f"[Worker] Failed {item.target_url}: {message}")
    try:
        applied = store.set_status(item.id, lifecycle.fail(item, message))
    except Exception as e:
        print(f"[Worker] Could not record failure for item {item.id}, left running until stale recovery: {e}")
        return None
    return CrawlStatus.FAILED if applied else None
