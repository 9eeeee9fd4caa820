# src/routers/crawl_status.py
# Responsibility: Read-only API to visualize the crawler's internal state.

from fastapi import APIRouter, Depends, Query
from typing import Dict, List

from src.crawler.repository import CrawlStore
from src.routers.urls import CrawlItemOut, get_store

router = APIRouter(
    prefix="/crawl",
    tags=["Crawl Monitor"]
)

@router.get("/status")
def get_status_counts(store: CrawlStore = Depends(get_store)) -> Dict[str, int]:
    """Returns count of URLs in each status."""
    return store.status_counts()

@router.get("/queue", response_model=List[CrawlItemOut])
def get_queue_head(limit: int = Query(10, ge=1, le=100), store: CrawlStore = Depends(get_store)):
    """Returns the next URLs waiting to be crawled, oldest first."""
    return [CrawlItemOut.from_item(item) for item in store.list_queued()[:limit]]
