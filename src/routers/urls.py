# src/routers/urls.py
# Responsibility: URL management endpoints (create, list, delete, rerun).

import math
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, field_validator

from src.crawler.models import CrawlItem, CrawlStatus
from src.crawler.repository import CrawlStore, PostgresCrawlRepository

router = APIRouter(
    prefix="/urls",
    tags=["URLs"]
)

# --- Pydantic Models ---
class CreateURLRequest(BaseModel):
    url: str

    @field_validator("url")
    @classmethod
    def url_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("URL must not be empty")
        return value

class BulkActionRequest(BaseModel):
    ids: List[int]

class CrawlItemOut(BaseModel):
    id: int
    url: str
    status: CrawlStatus
    created_at: datetime
    updated_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    @classmethod
    def from_item(cls, item: CrawlItem) -> "CrawlItemOut":
        return cls(
            id=item.id,
            url=item.target_url,
            status=item.status,
            created_at=item.created_at,
            updated_at=item.updated_at,
            started_at=item.started_at,
            completed_at=item.completed_at,
            error_message=item.error_message,
        )

class URLListResponse(BaseModel):
    urls: List[CrawlItemOut]
    total: int
    page: int
    page_size: int
    total_pages: int

class ActionResponse(BaseModel):
    message: str
    affected: int

# --- Dependency Injection ---
def get_store() -> CrawlStore:
    """Provider for the crawl store."""
    return PostgresCrawlRepository()

# --- Endpoints ---
@router.get("", response_model=URLListResponse)
def list_urls(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    search: Optional[str] = None,
    store: CrawlStore = Depends(get_store),
):
    """Paginated list of URLs, newest first."""
    status_filter = None
    if status:
        try:
            status_filter = CrawlStatus(status)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid status value")

    items, total = store.list_items(page, page_size, status_filter, search or None)
    return URLListResponse(
        urls=[CrawlItemOut.from_item(item) for item in items],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size),
    )

@router.post("", response_model=CrawlItemOut, status_code=201)
def create_url(req: CreateURLRequest, store: CrawlStore = Depends(get_store)):
    """Registers a URL for analysis; it starts out queued."""
    item = store.create(req.url)
    return CrawlItemOut.from_item(item)

@router.get("/{item_id}", response_model=CrawlItemOut)
def get_url(item_id: int, store: CrawlStore = Depends(get_store)):
    item = store.get(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="URL not found")
    return CrawlItemOut.from_item(item)

@router.delete("/{item_id}", response_model=ActionResponse)
def delete_url(item_id: int, store: CrawlStore = Depends(get_store)):
    if store.delete([item_id]) == 0:
        raise HTTPException(status_code=404, detail="URL not found")
    return ActionResponse(message="URL deleted successfully", affected=1)

@router.post("/bulk-delete", response_model=ActionResponse)
def bulk_delete(req: BulkActionRequest, store: CrawlStore = Depends(get_store)):
    if not req.ids:
        raise HTTPException(status_code=400, detail="No IDs provided")
    deleted = store.delete(req.ids)
    return ActionResponse(message="URLs deleted successfully", affected=deleted)

@router.post("/bulk-rerun", response_model=ActionResponse)
def bulk_rerun(req: BulkActionRequest, store: CrawlStore = Depends(get_store)):
    """Resets the given URLs to queued; analysis is rebuilt on the next crawl."""
    if not req.ids:
        raise HTTPException(status_code=400, detail="No IDs provided")
    requeued = store.rerun(req.ids)
    return ActionResponse(message="Analysis queued for rerun", affected=requeued)

@router.post("/{item_id}/rerun", response_model=ActionResponse)
def rerun_url(item_id: int, store: CrawlStore = Depends(get_store)):
    if store.rerun([item_id]) == 0:
        raise HTTPException(status_code=404, detail="URL not found")
    return ActionResponse(message="Analysis queued for rerun", affected=1)
