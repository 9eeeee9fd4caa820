# src/routers/analysis.py
# Responsibility: Read-only access to analysis results and broken links of a URL.

from dataclasses import asdict
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from src.crawler.repository import CrawlStore
from src.routers.urls import CrawlItemOut, get_store

router = APIRouter(
    prefix="/analysis",
    tags=["Analysis"]
)

class AnalysisOut(BaseModel):
    html_version: Optional[str] = None
    page_title: Optional[str] = None
    h1_count: int
    h2_count: int
    h3_count: int
    h4_count: int
    h5_count: int
    h6_count: int
    internal_links_count: int
    external_links_count: int
    broken_links_count: int
    has_login_form: bool

class BrokenLinkOut(BaseModel):
    link_url: str
    status_code: Optional[int] = None
    error_message: Optional[str] = None

class AnalysisDetailResponse(BaseModel):
    url: CrawlItemOut
    analysis: AnalysisOut
    broken_links: List[BrokenLinkOut]

class BrokenLinksResponse(BaseModel):
    broken_links: List[BrokenLinkOut]

@router.get("/{item_id}", response_model=AnalysisDetailResponse)
def get_analysis(item_id: int, store: CrawlStore = Depends(get_store)):
    """Returns the URL, its analysis and the broken links found."""
    item = store.get(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="URL not found")

    analysis = store.get_analysis(item_id)
    if analysis is None:
        raise HTTPException(status_code=404, detail="Analysis not found")

    return AnalysisDetailResponse(
        url=CrawlItemOut.from_item(item),
        analysis=AnalysisOut(**asdict(analysis)),
        broken_links=[BrokenLinkOut(**asdict(link)) for link in store.get_broken_links(item_id)],
    )

@router.get("/{item_id}/links", response_model=BrokenLinksResponse)
def get_broken_links(item_id: int, store: CrawlStore = Depends(get_store)):
    if store.get(item_id) is None:
        raise HTTPException(status_code=404, detail="URL not found")

    links = store.get_broken_links(item_id)
    return BrokenLinksResponse(broken_links=[BrokenLinkOut(**asdict(link)) for link in links])
