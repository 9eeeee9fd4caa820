import pytest
from fastapi.testclient import TestClient

from conftest import FakeFetcher
from src.crawler.job import perform_crawl_job
from src.main import create_app
from src.routers.urls import get_store

PAGE = """<!DOCTYPE html><html><head><title>Example Domain</title></head>
<body><h1>Example</h1><a href="https://other.com/gone">gone</a></body></html>"""


@pytest.fixture
def client(store):
    app = create_app()
    app.dependency_overrides[get_store] = lambda: store
    return TestClient(app)


def crawl_all(store, analyzer):
    for item in store.list_queued():
        perform_crawl_job(item, store, FakeFetcher(default=PAGE), analyzer)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_create_url_normalizes_and_queues(client):
    response = client.post("/urls", json={"url": "example.com"})

    assert response.status_code == 201
    body = response.json()
    assert body["url"] == "https://example.com"
    assert body["status"] == "queued"
    assert body["started_at"] is None


def test_create_rejects_blank_url(client):
    assert client.post("/urls", json={"url": "   "}).status_code == 422
    assert client.post("/urls", json={}).status_code == 422


def test_list_urls_paginates_newest_first(client, store):
    for i in range(5):
        store.create(f"https://example.com/{i}")

    body = client.get("/urls", params={"page": 1, "page_size": 2}).json()

    assert body["total"] == 5
    assert body["total_pages"] == 3
    assert [u["url"] for u in body["urls"]] == ["https://example.com/4", "https://example.com/3"]


def test_list_urls_filters_by_status_and_search(client, store, analyzer):
    store.create("https://example.com/a")
    store.create("https://another.org/b")
    crawl_all(store, analyzer)
    store.create("https://example.com/c")

    queued = client.get("/urls", params={"status": "queued"}).json()
    assert [u["url"] for u in queued["urls"]] == ["https://example.com/c"]

    by_title = client.get("/urls", params={"search": "Example Domain"}).json()
    assert by_title["total"] == 2


def test_list_urls_rejects_unknown_status(client):
    assert client.get("/urls", params={"status": "paused"}).status_code == 400


def test_get_and_delete_url(client, store):
    item = store.create("https://example.com")

    assert client.get(f"/urls/{item.id}").json()["id"] == item.id
    assert client.delete(f"/urls/{item.id}").status_code == 200
    assert client.get(f"/urls/{item.id}").status_code == 404
    assert client.delete(f"/urls/{item.id}").status_code == 404


def test_bulk_delete(client, store):
    ids = [store.create(f"https://example.com/{i}").id for i in range(3)]

    response = client.post("/urls/bulk-delete", json={"ids": ids[:2]})

    assert response.json()["affected"] == 2
    assert list(store.items) == [ids[2]]
    assert client.post("/urls/bulk-delete", json={"ids": []}).status_code == 400


def test_bulk_rerun_resets_completed_items(client, store, analyzer):
    item = store.create("https://example.com")
    crawl_all(store, analyzer)
    assert store.get(item.id).status.value == "completed"

    response = client.post("/urls/bulk-rerun", json={"ids": [item.id]})

    assert response.status_code == 200
    assert response.json()["affected"] == 1
    rerun = client.get(f"/urls/{item.id}").json()
    assert rerun["status"] == "queued"
    assert rerun["started_at"] is None
    assert rerun["completed_at"] is None


def test_single_rerun_of_missing_url_is_404(client):
    assert client.post("/urls/999/rerun").status_code == 404


def test_analysis_detail(client, store, checker, analyzer):
    checker.statuses["https://other.com/gone"] = 404
    item = store.create("https://example.com")
    crawl_all(store, analyzer)

    body = client.get(f"/analysis/{item.id}").json()

    assert body["url"]["status"] == "completed"
    assert body["analysis"]["page_title"] == "Example Domain"
    assert body["analysis"]["html_version"] == "html"
    assert body["analysis"]["external_links_count"] == 1
    assert body["analysis"]["broken_links_count"] == 1
    assert body["broken_links"] == [
        {"link_url": "https://other.com/gone", "status_code": 404, "error_message": "HTTP 404"}
    ]

    links = client.get(f"/analysis/{item.id}/links").json()
    assert len(links["broken_links"]) == 1


def test_analysis_missing_is_404(client, store):
    item = store.create("https://example.com")

    assert client.get("/analysis/999").status_code == 404
    assert client.get(f"/analysis/{item.id}").status_code == 404
    assert client.get("/analysis/999/links").status_code == 404


def test_crawl_status_and_queue(client, store, analyzer):
    store.create("https://example.com/a")
    crawl_all(store, analyzer)
    store.create("https://example.com/b")
    store.create("https://example.com/c")

    counts = client.get("/crawl/status").json()
    assert counts == {"queued": 2, "running": 0, "completed": 1, "failed": 0}

    head = client.get("/crawl/queue", params={"limit": 1}).json()
    assert [u["url"] for u in head] == ["https://example.com/b"]
