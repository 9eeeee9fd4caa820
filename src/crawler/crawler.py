# src/crawler/crawler.py
# Responsibility: Fetches raw page content over HTTP with browser-like headers and a bounded timeout.

import time

import httpx
from typing import Dict, Optional
from src.crawler.errors import FetchError
from src.crawler.models import FetchedPage
from src.config.settings import settings


def browser_headers() -> Dict[str, str]:
    """Headers shared by page fetches and liveness probes."""
    return {
        "User-Agent": settings.CRAWLER.USER_AGENT,
        "Accept": settings.CRAWLER.ACCEPT,
        "Accept-Language": settings.CRAWLER.ACCEPT_LANGUAGE,
        "Accept-Encoding": "gzip, deflate",
        "Connection": "keep-alive",
        "Upgrade-Insecure-Requests": "1",
    }


def read_until(response: httpx.Response, deadline: float) -> bytes:
    """
    Reads a streamed response body, giving up once `deadline` (time.monotonic) has passed.
    httpx timeouts apply per network operation; this bounds the request as a whole.

    Raises:
        httpx.ReadTimeout: When the deadline passes before the body is complete.
    """
    chunks = []
    for chunk in response.iter_bytes():
        chunks.append(chunk)
        if time.monotonic() > deadline:
            raise httpx.ReadTimeout("request deadline exceeded", request=response.request)
    if time.monotonic() > deadline:
        raise httpx.ReadTimeout("request deadline exceeded", request=response.request)
    return b"".join(chunks)


class PageFetcher:
    """
    Component responsible for network IO and content retrieval.
    Performs exactly one GET per call; retries are left to the caller's rerun policy.
    """

    def __init__(self, timeout: Optional[float] = None, transport: Optional[httpx.BaseTransport] = None):
        """
        Args:
            timeout (float): Request timeout in seconds. Defaults to CRAWLER.REQUEST_TIMEOUT.
            transport (httpx.BaseTransport): Optional transport override (tests, proxies).
        """
        self.timeout = timeout if timeout is not None else settings.CRAWLER.REQUEST_TIMEOUT
        self.headers = browser_headers()
        self.transport = transport

    def fetch(self, url: str) -> FetchedPage:
        """
        Fetches the page body.

        Args:
            url (str): Absolute target URL.

        Returns:
            FetchedPage: Raw body bytes, final status code and URL.

        Raises:
            FetchError: On transport errors, timeouts (including the overall deadline) and non-2xx responses.
        """
        deadline = time.monotonic() + self.timeout
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                with client.stream("GET", url, headers=self.headers, follow_redirects=True) as response:
                    if not response.is_success:
                        raise FetchError(f"HTTP {response.status_code}: {response.reason_phrase}")
                    content = read_until(response, deadline)
        except httpx.TimeoutException as e:
            raise FetchError(f"failed to fetch URL: timeout after {self.timeout}s ({e})") from e
        except httpx.HTTPError as e:
            raise FetchError(f"failed to fetch URL: {e}") from e
        except httpx.InvalidURL as e:
            raise FetchError(f"failed to create request: {e}") from e

        return FetchedPage(
            url=str(response.url),
            content=content,
            status_code=response.status_code,
            encoding=response.charset_encoding,
        )
