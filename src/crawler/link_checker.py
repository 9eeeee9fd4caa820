# src/crawler/link_checker.py
# Responsibility: Lightweight existence probes (HEAD) against link targets.

import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Sequence

import httpx

from src.config.settings import settings
from src.crawler.crawler import browser_headers, read_until

BROKEN_STATUS_THRESHOLD = 400
PROBE_SCHEMES = ("http", "https")


@dataclass(frozen=True)
class ProbeResult:
    url: str
    status_code: Optional[int] = None
    error: Optional[str] = None

    @property
    def is_broken(self) -> bool:
        if self.error is not None:
            return True
        return self.status_code is not None and self.status_code >= BROKEN_STATUS_THRESHOLD


class LivenessChecker(ABC):
    """
    Pluggable probe capability used by the link classifier.
    Implementations must return one result per input URL, in input order.
    """

    @abstractmethod
    def check(self, url: str) -> ProbeResult:
        pass

    def check_all(self, urls: Sequence[str]) -> List[ProbeResult]:
        return [self.check(url) for url in urls]


class HttpLivenessChecker(LivenessChecker):
    """
    Issues HEAD requests with the crawler's browser headers.
    Batches are probed with bounded concurrency; ordering is preserved.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        concurrency: Optional[int] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.timeout = timeout if timeout is not None else settings.CRAWLER.PROBE_TIMEOUT
        self.concurrency = max(1, concurrency if concurrency is not None else settings.CRAWLER.PROBE_CONCURRENCY)
        self.headers = browser_headers()
        self.transport = transport

    def check(self, url: str) -> ProbeResult:
        with self._client() as client:
            return self._probe(client, url)

    def check_all(self, urls: Sequence[str]) -> List[ProbeResult]:
        if not urls:
            return []
        with self._client() as client:
            if self.concurrency == 1 or len(urls) == 1:
                return [self._probe(client, url) for url in urls]
            # httpx.Client is thread-safe; map() keeps input order
            with ThreadPoolExecutor(max_workers=min(self.concurrency, len(urls))) as pool:
                return list(pool.map(lambda u: self._probe(client, u), urls))

    def _client(self) -> httpx.Client:
        return httpx.Client(
            timeout=self.timeout,
            headers=self.headers,
            follow_redirects=True,
            transport=self.transport,
        )

    def _probe(self, client: httpx.Client, url: str) -> ProbeResult:
        scheme = url.partition(":")[0].lower()
        if scheme not in PROBE_SCHEMES:
            return ProbeResult(url=url, error=f"unsupported protocol '{scheme}'")
        deadline = time.monotonic() + self.timeout
        try:
            with client.stream("HEAD", url) as response:
                read_until(response, deadline)
                status_code = response.status_code
        except httpx.TimeoutException as e:
            return ProbeResult(url=url, error=f"timeout after {self.timeout}s ({e})")
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            return ProbeResult(url=url, error=str(e) or e.__class__.__name__)
        return ProbeResult(url=url, status_code=status_code)
