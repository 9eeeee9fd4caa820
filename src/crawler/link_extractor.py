# src/crawler/link_extractor.py
# Responsibility: Resolve anchor hrefs, classify them internal/external, and flag broken links.

import re
from typing import Iterable, List, Optional, Tuple
from urllib.parse import SplitResult, urljoin, urlsplit

from bs4 import BeautifulSoup

from src.crawler.link_checker import LivenessChecker
from src.crawler.models import BrokenLinkRecord, LinkReport

INVALID_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")
CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def parse_reference(href: str) -> SplitResult:
    """
    Parses an href as a URL reference.

    Raises:
        ValueError: If the reference is malformed (bad escape, control character,
            invalid host or port).
    """
    if CONTROL_CHARS.search(href):
        raise ValueError("invalid control character in URL")
    if INVALID_ESCAPE.search(href):
        raise ValueError("invalid URL escape")
    parts = urlsplit(href)
    if " " in parts.netloc:
        raise ValueError("invalid character in host name")
    parts.port  # raises ValueError on a non-numeric or out-of-range port
    return parts


def hostname_of(parts: SplitResult) -> str:
    """Host portion of the authority, without userinfo or port. Case is preserved."""
    host = parts.netloc.rpartition("@")[2]
    if host.startswith("["):
        end = host.find("]")
        return host[1:end] if end != -1 else host[1:]
    return host.partition(":")[0]


class LinkClassifier:
    """
    Classifies every anchor of a page relative to its base URL.
    Each anchor is one occurrence: duplicates are counted, not merged.
    """

    def __init__(self, base_url: str, checker: LivenessChecker):
        self.base_url = base_url
        self.base_host = hostname_of(urlsplit(base_url))
        self.checker = checker

    def classify(self, soup: BeautifulSoup) -> LinkReport:
        """Classifies all <a href> anchors of a parsed document."""
        hrefs = [a.get("href") for a in soup.find_all("a")]
        return self.classify_hrefs(hrefs)

    def classify_hrefs(self, hrefs: Iterable[Optional[str]]) -> LinkReport:
        """
        Args:
            hrefs: Raw href values in anchor order; None marks an anchor without href.
        """
        # 1. Resolve (or reject) every href, keeping anchor order
        entries: List[Tuple[str, Optional[str], Optional[str]]] = []
        for raw_href in hrefs:
            if raw_href is None:
                continue
            resolved, error = self._resolve(raw_href)
            entries.append((raw_href, resolved, error))

        # 2. Probe all resolvable targets in one batch
        targets = [resolved for _, resolved, _ in entries if resolved is not None]
        probes = iter(self.checker.check_all(targets))

        # 3. Build the occurrence lists
        report = LinkReport()
        for raw_href, resolved, error in entries:
            if resolved is None:
                report.broken.append(BrokenLinkRecord(link_url=raw_href, error_message=error))
                continue

            if hostname_of(urlsplit(resolved)) == self.base_host:
                report.internal.append(resolved)
            else:
                report.external.append(resolved)

            probe = next(probes)
            if probe.is_broken:
                report.broken.append(BrokenLinkRecord(
                    link_url=resolved,
                    status_code=probe.status_code,
                    error_message=probe.error or f"HTTP {probe.status_code}",
                ))

        return report

    def _resolve(self, raw_href: str) -> Tuple[Optional[str], Optional[str]]:
        href = raw_href.strip()
        try:
            parts = parse_reference(href)
        except ValueError as e:
            return None, f"unparsable link: {e}"

        if parts.scheme:
            return href, None
        return urljoin(self.base_url, href), None
