# src/crawler/parser.py
# Responsibility: Turn an HTML document into structural facts (version, headings, links, login form).

import re
from abc import ABC, abstractmethod
from typing import Optional, Union

from bs4 import BeautifulSoup, Doctype

from src.crawler.errors import ParseError
from src.crawler.link_checker import HttpLivenessChecker, LivenessChecker
from src.crawler.link_extractor import LinkClassifier
from src.crawler.models import AnalysisResult, PageAnalysis


# -------------------------------
# Constants
# -------------------------------
HTML5_VERSION = "HTML5"
FALLBACK_VERSION = "HTML"
HEADING_LEVELS = (1, 2, 3, 4, 5, 6)
DOCTYPE_KEYWORD = re.compile(r"^\s*doctype\b\s*", re.I)

# Any match marks the page as containing a login form
LOGIN_FORM_SELECTORS = (
    "form input[type='password']",
    "form input[name*='password']",
    "form input[name*='pass']",
    "form input[name*='login']",
    "form input[name*='user']",
    "form input[name*='email']",
)

Document = Union[str, bytes]


# -------------------------------
# Base Analyzer
# -------------------------------
class BaseAnalyzer(ABC):
    @abstractmethod
    def analyze(self, document: Document, base_url: str, encoding: Optional[str] = None) -> PageAnalysis:
        pass


# -------------------------------
# Default HTML Analyzer
# -------------------------------
class DefaultHTMLAnalyzer(BaseAnalyzer):
    """
    Structural page analyzer using BeautifulSoup.
    - HTML version detection (doctype heuristic)
    - Heading counts
    - Link classification and broken-link detection
    - Login form detection
    Output depends only on the document, the base URL and the liveness checker.
    """

    def __init__(self, checker: Optional[LivenessChecker] = None):
        self.checker = checker or HttpLivenessChecker()

    def analyze(self, document: Document, base_url: str, encoding: Optional[str] = None) -> PageAnalysis:
        soup = self.parse_document(document, encoding)

        headings = {level: len(soup.find_all(f"h{level}")) for level in HEADING_LEVELS}
        links = LinkClassifier(base_url, self.checker).classify(soup)

        result = AnalysisResult(
            html_version=self._detect_html_version(soup),
            page_title=self._extract_title(soup),
            h1_count=headings[1],
            h2_count=headings[2],
            h3_count=headings[3],
            h4_count=headings[4],
            h5_count=headings[5],
            h6_count=headings[6],
            internal_links_count=len(links.internal),
            external_links_count=len(links.external),
            broken_links_count=len(links.broken),
            has_login_form=self._detect_login_form(soup),
        )
        return PageAnalysis(result=result, broken_links=links.broken)

    # ---------------------------
    # Parsing
    # ---------------------------
    def parse_document(self, document: Document, encoding: Optional[str] = None) -> BeautifulSoup:
        try:
            if isinstance(document, bytes):
                return BeautifulSoup(document, "html.parser", from_encoding=encoding)
            return BeautifulSoup(document, "html.parser")
        except Exception as e:
            raise ParseError(f"failed to parse HTML: {e}") from e

    # ---------------------------
    # HTML Version
    # ---------------------------
    def _detect_html_version(self, soup: BeautifulSoup) -> str:
        doctype = next((node for node in soup.contents if isinstance(node, Doctype)), None)
        if doctype is not None:
            text = DOCTYPE_KEYWORD.sub("", str(doctype)).strip()
            if text:
                return text

        if soup.find("html") is not None:
            return HTML5_VERSION
        return FALLBACK_VERSION

    # ---------------------------
    # Title
    # ---------------------------
    def _extract_title(self, soup: BeautifulSoup) -> Optional[str]:
        title_tag = soup.find("title")
        if title_tag is None:
            return None
        # Text is kept as written; only an empty title counts as missing
        return title_tag.get_text() or None

    # ---------------------------
    # Login Form
    # ---------------------------
    def _detect_login_form(self, soup: BeautifulSoup) -> bool:
        for selector in LOGIN_FORM_SELECTORS:
            if soup.select_one(selector) is not None:
                return True
        return False


PageAnalyzer = DefaultHTMLAnalyzer
