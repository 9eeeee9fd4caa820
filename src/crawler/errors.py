# src/crawler/errors.py
# Responsibility: Exception taxonomy for the crawl pipeline.


class CrawlError(Exception):
    """Base class for failures that end a crawl attempt."""


class FetchError(CrawlError):
    """Transport failure, timeout, or non-2xx response while fetching a page."""


class ParseError(CrawlError):
    """The fetched document could not be parsed at all."""


class PersistenceError(CrawlError):
    """Analysis results could not be durably saved."""


class InvalidTransitionError(CrawlError):
    """A lifecycle transition that the state machine does not allow."""

    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition from '{current}' to '{target}'")
