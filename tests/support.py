from typing import List, Optional

from quote_service.db import InMemoryQuoteRepository, PersistenceError
from quote_service.fetcher import FetchResult

UPSTREAM_URL = "https://quotes.example.com/json/last/USD-BRL"


class FakeClock:
    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubFetcher:
    """Returns canned results in order and records the timeouts it was given."""
    def __init__(self, *results: FetchResult):
        self.results = list(results)
        self.timeouts: List[Optional[float]] = []

    def fetch(self, timeout: Optional[float] = None) -> FetchResult:
        self.timeouts.append(timeout)
        return self.results.pop(0)


class FailingRepository(InMemoryQuoteRepository):
    def save(self, bid: str, timeout: Optional[float] = None) -> None:
        raise PersistenceError("disk full")
