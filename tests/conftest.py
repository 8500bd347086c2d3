import pytest

from quote_service.db import InMemoryQuoteRepository
from tests.support import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    """Manually advanced monotonic clock for breaker timing."""
    return FakeClock()


@pytest.fixture
def repository() -> InMemoryQuoteRepository:
    return InMemoryQuoteRepository()
