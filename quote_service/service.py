import logging
from typing import Optional

from .db import QuoteRepository
from .fetcher import QuoteFetcher, QuoteUnavailableError

logger = logging.getLogger("quote-service")

def get_and_store_quote(
    fetcher: QuoteFetcher,
    repository: QuoteRepository,
    fetch_timeout: Optional[float] = None,
    save_timeout: Optional[float] = None,
    serve_stale_fallback: bool = False,
) -> str:
    """
    Fetch the current bid and persist it.

      - a breaker bypass is served as a normal quote
      - a fallback paired with an error (all attempts failed) raises
        QuoteUnavailableError unless serve_stale_fallback is set
      - PersistenceError from the repository propagates unchanged
    """
    result = fetcher.fetch(timeout=fetch_timeout)
    if result.degraded:
        if not serve_stale_fallback:
            raise QuoteUnavailableError(f"error fetching quote: {result.error}") from result.error
        logger.warning("Serving fallback quote after upstream failure: %s", result.error)

    repository.save(result.value, timeout=save_timeout)
    return result.value
