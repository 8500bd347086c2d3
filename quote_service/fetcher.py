import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol

import httpx
from prometheus_client import Counter
from pydantic import BaseModel, TypeAdapter, ValidationError
from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt

from .circuit_breaker import CircuitBreaker, CircuitBreakerConfig

logger = logging.getLogger("quote-service")

upstream_attempts = Counter("upstream_attempts", "Upstream quote fetch attempts", ["outcome"])
fallback_served = Counter("fallback_served", "Fallback quotes returned instead of upstream", ["reason"])


class QuoteFetchError(Exception):
    pass

class TransportError(QuoteFetchError):
    """No usable response: network failure or a non-2xx status."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

class DeadlineExceeded(TransportError):
    pass

class DecodeError(QuoteFetchError):
    pass

class QuoteUnavailableError(QuoteFetchError):
    pass


class Quote(BaseModel):
    bid: str

_json_object = TypeAdapter(Dict[str, Any])

def decode_bid(raw: bytes, pair_key: str) -> str:
    """Extract the bid string for ``pair_key`` from an upstream payload.

    The bid is returned exactly as sent; it is never parsed as a number.
    """
    try:
        payload = _json_object.validate_json(raw)
        if pair_key not in payload:
            raise DecodeError(f"upstream payload has no {pair_key!r} entry")
        return Quote.model_validate(payload[pair_key]).bid
    except ValidationError as e:
        raise DecodeError(f"malformed upstream payload: {e.error_count()} error(s)") from e


@dataclass(frozen=True)
class FetcherConfig:
    url: str
    retry: int = 3                    # extra attempts after the first one
    failure_threshold: int = 2
    cooldown_s: float = 2.0
    fallback_value: str = "1.00"
    pair_key: str = "USDBRL"
    attempt_timeout_s: float = 5.0
    raise_on_exhaustion: bool = False

@dataclass(frozen=True)
class FetchResult:
    value: str
    error: Optional[Exception] = None
    source: str = "upstream"          # upstream | fallback | bypass
    attempts: int = 0

    @property
    def degraded(self) -> bool:
        return self.error is not None


class QuoteFetcher(Protocol):
    def fetch(self, timeout: Optional[float] = None) -> FetchResult:
        ...


class ApiQuoteFetcher:
    """
    Fetches the current bid from the upstream quote API.

    Up to ``retry + 1`` attempts are made per call. Every failed attempt is
    recorded on the circuit breaker; while the breaker is open the fallback
    value is returned without touching the network. When every attempt fails
    the fallback is returned together with the last error, so callers that
    only look at ``value`` still get something usable.
    """
    def __init__(
        self,
        cfg: FetcherConfig,
        client: Optional[httpx.Client] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if cfg.retry < 0:
            raise ValueError("retry must be >= 0")
        if cfg.cooldown_s <= 0:
            raise ValueError("cooldown_s must be > 0")
        self.cfg = cfg
        self.breaker = CircuitBreaker(CircuitBreakerConfig(
            failure_threshold=cfg.failure_threshold,
            cooldown_s=cfg.cooldown_s,
        ), name=cfg.pair_key)
        self.last_exhausted_at: Optional[float] = None
        self._client = client or httpx.Client()
        self._clock = clock
        self._lock = threading.Lock()

    def fetch(self, timeout: Optional[float] = None) -> FetchResult:
        if self.breaker.should_bypass(self._clock()):
            logger.info("Circuit breaker is open, using fallback value")
            fallback_served.labels(reason="bypass").inc()
            return FetchResult(self.cfg.fallback_value, source="bypass")

        expires_at = None if timeout is None else time.monotonic() + timeout
        retrying = Retrying(
            stop=stop_after_attempt(self.cfg.retry + 1),
            retry=retry_if_exception_type((TransportError, DecodeError)),
            before_sleep=before_sleep_log(logger, logging.DEBUG),
            reraise=True,
        )
        attempts = 0
        try:
            for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    bid = self._attempt(attempts, expires_at)
        except (TransportError, DecodeError) as e:
            return self._exhausted(e, attempts)

        self.breaker.record_success()
        upstream_attempts.labels(outcome="success").inc()
        return FetchResult(bid, attempts=attempts)

    def close(self) -> None:
        self._client.close()

    def _attempt(self, number: int, expires_at: Optional[float]) -> str:
        try:
            return self._get_bid(expires_at)
        except TransportError as e:
            if e.status_code is None:
                logger.warning("Fetch attempt %d failed with no response: %s", number, e)
            else:
                logger.warning("Fetch attempt %d failed with status: %d", number, e.status_code)
            upstream_attempts.labels(outcome="transport_error").inc()
            self.breaker.record_failure(self._clock())
            raise
        except DecodeError as e:
            logger.warning("Fetch attempt %d failed during decoding: %s", number, e)
            upstream_attempts.labels(outcome="decode_error").inc()
            self.breaker.record_failure(self._clock())
            raise

    def _get_bid(self, expires_at: Optional[float]) -> str:
        timeout = self.cfg.attempt_timeout_s
        if expires_at is not None:
            remaining = expires_at - time.monotonic()
            if remaining <= 0:
                raise DeadlineExceeded("deadline exceeded before the request was sent")
            timeout = min(timeout, remaining)

        # httpx timeouts bound each socket operation, not the whole body,
        # so the deadline is checked again for every chunk received
        body = bytearray()
        try:
            with self._client.stream("GET", self.cfg.url, timeout=timeout) as response:
                if not response.is_success:
                    raise TransportError(
                        f"upstream returned status {response.status_code}",
                        status_code=response.status_code,
                    )
                for chunk in response.iter_bytes():
                    if expires_at is not None and time.monotonic() > expires_at:
                        raise DeadlineExceeded("deadline exceeded while reading the upstream body")
                    body.extend(chunk)
        except httpx.TimeoutException as e:
            raise DeadlineExceeded(f"upstream timed out: {e}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"upstream request failed: {e}") from e

        return decode_bid(bytes(body), self.cfg.pair_key)

    def _exhausted(self, error: Exception, attempts: int) -> FetchResult:
        with self._lock:
            self.last_exhausted_at = self._clock()
        if self.cfg.raise_on_exhaustion:
            logger.error("All %d fetch attempts failed", attempts)
            raise QuoteUnavailableError(f"all {attempts} fetch attempts failed") from error
        logger.warning("All %d fetch attempts failed, using fallback value", attempts)
        fallback_served.labels(reason="exhausted").inc()
        return FetchResult(self.cfg.fallback_value, error=error, source="fallback", attempts=attempts)
