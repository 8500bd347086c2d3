import logging
import threading
from dataclasses import dataclass

from prometheus_client import Gauge

logger = logging.getLogger("quote-service")

circuit_open = Gauge("circuit_open", "1 while the circuit breaker is open", ["breaker"])

@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 2        # open circuit after N failures
    cooldown_s: float = 2.0           # stay OPEN for this many seconds

class CircuitBreaker:
    """
    Circuit breaker guarding the upstream quote call:
      - CLOSED: calls pass through; failures are counted
      - OPEN: calls are bypassed until the cooldown expires
      - once the cooldown expires the next check closes the circuit again
        (trial reset), so the following call runs exactly as from CLOSED

    Every state read/update happens under one lock. The lock is never held
    across the network call.
    """
    def __init__(self, cfg: CircuitBreakerConfig, name: str = "upstream"):
        if cfg.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if cfg.cooldown_s <= 0:
            raise ValueError("cooldown_s must be > 0")
        self.cfg = cfg
        self.name = name
        self.failure_count = 0
        self.is_open = False
        self.opened_at = 0.0
        self._lock = threading.Lock()
        self._gauge = circuit_open.labels(breaker=name)
        self._gauge.set(0)

    @property
    def state(self) -> str:
        with self._lock:
            return "OPEN" if self.is_open else "CLOSED"

    def should_bypass(self, now: float) -> bool:
        with self._lock:
            if not self.is_open:
                return False
            if now - self.opened_at < self.cfg.cooldown_s:
                return True
            # cooldown elapsed: trial reset
            self._close()
            logger.info("Circuit breaker reset after cooldown")
            return False

    def record_failure(self, now: float) -> None:
        with self._lock:
            self.failure_count += 1
            if self.failure_count >= self.cfg.failure_threshold and not self.is_open:
                self.is_open = True
                self.opened_at = now
                self._gauge.set(1)
                logger.warning("Circuit breaker opened after %d failures", self.failure_count)

    def record_success(self) -> None:
        with self._lock:
            was_open = self.is_open
            self._close()
            if was_open:
                logger.info("Circuit breaker closed after success")

    def _close(self) -> None:
        self.failure_count = 0
        self.is_open = False
        self._gauge.set(0)
