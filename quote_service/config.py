import os
from dataclasses import dataclass

DEFAULT_UPSTREAM_URL = "https://economia.awesomeapi.com.br/json/last/USD-BRL"

def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")

@dataclass(frozen=True)
class Settings:
    upstream_url: str = DEFAULT_UPSTREAM_URL
    retry: int = 3
    failure_threshold: int = 2
    cooldown_s: float = 2.0
    fallback_value: str = "1.00"
    pair_key: str = "USDBRL"
    request_timeout_s: float = 0.2    # deadline for the upstream fetch
    db_timeout_s: float = 0.01        # deadline for persisting the quote
    db_path: str = "./cotacao.db"
    serve_stale_fallback: bool = False
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            upstream_url=os.getenv("QUOTE_UPSTREAM_URL", DEFAULT_UPSTREAM_URL),
            retry=int(os.getenv("QUOTE_RETRY", "3")),
            failure_threshold=int(os.getenv("CB_FAILURE_THRESHOLD", "2")),
            cooldown_s=float(os.getenv("CB_COOLDOWN_S", "2.0")),
            fallback_value=os.getenv("QUOTE_FALLBACK", "1.00"),
            pair_key=os.getenv("QUOTE_PAIR_KEY", "USDBRL"),
            request_timeout_s=float(os.getenv("QUOTE_REQUEST_TIMEOUT_S", "0.2")),
            db_timeout_s=float(os.getenv("QUOTE_DB_TIMEOUT_S", "0.01")),
            db_path=os.getenv("QUOTE_DB_PATH", "./cotacao.db"),
            serve_stale_fallback=_flag("QUOTE_SERVE_STALE_FALLBACK", "false"),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8080")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
