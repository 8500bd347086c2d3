import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

from .config import Settings
from .db import PersistenceError, QuoteRepository, SQLiteQuoteRepository
from .fetcher import ApiQuoteFetcher, FetcherConfig, QuoteFetcher, QuoteUnavailableError
from .service import get_and_store_quote

logger = logging.getLogger("quote-service")

total_requests = Counter("total_requests", "Total requests")
success_count = Counter("success_count", "Total successful requests")
failure_count = Counter("failure_count", "Total failed requests")
request_latency_ms = Histogram("request_latency_ms", "Request latency in ms")

def build_fetcher(settings: Settings) -> ApiQuoteFetcher:
    return ApiQuoteFetcher(FetcherConfig(
        url=settings.upstream_url,
        retry=settings.retry,
        failure_threshold=settings.failure_threshold,
        cooldown_s=settings.cooldown_s,
        fallback_value=settings.fallback_value,
        pair_key=settings.pair_key,
    ))

def _cb_state(fetcher: Optional[QuoteFetcher]) -> str:
    breaker = getattr(fetcher, "breaker", None)
    return breaker.state if breaker is not None else "UNKNOWN"

def create_app(
    settings: Optional[Settings] = None,
    fetcher: Optional[QuoteFetcher] = None,
    repository: Optional[QuoteRepository] = None,
) -> FastAPI:
    """
    Build the quote API. Collaborators that are not passed in are created
    on startup from ``settings``.
    """
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned_fetcher = None
        if app.state.fetcher is None:
            owned_fetcher = app.state.fetcher = build_fetcher(settings)
        if app.state.repository is None:
            app.state.repository = SQLiteQuoteRepository(settings.db_path)
        yield
        if owned_fetcher is not None:
            owned_fetcher.close()

    app = FastAPI(title="Quote Service", lifespan=lifespan)
    app.state.settings = settings
    app.state.fetcher = fetcher
    app.state.repository = repository

    @app.middleware("http")
    async def metrics_and_logging(request: Request, call_next):
        rid = request.headers.get("x-request-id", str(uuid.uuid4()))
        start = time.time()
        total_requests.inc()

        try:
            return await call_next(request)
        except Exception as e:
            failure_count.inc()
            latency = (time.time() - start) * 1000
            logger.error("request_id=%s method=%s path=%s latency_ms=%.2f error=%s:%s",
                         rid, request.method, request.url.path, latency, type(e).__name__, e)
            raise
        finally:
            latency = (time.time() - start) * 1000
            request_latency_ms.observe(latency)
            logger.info("request_id=%s method=%s path=%s latency_ms=%.2f cb_state=%s",
                        rid, request.method, request.url.path, latency, _cb_state(app.state.fetcher))

    @app.exception_handler(QuoteUnavailableError)
    async def quote_unavailable_handler(request: Request, exc: QuoteUnavailableError):
        failure_count.inc()
        logger.error("Error fetching cotacao: %s", exc)
        return JSONResponse(status_code=500, content={"error": "Failed to fetch cotacao"})

    @app.exception_handler(PersistenceError)
    async def persistence_handler(request: Request, exc: PersistenceError):
        failure_count.inc()
        logger.error("Error saving cotacao: %s", exc)
        return JSONResponse(status_code=500, content={"error": "Failed to save cotacao"})

    @app.get("/healthz")
    def healthz():
        breaker = getattr(app.state.fetcher, "breaker", None)
        return {
            "ok": True,
            "cb_state": _cb_state(app.state.fetcher),
            "failure_count": breaker.failure_count if breaker is not None else None,
        }

    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/cotacao")
    def cotacao():
        bid = get_and_store_quote(
            app.state.fetcher,
            app.state.repository,
            fetch_timeout=settings.request_timeout_s,
            save_timeout=settings.db_timeout_s,
            serve_stale_fallback=settings.serve_stale_fallback,
        )
        success_count.inc()
        return JSONResponse(content={"Cotacao": bid})

    return app

def run() -> None:
    import uvicorn

    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level,
                        format="%(asctime)s %(levelname)s %(name)s %(message)s")
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)

if __name__ == "__main__":
    run()
