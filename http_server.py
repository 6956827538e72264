"""
EmarkNews HTTP Server
FastAPI front for the feed pipeline, the AI helpers and the small widgets.

Usage:
    python http_server.py                    # Run on PORT (default 8080)
    python http_server.py --port 3000        # Run on custom port
    uvicorn http_server:app --host 0.0.0.0   # Production with uvicorn
"""
import argparse
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, List, NamedTuple, Optional

from fastapi import FastAPI, Request, Query
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

import config
from aggregator import Aggregator
from cache_store import CacheStore
from currency import CurrencyService
from enrichment import EnrichmentService, EnrichmentWorker, LLMClient
from errors import ValidationError
from feed_service import FeedService
from fetcher import SourceFetcher, build_session
from normalizer import Normalizer
from observability import Metrics, configure_logging
from videos import VideoService

logger = logging.getLogger('newsfeed.http')

PROCESS_ACTIONS = ('translate', 'summarize', 'both')
MAX_BATCH_ARTICLES = 20

# =============================================================================
# COMPOSITION ROOT
# =============================================================================


class Services(NamedTuple):
    feed: FeedService
    enrichment: EnrichmentService
    currency: CurrencyService
    videos: VideoService
    cache: CacheStore
    metrics: Metrics
    worker: Optional[EnrichmentWorker] = None


def build_services(sections: Optional[Dict[str, List[Dict]]] = None,
                   start_cache: bool = True) -> Services:
    """Construct every service once and wire the references together."""
    metrics = Metrics()
    sections = config.load_sections() if sections is None else sections
    session = build_session()

    cache = CacheStore(config.REDIS_URL, metrics=metrics)
    fetcher = SourceFetcher(session=session, metrics=metrics)
    aggregator = Aggregator(sections, fetcher, metrics=metrics)
    llm = LLMClient(config.OPENAI_API_KEY) if config.OPENAI_API_KEY else None
    enrichment = EnrichmentService(llm, metrics=metrics)
    worker = EnrichmentWorker(workers=1, metrics=metrics)

    feed = FeedService(aggregator, Normalizer(), enrichment, cache, worker=worker, metrics=metrics)
    currency = CurrencyService(cache=cache, session=session)

    if start_cache:
        cache.start(background=True)

    return Services(feed, enrichment, currency, VideoService(), cache, metrics, worker)


def shutdown_services(services: Services) -> None:
    if services.worker is not None:
        services.worker.shutdown()
    services.enrichment.shutdown()


# =============================================================================
# REQUEST HELPERS
# =============================================================================


async def read_json_body(request: Request) -> Dict:
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Request body must be valid JSON")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def require_article_fields(body: Dict):
    title = body.get('title')
    description = body.get('description')
    missing = []
    if not isinstance(title, str) or not title.strip():
        missing.append('title')
    if not isinstance(description, str):
        missing.append('description')
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    return title, description


# =============================================================================
# APP FACTORY
# =============================================================================


def create_app(services: Optional[Services] = None) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = services is None
        if owned:
            configure_logging(config.LOG_LEVEL)
            app.state.services = build_services()
        else:
            app.state.services = services
        logger.info("EmarkNews v%s starting with sections: %s", config.VERSION,
                    ', '.join(app.state.services.feed.sections()))
        yield
        if owned:
            shutdown_services(app.state.services)
        logger.info("EmarkNews shutting down")

    app = FastAPI(
        title="EmarkNews",
        description="News feed aggregation with AI translation, summaries and sentiment",
        version=config.VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"success": False, "error": str(exc)})

    def svc(request: Request) -> Services:
        return request.app.state.services

    # -------------------------------------------------------------------------
    # FEED
    # -------------------------------------------------------------------------

    @app.get("/api/feed")
    def feed_endpoint(request: Request,
                      section: str = Query(config.DEFAULT_SECTION, description="Section key")):
        """Example: /api/feed?section=tech"""
        envelope = svc(request).feed.get_news_data(section)
        return {"success": True, "data": envelope}

    @app.get("/api/news/{section}")
    def news_endpoint(request: Request, section: str):
        envelope = svc(request).feed.get_news_data(section)
        return {"success": True, "section": envelope['section'], "data": envelope}

    # -------------------------------------------------------------------------
    # AI
    # -------------------------------------------------------------------------

    @app.post("/api/translate")
    async def translate_endpoint(request: Request):
        body = await read_json_body(request)
        title, description = require_article_fields(body)
        target = body.get('targetLanguage') or None
        if target is not None and (not isinstance(target, str) or len(target) > 10):
            raise ValidationError("targetLanguage must be a short language code")

        result = await run_in_threadpool(svc(request).enrichment.translate, title, description, target)
        return result

    @app.post("/api/summarize")
    async def summarize_endpoint(request: Request):
        body = await read_json_body(request)
        title, description = require_article_fields(body)
        return await run_in_threadpool(svc(request).enrichment.summarize, title, description)

    @app.post("/api/analyze-sentiment")
    async def sentiment_endpoint(request: Request):
        body = await read_json_body(request)
        title, description = require_article_fields(body)
        return await run_in_threadpool(svc(request).enrichment.analyze_sentiment, title, description)

    @app.post("/api/process-articles")
    async def process_articles_endpoint(request: Request):
        body = await read_json_body(request)
        articles = body.get('articles')
        action = body.get('action', 'both')
        if not isinstance(articles, list) or not all(isinstance(a, dict) for a in articles):
            raise ValidationError("articles must be a list of objects")
        if action not in PROCESS_ACTIONS:
            raise ValidationError(f"action must be one of: {', '.join(PROCESS_ACTIONS)}")

        processed = await run_in_threadpool(svc(request).enrichment.process_articles,
                                            articles[:MAX_BATCH_ARTICLES], action)
        return {"success": True, "articles": processed}

    # -------------------------------------------------------------------------
    # WIDGETS
    # -------------------------------------------------------------------------

    @app.get("/api/currency")
    def currency_endpoint(request: Request):
        result = svc(request).currency.get_rates()
        return {
            "success": True,
            "data": result['rates'],
            "source": result['source'],
            "timestamp": result['timestamp'],
        }

    @app.get("/api/videos")
    def videos_endpoint(request: Request,
                        section: str = Query(config.DEFAULT_SECTION, description="Section key")):
        section = svc(request).feed.validate_section(section)
        return {"success": True, "data": svc(request).videos.get_videos(section)}

    # -------------------------------------------------------------------------
    # HEALTH & METRICS
    # -------------------------------------------------------------------------

    def health_payload(request: Request) -> Dict:
        services_ = svc(request)
        return {
            "status": "healthy",
            "version": config.VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(services_.metrics.uptime_seconds(), 1),
            "sections": services_.feed.sections(),
            "redis": services_.cache.health_check(),
            "ai": services_.enrichment.health_check(),
        }

    @app.get("/health")
    def health_endpoint(request: Request):
        return health_payload(request)

    @app.get("/healthz")
    def healthz_endpoint(request: Request):
        return health_payload(request)

    @app.get("/api/metrics")
    def metrics_endpoint(request: Request):
        services_ = svc(request)
        return {
            "metrics": services_.metrics.get_stats(),
            "config": {
                "maxArticles": config.MAX_ARTICLES,
                "cacheTtl": config.CACHE_TTL_SECONDS,
                "sourceTimeoutMs": config.SOURCE_TIMEOUT_MS,
                "enrichMode": services_.feed.enrich_mode,
            },
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/")
    def root():
        return {
            "name": "EmarkNews",
            "version": config.VERSION,
            "endpoints": {
                "feed": "GET /api/feed?section=world",
                "news": "GET /api/news/{section}",
                "translate": "POST /api/translate",
                "summarize": "POST /api/summarize",
                "sentiment": "POST /api/analyze-sentiment",
                "batch": "POST /api/process-articles",
                "currency": "GET /api/currency",
                "videos": "GET /api/videos?section=world",
                "health": "GET /health",
                "metrics": "GET /api/metrics",
            },
        }

    return app


app = create_app()

# =============================================================================
# MAIN ENTRY POINT
# =============================================================================


def main():
    """Run the HTTP server."""
    parser = argparse.ArgumentParser(description="EmarkNews HTTP Server")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    parser.add_argument("--port", type=int, default=config.PORT, help="Port to run on")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload")
    args = parser.parse_args()

    uvicorn.run(
        "http_server:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="info"
    )


if __name__ == "__main__":
    main()
