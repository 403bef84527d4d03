"""Application entrypoint.

Centralized settings + structured logging + background cache maintenance.
"""
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
import json
import logging
import time

from orderscan.core.cache import FileCache
from orderscan.core.errors import OrderScanError
from orderscan.core.maintenance import CacheMaintenance
from orderscan.core.metrics import REQUEST_COUNT, REQUEST_LATENCY, track_file_cache
from orderscan.core.settings import Settings, settings as default_settings
from orderscan.core.tokens import build_token_codec
from orderscan.middleware.rate_limit import build_limiter, _rate_limit_exceeded_handler
from orderscan.routes import document_routes
from orderscan.services.file_handoff import FileHandoff
from orderscan.services.gemini_service import GeminiVisionClient

logger = logging.getLogger(__name__)


class JsonFormatter(logging.Formatter):
    def format(self, record):
        log_record = {
            "level": record.levelname,
            "ts": record.created,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            log_record["exc"] = self.formatException(record.exc_info)
        return json.dumps(log_record, ensure_ascii=False)


def configure_logging(json_logs: bool = True) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    if json_logs:
        for handler in logging.getLogger().handlers:
            handler.setFormatter(JsonFormatter())


async def orderscan_error_handler(request: Request, exc: OrderScanError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request body") if errors else "Invalid request body"
    return JSONResponse(
        status_code=400,
        content={"error": message, "action": "Check the request body and try again."},
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "action": "Share the server logs with the system administrator."},
    )


def create_app(settings: Settings | None = None, vision_client=None, clock=time.time) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings.log_json)

    app = FastAPI(title=settings.app_name, version="v1", openapi_tags=[
        {"name": "documents", "description": "Document classification & order extraction"},
    ])

    # One cache, codec and sweeper per application instance
    file_cache = FileCache(
        ttl_seconds=settings.file_cache_ttl_seconds,
        max_item_bytes=settings.file_cache_max_item_bytes,
        max_total_bytes=settings.file_cache_max_total_bytes,
        max_items=settings.file_cache_max_items,
        clock=clock,
    )
    track_file_cache(file_cache)
    maintenance = CacheMaintenance(file_cache, interval_seconds=settings.file_cache_sweep_interval_seconds)
    app.state.settings = settings
    app.state.file_cache = file_cache
    app.state.cache_maintenance = maintenance
    app.state.file_handoff = FileHandoff(
        file_cache,
        build_token_codec(settings, clock=clock),
        maintenance,
        single_use=settings.file_cache_single_use,
    )
    app.state.vision_client = vision_client or GeminiVisionClient(settings)

    # Attach rate limiting
    app.state.limiter = build_limiter(settings)
    app.add_middleware(SlowAPIMiddleware)
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_exception_handler(OrderScanError, orderscan_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        path = request.url.path
        method = request.method
        with REQUEST_LATENCY.labels(path=path).time():
            response = await call_next(request)
        REQUEST_COUNT.labels(method=method, path=path, status=response.status_code).inc()
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in settings.cors_allow_origins.split(',')],
        allow_credentials=True,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

    app.include_router(document_routes.router, prefix="/api/documents", tags=["documents"])

    @app.get("/")
    async def root():
        """Root endpoint for the API."""
        return {"message": f"{settings.app_name} is running", "version": app.version}

    @app.get("/health")
    def health():
        return {"status": "ok", "cacheMaintenance": maintenance.is_running}

    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.on_event("startup")
    def start_background_jobs():
        maintenance.start()

    @app.on_event("shutdown")
    def stop_background_jobs():
        maintenance.stop()
        file_cache.clear()

    return app


app = create_app()
