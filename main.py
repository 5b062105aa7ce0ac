"""Main application entry point for the Explainer Relay."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import ApplicationConfig, load_config
from middleware import CorrelationMiddleware
from routers import generate_router, health_router, metrics_router
from services import (
    GenerationClient,
    GenerationOrchestrator,
    HealthMetricsService,
    QuotaGate,
    RedisClient,
    StreamingRelay,
)
from utils import configure_logging, get_logger, log_exception


def wire_services(
    app: FastAPI,
    config: ApplicationConfig,
    redis_client: Optional[RedisClient],
    generation_client: GenerationClient,
) -> None:
    """Build the request-path services and publish them on ``app.state``."""
    quota_gate = QuotaGate(config, redis_client)
    relay = StreamingRelay(config)
    app.state.config = config
    app.state.quota_gate = quota_gate
    app.state.orchestrator = GenerationOrchestrator(config, quota_gate, generation_client, relay)
    app.state.health_metrics = HealthMetricsService(config, redis_client, quota_gate)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: connect collaborators, wire services, clean up."""
    config = load_config()
    configure_logging(config.log_level, json_output=config.log_json)
    logger = get_logger(__name__)

    redis_client: Optional[RedisClient] = None
    if config.quota_store_configured:
        redis_client = RedisClient(config)
        try:
            await redis_client.connect()
        except Exception:
            # The gate retries lazily and admits unmetered while Redis is down.
            logger.warning(
                "Counter store unreachable at startup; quota gate will admit unmetered until it recovers",
                host=config.redis_host,
                port=config.redis_port,
            )

    generation_client = GenerationClient(config)
    await generation_client.start()
    if not config.generation_configured:
        logger.warning("GEMINI_API_KEY is not set; generation requests will fail with 500")

    wire_services(app, config, redis_client, generation_client)
    logger.info(
        "Explainer Relay started",
        quota_mode="metered" if app.state.quota_gate.metered else "unmetered",
        model=config.generation_model,
    )

    try:
        yield
    finally:
        logger.info("Shutting down services...")
        await generation_client.stop()
        if redis_client is not None:
            await redis_client.disconnect()
        logger.info("All services stopped successfully.")


def register_exception_handlers(app: FastAPI) -> None:
    """Return structured JSON instead of stack traces for unexpected errors."""

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        log_exception(get_logger(__name__), exc, "Unhandled error", path=request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "type": "UnhandledError", "status": 500},
        )


def create_app(use_lifespan: bool = True, config: Optional[ApplicationConfig] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    config = config or load_config()
    app = FastAPI(
        title="Explainer Relay",
        description="Streams long-form explanations from a generation service under a daily quota",
        version="1.0.0",
        lifespan=lifespan if use_lifespan else None,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_allow_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Quota-Remaining", "X-Quota-Limit", "X-Correlation-ID", "Retry-After"],
    )
    app.add_middleware(CorrelationMiddleware)
    register_exception_handlers(app)
    app.include_router(generate_router)
    app.include_router(health_router)
    app.include_router(metrics_router)
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    config = load_config()
    uvicorn.run(app, host=config.server_host, port=config.server_port)
