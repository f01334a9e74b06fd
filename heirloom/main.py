"""FastAPI application for the Heirloom deployment ledger."""
import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from sse_starlette.sse import EventSourceResponse

from heirloom import __version__
from heirloom.core.config import Settings
from heirloom.core.database import create_engine, create_session_factory
from heirloom.core.events import EventBus, EventType
from heirloom.core.init_db import create_tables
from heirloom.core.logging import get_logger
from heirloom.core.middleware import CorrelationIdMiddleware, RequestLoggingMiddleware
from heirloom.modules.deployments.routes import router as deployments_router
from heirloom.modules.deployments.services import DeploymentLedger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown."""
    settings: Settings = app.state.settings
    logger = app.state.logger

    # Startup
    logger.info("Starting Heirloom Deployment API", db_type=settings.DB_TYPE)
    engine = create_engine(settings)
    await create_tables(engine)
    logger.info("Database tables created/verified")

    app.state.engine = engine
    app.state.ledger = DeploymentLedger(
        create_session_factory(engine),
        max_versions=settings.MAX_VERSIONS,
        release_retries=settings.RELEASE_RETRY_ATTEMPTS,
        logger=get_logger("heirloom.ledger", settings.LOG_JSON, settings.DEBUG),
        event_bus=app.state.event_bus,
    )

    await app.state.event_bus.publish(
        EventType.SYSTEM_INFO,
        {"message": "Heirloom Deployment API started", "version": __version__},
    )

    yield

    # Shutdown
    logger.info("Shutting down Heirloom Deployment API...")
    await app.state.ledger.wait_for_pruning()
    await engine.dispose()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application around an explicit settings object."""
    settings = settings or Settings()
    logger = get_logger("heirloom", settings.LOG_JSON, settings.DEBUG)

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=__version__,
        description="Records releases and rollbacks per application, environment and region",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.logger = logger
    app.state.event_bus = EventBus()

    # Note: allow_credentials=True is incompatible with allow_origins=["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=settings.cors_allows_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # First added = last executed
    app.add_middleware(
        RequestLoggingMiddleware,
        logger=get_logger("heirloom.requests", settings.LOG_JSON, settings.DEBUG),
    )
    app.add_middleware(CorrelationIdMiddleware)

    app.include_router(deployments_router, prefix=settings.API_V1_PREFIX)

    if settings.METRICS_ENABLED:
        Instrumentator().instrument(app).expose(app, endpoint="/metrics")

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": settings.PROJECT_NAME,
            "version": __version__,
            "status": "running",
        }

    @app.get(f"{settings.API_V1_PREFIX}/events/stream")
    async def event_stream(request: Request):
        """
        Server-Sent Events endpoint for real-time deployment updates.

        Clients receive every release, rollback and pruning event as it happens.
        """
        event_bus: EventBus = request.app.state.event_bus

        async def generate():
            queue = await event_bus.subscribe()
            try:
                while True:
                    if await request.is_disconnected():
                        break

                    try:
                        event = await asyncio.wait_for(queue.get(), timeout=30.0)
                        yield {
                            "id": event.id,
                            "event": event.type.value,
                            "data": event.model_dump_json(),
                        }
                    except asyncio.TimeoutError:
                        yield {"event": "keepalive", "data": ""}
            finally:
                await event_bus.unsubscribe(queue)

        return EventSourceResponse(generate())

    @app.get(f"{settings.API_V1_PREFIX}/events/history")
    async def get_event_history(request: Request, limit: int = 50):
        """Get recent event history."""
        events = await request.app.state.event_bus.get_history(limit=limit)
        return {"events": [e.model_dump(mode="json") for e in events]}

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Report malformed payloads and parameters as 400."""
        logger.warning("Invalid request payload", path=request.url.path, errors=str(exc.errors()))
        return JSONResponse(status_code=400, content={"detail": "Invalid request payload"})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler for unhandled errors."""
        logger.error(f"Unhandled error: {exc}", path=request.url.path)

        await request.app.state.event_bus.publish(
            EventType.SYSTEM_ERROR,
            {
                "error": str(exc),
                "path": request.url.path,
                "method": request.method,
            },
        )

        return JSONResponse(
            status_code=500,
            content={"detail": str(exc) if settings.DEBUG else "Internal server error"},
        )

    return app


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    settings = Settings()
    uvicorn.run(
        create_app(settings),
        host=settings.HOST,
        port=settings.PORT,
        log_level="debug" if settings.DEBUG else "info",
    )


if __name__ == "__main__":
    run()
