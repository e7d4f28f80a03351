from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import structlog

from wayfinder.application.api.route.agent import router
from wayfinder.application.api.schema import ErrorResponse
from wayfinder.domain.errors import (
    AllProvidersFailedError,
    EmbeddingError,
    PersistenceError,
    StoreNotInitializedError,
    WayfinderError,
)
from wayfinder.domain.tool.action_executor import BrowserController
from wayfinder.infrastructure.config.settings import AgentComponents, AgentSettings, build_agent
from wayfinder.infrastructure.observability.logging import setup_logging

logger = structlog.get_logger(__name__)

ERROR_STATUS = (
    (AllProvidersFailedError, 503),
    (EmbeddingError, 502),
    (StoreNotInitializedError, 503),
    (PersistenceError, 500),
)


def _status_for(error: WayfinderError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 400


def create_app(components: AgentComponents) -> FastAPI:
    """HTTP surface over an assembled agent; the lifespan owns store init/teardown"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await components.memory_store.init()
        logger.info("Wayfinder API started", memories=len(components.memory_store))
        yield
        await components.memory_store.teardown()
        logger.info("Wayfinder API stopped")

    app = FastAPI(title="Wayfinder", lifespan=lifespan)
    app.state.components = components

    @app.exception_handler(WayfinderError)
    async def domain_error_handler(request: Request, exc: WayfinderError):
        status = _status_for(exc)
        logger.warning("Request failed", path=request.url.path, status=status, error=str(exc))
        return JSONResponse(status_code=status, content=ErrorResponse(error=str(exc)).model_dump())

    app.include_router(router)
    return app


def create_default_app(browser: BrowserController) -> FastAPI:
    """App wired from WAYFINDER_* environment settings"""

    settings = AgentSettings.from_env()
    setup_logging(settings.log_level, settings.log_format, settings.service_name)
    return create_app(build_agent(settings, browser))
