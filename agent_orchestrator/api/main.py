"""
FastAPI application for the Agent Orchestrator.

Streams agent runs to clients as Server-Sent Events.

Usage:
    # Development server with auto-reload
    uvicorn agent_orchestrator.api.main:app --reload --host 0.0.0.0 --port 8000

    # Debug mode (verbose logging)
    LOG_LEVEL=DEBUG uvicorn agent_orchestrator.api.main:app --reload --host 0.0.0.0 --port 8000
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config_loader import load_app_config
from ..dependencies import Dependencies, build_dependencies
from .routes import chat, conversations, health


def configure_logging(level: Optional[str] = None) -> None:
    """Configure logging from the given level or the LOG_LEVEL environment variable."""
    level_name = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    log_level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # Set level for our modules
    logging.getLogger("agent_orchestrator").setLevel(log_level)


configure_logging()
logger = logging.getLogger(__name__)


def _log_startup_banner(deps: Dependencies) -> None:
    config = deps.config
    logger.info("=" * 60)
    logger.info("ORCHESTRATOR CONFIGURATION")
    logger.info(f"  Base URL: {config.orchestrator.base_url}")
    logger.info(f"  Model: {config.orchestrator.model}")
    logger.info(f"  Max Iterations: {config.orchestrator.max_iterations}")
    logger.info(f"  Post-Generation Rounds: {config.orchestrator.post_generation_rounds}")

    logger.info("-" * 60)
    logger.info("GENERATOR")
    logger.info(f"  Base URL: {config.generator.base_url}")
    logger.info(f"  Model: {config.generator.model}")

    logger.info("-" * 60)
    logger.info("STORAGE")
    logger.info(f"  Record Store: {config.record_store.backend}")
    logger.info(f"  History Window: {config.record_store.history_limit} messages")
    logger.info(f"  Cache Max Entries: {config.cache.max_entries:,}")

    logger.info("-" * 60)
    logger.info("REGISTERED TOOLS")
    for name, tool in deps.registry.all_tools().items():
        logger.info(f"  - {name} [{tool.kind.value}]: {tool.description[:60]}...")

    logger.info("-" * 60)
    logger.info("LANGFUSE OBSERVABILITY")
    if deps.tracing is not None and deps.tracing.enabled:
        logger.info("  Status: ENABLED")
        logger.info(f"  Host: {config.langfuse.host or 'https://cloud.langfuse.com'}")
    else:
        logger.info("  Status: DISABLED")
        if deps.tracing is not None and deps.tracing.error:
            logger.info(f"  Reason: {deps.tracing.error}")
    logger.info("=" * 60)


def create_app(deps: Optional[Dependencies] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        deps: Prebuilt dependencies. When omitted they are built from
            config/config.yaml at startup and closed at shutdown.

    Returns:
        Configured FastAPI application instance.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler for startup and shutdown events."""
        logger.info("Starting Agent Orchestrator API server")
        owned = deps is None
        if owned:
            app_config = load_app_config()
            configure_logging(app_config.log_level)
            app.state.deps = build_dependencies(app_config)
        else:
            app.state.deps = deps
        _log_startup_banner(app.state.deps)

        yield

        logger.info("Shutting down Agent Orchestrator API server")
        if owned:
            app.state.deps.close()
            logger.info("Dependencies closed")

    app = FastAPI(
        title="Agent Orchestrator API",
        description=(
            "Streaming marketing agent. POST a message to /v1/chat/stream and read "
            "the run as Server-Sent Events."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    if deps is not None:
        app.state.deps = deps

    # CORS middleware - allow all origins for development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router, tags=["Health"])
    app.include_router(chat.router, tags=["Chat"])
    app.include_router(conversations.router, tags=["Conversations"])

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Log validation errors before returning 400 response."""
        logger.warning(
            f"Validation error on {request.method} {request.url.path}: {exc.errors()}"
        )
        body = await request.body()
        logger.debug(f"Request body: {body.decode('utf-8', errors='replace')[:1000]}")
        return JSONResponse(
            status_code=400,
            content={"detail": jsonable_errors(exc)},
        )

    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    """Validation errors with non-JSON context values stringified."""
    errors = []
    for error in exc.errors():
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        errors.append(error)
    return errors


# Create the application instance
app = create_app()


def run_server():
    """
    Run the server using uvicorn.

    This is the entry point for running the server programmatically.
    """
    import uvicorn

    config = load_app_config()
    uvicorn.run(
        "agent_orchestrator.api.main:app",
        host=config.server.host,
        port=config.server.port,
        reload=config.server.reload,
        workers=1 if config.server.reload else config.server.workers,
    )


if __name__ == "__main__":
    run_server()
