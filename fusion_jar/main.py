import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import executions, health, scheduler as scheduler_api
from .config import settings
from .core.errors import ConfigurationError
from .core.investments.orchestrator import InvestmentOrchestrator
from .logging_config import setup_logging
from .workers.investment_scheduler import InvestmentScheduler

logger = logging.getLogger(__name__)


def build_scheduler() -> InvestmentScheduler:
    """Wire the orchestrator and scheduler from settings."""
    return InvestmentScheduler(InvestmentOrchestrator.from_settings())


def create_app(scheduler: Optional[InvestmentScheduler] = None) -> FastAPI:
    """Create the API. A ready-made scheduler can be injected (tests)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging()
        app.state.config_error = None
        app.state.scheduler = scheduler
        if app.state.scheduler is None:
            try:
                app.state.scheduler = build_scheduler()
            except ConfigurationError as e:
                logger.error("Scheduler unavailable: %s", e)
                app.state.config_error = str(e)
        app.state.store = app.state.scheduler.orchestrator.store if app.state.scheduler else None

        if app.state.scheduler is not None and settings.scheduler_enabled:
            await app.state.scheduler.start()
        try:
            yield
        finally:
            if app.state.scheduler is not None:
                await app.state.scheduler.stop()
            if app.state.store is not None:
                await app.state.store.close()

    app = FastAPI(
        title="Fusion Jar Execution Engine",
        description="Recurring stablecoin purchases through 1inch Fusion and Fusion+",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router, tags=["Health"])
    app.include_router(scheduler_api.router)
    app.include_router(executions.router)

    @app.get("/")
    async def root():
        """Root endpoint with basic info"""
        return {
            "name": "Fusion Jar Execution Engine",
            "version": "0.1.0",
            "docs": "/docs",
            "health": "/healthz",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "fusion_jar.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower()
    )
