import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware

from routes import market_router, queue_router
from services.app_state import AppState
from services.error_handler import setup_error_handlers

logger = logging.getLogger(__name__)


def create_app(state: AppState, debug: bool = False) -> FastAPI:
    """
    Create and configure the FastAPI application instance.

    The state is built by the caller, so tests can pass one made of fakes.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler for startup/shutdown."""
        counts = state.driver.queue.counts()
        logger.info("[STARTUP] Resell queue starting...")
        logger.info(f"[STARTUP] Restored {counts['total']} job(s), {counts['pending']} pending")
        if state.driver.queue.rate_limit_hit:
            logger.info("[STARTUP] Queue is paused on the analysis quota - resume to continue")

        app.state.app_state = state

        yield

        logger.info("[SHUTDOWN] Resell queue shutting down...")
        await state.close()

    app = FastAPI(
        title="Resell Queue",
        description="Batch photo analysis and resale pricing from eBay comparables",
        lifespan=lifespan,
    )
    # Routes can reach the state even when the lifespan is not run
    app.state.app_state = state

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    setup_error_handlers(app, debug=debug)

    @app.get("/favicon.ico", include_in_schema=False)
    async def favicon():
        return Response(status_code=204)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            **state.get_status(),
        }

    app.include_router(queue_router)
    app.include_router(market_router)

    return app
