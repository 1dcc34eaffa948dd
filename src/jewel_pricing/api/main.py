"""
Jewel Pricing API - FastAPI application.
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config.log import configure_logging
from ..engine.errors import NotFound, PricingError, ValidationError
from . import discounts_api, pricing_api, webhooks_api
from .state import AppState, build_state


def create_app(state: Optional[AppState] = None) -> FastAPI:
    """Build the app; without ``state`` the file store from settings is used."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app_state = state
        if app_state is None:
            app_state = build_state()
            configure_logging(app_state.settings)
        app.state.pricing = app_state
        app_state.orchestrator.start()
        yield
        await app_state.orchestrator.stop()

    app = FastAPI(
        title="Jewel Pricing API",
        description="Jewelry pricing, discount rules and bulk price refresh",
        version=__version__,
        lifespan=lifespan,
    )

    # Enable CORS for the admin frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(NotFound)
    async def not_found_handler(request: Request, exc: NotFound):
        return JSONResponse(status_code=404, content={"success": False, "error": str(exc)})

    @app.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError):
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": str(exc), "errors": exc.errors},
        )

    @app.exception_handler(PricingError)
    async def pricing_error_handler(request: Request, exc: PricingError):
        return JSONResponse(status_code=400, content={"success": False, "error": str(exc)})

    app.include_router(pricing_api.router)
    app.include_router(discounts_api.router)
    app.include_router(webhooks_api.router)

    @app.get("/")
    async def root():
        return {"status": "online", "message": "Jewel Pricing API Active"}

    @app.get("/api/health")
    async def health():
        return {
            "success": True,
            "message": "Jewel Pricing API is running",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.post("/api/refresh-prices", status_code=202)
    async def refresh_prices(request: Request):
        """Start a background job repricing every configured product."""
        job_id = await request.app.state.pricing.orchestrator.submit()
        return {
            "success": True,
            "job_id": job_id,
            "message": "Price refresh started. Poll the status endpoint for progress.",
        }

    @app.get("/api/refresh-prices/status/{job_id}")
    async def refresh_status(job_id: str, request: Request):
        return {"success": True, "data": request.app.state.pricing.orchestrator.get_status(job_id)}

    @app.post("/api/refresh-prices/cancel/{job_id}")
    async def cancel_refresh(job_id: str, request: Request):
        job = request.app.state.pricing.orchestrator.cancel(job_id)
        return {"success": True, "message": "Price refresh cancelled", "data": job}

    return app


app = create_app()
