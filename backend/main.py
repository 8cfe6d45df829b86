#!/usr/bin/env python3

"""
Backend for the driver rostering and route-sequencing service.

Run locally:
  uvicorn backend.main:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import os
from typing import Any, Dict, Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.routing import APIRouter
from starlette.exceptions import HTTPException as StarletteHTTPException

from roster.runtime import configure_logging
from roster.scheduling import config as sched_config
from roster.scheduling.distance import DistanceProvider, GeocodeCache
from roster.scheduling.errors import ConflictError, SchedulingError
from roster.scheduling.router import create_router as create_roster_router
from roster.scheduling.store import InMemoryTripStore

logger = configure_logging("roster.backend")


# --------------------------------------------------------------------------------------------------
# Global Constants & Environment
# --------------------------------------------------------------------------------------------------
CORS_ALLOW_ORIGINS = os.getenv("CORS_ALLOW_ORIGINS", "*")
ALLOW_ORIGINS = [o.strip() for o in CORS_ALLOW_ORIGINS.split(",") if o.strip()] or ["*"]

STORE: Optional[InMemoryTripStore] = None
# Real geocoder results shared across requests, capped by ROSTER_GEOCODE_CACHE_SIZE (LRU).
GEOCODE_CACHE = GeocodeCache()


def load_store() -> InMemoryTripStore:
    dataset_dir = sched_config.dataset_dir()
    store = InMemoryTripStore.from_dataset_dir(dataset_dir)
    logger.info("Loaded dataset from %s: %s", dataset_dir, store.counts())
    return store


def get_provider() -> DistanceProvider:
    return DistanceProvider(geocode_cache=GEOCODE_CACHE)


# --------------------------------------------------------------------------------------------------
# Admin Router (reload)
# --------------------------------------------------------------------------------------------------
def admin_router() -> APIRouter:
    router = APIRouter(prefix="/admin", tags=["Admin"])

    @router.post("/reload")
    def admin_reload():
        """Reload the dataset from disk"""
        global STORE
        try:
            STORE = load_store()
        except (OSError, ValueError) as e:
            logger.warning("Dataset reload failed: %s", e)
            return JSONResponse(status_code=503, content={"status": "error", "error": str(e)})
        GEOCODE_CACHE.clear()
        return {"status": "ok", "reloaded": STORE.counts()}

    return router


# --------------------------------------------------------------------------------------------------
# Public Endpoints
# --------------------------------------------------------------------------------------------------
def register_routes(app: FastAPI):
    @app.get("/health")
    def health():
        base = {
            "status": "ok" if STORE else "needs_data",
            "dataset_dir": str(sched_config.dataset_dir()),
            "maps_api_configured": sched_config.maps_api_key() is not None,
        }
        if STORE is None:
            return {**base, "message": "Dataset not loaded. POST /admin/reload."}
        return {**base, **STORE.counts()}

    @app.get("/config")
    def config():
        return {
            **sched_config.public_settings(),
            "cors_allow_origins": ALLOW_ORIGINS,
        }


# --------------------------------------------------------------------------------------------------
# FastAPI App (with lifespan)
# --------------------------------------------------------------------------------------------------
def create_app() -> FastAPI:
    async def lifespan(app: FastAPI):
        global STORE
        try:
            STORE = load_store()
        except (OSError, ValueError) as e:
            logger.warning("Dataset not loaded at startup: %s", e)
        yield

    app = FastAPI(title="Driver Rostering & Route Sequencing", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SchedulingError)
    async def scheduling_error_handler(request, exc: SchedulingError):
        payload: Dict[str, Any] = {"error": str(exc)}
        if isinstance(exc, ConflictError):
            payload["conflicts"] = [c.model_dump() for c in exc.conflicts]
            payload["message"] = "Set force=true to override critical conflicts"
        return JSONResponse(status_code=exc.status_code, content=payload)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request, exc: RequestValidationError):
        details = [
            {"loc": [str(p) for p in err.get("loc", ())], "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        return JSONResponse(status_code=400, content={"error": "Invalid request", "details": details})

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    app.include_router(admin_router())
    app.include_router(create_roster_router(lambda: STORE, get_provider))

    register_routes(app)
    return app


app = create_app()
