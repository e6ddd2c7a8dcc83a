import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from nutriplanr.config import settings
from nutriplanr.db import async_session
from nutriplanr.onboarding.errors import InvalidTransition
from nutriplanr.onboarding.profile import default_profile
from nutriplanr.onboarding.router import router as onboarding_router
from nutriplanr.onboarding.state_machine import OnboardingSession
from nutriplanr.onboarding.store import AppStateStore, MemoryBlobStore, SqlBlobStore

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def build_store() -> AppStateStore:
    """Blob store per settings, state loaded before the first request."""
    if settings.storage_backend == "memory":
        blob_store = MemoryBlobStore()
    else:
        blob_store = SqlBlobStore(async_session)
        await blob_store.create_table()
    store = AppStateStore(blob_store, key=settings.state_blob_key)
    await store.load()
    return store


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application startup (storage=%s)", settings.storage_backend)
    try:
        store = await build_store()
    except Exception as e:
        logger.critical("Failed to initialize app state: %s", e)
        raise
    app.state.store = store
    app.state.onboarding = OnboardingSession(store, profile=default_profile())
    yield


app = FastAPI(title="NutriPlanr", version="0.1.0", lifespan=lifespan)
app.include_router(onboarding_router)


@app.exception_handler(InvalidTransition)
async def invalid_transition_handler(request: Request, exc: InvalidTransition):
    """Contract breach. Fails loudly outside production."""
    if settings.environment != "production":
        raise exc
    logger.error("Invalid transition for request %s: %s", request.url, exc)
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.get("/")
async def root() -> dict:
    return {
        "status": "ok",
        "docs": "/docs",
        "health": "/health",
        "onboarding": {
            "session": "/onboarding",
            "path": "/onboarding/path",
            "profile": "/onboarding/profile",
            "fasting_presets": "/onboarding/fasting-presets",
            "health_import": "/onboarding/health-import",
            "next": "/onboarding/next",
            "previous": "/onboarding/previous",
            "complete": "/onboarding/complete",
            "state": "/onboarding/state",
            "reset": "/onboarding/reset",
            "metrics": "/onboarding/metrics",
        },
    }


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
