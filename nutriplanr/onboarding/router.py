"""Onboarding HTTP router — the UI layer's only way to read and mutate state."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from pydantic import BaseModel, ValidationError

from nutriplanr.auth import verify_api_key
from nutriplanr.config import settings
from nutriplanr.db import get_session_factory
from nutriplanr.onboarding import metrics
from nutriplanr.onboarding.errors import (
    ExternalAccessDenied,
    FieldOwnershipError,
    UnknownPreset,
    ValidationUnmet,
)
from nutriplanr.onboarding.models import (
    AppState,
    FinalizedProfile,
    HealthImportResult,
    ImportPath,
    MetricSummary,
    SessionSnapshot,
)
from nutriplanr.onboarding.presets import list_fasting_presets
from nutriplanr.onboarding.profile import default_profile
from nutriplanr.onboarding.providers import (
    DailyRecordsProvider,
    HealthPayload,
    PayloadHealthProvider,
)
from nutriplanr.onboarding.state_machine import OnboardingSession
from nutriplanr.onboarding.store import AppStateStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/onboarding", tags=["onboarding"], dependencies=[Depends(verify_api_key)])


class PathChoice(BaseModel):
    path: ImportPath


class HealthImportResponse(BaseModel):
    discarded: bool = False
    result: HealthImportResult | None = None
    session: SessionSnapshot


def get_store(request: Request) -> AppStateStore:
    return request.app.state.store


def get_onboarding(request: Request) -> OnboardingSession:
    return request.app.state.onboarding


async def _persist_step(store: AppStateStore, session: OnboardingSession) -> SessionSnapshot:
    await store.update_onboarding_step(session.step)
    return session.snapshot()


# ---------------------------------------------------------------------------
# /onboarding — session
# ---------------------------------------------------------------------------


@router.get("", response_model=SessionSnapshot)
async def get_snapshot(session: OnboardingSession = Depends(get_onboarding)) -> SessionSnapshot:
    return session.snapshot()


@router.post("/path", response_model=SessionSnapshot)
async def choose_path(
    choice: PathChoice,
    session: OnboardingSession = Depends(get_onboarding),
    store: AppStateStore = Depends(get_store),
) -> SessionSnapshot:
    session.choose_path(choice.path)
    return await _persist_step(store, session)


@router.patch("/profile", response_model=SessionSnapshot)
async def update_profile(
    updates: dict[str, Any] = Body(...),
    session: OnboardingSession = Depends(get_onboarding),
) -> SessionSnapshot:
    try:
        session.update_profile(updates)
    except FieldOwnershipError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False, include_context=False))
    return session.snapshot()


@router.get("/fasting-presets")
async def fasting_presets() -> list[dict]:
    return [
        {"id": p.id, "label": p.label, "description": p.description}
        for p in list_fasting_presets()
    ]


@router.post("/fasting-presets/{preset_id}", response_model=SessionSnapshot)
async def apply_fasting_preset(
    preset_id: str,
    session: OnboardingSession = Depends(get_onboarding),
) -> SessionSnapshot:
    try:
        session.apply_fasting_preset(preset_id)
    except UnknownPreset as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return session.snapshot()


@router.post("/health-import", response_model=HealthImportResponse)
async def health_import(
    payload: HealthPayload | None = Body(default=None),
    session: OnboardingSession = Depends(get_onboarding),
    store: AppStateStore = Depends(get_store),
    session_factory=Depends(get_session_factory),
) -> HealthImportResponse:
    if payload is not None:
        provider = PayloadHealthProvider(payload)
    else:
        provider = DailyRecordsProvider(
            session_factory,
            device_id=settings.health_device_id,
            lookback_rows=settings.health_lookback_rows,
            fallback_age=settings.health_user_age,
            fallback_sex=settings.health_user_sex,
        )

    try:
        result = await session.run_health_import(provider)
    except ExternalAccessDenied as exc:
        await store.update_onboarding_step(session.step)
        raise HTTPException(
            status_code=403,
            detail={"message": str(exc), "retryable": exc.retryable, "step": session.step.value},
        )

    snapshot = await _persist_step(store, session)
    return HealthImportResponse(discarded=result is None, result=result, session=snapshot)


@router.post("/next", response_model=SessionSnapshot)
async def next_step(
    session: OnboardingSession = Depends(get_onboarding),
    store: AppStateStore = Depends(get_store),
) -> SessionSnapshot:
    try:
        session.next()
    except ValidationUnmet as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return await _persist_step(store, session)


@router.post("/previous", response_model=SessionSnapshot)
async def previous_step(
    session: OnboardingSession = Depends(get_onboarding),
    store: AppStateStore = Depends(get_store),
) -> SessionSnapshot:
    session.previous()
    return await _persist_step(store, session)


@router.post("/complete", response_model=FinalizedProfile)
async def complete(session: OnboardingSession = Depends(get_onboarding)) -> FinalizedProfile:
    try:
        return await session.complete()
    except ValidationUnmet as exc:
        raise HTTPException(status_code=422, detail=str(exc))


# ---------------------------------------------------------------------------
# /onboarding/state — app lifecycle
# ---------------------------------------------------------------------------


@router.get("/state", response_model=AppState)
async def get_state(store: AppStateStore = Depends(get_store)) -> AppState:
    return store.state


@router.post("/reset", response_model=AppState)
async def reset(
    request: Request,
    session: OnboardingSession = Depends(get_onboarding),
    store: AppStateStore = Depends(get_store),
) -> AppState:
    session.close()
    state = await store.reset_onboarding()
    request.app.state.onboarding = OnboardingSession(store, profile=default_profile())
    return state


@router.get("/metrics", response_model=MetricSummary)
async def finalized_metrics(store: AppStateStore = Depends(get_store)) -> MetricSummary:
    profile = store.state.finalized_profile
    if profile is None:
        raise HTTPException(status_code=404, detail="Onboarding has not produced a profile yet")
    return metrics.summarize(profile)
