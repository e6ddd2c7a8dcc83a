"""App state persistence — one JSON document in a key/value blob store.

Every mutating call awaits the blob write before returning. Loading never
fails: an unreadable document reinitialises defaults, and individual fields
that no longer validate fall back to their defaults.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Protocol

from pydantic import ValidationError
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from nutriplanr.onboarding.errors import PersistenceCorrupt
from nutriplanr.onboarding.models import AppState, FinalizedProfile, OnboardingStep

logger = logging.getLogger(__name__)


class BlobStore(Protocol):
    async def get(self, key: str) -> bytes | None: ...

    async def set(self, key: str, value: bytes) -> None: ...


class MemoryBlobStore:
    def __init__(self, initial: dict[str, bytes] | None = None) -> None:
        self.blobs: dict[str, bytes] = dict(initial or {})

    async def get(self, key: str) -> bytes | None:
        return self.blobs.get(key)

    async def set(self, key: str, value: bytes) -> None:
        self.blobs[key] = value


class SqlBlobStore:
    """Blob store backed by the app_blobs table."""

    def __init__(self, session_factory: Callable[[], AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create_table(self) -> None:
        async with self._session_factory() as session:
            await session.execute(
                text("CREATE TABLE IF NOT EXISTS app_blobs (key TEXT PRIMARY KEY, value BYTEA NOT NULL)")
            )
            await session.commit()

    async def get(self, key: str) -> bytes | None:
        async with self._session_factory() as session:
            result = await session.execute(
                text("SELECT value FROM app_blobs WHERE key = :key"), {"key": key}
            )
            row = result.fetchone()
        if row is None:
            return None
        return bytes(row[0])

    async def set(self, key: str, value: bytes) -> None:
        async with self._session_factory() as session:
            await session.execute(
                text(
                    "INSERT INTO app_blobs (key, value) VALUES (:key, :value) "
                    "ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value"
                ),
                {"key": key, "value": value},
            )
            await session.commit()


def decode_state(raw: bytes) -> AppState:
    """Parse a stored document, defaulting fields that fail validation.

    Raises PersistenceCorrupt when the blob is not a JSON object at all.
    """
    try:
        data = json.loads(raw)
    except (UnicodeDecodeError, ValueError) as exc:
        raise PersistenceCorrupt(f"App state is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise PersistenceCorrupt("App state document is not an object")

    clean: dict[str, Any] = {}
    for name in AppState.model_fields:
        if name not in data:
            continue
        try:
            AppState.model_validate({name: data[name]})
        except ValidationError:
            logger.warning("App state field '%s' is invalid, using default", name)
            continue
        clean[name] = data[name]
    return AppState.model_validate(clean)


def encode_state(state: AppState) -> bytes:
    return state.model_dump_json().encode("utf-8")


class AppStateStore:
    def __init__(self, blob_store: BlobStore, key: str = "app_state") -> None:
        self._blob_store = blob_store
        self._key = key
        self._state = AppState()

    @property
    def state(self) -> AppState:
        """Read-only snapshot of the current state."""
        return self._state.model_copy(deep=True)

    async def load(self) -> AppState:
        raw = await self._blob_store.get(self._key)
        if raw is None:
            self._state = AppState()
            return self.state
        try:
            self._state = decode_state(raw)
        except PersistenceCorrupt as exc:
            logger.warning("Reinitialising app state: %s", exc)
            self._state = AppState()
        return self.state

    async def save(self) -> None:
        await self._blob_store.set(self._key, encode_state(self._state))

    async def _update(self, **changes: Any) -> AppState:
        # In-memory state only moves once the write has landed.
        updated = self._state.model_copy(update=changes)
        await self._blob_store.set(self._key, encode_state(updated))
        self._state = updated
        return self.state

    async def complete_onboarding(self) -> AppState:
        return await self._update(onboarding_complete=True)

    async def reset_onboarding(self) -> AppState:
        """Clear completion flag and step pointer. The finalized profile stays."""
        logger.info("Onboarding reset")
        return await self._update(onboarding_complete=False, current_step=OnboardingStep.welcome)

    async def update_finalized_profile(self, profile: FinalizedProfile) -> AppState:
        return await self._update(finalized_profile=profile.model_copy(deep=True))

    async def finalize(self, profile: FinalizedProfile) -> AppState:
        """Store the finalized profile and set the completion flag in one write."""
        return await self._update(finalized_profile=profile.model_copy(deep=True), onboarding_complete=True)

    async def update_onboarding_step(self, step: OnboardingStep) -> AppState:
        return await self._update(current_step=step)
