"""Health-data provider adapters — unit conversion lives here, not in the core.

PayloadHealthProvider wraps values the device read from its health store and
posted in metric units. DailyRecordsProvider reads body metrics already synced
into health_connect_daily (raw_data JSONB). Both hand the reconciler inches,
pounds, whole years and a BiologicalSex.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Callable

from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from nutriplanr.onboarding.energy_config import CM_PER_INCH
from nutriplanr.onboarding.errors import ExternalAccessDenied
from nutriplanr.onboarding.models import BiologicalSex

LB_PER_KG = 2.20462

_SEX_ALIASES: dict[str, BiologicalSex] = {
    "male": BiologicalSex.male,
    "m": BiologicalSex.male,
    "female": BiologicalSex.female,
    "f": BiologicalSex.female,
    "other": BiologicalSex.unspecified,
    "not_set": BiologicalSex.unspecified,
    "notset": BiologicalSex.unspecified,
    "unspecified": BiologicalSex.unspecified,
}


def parse_sex(value: Any) -> BiologicalSex | None:
    """Map provider sex labels onto BiologicalSex. Unknown labels are absent."""
    if value is None:
        return None
    return _SEX_ALIASES.get(str(value).strip().lower())


def age_on(born: date, today: date) -> int:
    """Whole years between `born` and `today`."""
    before_birthday = (today.month, today.day) < (born.month, born.day)
    return today.year - born.year - int(before_birthday)


def _to_float(raw: Any) -> float | None:
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return float(raw)
    # Try to parse string-encoded numbers
    if isinstance(raw, str):
        try:
            return float(raw)
        except ValueError:
            return None
    return None


def _resolve_key(data: Any, key: str) -> Any:
    """Resolve a dot-path key like 'foo.bar' or 'list.0.field' in nested dicts/lists."""
    current = data
    for part in key.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, (list, tuple)):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                return None
        else:
            return None
    return current


# ---------------------------------------------------------------------------
# Device payload
# ---------------------------------------------------------------------------


class HealthPayload(BaseModel):
    """What the device read from its health store, in metric units."""

    available: bool = True
    authorized: bool = True
    height_cm: float | None = None
    weight_kg: float | None = None
    date_of_birth: date | None = None
    age: int | None = None
    biological_sex: str | None = None


class PayloadHealthProvider:
    def __init__(self, payload: HealthPayload, today: date | None = None) -> None:
        self._payload = payload
        self._today = today or date.today()

    async def check_authorization(self) -> bool:
        if not self._payload.available:
            raise ExternalAccessDenied("Health data is not available on this device.")
        return self._payload.authorized

    async def request_authorization(self) -> bool:
        # The device already asked the user; its answer is in the payload.
        return self._payload.authorized

    async def fetch_height(self) -> float | None:
        if self._payload.height_cm is None:
            return None
        return self._payload.height_cm / CM_PER_INCH

    async def fetch_weight(self) -> float | None:
        if self._payload.weight_kg is None:
            return None
        return self._payload.weight_kg * LB_PER_KG

    async def fetch_age(self) -> int | None:
        if self._payload.date_of_birth is not None:
            return age_on(self._payload.date_of_birth, self._today)
        return self._payload.age

    async def fetch_sex(self) -> BiologicalSex | None:
        return parse_sex(self._payload.biological_sex)


# ---------------------------------------------------------------------------
# Synced daily records (health_connect_daily)
# ---------------------------------------------------------------------------


class DailyRecordsProvider:
    """Latest body metrics from health_connect_daily.

    Each fetch opens its own session: the reconciler runs the four fetches
    concurrently and an AsyncSession must not be shared between tasks.
    Age and sex come from raw_data.user_profile when the sync carries it,
    else from the configured fallbacks.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        device_id: str | None = None,
        lookback_rows: int = 30,
        fallback_age: int | None = None,
        fallback_sex: str | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._device_id = device_id
        self._lookback_rows = lookback_rows
        self._fallback_age = fallback_age
        self._fallback_sex = fallback_sex

    def _query(self, limit: int) -> tuple[str, dict[str, Any]]:
        query = (
            "SELECT device_id, date, raw_data "
            "FROM health_connect_daily "
            "WHERE source_type = 'daily'"
        )
        params: dict[str, Any] = {"limit": limit}
        if self._device_id is not None:
            query += " AND device_id = :device_id"
            params["device_id"] = self._device_id
        query += " ORDER BY date DESC LIMIT :limit"
        return query, params

    async def _recent_rows(self, limit: int) -> list[dict[str, Any]]:
        query, params = self._query(limit)
        async with self._session_factory() as session:
            result = await session.execute(text(query), params)
            columns = result.keys()
            return [dict(zip(columns, r)) for r in result.fetchall()]

    async def _latest(self, path: str) -> Any:
        """Most recent non-null value at `path` inside raw_data, or None."""
        for row in await self._recent_rows(self._lookback_rows):
            value = _resolve_key(row.get("raw_data") or {}, path)
            if value is not None:
                return value
        return None

    async def check_authorization(self) -> bool:
        try:
            rows = await self._recent_rows(1)
        except SQLAlchemyError as exc:
            raise ExternalAccessDenied("Synced health records are unavailable.") from exc
        return bool(rows)

    async def request_authorization(self) -> bool:
        # Nothing to grant: records are either synced or not.
        return await self.check_authorization()

    async def fetch_height(self) -> float | None:
        height_cm = _to_float(await self._latest("body_metrics.height_cm"))
        if height_cm is None:
            return None
        return height_cm / CM_PER_INCH

    async def fetch_weight(self) -> float | None:
        weight_kg = _to_float(await self._latest("body_metrics.weight_kg"))
        if weight_kg is None:
            return None
        return weight_kg * LB_PER_KG

    async def fetch_age(self) -> int | None:
        age = _to_float(await self._latest("user_profile.age"))
        if age is None:
            return self._fallback_age
        return int(age)

    async def fetch_sex(self) -> BiologicalSex | None:
        raw = await self._latest("user_profile.sex")
        return parse_sex(raw if raw is not None else self._fallback_sex)
