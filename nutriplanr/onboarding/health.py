"""External health-data reconciler.

Four independent provider queries (height, weight, age, biological sex) are
launched together and joined; each settles to a value or to absence. Only
after all four have settled does the caller get a HealthImportResult, and
only the merge step writes to the profile. Absence is never a failure:
a missing, failing or implausible field leaves the profile value untouched.
Authorization refusal is the one whole-import failure, raised before any
fetch runs.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Awaitable, Protocol

from nutriplanr.onboarding.errors import ExternalAccessDenied, ExternalDataUnavailable
from nutriplanr.onboarding.models import BiologicalSex, HealthImportResult, Profile

logger = logging.getLogger(__name__)

IMPORT_FIELDS = ("height", "weight", "age", "sex")


class HealthDataProvider(Protocol):
    """Device health store adapter. Units already converted to in / lb / years."""

    async def check_authorization(self) -> bool: ...

    async def request_authorization(self) -> bool: ...

    async def fetch_height(self) -> float | None: ...

    async def fetch_weight(self) -> float | None: ...

    async def fetch_age(self) -> int | None: ...

    async def fetch_sex(self) -> BiologicalSex | None: ...


def _plausible(field: str, value: Any) -> Any:
    """Return value if usable for `field`, else None."""
    if value is None:
        return None
    if field == "sex":
        try:
            return BiologicalSex(value)
        except ValueError:
            return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    if field == "age":
        return int(value)
    return float(value)


class HealthDataReconciler:
    async def _authorize(self, provider: HealthDataProvider) -> None:
        try:
            if await provider.check_authorization():
                return
            granted = await provider.request_authorization()
        except ExternalAccessDenied:
            raise
        except Exception as exc:
            raise ExternalAccessDenied(f"Health data provider unavailable: {exc}") from exc
        if not granted:
            raise ExternalAccessDenied(
                "Unable to access health data. Please check your privacy settings."
            )

    async def _settle(self, field: str, query: Awaitable[Any]) -> Any:
        try:
            value = await query
        except ExternalDataUnavailable:
            logger.info("Health import: no %s available", field)
            return None
        except Exception:
            logger.warning("Health import: %s query failed, treating as absent", field, exc_info=True)
            return None
        checked = _plausible(field, value)
        if checked is None and value is not None:
            logger.warning("Health import: discarding implausible %s=%r", field, value)
        return checked

    async def fetch(self, provider: HealthDataProvider) -> HealthImportResult:
        """Authorize, run the four queries concurrently, return once all settled.

        Raises ExternalAccessDenied when authorization is refused or the
        provider is unavailable; no query is issued in that case.
        """
        await self._authorize(provider)

        height, weight, age, sex = await asyncio.gather(
            self._settle("height", provider.fetch_height()),
            self._settle("weight", provider.fetch_weight()),
            self._settle("age", provider.fetch_age()),
            self._settle("sex", provider.fetch_sex()),
        )
        result = HealthImportResult(height=height, weight=weight, age=age, sex=sex)
        logger.info("Health import settled: imported=%s", result.imported_fields)
        return result

    @staticmethod
    def merge(profile: Profile, result: HealthImportResult) -> list[str]:
        """Overwrite profile fields the import has values for. Returns updated names."""
        updated: list[str] = []
        for field in IMPORT_FIELDS:
            value = getattr(result, field)
            if value is None:
                continue
            setattr(profile, field, value)
            updated.append(field)
        return updated
