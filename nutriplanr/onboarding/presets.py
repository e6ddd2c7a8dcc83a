"""Hardcoded intermittent-fasting presets — configuration only."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import time

from nutriplanr.onboarding.models import MealSlot, MealTiming


@dataclass(frozen=True, slots=True)
class FastingPreset:
    id: str
    label: str
    description: str
    window_start: time | None = None  # feeding window; None = leave timing alone
    window_end: time | None = None
    breakfast: time | None = None
    lunch: time | None = None
    dinner: time | None = None
    snack: time | None = None


FASTING_PRESETS: dict[str, FastingPreset] = {
    "16:8": FastingPreset(
        id="16:8",
        label="16:8 Fasting",
        description="Fast 16 hours, eat 8 hours (12pm-8pm)",
        window_start=time(12, 0),
        window_end=time(20, 0),
        breakfast=time(12, 0),
        lunch=time(15, 0),
        dinner=time(19, 0),
        snack=time(16, 30),
    ),
    "14:10": FastingPreset(
        id="14:10",
        label="14:10 Fasting",
        description="Fast 14 hours, eat 10 hours (8am-6pm)",
        window_start=time(8, 0),
        window_end=time(18, 0),
        breakfast=time(8, 0),
        lunch=time(12, 0),
        dinner=time(17, 0),
        snack=time(14, 30),
    ),
    "12:12": FastingPreset(
        id="12:12",
        label="12:12 Fasting",
        description="Fast 12 hours, eat 12 hours (7am-7pm)",
        window_start=time(7, 0),
        window_end=time(19, 0),
        breakfast=time(7, 0),
        lunch=time(12, 0),
        dinner=time(18, 0),
        snack=time(15, 0),
    ),
    "omad": FastingPreset(
        id="omad",
        label="OMAD (One Meal)",
        description="One meal per day (2pm)",
        window_start=time(14, 0),
        window_end=time(15, 0),
        breakfast=time(14, 0),
        lunch=time(14, 0),
        dinner=time(14, 0),
        snack=time(14, 0),
    ),
    "custom": FastingPreset(
        id="custom",
        label="Custom Schedule",
        description="Set your own meal times",
    ),
}


def list_fasting_presets() -> list[FastingPreset]:
    return list(FASTING_PRESETS.values())


def get_fasting_preset(preset_id: str) -> FastingPreset | None:
    return FASTING_PRESETS.get(preset_id)


def apply_preset(timing: MealTiming, preset: FastingPreset) -> bool:
    """Overwrite meal timing with a preset schedule, in place.

    Returns False for presets that carry no schedule (custom), leaving the
    timing untouched. Earlier manual edits of the same fields are replaced.
    """
    if preset.window_start is None or preset.window_end is None:
        return False
    timing.breakfast = MealSlot(enabled=True, time_of_day=preset.breakfast)
    timing.lunch = MealSlot(enabled=True, time_of_day=preset.lunch)
    timing.dinner = MealSlot(enabled=True, time_of_day=preset.dinner)
    timing.snack = MealSlot(enabled=True, time_of_day=preset.snack)
    timing.intermittent_fasting = True
    timing.fasting_start = preset.window_end
    timing.fasting_end = preset.window_start
    timing.no_food_after = preset.window_end
    return True
