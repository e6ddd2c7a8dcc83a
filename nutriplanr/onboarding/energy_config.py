"""Static energy configuration — no DB, config only.

Activity multipliers scale BMR to maintenance calories. Each goal intensity
maps to one fixed daily deficit (weight loss) and one fixed daily surplus
(weight gain); the active goal decides which of the two applies.
"""

from __future__ import annotations

from dataclasses import dataclass

from nutriplanr.onboarding.models import ActivityLevel, GoalIntensity, PrimaryGoal

KG_PER_LB = 0.453592
M_PER_INCH = 0.0254
CM_PER_INCH = 2.54

MALE_BMR_OFFSET = 5.0
FEMALE_BMR_OFFSET = -161.0


@dataclass(frozen=True, slots=True)
class IntensityAdjustment:
    deficit_kcal: float
    surplus_kcal: float
    label: str = ""


ACTIVITY_MULTIPLIERS: dict[ActivityLevel, float] = {
    ActivityLevel.sedentary: 1.2,
    ActivityLevel.lightly_active: 1.375,
    ActivityLevel.moderate: 1.55,
    ActivityLevel.very_active: 1.725,
    ActivityLevel.extremely_active: 1.9,
}


INTENSITY_ADJUSTMENTS: dict[GoalIntensity, IntensityAdjustment] = {
    GoalIntensity.slow: IntensityAdjustment(deficit_kcal=250.0, surplus_kcal=200.0, label="Slow & Steady"),
    GoalIntensity.moderate: IntensityAdjustment(deficit_kcal=500.0, surplus_kcal=400.0, label="Moderate"),
    GoalIntensity.aggressive: IntensityAdjustment(deficit_kcal=750.0, surplus_kcal=600.0, label="Aggressive"),
}


def get_activity_multiplier(level: ActivityLevel) -> float:
    return ACTIVITY_MULTIPLIERS[level]


def get_adjustment(goal: PrimaryGoal, intensity: GoalIntensity) -> float:
    """Signed kcal/day offset from maintenance for a goal + intensity."""
    table = INTENSITY_ADJUSTMENTS[intensity]
    if goal == PrimaryGoal.lose_weight:
        return -table.deficit_kcal
    if goal == PrimaryGoal.gain_weight:
        return table.surplus_kcal
    return 0.0
