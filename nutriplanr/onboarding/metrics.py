"""Pure stateless metric functions — math only, never raises for valid profiles.

Every function reads height (in), weight (lb), age, sex, activity level,
goal and intensity off the profile it is given. Draft and finalized profiles
both go through the same functions.
"""

from __future__ import annotations

from typing import Protocol

from nutriplanr.onboarding.energy_config import (
    CM_PER_INCH,
    FEMALE_BMR_OFFSET,
    KG_PER_LB,
    MALE_BMR_OFFSET,
    M_PER_INCH,
    get_activity_multiplier,
    get_adjustment,
)
from nutriplanr.onboarding.models import (
    ActivityLevel,
    BiologicalSex,
    GoalIntensity,
    MetricSummary,
    PrimaryGoal,
)


class MetricInputs(Protocol):
    height: float
    weight: float
    age: int
    sex: BiologicalSex
    activity_level: ActivityLevel
    primary_goal: PrimaryGoal
    goal_intensity: GoalIntensity


def bmi(profile: MetricInputs) -> float:
    """Body mass index from imperial height/weight."""
    height_m = profile.height * M_PER_INCH
    weight_kg = profile.weight * KG_PER_LB
    return weight_kg / (height_m * height_m)


def _bmr_mifflin_st_jeor(weight_kg: float, height_cm: float, age_years: int, sex: BiologicalSex) -> float:
    """Mifflin-St Jeor BMR formula. Returns kcal/day."""
    base = 10.0 * weight_kg + 6.25 * height_cm - 5.0 * age_years
    male = base + MALE_BMR_OFFSET
    female = base + FEMALE_BMR_OFFSET
    if sex == BiologicalSex.male:
        return male
    if sex == BiologicalSex.female:
        return female
    # Unspecified: mean of both formulas
    return (male + female) / 2


def bmr(profile: MetricInputs) -> float:
    return _bmr_mifflin_st_jeor(
        profile.weight * KG_PER_LB,
        profile.height * CM_PER_INCH,
        profile.age,
        profile.sex,
    )


def maintenance_calories(profile: MetricInputs) -> float:
    """BMR × activity multiplier."""
    return bmr(profile) * get_activity_multiplier(profile.activity_level)


def calorie_adjustment(profile: MetricInputs) -> float:
    """Signed deficit/surplus applied to maintenance. 0 for maintain/improve_health."""
    return get_adjustment(profile.primary_goal, profile.goal_intensity)


def target_calories(profile: MetricInputs) -> float:
    adjustment = calorie_adjustment(profile)
    maintenance = maintenance_calories(profile)
    return maintenance + adjustment


def format_height(inches: float) -> str:
    """Feet/inches display, e.g. 72 -> 6'0\"."""
    feet = int(inches // 12)
    rest = int(inches % 12)
    return f"{feet}'{rest}\""


def summarize(profile: MetricInputs) -> MetricSummary:
    """All display metrics for a profile (goals preview, summary step)."""
    return MetricSummary(
        bmi=bmi(profile),
        bmr=bmr(profile),
        maintenance_calories=maintenance_calories(profile),
        target_calories=target_calories(profile),
        calorie_adjustment=calorie_adjustment(profile),
        height_display=format_height(profile.height),
    )
