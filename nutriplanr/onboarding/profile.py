"""Draft profile construction and step-scoped mutation."""

from __future__ import annotations

from typing import Any, Mapping

from nutriplanr.config import settings
from nutriplanr.onboarding.errors import FieldOwnershipError
from nutriplanr.onboarding.models import OnboardingStep, Profile

# Fields each step may write. welcome owns use_health_import through the path
# choice only; health_import fields are written by the reconciler.
STEP_FIELDS: dict[OnboardingStep, frozenset[str]] = {
    OnboardingStep.welcome: frozenset(),
    OnboardingStep.health_import: frozenset(),
    OnboardingStep.basic_info: frozenset({"height", "weight", "age", "sex", "activity_level"}),
    OnboardingStep.goals: frozenset({"primary_goal", "goal_intensity", "target_weight", "health_goals"}),
    OnboardingStep.dietary_preferences: frozenset({"dietary_restrictions", "cuisine_preferences"}),
    OnboardingStep.meal_timing: frozenset({"meal_timing"}),
    OnboardingStep.budget: frozenset({"weekly_budget"}),
    OnboardingStep.summary: frozenset(),
}


def default_profile() -> Profile:
    """Fresh draft seeded from configured defaults."""
    return Profile(
        height=settings.default_height_in,
        weight=settings.default_weight_lb,
        age=settings.default_age,
        weekly_budget=settings.default_weekly_budget,
    )


def owned_fields(step: OnboardingStep) -> frozenset[str]:
    return STEP_FIELDS.get(step, frozenset())


def apply_step_update(profile: Profile, step: OnboardingStep, updates: Mapping[str, Any]) -> list[str]:
    """Assign `updates` onto the draft on behalf of `step`.

    Ownership is checked for every key before anything is written. Values go
    through pydantic assignment validation; a meal_timing mapping is merged
    into the current timing. Returns the names of the written fields.
    """
    allowed = owned_fields(step)
    foreign = sorted(k for k in updates if k not in allowed)
    if foreign:
        raise FieldOwnershipError(
            f"Step '{step.value}' cannot write field(s): {', '.join(foreign)}"
        )

    # Validate the whole update on a copy so a bad value leaves the draft untouched.
    candidate = profile.model_copy(deep=True)
    for name, value in updates.items():
        if name == "meal_timing" and isinstance(value, Mapping):
            value = {**candidate.meal_timing.model_dump(), **value}
        setattr(candidate, name, value)

    for name in updates:
        setattr(profile, name, getattr(candidate, name))
    return list(updates)
