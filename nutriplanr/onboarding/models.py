"""Onboarding data model — Pydantic v2 models."""

from __future__ import annotations

import math
import uuid
from datetime import datetime, time, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class BiologicalSex(str, Enum):
    male = "male"
    female = "female"
    unspecified = "unspecified"


class ActivityLevel(str, Enum):
    sedentary = "sedentary"
    lightly_active = "lightly_active"
    moderate = "moderate"
    very_active = "very_active"
    extremely_active = "extremely_active"


class PrimaryGoal(str, Enum):
    lose_weight = "lose_weight"
    gain_weight = "gain_weight"
    maintain = "maintain"
    improve_health = "improve_health"


class GoalIntensity(str, Enum):
    slow = "slow"
    moderate = "moderate"
    aggressive = "aggressive"


class HealthGoal(str, Enum):
    energy_levels = "energy_levels"
    blood_lipids = "blood_lipids"
    sleep_quality = "sleep_quality"
    meal_timing = "meal_timing"
    blood_sugar = "blood_sugar"
    inflammation = "inflammation"
    digestion = "digestion"
    mental_clarity = "mental_clarity"


class DietaryRestriction(str, Enum):
    vegan = "vegan"
    vegetarian = "vegetarian"
    gluten_free = "gluten_free"
    dairy_free = "dairy_free"
    nut_free = "nut_free"
    halal = "halal"
    kosher = "kosher"
    low_carb = "low_carb"
    low_fat = "low_fat"
    low_sodium = "low_sodium"


class CuisineType(str, Enum):
    american = "american"
    mediterranean = "mediterranean"
    mexican = "mexican"
    italian = "italian"
    asian = "asian"
    indian = "indian"
    middle_eastern = "middle_eastern"
    african = "african"
    european = "european"
    latin_american = "latin_american"


class OnboardingStep(str, Enum):
    welcome = "welcome"
    health_import = "health_import"
    basic_info = "basic_info"
    goals = "goals"
    dietary_preferences = "dietary_preferences"
    meal_timing = "meal_timing"
    budget = "budget"
    summary = "summary"

    @property
    def index(self) -> int:
        return list(OnboardingStep).index(self)


class ImportPath(str, Enum):
    health_import = "health_import"
    manual = "manual"


# ---------------------------------------------------------------------------
# Meal timing
# ---------------------------------------------------------------------------


class MealSlot(BaseModel):
    enabled: bool = True
    time_of_day: time | None = None

    model_config = ConfigDict(validate_assignment=True)

    @model_validator(mode="after")
    def enabled_needs_time(self) -> MealSlot:
        if self.enabled and self.time_of_day is None:
            raise ValueError("an enabled meal slot needs a time of day")
        return self


class MealTiming(BaseModel):
    breakfast: MealSlot = Field(default_factory=lambda: MealSlot(time_of_day=time(8, 0)))
    lunch: MealSlot = Field(default_factory=lambda: MealSlot(time_of_day=time(12, 0)))
    dinner: MealSlot = Field(default_factory=lambda: MealSlot(time_of_day=time(18, 0)))
    snack: MealSlot = Field(default_factory=lambda: MealSlot(time_of_day=time(15, 0)))

    intermittent_fasting: bool = False
    fasting_start: time = time(20, 0)
    fasting_end: time = time(8, 0)
    no_food_after: time = time(20, 0)

    model_config = ConfigDict(validate_assignment=True)


class FinalizedMealSlot(MealSlot):
    model_config = ConfigDict(frozen=True)


class FinalizedMealTiming(MealTiming):
    """Meal timing as carried by a finalized profile. Read-only all the way down."""

    breakfast: FinalizedMealSlot
    lunch: FinalizedMealSlot
    dinner: FinalizedMealSlot
    snack: FinalizedMealSlot

    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


def _check_target_weight(value: float | None) -> float | None:
    if value is not None and (not math.isfinite(value) or value <= 0):
        raise ValueError("target weight must be a finite positive number")
    return value


class Profile(BaseModel):
    """Draft profile collected during onboarding. Imperial units."""

    height: float = Field(default=72.0, allow_inf_nan=False)  # inches
    weight: float = Field(default=180.0, allow_inf_nan=False)  # pounds
    age: int = 30
    sex: BiologicalSex = BiologicalSex.unspecified
    activity_level: ActivityLevel = ActivityLevel.moderate

    primary_goal: PrimaryGoal = PrimaryGoal.maintain
    goal_intensity: GoalIntensity = GoalIntensity.moderate
    target_weight: float | None = None  # pounds
    health_goals: set[HealthGoal] = Field(default_factory=set)

    dietary_restrictions: set[DietaryRestriction] = Field(default_factory=set)
    cuisine_preferences: set[CuisineType] = Field(default_factory=set)
    weekly_budget: float = Field(default=100.0, ge=0, allow_inf_nan=False)
    meal_timing: MealTiming = Field(default_factory=MealTiming)

    use_health_import: bool = False

    model_config = ConfigDict(validate_assignment=True)

    @field_validator("target_weight")
    @classmethod
    def check_target_weight(cls, value: float | None) -> float | None:
        return _check_target_weight(value)

    @property
    def has_basic_info(self) -> bool:
        return self.height > 0 and self.weight > 0 and self.age > 0

    @property
    def has_goals(self) -> bool:
        return self.primary_goal != PrimaryGoal.maintain or (
            self.target_weight is not None and self.target_weight > 0
        )


class HealthImportResult(BaseModel):
    """Settled outcome of one external health-data import. None = absent."""

    height: float | None = None
    weight: float | None = None
    age: int | None = None
    sex: BiologicalSex | None = None
    synced_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def imported_fields(self) -> list[str]:
        return [name for name in ("height", "weight", "age", "sex") if getattr(self, name) is not None]


class FinalizedProfile(BaseModel):
    """Immutable snapshot produced once, when onboarding completes."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    height: float = Field(gt=0, allow_inf_nan=False)
    weight: float = Field(gt=0, allow_inf_nan=False)
    age: int = Field(gt=0)
    sex: BiologicalSex
    activity_level: ActivityLevel

    primary_goal: PrimaryGoal
    goal_intensity: GoalIntensity
    target_weight: float | None = None
    health_goals: frozenset[HealthGoal] = frozenset()

    dietary_restrictions: frozenset[DietaryRestriction] = frozenset()
    cuisine_preferences: frozenset[CuisineType] = frozenset()
    weekly_budget: float = Field(ge=0, allow_inf_nan=False)
    meal_timing: FinalizedMealTiming

    use_health_import: bool = False
    health_data: HealthImportResult | None = None

    model_config = ConfigDict(frozen=True)

    @field_validator("target_weight")
    @classmethod
    def check_target_weight(cls, value: float | None) -> float | None:
        return _check_target_weight(value)

    @classmethod
    def from_draft(cls, draft: Profile, health_data: HealthImportResult | None = None) -> FinalizedProfile:
        return cls.model_validate({**draft.model_dump(), "health_data": health_data})


# ---------------------------------------------------------------------------
# App state & read-only views
# ---------------------------------------------------------------------------


class AppState(BaseModel):
    """Process-wide lifecycle state, persisted as one JSON document."""

    schema_version: int = 1
    onboarding_complete: bool = False
    current_step: OnboardingStep = OnboardingStep.welcome
    finalized_profile: FinalizedProfile | None = None


class MetricSummary(BaseModel):
    bmi: float
    bmr: float
    maintenance_calories: float
    target_calories: float
    calorie_adjustment: float
    height_display: str


class SessionSnapshot(BaseModel):
    session_id: str
    step: OnboardingStep
    step_index: int
    path: ImportPath | None = None
    active_path: list[OnboardingStep] = Field(default_factory=list)
    can_proceed: bool
    can_go_back: bool
    completed: bool = False
    profile: Profile
    metrics: MetricSummary | None = None
