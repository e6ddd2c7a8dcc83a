"""Onboarding state machine.

One session per process. Steps run in a fixed order with one branch:
welcome → [health_import] → basic_info → goals → dietary_preferences →
meal_timing → budget → summary. The import path skips basic_info (the import
step auto-advances to goals); the manual path skips health_import. The path
is recorded on the session and back-navigation consults it.

Transitions are synchronous with respect to the caller and reject
re-entrant calls. The health import holds the transition guard only for its
merge continuation, so the user can navigate away while the provider
queries are in flight; a generation counter makes those late results
harmless.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from typing import Any, Iterator, Mapping

from nutriplanr.onboarding import metrics
from nutriplanr.onboarding.errors import (
    ExternalAccessDenied,
    InvalidTransition,
    UnknownPreset,
    ValidationUnmet,
)
from nutriplanr.onboarding.health import HealthDataProvider, HealthDataReconciler
from nutriplanr.onboarding.models import (
    AppState,
    FinalizedProfile,
    HealthImportResult,
    ImportPath,
    OnboardingStep,
    Profile,
    SessionSnapshot,
)
from nutriplanr.onboarding.presets import apply_preset, get_fasting_preset
from nutriplanr.onboarding.profile import apply_step_update
from nutriplanr.onboarding.store import AppStateStore

logger = logging.getLogger(__name__)

_AFTER_WELCOME = [
    OnboardingStep.goals,
    OnboardingStep.dietary_preferences,
    OnboardingStep.meal_timing,
    OnboardingStep.budget,
    OnboardingStep.summary,
]

PATHS: dict[ImportPath, list[OnboardingStep]] = {
    ImportPath.health_import: [OnboardingStep.welcome, OnboardingStep.health_import, *_AFTER_WELCOME],
    ImportPath.manual: [OnboardingStep.welcome, OnboardingStep.basic_info, *_AFTER_WELCOME],
}

# Steps that leave only through their own trigger, never through next().
_NO_GENERIC_NEXT = {OnboardingStep.welcome, OnboardingStep.health_import, OnboardingStep.summary}


class OnboardingSession:
    def __init__(
        self,
        store: AppStateStore,
        profile: Profile | None = None,
        reconciler: HealthDataReconciler | None = None,
    ) -> None:
        self.session_id = uuid.uuid4().hex
        self.step = OnboardingStep.welcome
        self.path: ImportPath | None = None
        self.profile = profile if profile is not None else Profile()
        self.last_import: HealthImportResult | None = None
        self.finalized: FinalizedProfile | None = None
        self.closed = False
        self._store = store
        self._reconciler = reconciler or HealthDataReconciler()
        self._generation = 0
        self._in_transition = False
        self._resume(store.state)

    def _resume(self, state: AppState) -> None:
        """Pick up where the persisted app state left off.

        A completed onboarding stays completed: the stored finalized profile
        is adopted and no transition is available. Otherwise the session
        resumes at the persisted step. The draft is not persisted, so a
        session resumed past the import step runs on the manual path, where
        basic_info can be revisited.
        """
        if state.onboarding_complete and state.finalized_profile is not None:
            self.finalized = state.finalized_profile
            self.profile = Profile.model_validate(
                self.finalized.model_dump(include=set(Profile.model_fields))
            )
            self.path = ImportPath.health_import if self.finalized.use_health_import else ImportPath.manual
            self.step = OnboardingStep.summary
            return
        if state.current_step == OnboardingStep.welcome:
            return
        if state.current_step == OnboardingStep.health_import:
            self.path = ImportPath.health_import
        else:
            self.path = ImportPath.manual
        self.profile.use_health_import = self.path == ImportPath.health_import
        self.step = state.current_step
        logger.info("Resuming onboarding at %s", self.step.value)

    # ------------------------------------------------------------------
    # Guards & queries
    # ------------------------------------------------------------------

    @contextmanager
    def _transition(self, name: str) -> Iterator[None]:
        if self._in_transition:
            raise InvalidTransition(f"'{name}' called while another transition is running")
        if self.closed:
            raise InvalidTransition(f"'{name}' called on a closed onboarding session")
        self._in_transition = True
        try:
            yield
        finally:
            self._in_transition = False

    def _require_open(self, name: str) -> None:
        if self.finalized is not None:
            raise InvalidTransition(f"'{name}' called after onboarding was completed")

    @property
    def completed(self) -> bool:
        return self.finalized is not None

    @property
    def active_path(self) -> list[OnboardingStep]:
        if self.path is None:
            return [OnboardingStep.welcome]
        return PATHS[self.path]

    @property
    def can_proceed(self) -> bool:
        if self.step == OnboardingStep.basic_info:
            return self.profile.has_basic_info
        if self.step == OnboardingStep.goals:
            return self.profile.has_goals
        return True

    @property
    def can_go_back(self) -> bool:
        return self.step != OnboardingStep.welcome and not self.completed

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.session_id,
            step=self.step,
            step_index=self.step.index,
            path=self.path,
            active_path=self.active_path,
            can_proceed=self.can_proceed,
            can_go_back=self.can_go_back,
            completed=self.completed,
            profile=self.profile.model_copy(deep=True),
            metrics=metrics.summarize(self.profile) if self.profile.has_basic_info else None,
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def choose_path(self, path: ImportPath) -> OnboardingStep:
        """Welcome-step choice: import health data or enter it manually."""
        with self._transition("choose_path"):
            self._require_open("choose_path")
            if self.step != OnboardingStep.welcome:
                raise InvalidTransition(f"Path can only be chosen at welcome, not '{self.step.value}'")
            self.path = path
            self.profile.use_health_import = path == ImportPath.health_import
            self.step = PATHS[path][1]
            return self.step

    def next(self) -> OnboardingStep:
        with self._transition("next"):
            self._require_open("next")
            if self.step in _NO_GENERIC_NEXT:
                raise InvalidTransition(f"'next' is not available at '{self.step.value}'")
            if not self.can_proceed:
                raise ValidationUnmet(self.step.value)
            steps = self.active_path
            self.step = steps[steps.index(self.step) + 1]
            return self.step

    def previous(self) -> OnboardingStep:
        """Step back along the recorded path. No-op at welcome."""
        with self._transition("previous"):
            self._require_open("previous")
            if self.step == OnboardingStep.welcome:
                return self.step
            if self.step == OnboardingStep.health_import:
                # Abandoning the import: results still in flight must not land.
                self._generation += 1
            steps = self.active_path
            self.step = steps[steps.index(self.step) - 1]
            return self.step

    async def run_health_import(self, provider: HealthDataProvider) -> HealthImportResult | None:
        """Fetch and merge external health data, then auto-advance to goals.

        Returns None when the session moved on while the queries were in
        flight; the late result is dropped. On ExternalAccessDenied the draft
        is untouched, the session falls back to manual entry at basic_info,
        and the error propagates for the UI to show.
        """
        self._require_open("run_health_import")
        if self.closed or self.step != OnboardingStep.health_import:
            raise InvalidTransition(f"Health import is not available at '{self.step.value}'")
        if self._in_transition:
            raise InvalidTransition("'run_health_import' called while another transition is running")

        token = self._generation
        try:
            result = await self._reconciler.fetch(provider)
        except ExternalAccessDenied:
            if self._superseded(token):
                logger.info("Health import denied after the session moved on; ignoring")
                return None
            with self._transition("run_health_import"):
                logger.info("Health import denied, falling back to manual entry")
                self.path = ImportPath.manual
                self.profile.use_health_import = False
                self.step = OnboardingStep.basic_info
            raise

        if self._superseded(token):
            logger.info("Discarding health import for superseded session %s", self.session_id)
            return None

        with self._transition("run_health_import"):
            self._reconciler.merge(self.profile, result)
            self.last_import = result
            self.step = OnboardingStep.goals
        return result

    def _superseded(self, token: int) -> bool:
        return self.closed or token != self._generation or self.step != OnboardingStep.health_import

    def update_profile(self, updates: Mapping[str, Any]) -> list[str]:
        """Write fields owned by the current step."""
        with self._transition("update_profile"):
            self._require_open("update_profile")
            return apply_step_update(self.profile, self.step, updates)

    def apply_fasting_preset(self, preset_id: str) -> bool:
        """Bulk-overwrite meal timing from a fasting preset (meal_timing step only)."""
        with self._transition("apply_fasting_preset"):
            self._require_open("apply_fasting_preset")
            if self.step != OnboardingStep.meal_timing:
                raise InvalidTransition(f"Fasting presets apply at meal_timing, not '{self.step.value}'")
            preset = get_fasting_preset(preset_id)
            if preset is None:
                raise UnknownPreset(preset_id)
            return apply_preset(self.profile.meal_timing, preset)

    async def complete(self) -> FinalizedProfile:
        """Finalize the draft and mark onboarding complete. Idempotent."""
        if self.finalized is not None:
            return self.finalized
        with self._transition("complete"):
            if self.step != OnboardingStep.summary:
                raise InvalidTransition(f"'complete' is only valid at summary, not '{self.step.value}'")
            if not self.profile.has_basic_info:
                raise ValidationUnmet(self.step.value, "Profile is missing height, weight or age")
            finalized = FinalizedProfile.from_draft(self.profile, self.last_import)
            await self._store.finalize(finalized)
            self.finalized = finalized
        logger.info("Onboarding complete, finalized profile %s", finalized.id)
        return finalized

    def close(self) -> None:
        """Supersede this session; pending imports are dropped."""
        self._generation += 1
        self.closed = True
