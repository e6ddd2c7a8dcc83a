"""Tests for the onboarding state machine."""

from __future__ import annotations

import asyncio

import pytest

from nutriplanr.onboarding.errors import (
    ExternalAccessDenied,
    InvalidTransition,
    UnknownPreset,
    ValidationUnmet,
)
from nutriplanr.onboarding.models import (
    AppState,
    BiologicalSex,
    ImportPath,
    OnboardingStep,
    PrimaryGoal,
)
from nutriplanr.onboarding.state_machine import PATHS, OnboardingSession
from nutriplanr.onboarding.store import AppStateStore
from tests.conftest import FakeHealthProvider, make_profile

S = OnboardingStep


async def _to_summary(session: OnboardingSession) -> None:
    session.choose_path(ImportPath.manual)
    session.next()  # basic_info -> goals
    session.update_profile({"primary_goal": "lose_weight"})
    session.next()  # goals -> dietary_preferences
    session.next()  # -> meal_timing
    session.next()  # -> budget
    session.next()  # -> summary
    assert session.step == S.summary


# ---------------------------------------------------------------------------
# Paths & forward transitions
# ---------------------------------------------------------------------------

class TestPaths:
    def test_initial_state(self, onboarding):
        assert onboarding.step == S.welcome
        assert onboarding.path is None
        assert onboarding.can_go_back is False

    def test_manual_path_skips_import(self):
        assert S.health_import not in PATHS[ImportPath.manual]
        assert PATHS[ImportPath.manual][:3] == [S.welcome, S.basic_info, S.goals]

    def test_import_path_skips_basic_info(self):
        assert PATHS[ImportPath.health_import][:3] == [S.welcome, S.health_import, S.goals]

    def test_choose_manual(self, onboarding):
        assert onboarding.choose_path(ImportPath.manual) == S.basic_info
        assert onboarding.profile.use_health_import is False

    def test_choose_import(self, onboarding):
        assert onboarding.choose_path(ImportPath.health_import) == S.health_import
        assert onboarding.profile.use_health_import is True

    def test_choose_path_only_at_welcome(self, onboarding):
        onboarding.choose_path(ImportPath.manual)
        with pytest.raises(InvalidTransition):
            onboarding.choose_path(ImportPath.health_import)


class TestNext:
    def test_next_not_available_at_welcome(self, onboarding):
        with pytest.raises(InvalidTransition):
            onboarding.next()

    def test_next_not_available_at_health_import(self, onboarding):
        onboarding.choose_path(ImportPath.health_import)
        with pytest.raises(InvalidTransition):
            onboarding.next()

    def test_basic_info_gate(self, store):
        session = OnboardingSession(store, profile=make_profile(weight=0))
        session.choose_path(ImportPath.manual)
        assert session.can_proceed is False
        with pytest.raises(ValidationUnmet):
            session.next()
        assert session.step == S.basic_info
        session.update_profile({"weight": 150})
        assert session.next() == S.goals

    def test_goals_gate(self, onboarding):
        onboarding.choose_path(ImportPath.manual)
        onboarding.next()
        assert onboarding.profile.primary_goal == PrimaryGoal.maintain
        with pytest.raises(ValidationUnmet):
            onboarding.next()
        onboarding.update_profile({"target_weight": 175.0})
        assert onboarding.next() == S.dietary_preferences

    @pytest.mark.asyncio
    async def test_optional_steps_never_block(self, onboarding):
        await _to_summary(onboarding)
        assert onboarding.profile.dietary_restrictions == set()

    @pytest.mark.asyncio
    async def test_next_not_available_at_summary(self, onboarding):
        await _to_summary(onboarding)
        with pytest.raises(InvalidTransition):
            onboarding.next()


# ---------------------------------------------------------------------------
# Back-navigation
# ---------------------------------------------------------------------------

class TestPrevious:
    def test_noop_at_welcome(self, onboarding):
        assert onboarding.previous() == S.welcome

    def test_goals_back_to_basic_info_on_manual_path(self, onboarding):
        onboarding.choose_path(ImportPath.manual)
        onboarding.next()
        assert onboarding.previous() == S.basic_info
        assert onboarding.previous() == S.welcome

    @pytest.mark.asyncio
    async def test_goals_back_to_health_import_on_import_path(self, onboarding):
        onboarding.choose_path(ImportPath.health_import)
        await onboarding.run_health_import(FakeHealthProvider(weight=150.0))
        assert onboarding.step == S.goals
        assert onboarding.previous() == S.health_import
        assert onboarding.previous() == S.welcome

    @pytest.mark.asyncio
    async def test_summary_walks_back_to_budget(self, onboarding):
        await _to_summary(onboarding)
        assert onboarding.previous() == S.budget
        assert onboarding.previous() == S.meal_timing


# ---------------------------------------------------------------------------
# Health import step
# ---------------------------------------------------------------------------

class TestHealthImport:
    @pytest.mark.asyncio
    async def test_auto_advances_to_goals(self, onboarding):
        onboarding.choose_path(ImportPath.health_import)
        provider = FakeHealthProvider(height=None, weight=143.3, age=None, sex=BiologicalSex.female)
        result = await onboarding.run_health_import(provider)
        assert result is not None
        assert onboarding.step == S.goals
        assert onboarding.profile.weight == 143.3
        assert onboarding.profile.sex == BiologicalSex.female
        assert onboarding.profile.height == 72.0
        assert onboarding.profile.age == 30
        assert onboarding.last_import is result

    @pytest.mark.asyncio
    async def test_only_at_health_import_step(self, onboarding):
        with pytest.raises(InvalidTransition):
            await onboarding.run_health_import(FakeHealthProvider())

    @pytest.mark.asyncio
    async def test_denied_falls_back_to_manual(self, onboarding):
        onboarding.choose_path(ImportPath.health_import)
        before = onboarding.profile.model_copy(deep=True)
        with pytest.raises(ExternalAccessDenied):
            await onboarding.run_health_import(FakeHealthProvider(weight=100.0, authorized=False, grant=False))
        assert onboarding.step == S.basic_info
        assert onboarding.path == ImportPath.manual
        assert onboarding.profile.use_health_import is False
        assert onboarding.profile.model_dump(exclude={"use_health_import"}) == before.model_dump(
            exclude={"use_health_import"}
        )
        onboarding.next()
        assert onboarding.previous() == S.basic_info

    @pytest.mark.asyncio
    async def test_back_navigation_discards_in_flight_results(self, onboarding):
        onboarding.choose_path(ImportPath.health_import)
        gate = asyncio.Event()
        provider = FakeHealthProvider(height=50.0, weight=99.0, age=70, sex="male", gate=gate)
        task = asyncio.create_task(onboarding.run_health_import(provider))
        await asyncio.sleep(0.01)

        assert onboarding.previous() == S.welcome
        gate.set()
        assert await task is None
        assert onboarding.step == S.welcome
        assert onboarding.profile.weight == 180.0
        assert onboarding.profile.height == 72.0

    @pytest.mark.asyncio
    async def test_reentering_step_discards_older_import(self, onboarding):
        onboarding.choose_path(ImportPath.health_import)
        gate = asyncio.Event()
        stale = asyncio.create_task(
            onboarding.run_health_import(FakeHealthProvider(weight=99.0, gate=gate))
        )
        await asyncio.sleep(0.01)
        onboarding.previous()
        onboarding.choose_path(ImportPath.health_import)
        await onboarding.run_health_import(FakeHealthProvider(weight=155.0))
        gate.set()
        assert await stale is None
        assert onboarding.profile.weight == 155.0

    @pytest.mark.asyncio
    async def test_closed_session_discards_results(self, onboarding):
        onboarding.choose_path(ImportPath.health_import)
        gate = asyncio.Event()
        task = asyncio.create_task(
            onboarding.run_health_import(FakeHealthProvider(weight=99.0, gate=gate))
        )
        await asyncio.sleep(0.01)
        onboarding.close()
        gate.set()
        assert await task is None
        assert onboarding.profile.weight == 180.0


# ---------------------------------------------------------------------------
# Step-scoped mutation
# ---------------------------------------------------------------------------

class TestStepMutation:
    def test_fasting_preset_only_at_meal_timing(self, onboarding):
        with pytest.raises(InvalidTransition):
            onboarding.apply_fasting_preset("16:8")

    @pytest.mark.asyncio
    async def test_fasting_preset_at_meal_timing(self, onboarding):
        await _to_summary(onboarding)
        onboarding.previous()
        onboarding.previous()
        assert onboarding.step == S.meal_timing
        assert onboarding.apply_fasting_preset("16:8") is True
        assert onboarding.profile.meal_timing.intermittent_fasting is True
        with pytest.raises(UnknownPreset):
            onboarding.apply_fasting_preset("nope")


# ---------------------------------------------------------------------------
# Completion
# ---------------------------------------------------------------------------

class TestComplete:
    @pytest.mark.asyncio
    async def test_only_from_summary(self, onboarding):
        with pytest.raises(InvalidTransition):
            await onboarding.complete()

    @pytest.mark.asyncio
    async def test_complete_is_idempotent(self, onboarding, store):
        await _to_summary(onboarding)
        first = await onboarding.complete()
        second = await onboarding.complete()
        assert first is second
        assert store.state.onboarding_complete is True
        assert store.state.finalized_profile == first
        assert first.primary_goal == PrimaryGoal.lose_weight

    @pytest.mark.asyncio
    async def test_complete_writes_once(self, onboarding, store, blob_store):
        await _to_summary(onboarding)
        await onboarding.complete()
        stored = blob_store.blobs["app_state"]
        await onboarding.complete()
        assert blob_store.blobs["app_state"] is stored

    @pytest.mark.asyncio
    async def test_transitions_rejected_after_completion(self, onboarding):
        await _to_summary(onboarding)
        await onboarding.complete()
        assert onboarding.completed
        with pytest.raises(InvalidTransition):
            onboarding.previous()
        with pytest.raises(InvalidTransition):
            onboarding.update_profile({"weekly_budget": 5.0})

    @pytest.mark.asyncio
    async def test_import_snapshot_kept_on_finalized_profile(self, onboarding):
        onboarding.choose_path(ImportPath.health_import)
        await onboarding.run_health_import(FakeHealthProvider(age=45))
        onboarding.update_profile({"primary_goal": "improve_health"})
        for _ in range(4):
            onboarding.next()
        finalized = await onboarding.complete()
        assert finalized.use_health_import is True
        assert finalized.health_data is not None
        assert finalized.health_data.age == 45


# ---------------------------------------------------------------------------
# Re-entrancy
# ---------------------------------------------------------------------------

class _BlockingStore:
    """AppStateStore double whose writes wait on an event."""

    def __init__(self):
        self.release = asyncio.Event()
        self.state = AppState()

    async def finalize(self, profile):
        await self.release.wait()


class TestReentrancy:
    @pytest.mark.asyncio
    async def test_transition_during_completion_rejected(self):
        store = _BlockingStore()
        session = OnboardingSession(store, profile=make_profile())  # type: ignore[arg-type]
        await _to_summary(session)
        task = asyncio.create_task(session.complete())
        await asyncio.sleep(0.01)
        with pytest.raises(InvalidTransition):
            session.previous()
        with pytest.raises(InvalidTransition):
            await session.complete()
        store.release.set()
        finalized = await task
        assert session.finalized is finalized


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------

class TestSnapshot:
    def test_snapshot_reports_metrics(self, onboarding):
        snap = onboarding.snapshot()
        assert snap.step == S.welcome
        assert snap.step_index == 0
        assert snap.metrics is not None
        assert snap.metrics.height_display == "6'0\""

    def test_snapshot_without_basic_info_has_no_metrics(self, store):
        snap = OnboardingSession(store, profile=make_profile(height=0)).snapshot()
        assert snap.metrics is None

    def test_snapshot_is_a_copy(self, onboarding):
        snap = onboarding.snapshot()
        snap.profile.weight = 1.0
        assert onboarding.profile.weight == 180.0


# ---------------------------------------------------------------------------
# Resuming from persisted state
# ---------------------------------------------------------------------------

class _FlakyBlobStore:
    """Blob store whose first `failures` writes raise."""

    def __init__(self, failures: int = 1):
        self.failures = failures
        self.blobs: dict[str, bytes] = {}
        self.writes = 0

    async def get(self, key):
        return self.blobs.get(key)

    async def set(self, key, value):
        if self.failures:
            self.failures -= 1
            raise ConnectionError("blob store unreachable")
        self.writes += 1
        self.blobs[key] = value


class TestResume:
    @pytest.mark.asyncio
    async def test_completed_store_is_not_finalized_again(self, onboarding, blob_store):
        await _to_summary(onboarding)
        first = await onboarding.complete()

        reloaded = AppStateStore(blob_store)
        await reloaded.load()
        session = OnboardingSession(reloaded, profile=make_profile())

        assert session.completed
        assert session.step == S.summary
        assert session.profile.primary_goal == PrimaryGoal.lose_weight
        with pytest.raises(InvalidTransition):
            session.previous()
        with pytest.raises(InvalidTransition):
            session.choose_path(ImportPath.manual)

        again = await session.complete()
        assert again.id == first.id
        assert reloaded.state.finalized_profile.id == first.id

    @pytest.mark.asyncio
    async def test_resumes_at_persisted_step(self, store):
        await store.update_onboarding_step(S.meal_timing)
        session = OnboardingSession(store, profile=make_profile())
        assert session.step == S.meal_timing
        assert session.path == ImportPath.manual
        assert not session.completed
        session.previous()
        session.previous()
        assert session.previous() == S.basic_info

    @pytest.mark.asyncio
    async def test_resumes_on_import_step(self, store):
        await store.update_onboarding_step(S.health_import)
        session = OnboardingSession(store, profile=make_profile())
        assert session.path == ImportPath.health_import
        await session.run_health_import(FakeHealthProvider(weight=160.0))
        assert session.step == S.goals

    @pytest.mark.asyncio
    async def test_failed_write_leaves_session_open(self):
        blobs = _FlakyBlobStore(failures=1)
        store = AppStateStore(blobs)
        session = OnboardingSession(store, profile=make_profile())
        await _to_summary(session)

        with pytest.raises(ConnectionError):
            await session.complete()
        assert not session.completed
        assert store.state.finalized_profile is None
        assert store.state.onboarding_complete is False

        finalized = await session.complete()
        assert blobs.writes == 1
        assert store.state.finalized_profile.id == finalized.id
        assert store.state.onboarding_complete is True


class TestNonFiniteImport:
    @pytest.mark.asyncio
    async def test_nan_and_inf_leave_basic_info_intact(self, onboarding):
        onboarding.choose_path(ImportPath.health_import)
        await onboarding.run_health_import(
            FakeHealthProvider(height=float("nan"), weight=float("inf"), age=38)
        )
        assert onboarding.profile.height == 72.0
        assert onboarding.profile.weight == 180.0
        assert onboarding.profile.age == 38
        assert onboarding.profile.has_basic_info

        onboarding.update_profile({"primary_goal": "lose_weight"})
        for _ in range(4):
            onboarding.next()
        finalized = await onboarding.complete()
        assert finalized.height == 72.0
