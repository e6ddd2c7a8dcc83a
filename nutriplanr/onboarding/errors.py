"""Error kinds raised by the onboarding core."""

from __future__ import annotations


class OnboardingError(Exception):
    """Base class for onboarding errors."""


class ValidationUnmet(OnboardingError):
    """Forward transition blocked because the step's data is incomplete."""

    def __init__(self, step: str, message: str = "") -> None:
        self.step = step
        super().__init__(message or f"Cannot proceed from '{step}': required information is missing")


class ExternalDataUnavailable(OnboardingError):
    """Provider has no data for a field. Treated as absence, never surfaced."""


class ExternalAccessDenied(OnboardingError):
    """Authorization refused or provider unavailable. Retryable by the user."""

    retryable = True


class PersistenceCorrupt(OnboardingError):
    """Stored app state could not be parsed."""


class InvalidTransition(OnboardingError):
    """Caller contract breach: transition not valid in the current state."""


class FieldOwnershipError(OnboardingError):
    """A step tried to write a profile field it does not own."""


class UnknownPreset(OnboardingError):
    """No fasting preset with the requested id."""

    def __init__(self, preset_id: str) -> None:
        self.preset_id = preset_id
        super().__init__(f"Unknown fasting preset: {preset_id}")
