"""Exception types raised across the engine."""

from __future__ import annotations


class TrendscopeError(Exception):
    """Base class for engine errors."""


class MalformedInputError(TrendscopeError):
    """A raw mention could not be normalized; the caller drops it."""


class InsufficientHistoryError(TrendscopeError):
    """Not enough baseline history; callers fall back to a synthetic baseline."""


class ScoringInconsistencyError(TrendscopeError):
    """A score component broke its cap or the components do not add up."""


class ClusteringError(TrendscopeError):
    """A label could not be compared."""


class AffinityBoundsViolationError(TrendscopeError):
    """An affinity score left its allowed range after clamping."""


class PersistenceError(TrendscopeError):
    """A store write failed after retries."""

    def __init__(self, message: str, *, record: str = "") -> None:
        super().__init__(message)
        self.record = record


class NlpClientError(TrendscopeError):
    """Raised when the entity-extraction service returns an unexpected response."""


class DecayJobError(TrendscopeError):
    """One or more affinity records could not be decayed."""

    def __init__(self, message: str, failed: list[str]) -> None:
        super().__init__(message)
        self.failed = failed
