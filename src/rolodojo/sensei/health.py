"""Inference endpoint health state."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class HealthState(Enum):
    """Lifecycle of an inference endpoint.

    UNKNOWN until the first check. A check that lists models moves to HEALTHY
    (a usable model exists) or DEGRADED_NO_MODEL (none of the wanted models
    are installed). Any failure moves to UNREACHABLE.
    """

    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    DEGRADED_NO_MODEL = "degraded_no_model"
    UNREACHABLE = "unreachable"


@dataclass(frozen=True)
class HealthStatus:
    """Snapshot of the active provider's health.

    Attributes:
        state: Current health state.
        provider: Name of the provider that was checked.
        configured_model: The model the user asked for.
        resolved_model: The model that will actually be used, if any.
        available_models: Models the endpoint reported.
        message: Human-readable detail for logs and the CLI.
        checked_at: Monotonic clock reading of the check, 0.0 if never.
            Ignored when comparing snapshots.
    """

    state: HealthState = HealthState.UNKNOWN
    provider: str = ""
    configured_model: str = ""
    resolved_model: str | None = None
    available_models: tuple[str, ...] = ()
    message: str = "Not checked yet"
    checked_at: float = field(default=0.0, compare=False)

    @property
    def is_healthy(self) -> bool:
        return self.state is HealthState.HEALTHY and self.resolved_model is not None


class ObservableValue(Generic[T]):
    """A value that notifies subscribers when it changes."""

    def __init__(self, initial: T) -> None:
        self._value = initial
        self._listeners: list[Callable[[T], None]] = []

    @property
    def value(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        """Store a new value and notify listeners if it differs."""
        changed = value != self._value
        self._value = value
        if not changed:
            return
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                logger.exception("Health listener failed")

    def subscribe(self, listener: Callable[[T], None]) -> Callable[[], None]:
        """Register a listener.

        Returns:
            A callable that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
