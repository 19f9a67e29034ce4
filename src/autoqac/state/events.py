from __future__ import annotations

from dataclasses import dataclass

from autoqac.models import CleaningStats, ItemStatus, RunStatus


@dataclass(slots=True, frozen=True)
class ConfigurationChanged:
    is_fully_configured: bool


@dataclass(slots=True, frozen=True)
class ProgressUpdated:
    current: int
    total: int
    item: str | None


@dataclass(slots=True, frozen=True)
class CleaningStarted:
    total: int


@dataclass(slots=True, frozen=True)
class CleaningFinished:
    aggregate: CleaningStats
    status: RunStatus
    partial: bool
    cleaned: int
    failed: int
    skipped: int


@dataclass(slots=True, frozen=True)
class PluginProcessed:
    item: str
    status: ItemStatus
    message: str
    duration_seconds: float | None = None


@dataclass(slots=True, frozen=True)
class OperationChanged:
    operation: str


@dataclass(slots=True, frozen=True)
class SettingsChanged:
    pass


@dataclass(slots=True, frozen=True)
class StateReset:
    pass


StateChangeEvent = (
    ConfigurationChanged
    | ProgressUpdated
    | CleaningStarted
    | CleaningFinished
    | PluginProcessed
    | OperationChanged
    | SettingsChanged
    | StateReset
)


@dataclass(slots=True, frozen=True)
class SubscriberLagged:
    """Delivered by a stream in place of events it had to discard."""

    missed: int
