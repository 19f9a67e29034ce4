from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

# xEdit locks its data files; a second instance corrupts the first one's session.
MAX_CONCURRENT_PROCESSES = 1

KNOWN_GAME_MODES = ("FO3", "FNV", "FO4", "SSE", "TTW")


class ConfigurationError(ValueError):
    """Raised before a run starts when its settings cannot be used."""


class ItemStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    CLEANED = "cleaned"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self not in {ItemStatus.PENDING, ItemStatus.RUNNING}


class RunStatus(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    CANCELLING = "cancelling"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def active(self) -> bool:
        return self in {RunStatus.RUNNING, RunStatus.CANCELLING}


class FailureReason(StrEnum):
    TIMEOUT = "timeout"
    MISSING_MASTERS = "missing_masters"
    EMPTY_PLUGIN = "empty_plugin"
    LAUNCHER_FAILURE = "launcher_failure"
    UNKNOWN_EXIT = "unknown_exit"
    CANCELLED = "cancelled"


@dataclass(slots=True, frozen=True)
class CleaningStats:
    removed: int = 0
    undeleted: int = 0
    navmesh_skipped: int = 0
    partial_forms: int = 0

    def __add__(self, other: CleaningStats) -> CleaningStats:
        return CleaningStats(
            removed=self.removed + other.removed,
            undeleted=self.undeleted + other.undeleted,
            navmesh_skipped=self.navmesh_skipped + other.navmesh_skipped,
            partial_forms=self.partial_forms + other.partial_forms,
        )

    @property
    def total(self) -> int:
        return self.removed + self.undeleted + self.navmesh_skipped + self.partial_forms

    @property
    def has_changes(self) -> bool:
        return self.total > 0

    def summary(self) -> str:
        parts: list[str] = []
        if self.undeleted:
            parts.append(f"{self.undeleted} UDRs")
        if self.removed:
            parts.append(f"{self.removed} ITMs")
        if self.navmesh_skipped:
            parts.append(f"{self.navmesh_skipped} deleted navmeshes")
        if self.partial_forms:
            parts.append(f"{self.partial_forms} partial forms")
        if not parts:
            return "Nothing to clean"
        return ", ".join(parts)


@dataclass(slots=True, frozen=True)
class WorkItem:
    identifier: str
    status: ItemStatus = ItemStatus.PENDING
    stats: CleaningStats = field(default_factory=CleaningStats)
    failure: FailureReason | None = None
    message: str = ""
    duration_seconds: float | None = None


@dataclass(slots=True, frozen=True)
class RunSettings:
    """Snapshot of everything a run needs, resolved before it starts."""

    xedit_path: Path | None = None
    load_order_path: Path | None = None
    launcher_path: Path | None = None
    game_mode: str | None = None
    timeout_seconds: float = 300.0
    partial_forms: bool = False
    skip_list: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        # Membership tests are case-insensitive; store the folded form once.
        object.__setattr__(
            self, "skip_list", frozenset(name.casefold() for name in self.skip_list)
        )

    @property
    def is_fully_configured(self) -> bool:
        return self.xedit_path is not None and self.load_order_path is not None

    def should_skip(self, identifier: str) -> bool:
        return identifier.casefold() in self.skip_list

    def validate(self, *, require_load_order: bool = False) -> None:
        if self.xedit_path is None:
            raise ConfigurationError("xEdit executable is not configured.")
        if not self.xedit_path.is_file():
            raise ConfigurationError(f"xEdit executable not found: {self.xedit_path}")
        if self.launcher_path is not None and not self.launcher_path.is_file():
            raise ConfigurationError(f"Launcher executable not found: {self.launcher_path}")
        if self.timeout_seconds <= 0:
            raise ConfigurationError(
                f"Cleaning timeout must be positive, got {self.timeout_seconds}."
            )
        if self.game_mode is not None and self.game_mode not in KNOWN_GAME_MODES:
            raise ConfigurationError(
                f"Unsupported game mode '{self.game_mode}'. "
                f"Expected one of: {', '.join(KNOWN_GAME_MODES)}"
            )
        if require_load_order:
            if self.load_order_path is None:
                raise ConfigurationError("Load order file is not configured.")
            if not self.load_order_path.is_file():
                raise ConfigurationError(f"Load order file not found: {self.load_order_path}")


@dataclass(slots=True, frozen=True)
class RunState:
    items: tuple[WorkItem, ...] = ()
    current_index: int | None = None
    aggregate: CleaningStats = field(default_factory=CleaningStats)
    status: RunStatus = RunStatus.IDLE
    partial: bool = False
    settings: RunSettings = field(default_factory=RunSettings)
    current_operation: str = ""
    error: str | None = None

    @property
    def total(self) -> int:
        return len(self.items)

    def count(self, status: ItemStatus) -> int:
        return sum(1 for item in self.items if item.status is status)

    @property
    def processed(self) -> int:
        return sum(1 for item in self.items if item.status.terminal)

    @property
    def running_items(self) -> list[WorkItem]:
        return [item for item in self.items if item.status is ItemStatus.RUNNING]


@dataclass(slots=True, frozen=True)
class RunOutcome:
    status: RunStatus
    partial: bool
    aggregate: CleaningStats
    cleaned: int
    failed: int
    skipped: int
    pending: int

    @classmethod
    def from_state(cls, state: RunState) -> RunOutcome:
        return cls(
            status=state.status,
            partial=state.partial,
            aggregate=state.aggregate,
            cleaned=state.count(ItemStatus.CLEANED),
            failed=state.count(ItemStatus.FAILED),
            skipped=state.count(ItemStatus.SKIPPED),
            pending=state.count(ItemStatus.PENDING),
        )
