from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from autoqac.cancel import CancelToken
    from autoqac.xedit.command import CleaningCommand


class CleaningError(RuntimeError):
    """Raised when the cleaning tool cannot be driven."""

    def __init__(self, message: str, *, plugin: str | None = None) -> None:
        super().__init__(message)
        self.plugin = plugin


class ProcessSpawnError(CleaningError):
    """Raised when the tool (or its launcher) could not be started."""


class ParseError(CleaningError):
    """Raised when a tool log is missing or unreadable."""


@dataclass(slots=True, frozen=True)
class Exited:
    code: int


@dataclass(slots=True, frozen=True)
class TimedOut:
    after: float


@dataclass(slots=True, frozen=True)
class Cancelled:
    pass


ProcessOutcome = Exited | TimedOut | Cancelled


class ProcessRunner(ABC):
    @abstractmethod
    async def execute(
        self,
        command: CleaningCommand,
        timeout: float | None = None,
        cancel_token: CancelToken | None = None,
    ) -> ProcessOutcome:
        """Run one process to completion, timeout, or cancellation."""
