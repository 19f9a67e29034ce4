from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from autoqac.models import CleaningStats, FailureReason
from autoqac.xedit.base import ParseError
from autoqac.xedit.command import ToolLogs

logger = logging.getLogger(__name__)

MARKER_PATTERN = re.compile(
    r"(?P<undeleted>Undeleting:)"
    r"|(?P<removed>Removing:)"
    r"|(?P<navmesh_skipped>Skipping:)"
    r"|(?P<partial_forms>Making Partial Form:)"
)

FAILURE_SIGNATURES: tuple[tuple[str, FailureReason], ...] = (
    ("which can not be found", FailureReason.MISSING_MASTERS),
    ("which it does not have", FailureReason.EMPTY_PLUGIN),
)


@dataclass(slots=True, frozen=True)
class LogStatistics:
    removed: int = 0
    undeleted: int = 0
    navmesh_skipped: int = 0
    partial_forms: int = 0
    failure: FailureReason | None = None

    @property
    def stats(self) -> CleaningStats:
        return CleaningStats(
            removed=self.removed,
            undeleted=self.undeleted,
            navmesh_skipped=self.navmesh_skipped,
            partial_forms=self.partial_forms,
        )


def _read_text(path: Path) -> str:
    # xEdit writes logs in the system ANSI code page; never fail on decoding.
    return path.read_text(encoding="utf-8", errors="replace")


class OutputParser:
    def count_markers(self, content: str) -> dict[str, int]:
        counts = {name: 0 for name in MARKER_PATTERN.groupindex}
        for match in MARKER_PATTERN.finditer(content):
            counts[match.lastgroup] += 1
        return counts

    def classify_failure(self, exception_log: Path | None) -> FailureReason | None:
        if exception_log is None or not exception_log.exists():
            return None
        try:
            content = _read_text(exception_log)
        except OSError as exc:
            logger.warning("Could not read exception log %s: %s", exception_log, exc)
            return None
        for signature, reason in FAILURE_SIGNATURES:
            if signature in content:
                logger.warning("Exception log %s reports %s", exception_log, reason.value)
                return reason
        return None

    def parse(self, main_log: Path, exception_log: Path | None = None) -> LogStatistics:
        if not main_log.exists():
            raise ParseError(f"Log file not found: {main_log}")
        try:
            content = _read_text(main_log)
        except OSError as exc:
            raise ParseError(f"Failed to read log file {main_log}: {exc}") from exc

        counts = self.count_markers(content)
        statistics = LogStatistics(**counts, failure=self.classify_failure(exception_log))
        logger.debug(
            "Parsed %s - UDRs: %d, ITMs: %d, navmeshes: %d, partial forms: %d",
            main_log,
            statistics.undeleted,
            statistics.removed,
            statistics.navmesh_skipped,
            statistics.partial_forms,
        )
        return statistics


def clear_logs(logs: ToolLogs) -> None:
    """Remove logs left by a previous invocation so they are never re-parsed."""
    for path in (logs.main, logs.exception):
        try:
            path.unlink()
        except FileNotFoundError:
            continue
        logger.debug("Cleared log %s", path)
