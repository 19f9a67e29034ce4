from autoqac.xedit.base import (
    Cancelled,
    CleaningError,
    Exited,
    ParseError,
    ProcessOutcome,
    ProcessRunner,
    ProcessSpawnError,
    TimedOut,
)
from autoqac.xedit.command import CleaningCommand, CommandBuilder, ToolLogs, xedit_log_paths
from autoqac.xedit.logs import LogStatistics, OutputParser, clear_logs
from autoqac.xedit.process import AsyncProcessRunner

__all__ = [
    "AsyncProcessRunner",
    "Cancelled",
    "CleaningCommand",
    "CleaningError",
    "CommandBuilder",
    "Exited",
    "LogStatistics",
    "OutputParser",
    "ParseError",
    "ProcessOutcome",
    "ProcessRunner",
    "ProcessSpawnError",
    "TimedOut",
    "ToolLogs",
    "clear_logs",
    "xedit_log_paths",
]
