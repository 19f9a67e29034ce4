from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path

CLEANING_FLAG = "-QAC"
SESSION_FLAGS = ("-autoexit", "-autoload")
# xEdit refuses -allowmakepartial unless -iknowwhatimdoing is also present.
PARTIAL_FORM_FLAGS = ("-iknowwhatimdoing", "-allowmakepartial")
LAUNCHER_VERB = "run"


@dataclass(slots=True, frozen=True)
class ToolLogs:
    main: Path
    exception: Path


@dataclass(slots=True, frozen=True)
class CleaningCommand:
    executable: Path
    arguments: tuple[str, ...]
    launcher: Path | None = None
    timeout: float = 300.0

    def primary_argv(self) -> list[str]:
        return [str(self.executable), *self.arguments]

    def argv(self) -> list[str]:
        if self.launcher is None:
            return self.primary_argv()
        return [str(self.launcher), LAUNCHER_VERB, subprocess.list2cmdline(self.primary_argv())]

    def display(self) -> str:
        return subprocess.list2cmdline(self.argv())


class CommandBuilder:
    def build(
        self,
        executable: Path,
        item: str,
        *,
        game_mode: str | None = None,
        launcher: Path | None = None,
        partial_forms: bool = False,
        timeout: float = 300.0,
    ) -> CleaningCommand:
        arguments: list[str] = []
        if game_mode:
            arguments.append(f"-{game_mode.upper()}")
        arguments.append(CLEANING_FLAG)
        arguments.extend(SESSION_FLAGS)
        if partial_forms:
            arguments.extend(PARTIAL_FORM_FLAGS)
        arguments.append(item)
        return CleaningCommand(
            executable=Path(executable),
            arguments=tuple(arguments),
            launcher=Path(launcher) if launcher is not None else None,
            timeout=float(timeout),
        )


def xedit_log_paths(executable: Path, game_mode: str | None = None) -> ToolLogs:
    """Where xEdit writes its logs for a given executable and game mode.

    Universal xEdit run with a game flag names its logs after the game
    (``FO4Edit_log.txt``); a game-specific build uses its own upper-cased
    stem (``SSEEDIT_log.txt``).
    """
    executable = Path(executable)
    if game_mode:
        base = f"{game_mode.upper()}Edit"
    else:
        base = executable.stem.upper()
    return ToolLogs(
        main=executable.parent / f"{base}_log.txt",
        exception=executable.parent / f"{base}Exception.log",
    )
