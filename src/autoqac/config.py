from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from autoqac.load_order import detect_game_mode, is_universal_xedit
from autoqac.models import KNOWN_GAME_MODES, ConfigurationError, RunSettings

DEFAULT_SKIP_LISTS: dict[str, list[str]] = {
    "FO3": [
        "Fallout3.esm",
        "Anchorage.esm",
        "ThePitt.esm",
        "BrokenSteel.esm",
        "PointLookout.esm",
        "Zeta.esm",
    ],
    "FNV": [
        "FalloutNV.esm",
        "DeadMoney.esm",
        "HonestHearts.esm",
        "OldWorldBlues.esm",
        "LonesomeRoad.esm",
        "GunRunnersArsenal.esm",
    ],
    "FO4": [
        "Fallout4.esm",
        "DLCRobot.esm",
        "DLCworkshop01.esm",
        "DLCCoast.esm",
        "DLCworkshop02.esm",
        "DLCworkshop03.esm",
        "DLCNukaWorld.esm",
    ],
    "SSE": [
        "Skyrim.esm",
        "Update.esm",
        "Dawnguard.esm",
        "HearthFires.esm",
        "Dragonborn.esm",
    ],
    "TTW": ["TaleOfTwoWastelands.esm", "YUPTTW.esm"],
}


@dataclass(slots=True)
class XEditConfig:
    executable: str = ""
    game_mode: str = ""


@dataclass(slots=True)
class LauncherConfig:
    executable: str = ""


@dataclass(slots=True)
class RunConfig:
    load_order: str = ""
    timeout_seconds: float = 300.0
    partial_forms: bool = False


@dataclass(slots=True)
class AutoQACConfig:
    xedit: XEditConfig = field(default_factory=XEditConfig)
    launcher: LauncherConfig = field(default_factory=LauncherConfig)
    run: RunConfig = field(default_factory=RunConfig)
    skip_lists: dict[str, list[str]] = field(
        default_factory=lambda: {game: list(names) for game, names in DEFAULT_SKIP_LISTS.items()}
    )

    @classmethod
    def default(cls) -> AutoQACConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> AutoQACConfig:
        try:
            config = cls(
                xedit=XEditConfig(**data.get("xedit", {})),
                launcher=LauncherConfig(**data.get("launcher", {})),
                run=RunConfig(**data.get("run", {})),
            )
        except TypeError as exc:
            raise ConfigurationError(f"Invalid configuration: {exc}") from exc
        skip_lists = data.get("skip_lists")
        if isinstance(skip_lists, dict):
            config.skip_lists = {
                str(game).upper(): [str(name) for name in names]
                for game, names in skip_lists.items()
                if isinstance(names, list)
            }
        return config

    def to_dict(self) -> dict:
        return {
            "xedit": {
                "executable": self.xedit.executable,
                "game_mode": self.xedit.game_mode,
            },
            "launcher": {
                "executable": self.launcher.executable,
            },
            "run": {
                "load_order": self.run.load_order,
                "timeout_seconds": self.run.timeout_seconds,
                "partial_forms": self.run.partial_forms,
            },
            "skip_lists": {game: list(names) for game, names in self.skip_lists.items()},
        }

    def skip_list_for(self, game_mode: str | None) -> frozenset[str]:
        if not game_mode:
            return frozenset()
        return frozenset(self.skip_lists.get(game_mode.upper(), []))

    def to_run_settings(self) -> RunSettings:
        """Resolve paths, game mode and skip list into a run snapshot."""
        xedit_path = Path(self.xedit.executable) if self.xedit.executable else None
        load_order_path = Path(self.run.load_order) if self.run.load_order else None
        launcher_path = Path(self.launcher.executable) if self.launcher.executable else None

        configured_game = self.xedit.game_mode.strip().upper() or None
        if configured_game is not None and configured_game not in KNOWN_GAME_MODES:
            raise ConfigurationError(
                f"Unsupported game mode '{configured_game}'. "
                f"Expected one of: {', '.join(KNOWN_GAME_MODES)}"
            )
        detected_game = configured_game
        if detected_game is None:
            detected_game = detect_game_mode(xedit_path, load_order_path)

        # Game-specific builds already know their game; only universal xEdit needs the flag.
        game_flag = configured_game
        if game_flag is None and xedit_path is not None and is_universal_xedit(xedit_path):
            game_flag = detected_game

        return RunSettings(
            xedit_path=xedit_path,
            load_order_path=load_order_path,
            launcher_path=launcher_path,
            game_mode=game_flag,
            timeout_seconds=float(self.run.timeout_seconds),
            partial_forms=bool(self.run.partial_forms),
            skip_list=self.skip_list_for(detected_game),
        )


def _toml_key(key: str) -> str:
    if key.replace("_", "").replace("-", "").isalnum():
        return key
    return json.dumps(key, ensure_ascii=False)


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        rendered = f"{value:.3f}".rstrip("0").rstrip(".")
        if not rendered:
            return "0.0"
        return rendered if "." in rendered else f"{rendered}.0"
    if isinstance(value, list):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    return json.dumps(str(value), ensure_ascii=False)


def dumps_toml(config: AutoQACConfig) -> str:
    data = config.to_dict()
    lines: list[str] = []
    for section in ("xedit", "launcher", "run", "skip_lists"):
        lines.append(f"[{section}]")
        for key, value in data[section].items():
            lines.append(f"{_toml_key(key)} = {_toml_value(value)}")
        lines.append("")
    return "\n".join(lines).strip() + "\n"


def load_config(path: Path) -> AutoQACConfig:
    if not path.exists():
        return AutoQACConfig.default()
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"Failed to parse config {path}: {exc}") from exc
    return AutoQACConfig.from_dict(data)


def save_config(path: Path, config: AutoQACConfig) -> None:
    path.write_text(dumps_toml(config), encoding="utf-8")
