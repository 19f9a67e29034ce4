from __future__ import annotations

import logging
from pathlib import Path

from autoqac.models import ConfigurationError

logger = logging.getLogger(__name__)

PLUGIN_EXTENSIONS = (".esp", ".esm", ".esl")
# plugins.txt marks enabled entries with '*'; MO2 profiles use '+' and '-'.
ENTRY_MARKERS = ("*", "+", "-")

XEDIT_GAME_MODES = (
    ("fo3edit", "FO3"),
    ("fnvedit", "FNV"),
    ("ttwedit", "TTW"),
    ("fo4edit", "FO4"),
    ("fo4vredit", "FO4"),
    ("sseedit", "SSE"),
    ("tes5edit", "SSE"),
    ("skyrimvredit", "SSE"),
)

GAME_MASTERS = (
    ("Skyrim.esm", "SSE"),
    ("Fallout3.esm", "FO3"),
    ("FalloutNV.esm", "FNV"),
    ("Fallout4.esm", "FO4"),
)


def _entry_name(raw_line: str) -> str | None:
    line = raw_line.strip()
    if not line or line.startswith("#"):
        return None
    if line.startswith(ENTRY_MARKERS):
        line = line[1:].strip()
    return line or None


def parse_load_order(content: str) -> list[str]:
    plugins: list[str] = []
    for raw_line in content.splitlines():
        name = _entry_name(raw_line)
        if name is None:
            continue
        if not name.lower().endswith(PLUGIN_EXTENSIONS):
            continue
        plugins.append(name)
    return plugins


def read_load_order(path: Path) -> list[str]:
    try:
        content = path.read_text(encoding="utf-8-sig", errors="replace")
    except OSError as exc:
        raise ConfigurationError(f"Failed to read load order file {path}: {exc}") from exc
    plugins = parse_load_order(content)
    logger.info("Loaded %d plugins from load order %s", len(plugins), path)
    return plugins


def detect_game_from_load_order(path: Path) -> str | None:
    try:
        content = path.read_text(encoding="utf-8-sig", errors="replace")
    except OSError as exc:
        logger.warning("Error detecting game type from load order: %s", exc)
        return None
    for raw_line in content.splitlines():
        name = _entry_name(raw_line)
        if name is None:
            continue
        for master, game in GAME_MASTERS:
            if master.lower() in name.lower():
                return game
    return None


def detect_game_mode(
    xedit_path: Path | str | None, load_order_path: Path | None = None
) -> str | None:
    """Game mode implied by the xEdit build, else by the load order's base master."""
    stem = Path(xedit_path).stem.lower() if xedit_path else ""
    for pattern, game in XEDIT_GAME_MODES:
        if pattern in stem:
            logger.info("Detected game type from xEdit: %s", game)
            return game
    if load_order_path is not None and load_order_path.exists():
        game = detect_game_from_load_order(load_order_path)
        if game is not None:
            logger.info("Detected game type from load order: %s", game)
            return game
    logger.debug("Could not detect game type from xEdit executable or load order")
    return None


def is_universal_xedit(xedit_path: Path | str) -> bool:
    return Path(xedit_path).stem.lower().startswith("xedit")
