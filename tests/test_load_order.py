from pathlib import Path

import pytest

from autoqac.load_order import (
    detect_game_mode,
    is_universal_xedit,
    parse_load_order,
    read_load_order,
)
from autoqac.models import ConfigurationError


def test_parse_load_order_strips_markers_and_comments() -> None:
    content = "\n".join(
        [
            "# This file is used by the game",
            "*Skyrim.esm",
            "",
            "+Unofficial Patch.esp",
            "-Disabled Mod.esp",
            "  *Light.esl  ",
            "readme.txt",
            "Plain.ESP",
        ]
    )

    assert parse_load_order(content) == [
        "Skyrim.esm",
        "Unofficial Patch.esp",
        "Disabled Mod.esp",
        "Light.esl",
        "Plain.ESP",
    ]


def test_read_load_order_handles_bom(tmp_path: Path) -> None:
    path = tmp_path / "plugins.txt"
    path.write_bytes(b"\xef\xbb\xbf*Fallout4.esm\r\n*Mod.esp\r\n")

    assert read_load_order(path) == ["Fallout4.esm", "Mod.esp"]


def test_read_load_order_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError):
        read_load_order(tmp_path / "missing.txt")


@pytest.mark.parametrize(
    ("executable", "expected"),
    [
        ("FO3Edit.exe", "FO3"),
        ("FNVEdit.exe", "FNV"),
        ("TTWEdit.exe", "TTW"),
        ("FO4Edit64.exe", "FO4"),
        ("FO4VREdit.exe", "FO4"),
        ("SSEEdit.exe", "SSE"),
        ("TES5Edit.exe", "SSE"),
        ("SkyrimVREdit.exe", "SSE"),
    ],
)
def test_detect_game_mode_from_executable(executable: str, expected: str) -> None:
    assert detect_game_mode(Path("tools") / executable) == expected


def test_detect_game_mode_falls_back_to_load_order(tmp_path: Path) -> None:
    load_order = tmp_path / "loadorder.txt"
    load_order.write_text("# comment\nFalloutNV.esm\nMod.esp\n", encoding="utf-8")

    assert detect_game_mode(tmp_path / "xEdit.exe", load_order) == "FNV"
    assert detect_game_mode(None, load_order) == "FNV"


def test_detect_game_mode_unknown(tmp_path: Path) -> None:
    load_order = tmp_path / "loadorder.txt"
    load_order.write_text("Mod.esp\n", encoding="utf-8")

    assert detect_game_mode(tmp_path / "xEdit.exe", load_order) is None
    assert detect_game_mode(tmp_path / "xEdit.exe") is None


def test_is_universal_xedit() -> None:
    assert is_universal_xedit(Path("xEdit64.exe")) is True
    assert is_universal_xedit(Path("SSEEdit.exe")) is False
