import os
from pathlib import Path

import pytest
from click.testing import CliRunner

from autoqac.cli import cli
from autoqac.config import load_config

FAKE_XEDIT = """#!/bin/sh
for last; do :; done
log="$(dirname "$0")/SSEEDIT_log.txt"
exc="$(dirname "$0")/SSEEDITException.log"
case "$last" in
    Bad.esp)
        echo "Plugin references Master.esm which can not be found" > "$exc"
        exit 1
        ;;
esac
printf 'Removing: [REFR:00000001]\\nUndeleting: [REFR:00000002]\\n' > "$log"
exit 0
"""

posix_only = pytest.mark.skipif(os.name == "nt", reason="fake xEdit is a shell script")


def _write_fake_xedit(directory: Path) -> Path:
    xedit = directory / "SSEEdit"
    xedit.write_text(FAKE_XEDIT, encoding="utf-8")
    xedit.chmod(0o755)
    return xedit


def _write_load_order(directory: Path, *plugins: str) -> Path:
    load_order = directory / "plugins.txt"
    load_order.write_text(
        "# managed by test\n" + "".join(f"*{name}\n" for name in plugins), encoding="utf-8"
    )
    return load_order


def test_init_writes_default_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    runner = CliRunner()

    result = runner.invoke(cli, ["init"])

    assert result.exit_code == 0, result.output
    config = load_config(tmp_path / "autoqac.toml")
    assert config.run.timeout_seconds == 300.0
    assert "Fallout4.esm" in config.skip_lists["FO4"]


def test_plugins_lists_load_order_with_skip_markers(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)
    load_order = _write_load_order(tmp_path, "Fallout4.esm", "Mod.esp")
    runner = CliRunner()

    result = runner.invoke(cli, ["plugins", "--load-order", str(load_order)])

    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    assert lines[0].strip() == "1 Fallout4.esm (skip)"
    assert lines[1].strip() == "2 Mod.esp"


def test_plugins_requires_load_order(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    result = CliRunner().invoke(cli, ["plugins"])

    assert result.exit_code != 0
    assert "Load order file is not configured" in result.output


@posix_only
def test_clean_runs_every_plugin_and_prints_summary(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)
    xedit = _write_fake_xedit(tmp_path)
    load_order = _write_load_order(tmp_path, "Skyrim.esm", "A.esp", "B.esp")

    result = CliRunner().invoke(
        cli,
        ["clean", "--xedit", str(xedit), "--load-order", str(load_order), "--timeout", "30"],
    )

    assert result.exit_code == 0, result.output
    assert "Cleaning 3 plugins" in result.output
    assert "Skyrim.esm: skipped" in result.output
    assert "A.esp: cleaned - 1 UDRs, 1 ITMs" in result.output
    assert "Cleaned: 2  Failed: 0  Skipped: 1  Pending: 0" in result.output
    assert "Processes: started 2, timed out 0, cancelled 0" in result.output
    assert "per cleaned plugin" in result.output


@posix_only
def test_clean_exits_nonzero_when_a_plugin_fails(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)
    xedit = _write_fake_xedit(tmp_path)
    load_order = _write_load_order(tmp_path, "Bad.esp", "Good.esp")

    result = CliRunner().invoke(
        cli, ["clean", "--xedit", str(xedit), "--load-order", str(load_order)]
    )

    assert result.exit_code == 1, result.output
    assert "Bad.esp: failed - Missing masters" in result.output
    assert "Cleaned: 1  Failed: 1" in result.output


def test_clean_reports_configuration_errors(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)
    load_order = _write_load_order(tmp_path, "Mod.esp")

    result = CliRunner().invoke(
        cli,
        ["clean", "--xedit", str(tmp_path / "missing.exe"), "--load-order", str(load_order)],
    )

    assert result.exit_code != 0
    assert "xEdit executable not found" in result.output
