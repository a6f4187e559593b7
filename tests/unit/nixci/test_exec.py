"""Tests for the subprocess runner."""

from __future__ import annotations

from pathlib import Path

import pytest

from nixci.exec import EXIT_NOT_EXECUTABLE, EXIT_NOT_FOUND, ExecError, run_command


def test_env_overlay_reaches_child(tmp_path: Path) -> None:
    result = run_command(["sh", "-c", "printf %s \"$NIXCI_OVERLAY_VALUE\""], cwd=tmp_path, env={"NIXCI_OVERLAY_VALUE": "x1"})
    assert result.stdout == "x1"
    assert result.returncode == 0


def test_check_mode_raises(tmp_path: Path) -> None:
    with pytest.raises(ExecError, match="command failed \\(3\\)"):
        run_command(["sh", "-c", "exit 3"], cwd=tmp_path)
    assert run_command(["sh", "-c", "exit 3"], cwd=tmp_path, check=False).returncode == 3


def test_missing_binary_maps_to_127(tmp_path: Path) -> None:
    result = run_command([str(tmp_path / "absent")], cwd=tmp_path, check=False)
    assert result.returncode == EXIT_NOT_FOUND
    assert "cannot execute" in result.stderr


@pytest.mark.parametrize("make_target", ["plain_file", "directory"])
def test_unexecutable_binary_maps_to_126(tmp_path: Path, make_target: str) -> None:
    target = tmp_path / "nix"
    if make_target == "plain_file":
        target.write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
        target.chmod(0o644)
    else:
        target.mkdir()

    result = run_command([str(target), "--version"], cwd=tmp_path, check=False)

    assert result.returncode == EXIT_NOT_EXECUTABLE
    assert result.stderr.startswith(f"cannot execute {target}")
