"""Runtime settings and run-directory helpers.

Precedence for every setting: CLI option, then environment variable, then
default.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal

TimestampMode = Literal["deterministic", "wallclock"]

NIXCI_RUN_ROOT_ENV = "NIXCI_RUN_ROOT"
NIXCI_NIX_BIN_ENV = "NIXCI_NIX_BIN"
NIXCI_GIT_BIN_ENV = "NIXCI_GIT_BIN"
NIXCI_SECRETS_FILE_ENV = "NIXCI_SECRETS_FILE"
NIXCI_TIMESTAMP_MODE_ENV = "NIXCI_TIMESTAMP_MODE"
STEP_SUMMARY_ENV = "GITHUB_STEP_SUMMARY"

DEFAULT_WORKFLOW_PATH = Path(".github/workflows/continues_integration.yml")
DETERMINISTIC_TIMESTAMP = "1970-01-01T00:00:00Z"


@dataclass(frozen=True)
class RunSettings:
    """Resolved settings for one nixci invocation."""

    run_root: Path
    nix_bin: str = "nix"
    git_bin: str = "git"
    secrets_file: Path | None = None
    timestamp_mode: TimestampMode = "deterministic"
    step_summary: Path | None = None


def normalize_timestamp_mode(timestamp_mode: str) -> TimestampMode:
    """Normalize CLI timestamp modes (``now`` is accepted as ``wallclock``)."""
    normalized = timestamp_mode.strip().lower()
    if normalized == "deterministic":
        return "deterministic"
    if normalized in {"wallclock", "now"}:
        return "wallclock"
    raise ValueError(
        f"Unsupported timestamp mode: {timestamp_mode}. "
        "Expected one of: deterministic, wallclock, now."
    )


def timestamp_for(mode: TimestampMode) -> str:
    if mode == "deterministic":
        return DETERMINISTIC_TIMESTAMP
    return datetime.now(UTC).isoformat()


def resolve_settings(
    *,
    env: Mapping[str, str] | None = None,
    repo_root: Path,
    run_root: Path | None = None,
    nix_bin: str | None = None,
    git_bin: str | None = None,
    secrets_file: Path | None = None,
    timestamp_mode: str | None = None,
) -> RunSettings:
    environ = os.environ if env is None else env

    if run_root is None:
        env_root = environ.get(NIXCI_RUN_ROOT_ENV, "").strip()
        run_root = Path(env_root) if env_root else repo_root / "out" / "nixci"

    if secrets_file is None:
        env_secrets = environ.get(NIXCI_SECRETS_FILE_ENV, "").strip()
        secrets_file = Path(env_secrets) if env_secrets else None

    summary = environ.get(STEP_SUMMARY_ENV, "").strip()

    return RunSettings(
        run_root=run_root.expanduser().resolve(),
        nix_bin=nix_bin or environ.get(NIXCI_NIX_BIN_ENV, "").strip() or "nix",
        git_bin=git_bin or environ.get(NIXCI_GIT_BIN_ENV, "").strip() or "git",
        secrets_file=secrets_file.expanduser() if secrets_file else None,
        timestamp_mode=normalize_timestamp_mode(
            timestamp_mode or environ.get(NIXCI_TIMESTAMP_MODE_ENV, "") or "deterministic"
        ),
        step_summary=Path(summary) if summary else None,
    )


def make_run_id(prefix: str, timestamp_mode: TimestampMode) -> str:
    """Create run IDs: stable in deterministic mode, time-stamped otherwise."""
    prefix_clean = prefix.strip() or "JOB"
    if timestamp_mode == "deterministic":
        return f"{prefix_clean}_DETERMINISTIC"
    return f"{prefix_clean}_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
