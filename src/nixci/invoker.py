"""Test invoker: run the single test command inside the provisioned environment."""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass
from pathlib import Path

from nixci.exec import ExecResult
from nixci.log import redact
from nixci.provision.nix_config import NixConfig
from nixci.provision.provisioner import NixProvisioner
from nixci.workflow.types import EnvironmentDescriptor

logger = logging.getLogger(__name__)

SHELL_METACHARACTERS = frozenset("|&;<>()$`\\\"'*?[]#~\n")


@dataclass(frozen=True)
class CommandOutcome:
    """Verbatim exit status and redacted output of the test command."""

    exit_status: int
    stdout: str
    stderr: str

    @property
    def passed(self) -> bool:
        return self.exit_status == 0


def command_argv(test_command: str) -> list[str]:
    """Turn the test command string into argv.

    Plain commands are split into words; anything using shell syntax runs
    through ``bash -c`` from the dev shell.
    """
    if any(ch in SHELL_METACHARACTERS for ch in test_command):
        return ["bash", "-c", test_command]
    return shlex.split(test_command)


def invoke_tests(
    provisioner: NixProvisioner,
    descriptor: EnvironmentDescriptor,
    test_command: str,
    *,
    repo_root: Path,
    config: NixConfig,
) -> CommandOutcome:
    """Execute the test command with cwd = repository root.

    No retry, timeout, or output parsing.
    """
    argv = provisioner.develop_argv(descriptor, command_argv(test_command))
    logger.info("running: %s", test_command)
    result: ExecResult = provisioner.runner(argv, cwd=repo_root, env=config.as_env(), check=False)
    logger.info("test command exited with status %d", result.returncode)
    return CommandOutcome(
        exit_status=result.returncode,
        stdout=redact(result.stdout),
        stderr=redact(result.stderr),
    )
