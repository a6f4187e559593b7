"""Environment provisioner backed by ``nix develop``."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from nixci.errors import ProvisioningError
from nixci.exec import EXIT_NOT_EXECUTABLE, EXIT_NOT_FOUND, ExecResult, Runner, run_command
from nixci.log import redact
from nixci.provision.nix_config import NixConfig
from nixci.workflow.types import EnvironmentDescriptor

logger = logging.getLogger(__name__)

# Command used to force realization of the dev shell without running anything.
REALIZE_COMMAND = ("true",)


@dataclass
class NixProvisioner:
    """Resolve a declared toolchain and run commands inside it."""

    nix_bin: str = "nix"
    runner: Runner = field(default=run_command)

    def develop_argv(self, descriptor: EnvironmentDescriptor, command: list[str]) -> list[str]:
        """Build ``nix develop`` argv that runs ``command`` inside the environment."""
        if not command:
            raise ValueError("command must not be empty")
        argv = [self.nix_bin, "develop", descriptor.installable]
        if descriptor.impure:
            argv.append("--impure")
        argv.append("--command")
        argv.extend(command)
        return argv

    def check_available(self, cwd: Path) -> str:
        """Return the ``nix --version`` line or raise ProvisioningError."""
        result = self.runner([self.nix_bin, "--version"], cwd=cwd, check=False)
        if result.returncode == EXIT_NOT_FOUND:
            raise ProvisioningError(
                f"nix executable not found: {self.nix_bin} "
                "(install Nix or set NIXCI_NIX_BIN)"
            )
        if result.returncode == EXIT_NOT_EXECUTABLE:
            raise ProvisioningError(_failure_message(f"nix executable is not runnable: {self.nix_bin}", result))
        if result.returncode != 0:
            raise ProvisioningError(_failure_message("nix --version failed", result))
        version = result.stdout.strip()
        logger.info("using %s", version or self.nix_bin)
        return version

    def realize(
        self,
        descriptor: EnvironmentDescriptor,
        *,
        cwd: Path,
        config: NixConfig,
    ) -> ExecResult:
        """Build and fetch everything the dev shell needs.

        No partial environment is usable: any failure raises.

        Raises:
            ProvisioningError: If the environment cannot be resolved
        """
        argv = self.develop_argv(descriptor, list(REALIZE_COMMAND))
        logger.info(
            "provisioning %s%s",
            descriptor.installable,
            " (impure)" if descriptor.impure else "",
        )
        logger.debug("NIX_CONFIG:\n%s", config.render_public())
        result = self.runner(argv, cwd=cwd, env=config.as_env(), check=False)
        if result.returncode != 0:
            raise ProvisioningError(_failure_message(f"could not provision {descriptor.installable}", result))
        return result


def _failure_message(prefix: str, result: ExecResult) -> str:
    detail = redact((result.stderr or result.stdout).strip())
    tail = "\n".join(detail.splitlines()[-20:])
    return f"{prefix} (exit {result.returncode})" + (f"\n{tail}" if tail else "")
