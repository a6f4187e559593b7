"""Pytest configuration and fixtures for nixci tests."""
from __future__ import annotations

import textwrap
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from nixci.exec import ExecError, ExecResult

TOKEN = "ghs_s3cr3tTokenValue0123456789"

HYDRA_KEY = "hydra.iohk.io:f/Ea+s+dFdN+3Y/G+FDgSq+a5NEWhJGzdjvKNGv0/EQ="
NIXOS_KEY = "cache.nixos.org-1:6NCHdD59X431o0gWypbMrAURkbJ16ZPMQFGspcDShjY="

CI_WORKFLOW = textwrap.dedent(
    """\
    name: "Test"
    on:
      pull_request:
      push:
    jobs:
      tests:
        runs-on: ubuntu-latest
        steps:
        - uses: actions/checkout@v4
        - uses: cachix/install-nix-action@v25
          with:
            extra_nix_config: |
              trusted-public-keys = hydra.iohk.io:f/Ea+s+dFdN+3Y/G+FDgSq+a5NEWhJGzdjvKNGv0/EQ= cache.nixos.org-1:6NCHdD59X431o0gWypbMrAURkbJ16ZPMQFGspcDShjY=
              substituters = https://hydra.iohk.io https://cache.nixos.org/
        - uses: cachix/install-nix-action@v25
          with:
            github_access_token: ${{ secrets.GITHUB_TOKEN }}
        - name: Run tests
          run: nix develop --impure --command cargo test
    """
)


def pytest_sessionfinish(session, exitstatus):
    """Fail the run if --cov was requested but no coverage data was written."""
    cov_enabled = any("--cov" in str(arg) for arg in session.config.args)
    if not cov_enabled:
        return

    coverage_files = list(Path.cwd().glob(".coverage*"))
    if not coverage_files:
        pytest.exit(
            "Coverage was enabled but no data was collected. "
            "Check that tests import from 'nixci' (the package) not 'src/nixci' (filesystem path).",
            returncode=1
        )


@dataclass
class FakeRunner:
    """Stand-in for ``run_command`` that scripts git and nix responses."""

    realize_rc: int = 0
    realize_stderr: str = ""
    test_rc: int = 0
    test_stdout: str = "test result: ok. 3 passed\n"
    version_rc: int = 0
    git_rc: int = 0
    echo_nix_config: bool = False
    calls: list[tuple[tuple[str, ...], Path, dict[str, str] | None]] = field(default_factory=list)

    def __call__(self, argv, *, cwd, env=None, check=True) -> ExecResult:
        self.calls.append((tuple(argv), cwd, dict(env) if env is not None else None))
        if argv[0].endswith("git"):
            result = self._result(argv, cwd, self.git_rc, stdout="0123456789abcdef\n")
            if check and result.returncode != 0:
                raise ExecError(result)
            return result
        if argv[1:] == ["--version"]:
            return self._result(argv, cwd, self.version_rc, stdout="nix (Nix) 2.20.1\n")

        command = list(argv[argv.index("--command") + 1:])
        if command == ["true"]:
            return self._result(argv, cwd, self.realize_rc, stderr=self.realize_stderr)

        stdout = self.test_stdout
        if self.echo_nix_config and env is not None:
            stdout += env.get("NIX_CONFIG", "")
        return self._result(argv, cwd, self.test_rc, stdout=stdout)

    @staticmethod
    def _result(argv, cwd, rc, stdout="", stderr="") -> ExecResult:
        return ExecResult(argv=tuple(argv), cwd=Path(cwd), returncode=rc, stdout=stdout, stderr=stderr)

    def nix_calls(self) -> list[tuple[str, ...]]:
        return [argv for argv, _, _ in self.calls if not argv[0].endswith("git")]


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def repo_root(tmp_path: Path) -> Path:
    root = tmp_path / "repo"
    workflow = root / ".github" / "workflows" / "continues_integration.yml"
    workflow.parent.mkdir(parents=True)
    workflow.write_text(CI_WORKFLOW, encoding="utf-8")
    return root


@pytest.fixture
def fake_nix(tmp_path: Path) -> Path:
    """Executable that mimics ``nix --version`` and ``nix develop ... --command``."""
    script = tmp_path / "bin" / "nix"
    script.parent.mkdir(parents=True)
    script.write_text(
        "#!/bin/sh\n"
        "if [ \"$1\" = \"--version\" ]; then echo 'nix (Nix) 2.20.1'; exit 0; fi\n"
        "while [ $# -gt 0 ] && [ \"$1\" != \"--command\" ]; do shift; done\n"
        "shift\n"
        "exec \"$@\"\n",
        encoding="utf-8",
    )
    script.chmod(0o755)
    return script


@pytest.fixture
def token() -> str:
    return TOKEN


@pytest.fixture
def ci_workflow() -> str:
    return CI_WORKFLOW


@pytest.fixture
def trust_keys() -> tuple[str, str]:
    return HYDRA_KEY, NIXOS_KEY
