"""Checkout step: materialize the repository at the event commit."""

from __future__ import annotations

import logging
from pathlib import Path

from nixci.errors import CheckoutError
from nixci.exec import ExecError, ExecResult, Runner, run_command
from nixci.log import redact

logger = logging.getLogger(__name__)


def run_git(
    args: list[str],
    *,
    repo_root: Path,
    git_bin: str = "git",
    runner: Runner = run_command,
    check: bool = True,
) -> ExecResult:
    """Run git command rooted at repo."""
    return runner([git_bin, *args], cwd=repo_root, check=check)


def checkout(
    repo_root: Path,
    sha: str | None,
    *,
    git_bin: str = "git",
    runner: Runner = run_command,
) -> str:
    """Check out ``sha`` (detached) in ``repo_root`` and return the resolved HEAD.

    With no sha the current HEAD is used as-is.

    Raises:
        CheckoutError: If the tree is not a git repository or the commit
            cannot be fetched
    """
    try:
        top = run_git(["rev-parse", "--show-toplevel"], repo_root=repo_root, git_bin=git_bin, runner=runner)
    except ExecError as exc:
        raise CheckoutError(f"{repo_root} is not a git repository: {redact(str(exc))}") from exc
    logger.debug("repository root: %s", top.stdout.strip())

    if sha:
        present = run_git(
            ["cat-file", "-e", f"{sha}^{{commit}}"],
            repo_root=repo_root,
            git_bin=git_bin,
            runner=runner,
            check=False,
        )
        try:
            if present.returncode != 0:
                logger.info("fetching %s", sha)
                run_git(["fetch", "--no-tags", "origin", sha], repo_root=repo_root, git_bin=git_bin, runner=runner)
            run_git(["checkout", "--detach", "--force", sha], repo_root=repo_root, git_bin=git_bin, runner=runner)
        except ExecError as exc:
            raise CheckoutError(f"could not check out {sha}: {redact(str(exc))}") from exc

    head = run_git(["rev-parse", "HEAD"], repo_root=repo_root, git_bin=git_bin, runner=runner, check=False)
    if head.returncode != 0:
        raise CheckoutError(f"could not resolve HEAD in {repo_root}")
    resolved = head.stdout.strip()
    logger.info("checked out %s", resolved)
    return resolved
