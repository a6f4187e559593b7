"""nixci CLI - run a Nix-provisioned test workflow as one job."""

import dataclasses
import json
import os
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from nixci import __version__
from nixci.errors import NixciError, WorkflowError
from nixci.job import run_jobs
from nixci.log import configure_logging
from nixci.provision.secrets import SecretStore
from nixci.settings import DEFAULT_WORKFLOW_PATH, RunSettings, resolve_settings
from nixci.trigger import event_from_env, make_event, schedule
from nixci.workflow.loader import load_workflow
from nixci.workflow.types import JobState, TriggerEvent, WorkflowSpec

EXIT_OK = 0
EXIT_TOOLING_ERROR = 1
EXIT_TEST_FAILED = 2
EXIT_PROVISIONING_FAILED = 3

cli = typer.Typer(
    name="nixci",
    help="nixci - provision a Nix dev shell and run one test command per event",
    no_args_is_help=True,
)
console = Console()


def _version_option_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@cli.callback()
def _cli_callback(
    version: bool = typer.Option(
        False,
        "--version",
        help="Show nixci version and exit.",
        is_eager=True,
        callback=_version_option_callback,
    ),
) -> None:
    """Run CI workflows locally or inside a CI runner."""


def _resolve_workflow_path(workflow: Path | None, repo_root: Path) -> Path:
    path = workflow or DEFAULT_WORKFLOW_PATH
    if not path.is_absolute():
        path = repo_root / path
    return path


def _resolve_event(
    event: str | None,
    ref: str | None,
    sha: str | None,
    base_ref: str | None,
) -> TriggerEvent:
    if event is None:
        resolved = event_from_env(os.environ)
        return dataclasses.replace(
            resolved,
            ref=ref or resolved.ref,
            sha=sha or resolved.sha,
            base_ref=base_ref or resolved.base_ref,
        )
    return make_event(event, ref=ref, sha=sha, base_ref=base_ref)


def _load(workflow_path: Path, job: str | None) -> WorkflowSpec:
    try:
        return load_workflow(workflow_path, job=job)
    except WorkflowError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(EXIT_TOOLING_ERROR) from e


@cli.command()
def run(
    workflow: Path | None = typer.Option(
        None,
        "--workflow",
        "-w",
        help=f"Workflow file (default {DEFAULT_WORKFLOW_PATH} under the repo root)",
    ),
    repo_root: Path = typer.Option(
        Path("."),
        "--repo-root",
        help="Repository root; the test command runs here",
    ),
    job: str | None = typer.Option(None, "--job", help="Job to run when the workflow declares several"),
    event: str | None = typer.Option(
        None,
        "--event",
        help="Event kind: push or pull_request (default from GITHUB_EVENT_NAME)",
    ),
    ref: str | None = typer.Option(None, "--ref", help="Event ref, e.g. refs/heads/main"),
    sha: str | None = typer.Option(None, "--sha", help="Commit to check out"),
    base_ref: str | None = typer.Option(None, "--base-ref", help="Pull request target branch"),
    no_checkout: bool = typer.Option(False, "--no-checkout", help="Use the working tree as-is"),
    run_root: Path | None = typer.Option(None, "--run-root", help="Directory for job reports"),
    nix_bin: str | None = typer.Option(None, "--nix-bin", help="nix executable"),
    git_bin: str | None = typer.Option(None, "--git-bin", help="git executable"),
    secrets_file: Path | None = typer.Option(None, "--secrets-file", help="JSON secrets file"),
    timestamp_mode: str | None = typer.Option(
        None,
        "--timestamp-mode",
        help="Timestamp mode: deterministic or wallclock",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Run the workflow's job for one event.

    Exit codes:
      0 - Job succeeded (or the event does not trigger the workflow)
      2 - Test command exited nonzero
      3 - Provisioning failed
      1 - Configuration or tooling error
    """
    configure_logging(verbose)
    repo = repo_root.expanduser().resolve()
    spec = _load(_resolve_workflow_path(workflow, repo), job)
    if no_checkout:
        spec = dataclasses.replace(spec, checkout=False)

    try:
        trigger_event = _resolve_event(event, ref, sha, base_ref)
        settings = resolve_settings(
            repo_root=repo,
            run_root=run_root,
            nix_bin=nix_bin,
            git_bin=git_bin,
            secrets_file=secrets_file,
            timestamp_mode=timestamp_mode,
        )
        secrets = SecretStore.from_sources(os.environ, settings.secrets_file)
    except (NixciError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(EXIT_TOOLING_ERROR) from e

    requests = schedule(spec, [trigger_event])
    if not requests:
        console.print(f"Event '{trigger_event.kind.value}' does not trigger '{spec.name}'; nothing to do.")
        raise typer.Exit(EXIT_OK)

    try:
        outcome = run_jobs(requests, repo_root=repo, settings=settings, secrets=secrets)[0]
    except NixciError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(EXIT_TOOLING_ERROR) from e

    _print_outcome(outcome.result.state, outcome.result.failed_stage, outcome.result.message, outcome.paths)
    if outcome.result.succeeded:
        raise typer.Exit(EXIT_OK)
    if outcome.result.failed_stage is JobState.TESTING:
        raise typer.Exit(EXIT_TEST_FAILED)
    raise typer.Exit(EXIT_PROVISIONING_FAILED)


def _print_outcome(state: JobState, failed_stage: JobState | None, message: str, paths: dict[str, Path]) -> None:
    if state is JobState.SUCCEEDED:
        console.print("[bold green]✅ Job succeeded[/bold green]")
    else:
        console.print(f"[bold red]❌ Job failed at {failed_stage.value if failed_stage else 'unknown'}[/bold red]")
        if message:
            console.print(message, markup=False)
    console.print("\nReports written to:")
    for key in ("json", "markdown"):
        if key in paths:
            console.print(f"  {paths[key]}", markup=False)


@cli.command()
def plan(
    workflow: Path | None = typer.Option(None, "--workflow", "-w", help="Workflow file"),
    repo_root: Path = typer.Option(Path("."), "--repo-root", help="Repository root"),
    job: str | None = typer.Option(None, "--job", help="Job to plan"),
    as_json: bool = typer.Option(False, "--json", help="Print the plan as JSON"),
) -> None:
    """Show what a job would do without executing anything."""
    repo = repo_root.expanduser().resolve()
    spec = _load(_resolve_workflow_path(workflow, repo), job)

    payload = {
        "name": spec.name,
        "triggers": [k.value for k in spec.triggers.kinds],
        "checkout": spec.checkout,
        "substituters": spec.trust.substituters,
        "trusted_public_keys": spec.trust.public_keys,
        "extra_nix_settings": dict(spec.extra_nix_settings),
        "credential_secret": spec.credential.secret_name if spec.credential else None,
        "installable": spec.descriptor.installable,
        "impure": spec.descriptor.impure,
        "test_command": spec.test_command,
    }
    if as_json:
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        return

    table = Table(title=f"nixci plan: {spec.name}", show_header=False)
    table.add_column("field", style="bold cyan")
    table.add_column("value")
    table.add_row("triggers", ", ".join(payload["triggers"]))
    table.add_row("checkout", "yes" if spec.checkout else "no")
    for pair in spec.trust.pairs:
        table.add_row("substituter", f"{pair.substituter}\n  {pair.public_key}")
    table.add_row("credential", f"secrets.{payload['credential_secret']}" if spec.credential else "-")
    table.add_row("environment", f"{spec.descriptor.installable}{' --impure' if spec.descriptor.impure else ''}")
    table.add_row("test command", spec.test_command)
    console.print(table)


@cli.command()
def validate(
    workflow: Path | None = typer.Option(None, "--workflow", "-w", help="Workflow file"),
    repo_root: Path = typer.Option(Path("."), "--repo-root", help="Repository root"),
    job: str | None = typer.Option(None, "--job", help="Job to validate"),
) -> None:
    """Validate a workflow file. Exit 0 when valid, 1 otherwise."""
    repo = repo_root.expanduser().resolve()
    path = _resolve_workflow_path(workflow, repo)
    spec = _load(path, job)
    console.print(f"✅ {path} is valid ('{spec.name}': `{spec.test_command}`)", markup=False)


@cli.command(name="doctor")
def doctor_cmd(
    out: Path = typer.Option(
        Path("./out/nixci_doctor"),
        "--out",
        "-o",
        help="Output directory for doctor reports"
    ),
    workflow: Path | None = typer.Option(None, "--workflow", "-w", help="Workflow file"),
    repo_root: Path = typer.Option(Path("."), "--repo-root", help="Repository root"),
    timestamp_mode: str = typer.Option(
        "deterministic",
        "--timestamp-mode",
        help="Timestamp mode: deterministic or wallclock"
    ),
    require_git: bool = typer.Option(False, "--require-git", help="Fail if git is not available"),
) -> None:
    """Check that this host can run the workflow and write DOCTOR_REPORT.

    Exit codes:
      0 - All checks passed
      2 - One or more checks failed
      1 - Tooling error
    """
    from nixci.doctor import run_doctor

    repo = repo_root.expanduser().resolve()
    try:
        settings: RunSettings = resolve_settings(repo_root=repo, timestamp_mode=timestamp_mode)
        report = run_doctor(
            out_dir=out,
            repo_root=repo,
            workflow_path=_resolve_workflow_path(workflow, repo),
            settings=settings,
            require_git=require_git,
        )
    except (OSError, ValueError) as e:
        typer.echo(f"❌ Doctor run failed: {e}", err=True)
        raise typer.Exit(code=EXIT_TOOLING_ERROR) from e

    typer.echo("\nnixci Doctor Report")
    typer.echo(f"Status: {report.status.upper()}")
    typer.echo("\nChecks:")
    typer.echo(f"  Passed: {report.checks['passed']}")
    typer.echo(f"  Failed: {report.checks['failed']}")
    typer.echo(f"  Warnings: {report.checks['warnings']}")
    typer.echo("\nReports written to:")
    typer.echo(f"  {out / 'DOCTOR_REPORT.json'}")
    typer.echo(f"  {out / 'DOCTOR_REPORT.md'}")

    if report.status == "failed":
        typer.echo("\n❌ Some checks failed. See report for details.")
        raise typer.Exit(code=2)
    typer.echo("\n✅ All checks passed.")


if __name__ == "__main__":
    cli()
