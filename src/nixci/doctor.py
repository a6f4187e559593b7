"""nixci host readiness checker (doctor command).

Validates that the runner host can execute a workflow: bundled schemas are
present, ``nix`` and ``git`` are callable, and the workflow file loads.
"""

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Literal, TextIO

from nixci.artifacts import write_json
from nixci.errors import WorkflowError
from nixci.exec import EXIT_NOT_FOUND, Runner, run_command
from nixci.settings import RunSettings, timestamp_for
from nixci.utils.schema_registry import SchemaRegistry
from nixci.workflow.loader import load_workflow

REQUIRED_SCHEMAS = frozenset({"job_report", "workflow"})


@dataclass
class CheckItem:
    """Individual check result."""

    id: str
    status: Literal["pass", "fail", "warn"]
    message: str
    remediation: list[str] = field(default_factory=list)


@dataclass
class DoctorReport:
    """Complete doctor check report."""

    schema_version: str = "1.0"
    generated_at: str = ""
    timestamp_mode: str = "deterministic"
    status: Literal["passed", "failed"] = "passed"
    checks: dict = field(default_factory=dict)


def _check_schemas() -> CheckItem:
    available = set(SchemaRegistry().available)
    missing = REQUIRED_SCHEMAS - available
    if missing:
        return CheckItem(
            id="schemas",
            status="fail",
            message=f"Missing bundled schemas: {sorted(missing)}",
            remediation=["Reinstall nixci: pip install --force-reinstall -e ."],
        )
    return CheckItem(id="schemas", status="pass", message=f"{len(available)} schemas bundled")


def _check_binary(check_id: str, binary: str, cwd: Path, runner: Runner, required: bool) -> CheckItem:
    result = runner([binary, "--version"], cwd=cwd, check=False)
    if result.returncode == EXIT_NOT_FOUND:
        return CheckItem(
            id=check_id,
            status="fail" if required else "warn",
            message=f"{binary} not found on PATH",
            remediation=[f"Install {binary} or point NIXCI_{check_id.upper()}_BIN at it"],
        )
    if result.returncode != 0:
        return CheckItem(
            id=check_id,
            status="fail",
            message=f"{binary} --version exited {result.returncode}",
            remediation=[(result.stderr or result.stdout).strip() or "Check the installation"],
        )
    return CheckItem(id=check_id, status="pass", message=result.stdout.strip())


def _check_workflow(workflow_path: Path) -> CheckItem:
    try:
        spec = load_workflow(workflow_path)
    except WorkflowError as exc:
        return CheckItem(
            id="workflow",
            status="fail",
            message=str(exc),
            remediation=[f"Fix {workflow_path} or pass --workflow"],
        )
    return CheckItem(
        id="workflow",
        status="pass",
        message=f"'{spec.name}' runs `{spec.test_command}` in {spec.descriptor.installable}",
    )


def run_doctor(
    *,
    out_dir: Path,
    repo_root: Path,
    workflow_path: Path,
    settings: RunSettings,
    require_git: bool = False,
    runner: Runner = run_command,
) -> DoctorReport:
    """Run all checks and write DOCTOR_REPORT.json / DOCTOR_REPORT.md."""
    report = DoctorReport(
        generated_at=timestamp_for(settings.timestamp_mode),
        timestamp_mode=settings.timestamp_mode,
    )

    checks = [
        _check_schemas(),
        _check_binary("nix", settings.nix_bin, repo_root, runner, required=True),
        _check_binary("git", settings.git_bin, repo_root, runner, required=require_git),
        _check_workflow(workflow_path),
    ]

    failed = sum(1 for c in checks if c.status == "fail")
    report.checks = {
        "passed": sum(1 for c in checks if c.status == "pass"),
        "failed": failed,
        "warnings": sum(1 for c in checks if c.status == "warn"),
        "items": [asdict(c) for c in checks],
    }
    report.status = "passed" if failed == 0 else "failed"

    out_dir.mkdir(parents=True, exist_ok=True)
    write_json(out_dir / "DOCTOR_REPORT.json", asdict(report))
    with open(out_dir / "DOCTOR_REPORT.md", "w", encoding="utf-8") as f:
        _write_markdown_report(f, report, checks)

    return report


def _write_markdown_report(f: TextIO, report: DoctorReport, checks: list[CheckItem]) -> None:
    f.write("# nixci Doctor Report\n\n")
    status_emoji = "✅" if report.status == "passed" else "❌"
    f.write(f"**Status**: {status_emoji} {report.status.upper()}\n\n")
    f.write(f"**Generated**: {report.generated_at} ({report.timestamp_mode})\n\n")

    f.write("## Checks\n\n")
    for check in checks:
        status_symbol = {"pass": "✅", "fail": "❌", "warn": "⚠️"}[check.status]
        f.write(f"### {status_symbol} {check.id}\n\n")
        f.write(f"{check.message}\n\n")
        if check.remediation:
            f.write("**Remediation:**\n\n")
            for step in check.remediation:
                f.write(f"- {step}\n")
            f.write("\n")
