"""Job reports: JOB_REPORT.json, JOB_REPORT.md and captured test output."""

from __future__ import annotations

import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any, TextIO

from nixci.artifacts import sha256_text, write_json
from nixci.log import redact
from nixci.provision.nix_config import NixConfig
from nixci.schemas.validator import validate_data
from nixci.workflow.types import JobResult, TriggerEvent, WorkflowSpec

logger = logging.getLogger(__name__)

REPORT_SCHEMA_VERSION = "1.0"
JOB_REPORT_JSON = "JOB_REPORT.json"
JOB_REPORT_MD = "JOB_REPORT.md"
TEST_STDOUT_LOG = "TEST_STDOUT.log"
TEST_STDERR_LOG = "TEST_STDERR.log"
JOB_ARTIFACTS = frozenset({JOB_REPORT_JSON, JOB_REPORT_MD, TEST_STDOUT_LOG, TEST_STDERR_LOG})


def build_report(
    *,
    run_id: str,
    generated_at: str,
    timestamp_mode: str,
    workflow: WorkflowSpec,
    event: TriggerEvent,
    result: JobResult,
    config: NixConfig,
    artifacts: list[str],
    logs: dict[str, str] | None = None,
) -> dict[str, Any]:
    """Assemble the JSON report payload (secrets masked).

    ``logs`` maps captured log file names to their redacted text; only the
    SHA-256 of each is recorded.
    """
    return {
        "schema_version": REPORT_SCHEMA_VERSION,
        "generated_at": generated_at,
        "timestamp_mode": timestamp_mode,
        "run_id": run_id,
        "workflow": {
            "name": workflow.name,
            "source_path": workflow.source_path,
            "test_command": workflow.test_command,
        },
        "event": {
            "kind": event.kind.value,
            "ref": event.ref,
            "sha": event.sha,
            "base_ref": event.base_ref,
        },
        "state": result.state.value,
        "failed_stage": result.failed_stage.value if result.failed_stage else None,
        "exit_status": result.exit_status,
        "message": redact(result.message),
        "timeline": [
            {**asdict(record), "detail": redact(record.detail)} for record in result.timeline
        ],
        "environment": {
            "installable": workflow.descriptor.installable,
            "impure": workflow.descriptor.impure,
            "nix_settings": config.public_dict(),
        },
        "artifacts": sorted(artifacts),
        "log_sha256": {name: sha256_text(redact(text)) for name, text in sorted((logs or {}).items())},
    }


def write_job_report(
    run_dir: Path,
    report: dict[str, Any],
    *,
    stdout_text: str | None,
    stderr_text: str | None,
) -> dict[str, Path]:
    """Write report files into ``run_dir`` and return their paths.

    Raises:
        ValueError: If the report does not match the job_report schema
    """
    validate_data(report, "job_report", strict=True)
    run_dir.mkdir(parents=True, exist_ok=True)

    # Deterministic run ids reuse the directory; drop files this run did not produce
    for stale in sorted(JOB_ARTIFACTS - set(report["artifacts"])):
        (run_dir / stale).unlink(missing_ok=True)

    paths: dict[str, Path] = {}
    if stdout_text is not None:
        paths["stdout"] = run_dir / TEST_STDOUT_LOG
        paths["stdout"].write_text(redact(stdout_text), encoding="utf-8")
    if stderr_text is not None:
        paths["stderr"] = run_dir / TEST_STDERR_LOG
        paths["stderr"].write_text(redact(stderr_text), encoding="utf-8")

    paths["json"] = run_dir / JOB_REPORT_JSON
    write_json(paths["json"], report)

    paths["markdown"] = run_dir / JOB_REPORT_MD
    with open(paths["markdown"], "w", encoding="utf-8") as f:
        write_markdown_report(f, report)

    logger.debug("report written to %s", paths["json"])
    return paths


def write_markdown_report(f: TextIO, report: dict[str, Any]) -> None:
    """Write human-readable markdown report."""
    f.write(f"# nixci Job Report: {report['workflow']['name']}\n\n")

    status_emoji = "✅" if report["state"] == "succeeded" else "❌"
    f.write(f"**Status**: {status_emoji} {report['state'].upper()}\n\n")
    if report["failed_stage"]:
        f.write(f"**Failed at**: {report['failed_stage']}\n\n")
    if report["exit_status"] is not None:
        f.write(f"**Exit status**: {report['exit_status']}\n\n")
    f.write(f"**Generated**: {report['generated_at']} ({report['timestamp_mode']})\n\n")

    event = report["event"]
    f.write("## Event\n\n")
    f.write(f"- Kind: `{event['kind']}`\n")
    if event["ref"]:
        f.write(f"- Ref: `{event['ref']}`\n")
    if event["sha"]:
        f.write(f"- Commit: `{event['sha']}`\n")
    f.write("\n")

    env = report["environment"]
    f.write("## Environment\n\n")
    f.write(f"- Installable: `{env['installable']}`\n")
    f.write(f"- Impure: {'yes' if env['impure'] else 'no'}\n")
    f.write(f"- Test command: `{report['workflow']['test_command']}`\n\n")

    f.write("## Steps\n\n")
    symbols = {"ok": "✅", "failed": "❌", "skipped": "⏭️", "started": "▶️"}
    for record in report["timeline"]:
        if record["status"] == "started":
            continue
        line = f"- {symbols.get(record['status'], '-')} {record['step']}"
        if record["detail"]:
            line += f": {record['detail'].splitlines()[0]}"
        f.write(line + "\n")
    f.write("\n")

    if report["message"]:
        f.write("## Message\n\n")
        f.write("```\n" + report["message"].rstrip() + "\n```\n")


def append_step_summary(summary_path: Path, report: dict[str, Any]) -> None:
    """Append the markdown report to the CI host's step summary file."""
    summary_path.parent.mkdir(parents=True, exist_ok=True)
    with open(summary_path, "a", encoding="utf-8") as f:
        write_markdown_report(f, report)
        f.write("\n")

