"""Single-job executor.

A job moves ``pending -> provisioning -> testing -> succeeded|failed`` with no
branching and no parallel path. Checkout, trust configuration and credential
relay all happen inside ``provisioning`` and strictly before any ``nix``
command resolves a package.
"""

from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path

from nixci.checkout import checkout
from nixci.errors import ProvisioningError
from nixci.exec import Runner, run_command
from nixci.invoker import CommandOutcome, invoke_tests
from nixci.log import secret_scope
from nixci.provision.credentials import apply_credential, resolve_credential
from nixci.provision.nix_config import NixConfig
from nixci.provision.provisioner import NixProvisioner
from nixci.provision.secrets import SecretStore
from nixci.provision.trust import apply_trust
from nixci.report import (
    JOB_REPORT_JSON,
    JOB_REPORT_MD,
    TEST_STDERR_LOG,
    TEST_STDOUT_LOG,
    append_step_summary,
    build_report,
    write_job_report,
)
from nixci.settings import RunSettings, make_run_id, timestamp_for
from nixci.trigger import JobRequest
from nixci.workflow.types import ALLOWED_TRANSITIONS, JobResult, JobState, StepRecord

logger = logging.getLogger(__name__)

STEP_CHECKOUT = "checkout"
STEP_TRUST = "configure-trust"
STEP_CREDENTIAL = "relay-credential"
STEP_PROVISION = "provision"
STEP_TEST = "test"


@dataclass
class JobOutcome:
    """Job result plus where its reports were written."""

    run_id: str
    run_dir: Path
    result: JobResult
    report: dict = field(default_factory=dict)
    paths: dict[str, Path] = field(default_factory=dict)


class Job:
    """Execute one JobRequest against a repository checkout."""

    def __init__(
        self,
        request: JobRequest,
        *,
        repo_root: Path,
        settings: RunSettings,
        secrets: SecretStore,
        runner: Runner = run_command,
    ) -> None:
        self.request = request
        self.repo_root = repo_root.resolve()
        self.settings = settings
        self.secrets = secrets
        self.runner = runner
        self.provisioner = NixProvisioner(nix_bin=settings.nix_bin, runner=runner)
        self.result = JobResult(state=JobState.PENDING, transitions=[JobState.PENDING])
        self.run_id = make_run_id(_run_prefix(request), settings.timestamp_mode)
        self.run_dir = settings.run_root / self.run_id

    def _transition(self, state: JobState) -> None:
        current = self.result.state
        if state not in ALLOWED_TRANSITIONS[current]:
            raise RuntimeError(f"illegal job transition {current.value} -> {state.value}")
        logger.debug("job %s: %s -> %s", self.run_id, current.value, state.value)
        self.result.state = state
        self.result.transitions.append(state)

    def _record(self, step: str, status: str, detail: str = "") -> None:
        self.result.timeline.append(StepRecord(step=step, status=status, detail=detail))

    def _fail(self, stage: JobState, message: str, exit_status: int | None = None) -> None:
        self.result.failed_stage = stage
        self.result.message = message
        self.result.exit_status = exit_status
        self._transition(JobState.FAILED)

    def run(self) -> JobOutcome:
        """Run the job to a terminal state and write its reports.

        Provisioning failures and nonzero test exits produce a failed result;
        neither is raised to the caller.
        """
        workflow = self.request.workflow
        config = NixConfig()
        outcome: CommandOutcome | None = None

        with ExitStack() as stack:
            self._transition(JobState.PROVISIONING)
            try:
                self._provision(config, stack)
            except ProvisioningError as exc:
                logger.error("provisioning failed: %s", exc)
                self._fail(JobState.PROVISIONING, str(exc))
            else:
                self._transition(JobState.TESTING)
                self._record(STEP_TEST, "started", workflow.test_command)
                outcome = invoke_tests(
                    self.provisioner,
                    workflow.descriptor,
                    workflow.test_command,
                    repo_root=self.repo_root,
                    config=config,
                )
                if outcome.passed:
                    self._record(STEP_TEST, "ok", "exit status 0")
                    self.result.exit_status = 0
                    self._transition(JobState.SUCCEEDED)
                else:
                    detail = f"exit status {outcome.exit_status}"
                    self._record(STEP_TEST, "failed", detail)
                    self._fail(JobState.TESTING, f"test command failed with {detail}", outcome.exit_status)

            # Reports are written while the credential is still registered for redaction
            return self._write_reports(config, outcome)

    def _provision(self, config: NixConfig, stack: ExitStack) -> None:
        workflow = self.request.workflow

        if workflow.checkout:
            self._record(STEP_CHECKOUT, "started")
            try:
                head = checkout(
                    self.repo_root,
                    self.request.event.sha,
                    git_bin=self.settings.git_bin,
                    runner=self.runner,
                )
            except ProvisioningError as exc:
                self._record(STEP_CHECKOUT, "failed", str(exc))
                raise
            self._record(STEP_CHECKOUT, "ok", head)
        else:
            self._record(STEP_CHECKOUT, "skipped")

        apply_trust(config, workflow.trust)
        for name, value in workflow.extra_nix_settings:
            config.set(name, value)
        self._record(STEP_TRUST, "ok", ", ".join(workflow.trust.substituters))

        if workflow.credential is not None:
            try:
                credential = resolve_credential(workflow.credential, self.secrets)
            except ProvisioningError as exc:
                self._record(STEP_CREDENTIAL, "failed", str(exc))
                raise
            stack.enter_context(secret_scope(credential.token))
            apply_credential(config, credential)
            self._record(STEP_CREDENTIAL, "ok", f"{credential.host} via secrets.{workflow.credential.secret_name}")
        else:
            self._record(STEP_CREDENTIAL, "skipped")

        self._record(STEP_PROVISION, "started", workflow.descriptor.installable)
        try:
            self.provisioner.check_available(self.repo_root)
            self.provisioner.realize(workflow.descriptor, cwd=self.repo_root, config=config)
        except ProvisioningError as exc:
            self._record(STEP_PROVISION, "failed", str(exc))
            raise
        self._record(STEP_PROVISION, "ok", workflow.descriptor.installable)

    def _write_reports(self, config: NixConfig, outcome: CommandOutcome | None) -> JobOutcome:
        artifacts = [JOB_REPORT_JSON, JOB_REPORT_MD]
        logs: dict[str, str] = {}
        if outcome is not None:
            logs = {TEST_STDOUT_LOG: outcome.stdout, TEST_STDERR_LOG: outcome.stderr}
            artifacts += list(logs)

        report = build_report(
            run_id=self.run_id,
            generated_at=timestamp_for(self.settings.timestamp_mode),
            timestamp_mode=self.settings.timestamp_mode,
            workflow=self.request.workflow,
            event=self.request.event,
            result=self.result,
            config=config,
            artifacts=artifacts,
            logs=logs,
        )
        paths = write_job_report(
            self.run_dir,
            report,
            stdout_text=outcome.stdout if outcome else None,
            stderr_text=outcome.stderr if outcome else None,
        )
        if self.settings.step_summary is not None:
            append_step_summary(self.settings.step_summary, report)

        return JobOutcome(run_id=self.run_id, run_dir=self.run_dir, result=self.result, report=report, paths=paths)


def run_jobs(
    requests: list[JobRequest],
    *,
    repo_root: Path,
    settings: RunSettings,
    secrets: SecretStore,
    runner: Runner = run_command,
    max_workers: int = 1,
) -> list[JobOutcome]:
    """Run independent jobs, optionally concurrently. Results keep request order."""
    jobs = [Job(r, repo_root=repo_root, settings=settings, secrets=secrets, runner=runner) for r in requests]
    if max_workers <= 1 or len(jobs) <= 1:
        return [job.run() for job in jobs]

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [executor.submit(job.run) for job in jobs]
        return [future.result() for future in futures]


def _run_prefix(request: JobRequest) -> str:
    sha = re.sub(r"[^0-9A-Za-z]", "", request.event.sha or "")[:12] or "HEAD"
    prefix = f"{request.event.kind.value}_{sha}"
    if request.sequence:
        prefix += f"_{request.sequence}"
    return prefix
