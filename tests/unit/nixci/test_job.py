"""Tests for the job state machine, using a scripted runner instead of nix."""

from __future__ import annotations

import dataclasses
import hashlib
import json
from pathlib import Path

import pytest

from nixci.job import Job, run_jobs
from nixci.log import active_secret_count
from nixci.provision.secrets import SecretStore
from nixci.settings import RunSettings
from nixci.trigger import JobRequest, make_event
from nixci.workflow.loader import parse_workflow
from nixci.workflow.types import JobState


@pytest.fixture
def settings(tmp_path: Path) -> RunSettings:
    return RunSettings(run_root=tmp_path / "runs")


@pytest.fixture
def secrets(token: str) -> SecretStore:
    return SecretStore.from_sources({"GITHUB_TOKEN": token})


def _request(ci_workflow: str, kind: str = "push", sha: str | None = "a1b2c3d4e5f6a7b8", sequence: int = 0):
    return JobRequest(event=make_event(kind, ref="refs/heads/main", sha=sha), workflow=parse_workflow(ci_workflow),
                      sequence=sequence)


def _job(ci_workflow, repo_root, settings, secrets, runner, **kwargs) -> Job:
    return Job(_request(ci_workflow, **kwargs), repo_root=repo_root, settings=settings, secrets=secrets, runner=runner)


def test_push_with_passing_tests_succeeds(ci_workflow, repo_root, settings, secrets, fake_runner) -> None:
    outcome = _job(ci_workflow, repo_root, settings, secrets, fake_runner).run()

    result = outcome.result
    assert result.state is JobState.SUCCEEDED
    assert result.exit_status == 0
    assert result.failed_stage is None
    assert result.transitions == [JobState.PENDING, JobState.PROVISIONING, JobState.TESTING, JobState.SUCCEEDED]

    assert outcome.run_id == "push_a1b2c3d4e5f6_DETERMINISTIC"
    report = json.loads(outcome.paths["json"].read_text(encoding="utf-8"))
    assert report["state"] == "succeeded"
    assert report["environment"]["impure"] is True
    assert outcome.paths["stdout"].read_text(encoding="utf-8") == fake_runner.test_stdout
    assert report["log_sha256"]["TEST_STDOUT.log"] == hashlib.sha256(outcome.paths["stdout"].read_bytes()).hexdigest()


def test_provisioning_failure_never_runs_tests(ci_workflow, repo_root, settings, secrets, fake_runner) -> None:
    fake_runner.realize_rc = 1
    fake_runner.realize_stderr = "error: cannot build derivation\n"

    outcome = _job(ci_workflow, repo_root, settings, secrets, fake_runner, kind="pull_request").run()

    result = outcome.result
    assert result.state is JobState.FAILED
    assert result.failed_stage is JobState.PROVISIONING
    assert result.exit_status is None
    assert "cannot build derivation" in result.message
    assert JobState.TESTING not in result.transitions
    assert all("cargo" not in argv for argv in fake_runner.nix_calls())
    assert "stdout" not in outcome.paths


def test_failing_tests_report_exit_status(ci_workflow, repo_root, settings, secrets, fake_runner) -> None:
    fake_runner.test_rc = 101

    result = _job(ci_workflow, repo_root, settings, secrets, fake_runner).run().result

    assert result.state is JobState.FAILED
    assert result.failed_stage is JobState.TESTING
    assert result.exit_status == 101
    assert result.transitions[-2:] == [JobState.TESTING, JobState.FAILED]


def test_trust_is_configured_before_nix_resolves_anything(
    ci_workflow, repo_root, settings, secrets, fake_runner, trust_keys
) -> None:
    outcome = _job(ci_workflow, repo_root, settings, secrets, fake_runner).run()

    develop_calls = [(argv, env) for argv, _, env in fake_runner.calls if "develop" in argv]
    assert develop_calls
    for _, env in develop_calls:
        nix_config = env["NIX_CONFIG"]
        assert "substituters = https://hydra.iohk.io https://cache.nixos.org/\n" in nix_config
        assert f"trusted-public-keys = {' '.join(trust_keys)}\n" in nix_config
        assert "access-tokens = github.com=" in nix_config

    steps = [(r.step, r.status) for r in outcome.result.timeline]
    assert steps == [
        ("checkout", "started"),
        ("checkout", "ok"),
        ("configure-trust", "ok"),
        ("relay-credential", "ok"),
        ("provision", "started"),
        ("provision", "ok"),
        ("test", "started"),
        ("test", "ok"),
    ]


def test_checkout_uses_event_sha(ci_workflow, repo_root, settings, secrets, fake_runner) -> None:
    _job(ci_workflow, repo_root, settings, secrets, fake_runner).run()
    git_calls = [argv[1:] for argv, _, _ in fake_runner.calls if argv[0] == "git"]
    assert ("checkout", "--detach", "--force", "a1b2c3d4e5f6a7b8") in git_calls


def test_checkout_failure_is_a_provisioning_failure(ci_workflow, repo_root, settings, secrets, fake_runner) -> None:
    fake_runner.git_rc = 128

    result = _job(ci_workflow, repo_root, settings, secrets, fake_runner).run().result

    assert result.failed_stage is JobState.PROVISIONING
    assert "not a git repository" in result.message
    assert fake_runner.nix_calls() == []


def test_missing_secret_fails_provisioning(ci_workflow, repo_root, settings, fake_runner) -> None:
    result = _job(ci_workflow, repo_root, settings, SecretStore(), fake_runner).run().result

    assert result.failed_stage is JobState.PROVISIONING
    assert "GITHUB_TOKEN" in result.message
    assert fake_runner.nix_calls() == []


def test_missing_nix_fails_provisioning(ci_workflow, repo_root, settings, secrets, fake_runner) -> None:
    fake_runner.version_rc = 127

    result = _job(ci_workflow, repo_root, settings, secrets, fake_runner).run().result

    assert result.failed_stage is JobState.PROVISIONING
    assert "nix executable not found" in result.message


def test_unexecutable_nix_fails_provisioning(ci_workflow, repo_root, tmp_path, secrets) -> None:
    nix = tmp_path / "nix"
    nix.write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
    nix.chmod(0o644)
    settings = RunSettings(run_root=tmp_path / "runs", nix_bin=str(nix))
    request = _request(ci_workflow)
    request = dataclasses.replace(request, workflow=dataclasses.replace(request.workflow, checkout=False))

    outcome = Job(request, repo_root=repo_root, settings=settings, secrets=secrets).run()

    assert outcome.result.state is JobState.FAILED
    assert outcome.result.failed_stage is JobState.PROVISIONING
    assert "nix executable is not runnable" in outcome.result.message
    assert outcome.paths["json"].exists()


def test_token_never_reaches_reports_or_logs(ci_workflow, repo_root, settings, secrets, fake_runner, token) -> None:
    fake_runner.echo_nix_config = True

    outcome = _job(ci_workflow, repo_root, settings, secrets, fake_runner).run()

    assert outcome.result.succeeded
    written = [p for p in outcome.run_dir.rglob("*") if p.is_file()]
    assert {p.name for p in written} == {"JOB_REPORT.json", "JOB_REPORT.md", "TEST_STDOUT.log", "TEST_STDERR.log"}
    for path in written:
        assert token not in path.read_text(encoding="utf-8")
    assert "access-tokens = github.com=***" in outcome.paths["stdout"].read_text(encoding="utf-8")
    assert outcome.report["environment"]["nix_settings"]["access-tokens"] == "***"
    assert active_secret_count() == 0


def test_deterministic_reports_are_byte_identical(ci_workflow, repo_root, settings, secrets, fake_runner) -> None:
    first = _job(ci_workflow, repo_root, settings, secrets, fake_runner).run()
    first_bytes = first.paths["json"].read_bytes()

    second = _job(ci_workflow, repo_root, settings, secrets, fake_runner).run()

    assert second.paths["json"] == first.paths["json"]
    assert second.paths["json"].read_bytes() == first_bytes


def test_rerun_in_same_run_dir_drops_previous_logs(ci_workflow, repo_root, settings, secrets, fake_runner) -> None:
    first = _job(ci_workflow, repo_root, settings, secrets, fake_runner).run()
    assert (first.run_dir / "TEST_STDOUT.log").exists()

    fake_runner.realize_rc = 1
    second = _job(ci_workflow, repo_root, settings, secrets, fake_runner).run()

    assert second.run_dir == first.run_dir
    assert second.result.failed_stage is JobState.PROVISIONING
    files = sorted(p.name for p in second.run_dir.iterdir())
    assert files == ["JOB_REPORT.json", "JOB_REPORT.md"]
    assert files == second.report["artifacts"]


def test_illegal_transition_raises(ci_workflow, repo_root, settings, secrets, fake_runner) -> None:
    job = _job(ci_workflow, repo_root, settings, secrets, fake_runner)
    with pytest.raises(RuntimeError, match="illegal job transition pending -> succeeded"):
        job._transition(JobState.SUCCEEDED)


def test_terminal_job_cannot_run_again(ci_workflow, repo_root, settings, secrets, fake_runner) -> None:
    job = _job(ci_workflow, repo_root, settings, secrets, fake_runner)
    job.run()
    with pytest.raises(RuntimeError, match="succeeded -> provisioning"):
        job.run()


def test_step_summary_is_appended(ci_workflow, repo_root, tmp_path, secrets, fake_runner) -> None:
    summary = tmp_path / "summary.md"
    settings = RunSettings(run_root=tmp_path / "runs", step_summary=summary)

    _job(ci_workflow, repo_root, settings, secrets, fake_runner).run()
    _job(ci_workflow, repo_root, settings, secrets, fake_runner, sequence=1).run()

    text = summary.read_text(encoding="utf-8")
    assert text.count("# nixci Job Report: Test") == 2
    assert "SUCCEEDED" in text


def test_run_jobs_keeps_request_order(ci_workflow, repo_root, settings, secrets, fake_runner) -> None:
    requests = [
        _request(ci_workflow, kind="push", sequence=0),
        _request(ci_workflow, kind="pull_request", sequence=1),
    ]

    outcomes = run_jobs(
        requests, repo_root=repo_root, settings=settings, secrets=secrets, runner=fake_runner, max_workers=2
    )

    assert [o.run_id for o in outcomes] == [
        "push_a1b2c3d4e5f6_DETERMINISTIC",
        "pull_request_a1b2c3d4e5f6_1_DETERMINISTIC",
    ]
    assert all(o.result.succeeded for o in outcomes)
    assert outcomes[0].run_dir != outcomes[1].run_dir
