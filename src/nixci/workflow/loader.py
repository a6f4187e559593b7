"""Workflow declaration loader.

Reads the subset of a GitHub Actions workflow that a Nix test pipeline uses:

- ``on``: push and/or pull_request, optionally with branch filters
- ``actions/checkout``
- ``cachix/install-nix-action`` with ``extra_nix_config`` and/or
  ``github_access_token`` (which must reference a secret)
- exactly one ``run`` step, usually ``nix develop [--impure] --command ...``
"""

from __future__ import annotations

import logging
import re
import shlex
from pathlib import Path
from typing import Any

import yaml

from nixci.errors import TrustConfigurationError, WorkflowError
from nixci.provision.trust import parse_nix_config_block, split_trust_settings
from nixci.schemas.validator import validate_data
from nixci.workflow.types import (
    BranchFilter,
    CredentialRef,
    EnvironmentDescriptor,
    EventKind,
    TriggerPolicy,
    TrustConfiguration,
    TrustPair,
    WorkflowSpec,
)

logger = logging.getLogger(__name__)

CHECKOUT_ACTION = "actions/checkout"
INSTALL_NIX_ACTION = "cachix/install-nix-action"
IGNORED_INSTALL_INPUTS = frozenset({"install_url", "install_options", "nix_path", "enable_kvm"})

SECRET_EXPRESSION = re.compile(r"^\$\{\{\s*secrets\.([A-Za-z_][A-Za-z0-9_]*)\s*\}\}$")
NIX_DEVELOP = re.compile(r"^nix\s+develop(?=\s|$)")
# First --command / -c word; everything after it is the test command
COMMAND_FLAG = re.compile(r"(?:^|\s)(?:--command|-c)(?=\s|$)")


def load_workflow(path: Path, job: str | None = None) -> WorkflowSpec:
    """Load and resolve a workflow file.

    Args:
        path: Workflow YAML file
        job: Job name to select when the workflow declares several

    Raises:
        WorkflowError: If the file is unreadable, invalid, or unsupported
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise WorkflowError(f"cannot read workflow {path}: {exc}") from exc
    return parse_workflow(text, source_path=str(path), job=job)


def parse_workflow(text: str, *, source_path: str | None = None, job: str | None = None) -> WorkflowSpec:
    """Parse workflow YAML text into a WorkflowSpec."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise WorkflowError(f"workflow is not valid YAML: {exc}") from exc

    if not isinstance(data, dict):
        raise WorkflowError("workflow must be a YAML mapping")

    data = normalize_document(data)
    ok, errors = validate_data(data, "workflow", strict=False)
    if not ok:
        raise WorkflowError("workflow failed schema validation:\n" + "\n".join(f"  - {e}" for e in errors))

    triggers = parse_triggers(data["on"])
    job_name, job_data = _select_job(data["jobs"], job)
    name = str(data.get("name") or job_name)

    checkout = False
    trust = TrustConfiguration()
    extra_settings: list[tuple[str, str]] = []
    credential: CredentialRef | None = None
    run_steps: list[tuple[str, str]] = []

    for index, step in enumerate(job_data["steps"]):
        label = step.get("name") or f"step {index + 1}"
        if "run" in step:
            run_steps.append((label, step["run"]))
            continue

        action, _, _version = step["uses"].partition("@")
        inputs = step.get("with") or {}
        if action == CHECKOUT_ACTION:
            checkout = True
        elif action == INSTALL_NIX_ACTION:
            block_trust, block_settings, block_credential = _parse_install_nix(label, inputs)
            trust = _merge_trust(trust, block_trust)
            extra_settings.extend(block_settings)
            if block_credential is not None:
                credential = block_credential
        else:
            raise WorkflowError(f"{label}: unsupported action '{step['uses']}'")

    if len(run_steps) != 1:
        raise WorkflowError(f"job '{job_name}' must have exactly one run step, found {len(run_steps)}")

    step_name, run = run_steps[0]
    descriptor, test_command = parse_run_command(run)

    return WorkflowSpec(
        name=name,
        source_path=source_path,
        triggers=triggers,
        checkout=checkout,
        trust=trust,
        credential=credential,
        extra_nix_settings=tuple(extra_settings),
        descriptor=descriptor,
        test_command=test_command,
        test_step_name=step_name,
    )


def normalize_document(data: dict[Any, Any]) -> dict[str, Any]:
    """Undo YAML 1.1 coercion of the ``on`` key to boolean True."""
    normalized = {str(k): v for k, v in data.items() if k is not True}
    if True in data and "on" not in normalized:
        normalized["on"] = data[True]
    return normalized


def parse_triggers(raw: Any) -> TriggerPolicy:
    """Parse the ``on`` block into a TriggerPolicy."""
    if isinstance(raw, str):
        entries: dict[str, Any] = {raw: None}
    elif isinstance(raw, list):
        entries = {str(item): None for item in raw}
    else:
        entries = dict(raw)

    kinds: list[EventKind] = []
    filters: dict[EventKind, BranchFilter] = {}
    for event_name, config in entries.items():
        try:
            kind = EventKind(event_name)
        except ValueError as exc:
            raise WorkflowError(f"unsupported trigger event: {event_name}") from exc
        kinds.append(kind)

        if config is None:
            continue
        if not isinstance(config, dict):
            raise WorkflowError(f"trigger '{event_name}' must be a mapping")
        unknown = set(config) - {"branches", "branches-ignore"}
        if unknown:
            raise WorkflowError(f"trigger '{event_name}' has unsupported filter(s): {', '.join(sorted(unknown))}")
        if "branches" in config and "branches-ignore" in config:
            raise WorkflowError(f"trigger '{event_name}' cannot use both branches and branches-ignore")
        filters[kind] = BranchFilter(
            branches=tuple(str(b) for b in config.get("branches") or ()),
            branches_ignore=tuple(str(b) for b in config.get("branches-ignore") or ()),
        )

    return TriggerPolicy(kinds=tuple(kinds), filters=filters)


def parse_run_command(run: str) -> tuple[EnvironmentDescriptor, str]:
    """Split a run step into the environment descriptor and the test command.

    ``nix develop [installable] [--impure] --command <cmd>`` is unpacked and
    ``<cmd>`` is kept as written, shell operators included. Any other run
    step runs verbatim inside the default dev shell of the repository.
    """
    stripped = run.strip()
    if not stripped:
        raise WorkflowError("run step is empty")

    if NIX_DEVELOP.match(stripped) is None:
        return EnvironmentDescriptor(), stripped

    joined = stripped.replace("\\\n", " ")
    if "\n" in joined:
        raise WorkflowError(
            "nix develop run step must be a single command line; "
            "chain further commands after --command instead"
        )

    rest = joined[NIX_DEVELOP.match(joined).end():]
    flag = COMMAND_FLAG.search(rest)
    if flag is None:
        raise WorkflowError("nix develop run step must end with --command <test command>")
    command = rest[flag.end():].strip()
    if not command:
        raise WorkflowError("nix develop --command requires a command")

    try:
        options = shlex.split(rest[:flag.start()])
    except ValueError as exc:
        raise WorkflowError(f"cannot parse nix develop options: {exc}") from exc

    installable = "."
    impure = False
    for arg in options:
        if arg == "--impure":
            impure = True
        elif arg.startswith("-"):
            raise WorkflowError(f"unsupported nix develop option: {arg}")
        elif installable == ".":
            installable = arg
        else:
            raise WorkflowError(f"nix develop accepts one installable, got extra '{arg}'")

    return EnvironmentDescriptor(installable=installable, impure=impure), command


def _select_job(jobs: dict[str, Any], job: str | None) -> tuple[str, dict[str, Any]]:
    if job is not None:
        if job not in jobs:
            raise WorkflowError(f"job '{job}' not found; available: {', '.join(sorted(jobs))}")
        return job, jobs[job]
    if len(jobs) != 1:
        raise WorkflowError(f"workflow has {len(jobs)} jobs; choose one with --job ({', '.join(sorted(jobs))})")
    name = next(iter(jobs))
    return name, jobs[name]


def _parse_install_nix(
    label: str,
    inputs: dict[str, Any],
) -> tuple[TrustConfiguration, list[tuple[str, str]], CredentialRef | None]:
    trust = TrustConfiguration()
    settings: list[tuple[str, str]] = []
    credential = None

    for key, value in inputs.items():
        if key == "extra_nix_config":
            try:
                entries = parse_nix_config_block(str(value))
                trust, settings = split_trust_settings(entries)
            except TrustConfigurationError as exc:
                raise WorkflowError(f"{label}: {exc}") from exc
        elif key == "github_access_token":
            match = SECRET_EXPRESSION.match(str(value).strip())
            if match is None:
                raise WorkflowError(
                    f"{label}: github_access_token must reference a secret, e.g. ${{{{ secrets.GITHUB_TOKEN }}}}"
                )
            credential = CredentialRef(secret_name=match.group(1))
        elif key in IGNORED_INSTALL_INPUTS:
            logger.warning("%s: input '%s' is ignored; Nix must already be installed", label, key)
        else:
            raise WorkflowError(f"{label}: unsupported install-nix-action input '{key}'")

    return trust, settings, credential


def _merge_trust(current: TrustConfiguration, incoming: TrustConfiguration) -> TrustConfiguration:
    if not incoming.pairs:
        return current
    if not current.pairs:
        return incoming
    pairs: list[TrustPair] = list(current.pairs) + list(incoming.pairs)
    return TrustConfiguration(
        pairs=tuple(pairs),
        replace_defaults=current.replace_defaults or incoming.replace_defaults,
    )
