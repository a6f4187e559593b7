"""Trigger controller: decide which events schedule a job."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from nixci.errors import WorkflowError
from nixci.workflow.types import EventKind, TriggerEvent, TriggerPolicy, WorkflowSpec

logger = logging.getLogger(__name__)

EVENT_NAME_ENV = "GITHUB_EVENT_NAME"


@dataclass(frozen=True)
class JobRequest:
    """One scheduled job. Each event yields at most one."""

    event: TriggerEvent
    workflow: WorkflowSpec
    sequence: int


def event_from_env(env: Mapping[str, str]) -> TriggerEvent:
    """Build a TriggerEvent from CI host variables.

    Raises:
        WorkflowError: If the event name is missing or unsupported
    """
    name = (env.get(EVENT_NAME_ENV) or "").strip()
    if not name:
        raise WorkflowError(f"{EVENT_NAME_ENV} is not set; pass --event explicitly")
    return make_event(
        name,
        ref=_clean(env.get("GITHUB_REF")),
        sha=_clean(env.get("GITHUB_SHA")),
        base_ref=_clean(env.get("GITHUB_BASE_REF")),
    )


def make_event(
    name: str,
    *,
    ref: str | None = None,
    sha: str | None = None,
    base_ref: str | None = None,
) -> TriggerEvent:
    normalized = name.strip().lower().replace("-", "_")
    try:
        kind = EventKind(normalized)
    except ValueError as exc:
        supported = ", ".join(k.value for k in EventKind)
        raise WorkflowError(f"unsupported event '{name}' (supported: {supported})") from exc
    return TriggerEvent(kind=kind, ref=ref, sha=sha, base_ref=base_ref)


def should_trigger(policy: TriggerPolicy, event: TriggerEvent) -> bool:
    """True if ``event`` schedules a job under ``policy``.

    Without branch filters every event of a subscribed kind triggers.
    """
    if event.kind not in policy.kinds:
        return False

    branch_filter = policy.filters.get(event.kind)
    if branch_filter is None:
        return True

    # A branch filter without a tag filter never matches tag pushes
    if event.kind is EventKind.PUSH and event.is_tag:
        return False

    # pull_request filters match the target branch, push filters the pushed one
    branch = event.base_ref if event.kind is EventKind.PULL_REQUEST else event.branch
    if branch is None:
        return True

    if branch_filter.branches:
        return any(branch_matches(branch, pattern) for pattern in branch_filter.branches)
    if branch_filter.branches_ignore:
        return not any(branch_matches(branch, pattern) for pattern in branch_filter.branches_ignore)
    return True


def branch_matches(branch: str, pattern: str) -> bool:
    """Match a branch name against a workflow glob.

    ``*`` matches within one path segment, ``**`` across ``/``. Every other
    character is literal.
    """
    return re.fullmatch(_glob_to_regex(pattern), branch) is not None


def _glob_to_regex(pattern: str) -> str:
    parts: list[str] = []
    index = 0
    while index < len(pattern):
        if pattern.startswith("**", index):
            parts.append(".*")
            index += 2
        elif pattern[index] == "*":
            parts.append("[^/]*")
            index += 1
        else:
            parts.append(re.escape(pattern[index]))
            index += 1
    return "".join(parts)


def schedule(workflow: WorkflowSpec, events: Iterable[TriggerEvent]) -> list[JobRequest]:
    """Schedule exactly one job per triggering event, in arrival order."""
    jobs: list[JobRequest] = []
    for event in events:
        if should_trigger(workflow.triggers, event):
            jobs.append(JobRequest(event=event, workflow=workflow, sequence=len(jobs)))
        else:
            logger.info("event %s (%s) does not trigger '%s'", event.kind.value, event.ref or "-", workflow.name)
    return jobs


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    trimmed = value.strip()
    return trimmed or None
