"""Workflow declaration model and loader."""

from nixci.workflow.loader import load_workflow, parse_run_command, parse_workflow
from nixci.workflow.types import (
    EnvironmentDescriptor,
    EventKind,
    JobResult,
    JobState,
    TriggerEvent,
    TrustConfiguration,
    TrustPair,
    WorkflowSpec,
)

__all__ = [
    "EnvironmentDescriptor",
    "EventKind",
    "JobResult",
    "JobState",
    "TriggerEvent",
    "TrustConfiguration",
    "TrustPair",
    "WorkflowSpec",
    "load_workflow",
    "parse_run_command",
    "parse_workflow",
]
