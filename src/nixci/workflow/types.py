"""Workflow and job types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class EventKind(str, Enum):
    """Repository event kinds that can schedule a job."""

    PUSH = "push"
    PULL_REQUEST = "pull_request"


class JobState(str, Enum):
    """Per-job lifecycle states. Transitions are strictly sequential."""

    PENDING = "pending"
    PROVISIONING = "provisioning"
    TESTING = "testing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_STATES = frozenset({JobState.SUCCEEDED, JobState.FAILED})

ALLOWED_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.PENDING: frozenset({JobState.PROVISIONING}),
    JobState.PROVISIONING: frozenset({JobState.TESTING, JobState.FAILED}),
    JobState.TESTING: frozenset({JobState.SUCCEEDED, JobState.FAILED}),
    JobState.SUCCEEDED: frozenset(),
    JobState.FAILED: frozenset(),
}


@dataclass(frozen=True)
class TriggerEvent:
    """A repository event. Only ``kind`` decides whether a job runs."""

    kind: EventKind
    ref: str | None = None
    sha: str | None = None
    base_ref: str | None = None

    @property
    def is_tag(self) -> bool:
        return bool(self.ref and self.ref.startswith("refs/tags/"))

    @property
    def branch(self) -> str | None:
        if self.ref is None:
            return None
        for prefix in ("refs/heads/", "refs/pull/"):
            if self.ref.startswith(prefix):
                return self.ref[len(prefix):]
        return self.ref


@dataclass(frozen=True)
class BranchFilter:
    """Optional branch filter declared under one event kind."""

    branches: tuple[str, ...] = ()
    branches_ignore: tuple[str, ...] = ()


@dataclass(frozen=True)
class TriggerPolicy:
    """Event kinds the workflow subscribes to, with optional branch filters."""

    kinds: tuple[EventKind, ...]
    filters: dict[EventKind, BranchFilter] = field(default_factory=dict)


@dataclass(frozen=True)
class EnvironmentDescriptor:
    """The project's declared toolchain, resolved by the provisioner."""

    installable: str = "."
    impure: bool = False


@dataclass(frozen=True)
class TrustPair:
    """One trusted substituter and the public key that signs its content."""

    substituter: str
    public_key: str


@dataclass(frozen=True)
class TrustConfiguration:
    """Ordered substituter/key pairs, paired positionally."""

    pairs: tuple[TrustPair, ...] = ()
    # False when declared through the extra-* settings, which extend Nix's defaults
    replace_defaults: bool = True

    @property
    def substituters(self) -> list[str]:
        return _unique(p.substituter for p in self.pairs)

    @property
    def public_keys(self) -> list[str]:
        return _unique(p.public_key for p in self.pairs)


@dataclass(frozen=True)
class CredentialRef:
    """Reference to a secret by name, never the secret itself."""

    secret_name: str
    host: str = "github.com"


@dataclass(frozen=True)
class WorkflowSpec:
    """Resolved workflow declaration: everything one job needs."""

    name: str
    source_path: str | None
    triggers: TriggerPolicy
    checkout: bool
    trust: TrustConfiguration
    credential: CredentialRef | None
    extra_nix_settings: tuple[tuple[str, str], ...]
    descriptor: EnvironmentDescriptor
    test_command: str
    test_step_name: str = "Run tests"


@dataclass
class StepRecord:
    """One entry in a job's ordered timeline."""

    step: str
    status: str
    detail: str = ""


@dataclass
class JobResult:
    """Outcome of a single job."""

    state: JobState
    failed_stage: JobState | None = None
    exit_status: int | None = None
    message: str = ""
    timeline: list[StepRecord] = field(default_factory=list)
    transitions: list[JobState] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state is JobState.SUCCEEDED


def _unique(values) -> list[str]:
    seen: list[str] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen
