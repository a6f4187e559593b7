"""Error taxonomy for nixci jobs.

Every error below is terminal for the job that raised it. Nothing is retried.
A failing test command is *not* an error: it is a failed job result.
"""

from __future__ import annotations


class NixciError(RuntimeError):
    """Base class for all nixci failures."""


class WorkflowError(NixciError):
    """Workflow declaration is malformed or unsupported (caught at load time)."""


class ProvisioningError(NixciError):
    """Toolchain could not be resolved for the job."""


class TrustConfigurationError(ProvisioningError):
    """Substituter/key pairs are invalid or could not be applied."""


class CredentialError(ProvisioningError):
    """Access token could not be resolved from the job's secret store."""


class CheckoutError(ProvisioningError):
    """Repository tree could not be materialized at the event commit."""
