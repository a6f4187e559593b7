"""Credential relay: hand the job's access token to Nix."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from nixci.provision.nix_config import NixConfig
from nixci.provision.secrets import SecretStore
from nixci.workflow.types import CredentialRef

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credential:
    """Bearer token for one host, valid for one job."""

    host: str
    token: str = field(repr=False)

    def __str__(self) -> str:
        return f"Credential(host={self.host}, token=***)"

    def access_token_setting(self) -> str:
        return f"{self.host}={self.token}"


def resolve_credential(ref: CredentialRef, store: SecretStore) -> Credential:
    """Look up the referenced secret.

    Raises:
        CredentialError: If the secret is not available
    """
    token = store.get(ref.secret_name)
    logger.info("resolved access token from secret '%s' for %s", ref.secret_name, ref.host)
    return Credential(host=ref.host, token=token)


def apply_credential(config: NixConfig, credential: Credential) -> None:
    """Expose the token to Nix through the in-memory ``access-tokens`` setting."""
    tokens = [t for t in (config.get("access-tokens") or "").split() if not t.startswith(f"{credential.host}=")]
    tokens.append(credential.access_token_setting())
    config.set("access-tokens", " ".join(tokens))
