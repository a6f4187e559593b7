"""Environment provisioning: trust store, credentials and ``nix develop``."""

from nixci.provision.credentials import Credential, apply_credential, resolve_credential
from nixci.provision.nix_config import NixConfig
from nixci.provision.provisioner import NixProvisioner
from nixci.provision.secrets import SecretStore
from nixci.provision.trust import apply_trust

__all__ = [
    "Credential",
    "NixConfig",
    "NixProvisioner",
    "SecretStore",
    "apply_credential",
    "apply_trust",
    "resolve_credential",
]
