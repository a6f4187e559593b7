"""Read-only secret store scoped to one job."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from nixci.errors import CredentialError

SECRET_ENV_PREFIX = "NIXCI_SECRET_"
PASSTHROUGH_ENV = ("GITHUB_TOKEN",)


@dataclass(frozen=True)
class SecretStore:
    """Key/value secret lookup. Values are never part of ``repr``."""

    _values: Mapping[str, str] = field(default_factory=dict, repr=False)

    def get(self, name: str) -> str:
        """Return the secret named ``name``.

        Raises:
            CredentialError: If the secret is missing or empty
        """
        value = self._values.get(name, "")
        if not value:
            known = ", ".join(self.names) or "none"
            raise CredentialError(f"secret '{name}' is not available to this job (known secrets: {known})")
        return value

    def __contains__(self, name: object) -> bool:
        return bool(self._values.get(name))  # type: ignore[call-overload]

    @property
    def names(self) -> list[str]:
        return sorted(k for k, v in self._values.items() if v)

    @classmethod
    def from_sources(
        cls,
        env: Mapping[str, str],
        secrets_file: Path | None = None,
    ) -> SecretStore:
        """Build a store from a secrets file and the environment.

        Environment entries win over file entries. Recognized variables are
        ``NIXCI_SECRET_<NAME>`` (exposed as ``<NAME>``) and ``GITHUB_TOKEN``.
        """
        values: dict[str, str] = {}
        if secrets_file is not None:
            values.update(load_secrets_file(secrets_file))

        for name in PASSTHROUGH_ENV:
            if env.get(name):
                values[name] = env[name]
        for key, value in env.items():
            if key.startswith(SECRET_ENV_PREFIX) and len(key) > len(SECRET_ENV_PREFIX):
                values[key[len(SECRET_ENV_PREFIX):]] = value

        return cls(values)


def load_secrets_file(path: Path) -> dict[str, str]:
    """Load ``{"version": 1, "secrets": {...}}`` from disk."""
    if not path.exists():
        raise CredentialError(f"secrets file not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise CredentialError(f"secrets file is not valid JSON: {path}: {exc.msg}") from exc

    if not isinstance(data, dict):
        raise CredentialError("secrets file must contain a JSON object")
    version = data.get("version")
    if version != 1:
        raise CredentialError(f"unsupported secrets file version: {version}")
    secrets = data.get("secrets")
    if not isinstance(secrets, dict):
        raise CredentialError("secrets file missing 'secrets' object")
    return {str(k): str(v) for k, v in secrets.items()}
