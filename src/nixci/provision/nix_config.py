"""Job-scoped Nix settings.

Settings are rendered into the ``NIX_CONFIG`` environment variable of each
``nix`` child process. They are never written to disk.
"""

from __future__ import annotations

from dataclasses import dataclass, field

NIX_CONFIG_ENV = "NIX_CONFIG"

DEFAULT_SETTINGS: tuple[tuple[str, str], ...] = (
    ("experimental-features", "nix-command flakes"),
    ("require-sigs", "true"),
)

SECRET_SETTINGS = frozenset({"access-tokens"})


@dataclass
class NixConfig:
    """Ordered mapping of Nix setting name to value for one job."""

    settings: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_SETTINGS))

    def set(self, name: str, value: str) -> None:
        """Set (or replace) a setting. Re-applying the same value is a no-op."""
        self.settings[name] = value

    def get(self, name: str) -> str | None:
        return self.settings.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self.settings

    def render(self) -> str:
        """Render settings in nix.conf syntax."""
        return "".join(f"{name} = {value}\n" for name, value in self.settings.items())

    def render_public(self) -> str:
        """Render settings with secret values masked, safe for reports and logs."""
        lines = []
        for name, value in self.settings.items():
            if name in SECRET_SETTINGS:
                value = "***"
            lines.append(f"{name} = {value}\n")
        return "".join(lines)

    def public_dict(self) -> dict[str, str]:
        return {
            name: ("***" if name in SECRET_SETTINGS else value)
            for name, value in self.settings.items()
        }

    def as_env(self) -> dict[str, str]:
        """Environment overlay for ``nix`` subprocesses."""
        return {NIX_CONFIG_ENV: self.render()}
