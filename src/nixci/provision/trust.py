"""Trust store configuration: trusted substituters and their signing keys.

The workflow declares substituters and public keys as two whitespace
separated lists inside an ``extra_nix_config`` block::

    trusted-public-keys = hydra.iohk.io:f/Ea... cache.nixos.org-1:6NCH...
    substituters = https://hydra.iohk.io https://cache.nixos.org/

Both lists must have the same length and are paired positionally. Duplicate
pairs are tolerated and collapsed when rendered.
"""

from __future__ import annotations

import base64
import binascii
import logging
from urllib.parse import urlparse

from nixci.errors import TrustConfigurationError
from nixci.provision.nix_config import SECRET_SETTINGS, NixConfig
from nixci.workflow.types import TrustConfiguration, TrustPair

logger = logging.getLogger(__name__)

SUBSTITUTER_KEYS = ("substituters", "extra-substituters")
PUBLIC_KEY_KEYS = ("trusted-public-keys", "extra-trusted-public-keys")
ALLOWED_SCHEMES = frozenset({"http", "https", "file", "s3", "ssh", "ssh-ng"})
ED25519_PUBLIC_KEY_BYTES = 32


def parse_nix_config_block(text: str) -> list[tuple[str, str]]:
    """Parse nix.conf-style ``name = value`` lines, preserving order.

    Blank lines and ``#`` comments are skipped. Repeated names are kept; the
    caller decides how to merge them.
    """
    entries: list[tuple[str, str]] = []
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.split("#", 1)[0].strip()
        if not line:
            continue
        name, sep, value = line.partition("=")
        if not sep or not name.strip():
            raise TrustConfigurationError(f"line {lineno}: expected 'name = value', got {raw.strip()!r}")
        entries.append((name.strip(), value.strip()))
    return entries


def split_trust_settings(
    entries: list[tuple[str, str]],
) -> tuple[TrustConfiguration, list[tuple[str, str]]]:
    """Separate trust settings from the rest of a parsed config block.

    Returns:
        Tuple of (trust configuration, remaining settings in declaration order)

    Raises:
        TrustConfigurationError: If lists are unequal or an entry is malformed,
            or if a secret setting is embedded literally
    """
    substituters: list[str] = []
    keys: list[str] = []
    replace_defaults = False
    remaining: list[tuple[str, str]] = []

    for name, value in entries:
        if name in SECRET_SETTINGS:
            raise TrustConfigurationError(
                f"'{name}' must not be embedded in the workflow; reference a secret instead"
            )
        if name in SUBSTITUTER_KEYS:
            substituters.extend(value.split())
            replace_defaults = replace_defaults or name == "substituters"
        elif name in PUBLIC_KEY_KEYS:
            keys.extend(value.split())
            replace_defaults = replace_defaults or name == "trusted-public-keys"
        else:
            remaining.append((name, value))

    if len(substituters) != len(keys):
        raise TrustConfigurationError(
            f"substituters and trusted-public-keys must pair up: "
            f"{len(substituters)} substituter(s) vs {len(keys)} key(s)"
        )

    pairs = []
    for substituter, key in zip(substituters, keys):
        validate_substituter(substituter)
        validate_public_key(key)
        pairs.append(TrustPair(substituter=substituter, public_key=key))

    return TrustConfiguration(pairs=tuple(pairs), replace_defaults=replace_defaults), remaining


def validate_substituter(url: str) -> None:
    parsed = urlparse(url)
    if parsed.scheme not in ALLOWED_SCHEMES:
        raise TrustConfigurationError(f"unsupported substituter URL scheme: {url}")
    if parsed.scheme != "file" and not parsed.netloc:
        raise TrustConfigurationError(f"substituter URL has no host: {url}")


def validate_public_key(key: str) -> None:
    """Check a ``name:base64`` ed25519 public key."""
    name, sep, encoded = key.partition(":")
    if not sep or not name or not encoded:
        raise TrustConfigurationError(f"public key must look like 'name:base64', got {key!r}")
    try:
        raw = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise TrustConfigurationError(f"public key {name!r} is not valid base64: {exc}") from exc
    if len(raw) != ED25519_PUBLIC_KEY_BYTES:
        raise TrustConfigurationError(
            f"public key {name!r} decodes to {len(raw)} bytes, expected {ED25519_PUBLIC_KEY_BYTES}"
        )


def apply_trust(config: NixConfig, trust: TrustConfiguration) -> None:
    """Register substituters and keys into the job's Nix settings.

    Idempotent: applying the same configuration again leaves the settings
    unchanged.
    """
    if not trust.pairs:
        logger.debug("no trust pairs declared; keeping Nix defaults")
        return

    if trust.replace_defaults:
        sub_name, key_name = "substituters", "trusted-public-keys"
    else:
        sub_name, key_name = "extra-substituters", "extra-trusted-public-keys"

    config.set(sub_name, " ".join(trust.substituters))
    config.set(key_name, " ".join(trust.public_keys))
    config.set("require-sigs", "true")
    logger.info("trusted %d substituter(s): %s", len(trust.substituters), ", ".join(trust.substituters))
