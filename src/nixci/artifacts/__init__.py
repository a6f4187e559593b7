"""Deterministic artifact helpers."""

from nixci.artifacts.canonical_json import canonical_dumps, sha256_text, write_json

__all__ = ["canonical_dumps", "sha256_text", "write_json"]
