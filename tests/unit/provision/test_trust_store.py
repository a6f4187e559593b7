"""Tests for trust store parsing and application."""

from __future__ import annotations

import pytest

from nixci.errors import TrustConfigurationError
from nixci.provision.nix_config import NixConfig
from nixci.provision.trust import (
    apply_trust,
    parse_nix_config_block,
    split_trust_settings,
    validate_public_key,
    validate_substituter,
)
from nixci.workflow.types import TrustConfiguration, TrustPair


def _trust(trust_keys, replace_defaults=True) -> TrustConfiguration:
    return TrustConfiguration(
        pairs=(
            TrustPair("https://hydra.iohk.io", trust_keys[0]),
            TrustPair("https://cache.nixos.org/", trust_keys[1]),
        ),
        replace_defaults=replace_defaults,
    )


def test_parse_block_skips_comments_and_blanks() -> None:
    text = "\n# comment\nmax-jobs = 4  # trailing\n\nsandbox=true\n"
    assert parse_nix_config_block(text) == [("max-jobs", "4"), ("sandbox", "true")]


def test_parse_block_rejects_malformed_line() -> None:
    with pytest.raises(TrustConfigurationError, match="line 2"):
        parse_nix_config_block("max-jobs = 4\nnot a setting\n")


def test_split_pairs_positionally(trust_keys) -> None:
    entries = [
        ("trusted-public-keys", " ".join(trust_keys)),
        ("substituters", "https://hydra.iohk.io https://cache.nixos.org/"),
        ("max-jobs", "auto"),
    ]
    trust, remaining = split_trust_settings(entries)
    assert trust == _trust(trust_keys)
    assert remaining == [("max-jobs", "auto")]


def test_split_extra_variants_keep_defaults(trust_keys) -> None:
    entries = [
        ("extra-substituters", "https://hydra.iohk.io"),
        ("extra-trusted-public-keys", trust_keys[0]),
    ]
    trust, _ = split_trust_settings(entries)
    assert trust.replace_defaults is False
    assert trust.substituters == ["https://hydra.iohk.io"]


def test_split_rejects_invalid_key() -> None:
    entries = [("substituters", "https://cache.example"), ("trusted-public-keys", "cache.example:not-base64!")]
    with pytest.raises(TrustConfigurationError, match="not valid base64"):
        split_trust_settings(entries)


@pytest.mark.parametrize("url", ["https://cache.nixos.org/", "s3://bucket?region=eu-west-1", "file:///nix/cache"])
def test_validate_substituter_accepts(url: str) -> None:
    validate_substituter(url)


@pytest.mark.parametrize(
    ("url", "message"),
    [("ftp://cache.example", "unsupported substituter URL scheme"), ("https://", "no host")],
)
def test_validate_substituter_rejects(url: str, message: str) -> None:
    with pytest.raises(TrustConfigurationError, match=message):
        validate_substituter(url)


def test_validate_public_key(trust_keys) -> None:
    for key in trust_keys:
        validate_public_key(key)

    with pytest.raises(TrustConfigurationError, match="name:base64"):
        validate_public_key("no-colon")
    with pytest.raises(TrustConfigurationError, match="decodes to 3 bytes"):
        validate_public_key("short:YWJj")


def test_apply_trust_sets_substituters_and_keys(trust_keys) -> None:
    config = NixConfig()
    apply_trust(config, _trust(trust_keys))

    assert config.get("substituters") == "https://hydra.iohk.io https://cache.nixos.org/"
    assert config.get("trusted-public-keys") == " ".join(trust_keys)
    assert config.get("require-sigs") == "true"
    assert "extra-substituters" not in config


def test_apply_trust_is_idempotent(trust_keys) -> None:
    config = NixConfig()
    apply_trust(config, _trust(trust_keys))
    first = config.render()
    apply_trust(config, _trust(trust_keys))
    assert config.render() == first


def test_apply_trust_collapses_duplicate_pairs(trust_keys) -> None:
    pair = TrustPair("https://hydra.iohk.io", trust_keys[0])
    config = NixConfig()
    apply_trust(config, TrustConfiguration(pairs=(pair, pair)))
    assert config.get("substituters") == "https://hydra.iohk.io"
    assert config.get("trusted-public-keys") == trust_keys[0]


def test_apply_trust_extra_variant(trust_keys) -> None:
    config = NixConfig()
    apply_trust(config, _trust(trust_keys, replace_defaults=False))
    assert "substituters" not in config
    assert config.get("extra-substituters") == "https://hydra.iohk.io https://cache.nixos.org/"


def test_apply_trust_without_pairs_keeps_defaults() -> None:
    config = NixConfig()
    before = config.render()
    apply_trust(config, TrustConfiguration())
    assert config.render() == before
