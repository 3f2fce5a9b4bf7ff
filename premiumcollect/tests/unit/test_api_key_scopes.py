from __future__ import annotations

import pytest

from premiumcollect.core.config import get_settings
from premiumcollect.services.auth.api_keys import (
    Scope,
    generate_api_key,
    has_api_key_prefix,
    hash_api_key,
    key_preview,
    normalize_permissions,
    parse_scopes,
    scope_allows,
)


def test_generated_keys_carry_prefix() -> None:
    key_id, raw_key, key_prefix, _key_hash = generate_api_key()
    assert raw_key.startswith(get_settings().api_key_prefix)
    assert has_api_key_prefix(raw_key)
    assert len(key_id) == 32
    assert len(raw_key) == len(get_settings().api_key_prefix) + 64
    assert key_prefix == raw_key[:12]
    assert key_preview(key_prefix) == f"{key_prefix}..."
    assert raw_key not in key_preview(key_prefix)


def test_keys_are_stored_as_digests() -> None:
    _key_id, raw_key, _key_prefix, key_hash = generate_api_key()
    assert key_hash == hash_api_key(raw_key)
    assert len(key_hash) == 64
    assert raw_key not in key_hash
    assert hash_api_key(raw_key + "x") != key_hash


def test_foreign_tokens_fail_prefix_check() -> None:
    assert not has_api_key_prefix("sk_live_123")
    assert not has_api_key_prefix("")


def test_normalize_permissions_defaults_and_dedupes() -> None:
    assert normalize_permissions(None) == get_settings().default_api_key_permissions
    assert normalize_permissions(["Collections:Write", "collections:write", "webhooks:read"]) == [
        "collections:write",
        "webhooks:read",
    ]


@pytest.mark.parametrize("permissions", [["collections:delete"], []])
def test_normalize_permissions_rejects_unknown_or_empty(permissions: list[str]) -> None:
    with pytest.raises(ValueError):
        normalize_permissions(permissions)


def test_parse_scopes_ignores_unknown_entries() -> None:
    scopes = parse_scopes(["collections:read", "legacy:scope", 42])
    assert scopes == frozenset({Scope.COLLECTIONS_READ})
    assert parse_scopes(None) == frozenset()


def test_wildcard_scope_allows_everything() -> None:
    assert scope_allows(frozenset({Scope.ALL}), Scope.POLICIES_WRITE)
    assert scope_allows(frozenset({Scope.POLICIES_WRITE}), Scope.POLICIES_WRITE)
    assert not scope_allows(frozenset({Scope.COLLECTIONS_READ}), Scope.COLLECTIONS_WRITE)
