from __future__ import annotations

from enum import Enum
import hashlib
import logging
import secrets
from typing import Iterable
from uuid import uuid4

from premiumcollect.core.config import get_settings


logger = logging.getLogger(__name__)


class Scope(str, Enum):
    COLLECTIONS_READ = "collections:read"
    COLLECTIONS_WRITE = "collections:write"
    POLICIES_READ = "policies:read"
    POLICIES_WRITE = "policies:write"
    WEBHOOKS_READ = "webhooks:read"
    ALL = "*"


_SCOPE_VALUES = {scope.value for scope in Scope}


def has_api_key_prefix(token: str) -> bool:
    # Cheap format check performed before any database lookup.
    return token.startswith(get_settings().api_key_prefix)


def hash_api_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def generate_api_key() -> tuple[str, str, str, str]:
    """Mint a token and return (key_id, raw_key, key_prefix, key_hash).

    The raw token is shown to the operator once; only the prefix and the
    digest are persisted.
    """
    key_id = uuid4().hex
    raw_key = f"{get_settings().api_key_prefix}{secrets.token_hex(32)}"
    return key_id, raw_key, raw_key[:12], hash_api_key(raw_key)


def key_preview(key_prefix: str) -> str:
    return f"{key_prefix}..."


def normalize_permissions(permissions: Iterable[str] | None) -> list[str]:
    # Validate operator-supplied scopes at write time; unknown scopes are rejected.
    if permissions is None:
        return list(get_settings().default_api_key_permissions)
    normalized: list[str] = []
    for raw in permissions:
        value = str(raw).strip().lower()
        if value not in _SCOPE_VALUES:
            raise ValueError(f"Unsupported permission: {raw}")
        if value not in normalized:
            normalized.append(value)
    if not normalized:
        raise ValueError("At least one permission is required")
    return normalized


def parse_scopes(raw_permissions: object) -> frozenset[Scope]:
    # Parse stored JSON permissions once per authentication into typed scopes.
    if not isinstance(raw_permissions, (list, tuple)):
        return frozenset()
    scopes: set[Scope] = set()
    for raw in raw_permissions:
        try:
            scopes.add(Scope(str(raw).strip().lower()))
        except ValueError:
            logger.warning("api_key_unknown_permission_ignored permission=%s", raw)
    return frozenset(scopes)


def scope_allows(scopes: frozenset[Scope], required: Scope) -> bool:
    return Scope.ALL in scopes or required in scopes
