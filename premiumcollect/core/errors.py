from __future__ import annotations

from typing import Any


class PremiumCollectError(Exception):
    """Base error for premiumcollect."""


class DomainError(PremiumCollectError):
    """Business-rule violation carrying a stable, machine-readable code."""

    status_code = 400

    def __init__(
        self,
        code: str,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code


class InvalidRequestError(DomainError):
    """Caller supplied missing or invalid input."""

    status_code = 400


class NotFoundError(DomainError):
    """Referenced captive, policy or collection does not exist in scope."""

    status_code = 404


class ConflictError(DomainError):
    """Unique key collision or blocked delete."""

    status_code = 409
