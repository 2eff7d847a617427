"""
Error taxonomy shared by every reservation / payment operation.

Each error carries a stable ``code`` so the API layer can render a
uniform failure envelope without inspecting messages.
"""

from __future__ import annotations

from typing import Any, Optional


class DomainError(Exception):
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFound(DomainError):
    code = "NOT_FOUND"


class ValidationFailed(DomainError):
    code = "VALIDATION_FAILED"


class AuthenticationFailed(DomainError):
    code = "AUTHENTICATION_FAILED"

    def __init__(self, message: str = "User is not authenticated", **kwargs):
        super().__init__(message, **kwargs)


class AuthorizationFailed(DomainError):
    code = "AUTHORIZATION_FAILED"

    def __init__(self, message: str = "User is not authorized", **kwargs):
        super().__init__(message, **kwargs)


class ConflictFailed(DomainError):
    code = "CONFLICT"
