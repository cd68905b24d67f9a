"""bbkt exception hierarchy.

Provides a structured exception tree so catch blocks can be specific
and callers can distinguish between different failure modes.
"""

from __future__ import annotations


class BbktError(Exception):
    """Base for all bbkt exceptions."""


class ConfigError(BbktError):
    """Raised when configuration loading or validation fails."""


class APIError(BbktError):
    """Bitbucket REST call failed or returned an error status."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ActionError(BbktError):
    """A REST action could not be resolved from its tool, name and arguments."""

    def __init__(self, message: str, *, actions: list[str] | None = None) -> None:
        super().__init__(message)
        self.actions = actions or []


class LocalRepoError(BbktError):
    """The working directory is not a Bitbucket-backed git repository."""


class AuthError(BbktError):
    """Base for credential and authorization failures."""


class NotAuthenticatedError(AuthError):
    """No usable credential was found anywhere."""


class ProfileNotFoundError(AuthError):
    """An explicitly named profile does not exist in the store."""


class StoreError(AuthError):
    """The credential store cannot be located, read or written."""


class StoreCorruptError(StoreError):
    """The persisted credential store cannot be parsed."""


class RefreshFailedError(AuthError):
    """OAuth token refresh failed; the user has to log in again."""


class ScopeIntrospectionError(AuthError):
    """Granted scopes could not be discovered for the current token."""


class LoginError(AuthError):
    """Interactive or programmatic login did not complete."""
