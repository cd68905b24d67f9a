"""Runtime credential selection and request authenticator helpers."""

from __future__ import annotations

import logging
from collections.abc import Generator
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

import httpx

from bbkt.auth.credentials import CredentialRecord
from bbkt.auth.oauth import OAuthRefresher
from bbkt.auth.resolver import ResolvedProfile, resolve_profile
from bbkt.auth.store import load_profile_store
from bbkt.config import Config
from bbkt.exceptions import NotAuthenticatedError
from bbkt.git import detect_context_workspace

logger = logging.getLogger(__name__)

_DETECT = object()

NOT_AUTHENTICATED_HELP = (
    "No credentials found. Either:\n"
    "  1. Run: bbkt auth          (API token, recommended)\n"
    "  2. Run: bbkt auth --oauth  (OAuth via browser)\n"
    "  3. Set BITBUCKET_ACCESS_TOKEN\n"
    "  4. Set BITBUCKET_USERNAME + BITBUCKET_API_TOKEN"
)


class BearerAuth(httpx.Auth):
    """``Authorization: Bearer <token>`` on every request."""

    def __init__(self, token: str) -> None:
        self._token = token

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = f"Bearer {self._token}"
        yield request


class SessionSource(StrEnum):
    ENV_TOKEN = "env-token"
    ENV_BASIC = "env-basic"
    PROFILE = "profile"


@dataclass(frozen=True)
class AuthSession:
    """Authenticator plus where it came from; immutable once built."""

    auth: httpx.Auth
    source: SessionSource
    resolved: ResolvedProfile | None = None
    refreshed: bool = False

    @property
    def record(self) -> CredentialRecord | None:
        return self.resolved.record if self.resolved else None


def authenticator_for(record: CredentialRecord) -> httpx.Auth:
    """Basic auth for API-token profiles, Bearer auth for OAuth profiles."""
    if record.is_oauth():
        return BearerAuth(record.access_token)
    return httpx.BasicAuth(record.email, record.api_token)


def establish_session(
    config: Config,
    *,
    override: str | None = None,
    context_workspace: str | None | object = _DETECT,
    refresher: OAuthRefresher | None = None,
    cwd: Path | None = None,
) -> AuthSession:
    """Resolve the credential for this process and build its authenticator.

    Environment credentials bypass the profile store entirely. Otherwise the
    store is loaded, a profile resolved, and an expired OAuth token refreshed
    once before use.
    """
    env = config.env
    if env.access_token:
        logger.debug("Using BITBUCKET_ACCESS_TOKEN from environment")
        return AuthSession(auth=BearerAuth(env.access_token), source=SessionSource.ENV_TOKEN)
    if env.username and env.api_token:
        logger.debug("Using BITBUCKET_USERNAME/BITBUCKET_API_TOKEN from environment")
        return AuthSession(
            auth=httpx.BasicAuth(env.username, env.api_token),
            source=SessionSource.ENV_BASIC,
        )

    path = config.credentials_path
    store = load_profile_store(path)
    if store.is_empty():
        raise NotAuthenticatedError(NOT_AUTHENTICATED_HELP)

    if context_workspace is _DETECT:
        context_workspace = detect_context_workspace(cwd)

    resolved = resolve_profile(
        store,
        override=override if override is not None else env.profile,
        context_workspace=context_workspace,
    )
    logger.debug("Using profile %r (%s)", resolved.name, resolved.source)

    refreshed = False
    if resolved.record.is_oauth():
        active_refresher = refresher or OAuthRefresher.from_config(
            config.oauth, timeout_seconds=config.api.timeout_seconds,
        )
        refreshed = active_refresher.ensure_fresh(resolved.record, store, path)

    return AuthSession(
        auth=authenticator_for(resolved.record),
        source=SessionSource.PROFILE,
        resolved=resolved,
        refreshed=refreshed,
    )
