"""OAuth 2.0 token exchange and refresh against Bitbucket."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

import httpx

from bbkt.auth.credentials import AuthKind, CredentialRecord, utcnow
from bbkt.auth.store import ProfileStore, save_profile_store
from bbkt.config import OAuthConfig
from bbkt.exceptions import LoginError, RefreshFailedError

logger = logging.getLogger(__name__)

REAUTH_HINT = "Run `bbkt auth --oauth` to log in again."


def authorization_url(
    client_id: str,
    *,
    state: str,
    redirect_uri: str = "",
    authorize_url: str = OAuthConfig.authorize_url,
) -> str:
    """Browser URL that starts the authorization-code grant."""
    params = {"client_id": client_id, "response_type": "code", "state": state}
    if redirect_uri:
        params["redirect_uri"] = redirect_uri
    return str(httpx.URL(authorize_url, params=params))


class OAuthRefresher:
    """Exchanges codes and refresh tokens at the provider token endpoint."""

    def __init__(
        self,
        *,
        token_url: str = OAuthConfig.token_url,
        timeout_seconds: float = 30.0,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.token_url = token_url
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._clock = clock

    def _post_token(
        self,
        data: dict[str, str],
        *,
        client_id: str,
        client_secret: str,
    ) -> dict[str, Any]:
        with httpx.Client(timeout=self.timeout_seconds, transport=self._transport) as client:
            response = client.post(
                self.token_url,
                data=data,
                auth=httpx.BasicAuth(client_id, client_secret),
                headers={"Accept": "application/json"},
            )
        if response.status_code >= 400:
            raise RefreshFailedError(
                f"Token endpoint returned {response.status_code}: "
                f"{response.text[:200]}. {REAUTH_HINT}"
            )
        try:
            payload = response.json()
        except ValueError as e:
            raise RefreshFailedError(
                f"Token endpoint returned invalid JSON. {REAUTH_HINT}"
            ) from e
        if not isinstance(payload, dict) or not str(payload.get("access_token", "")).strip():
            raise RefreshFailedError(
                f"Token endpoint response has no access_token. {REAUTH_HINT}"
            )
        return payload

    def refresh(self, record: CredentialRecord) -> CredentialRecord:
        """Refresh ``record`` in place and return it.

        Overwrites the access token, its lifetime and the creation time.
        Rotated refresh tokens and reported scopes are kept too.
        """
        if not record.is_oauth():
            raise RefreshFailedError(
                f"Profile {record.profile_name!r} is not an OAuth profile."
            )
        if not record.refresh_token:
            raise RefreshFailedError(
                f"Profile {record.profile_name!r} has no refresh token. {REAUTH_HINT}"
            )

        try:
            payload = self._post_token(
                {"grant_type": "refresh_token", "refresh_token": record.refresh_token},
                client_id=record.client_id,
                client_secret=record.client_secret,
            )
        except httpx.HTTPError as e:
            raise RefreshFailedError(f"Token refresh failed: {e}. {REAUTH_HINT}") from e

        record.access_token = str(payload["access_token"])
        record.expires_in = _expires_in(payload, default=record.expires_in)
        record.created_at = self._clock()
        if payload.get("refresh_token"):
            record.refresh_token = str(payload["refresh_token"])
        if payload.get("token_type"):
            record.token_type = str(payload["token_type"])
        if payload.get("scopes"):
            record.scopes = str(payload["scopes"])
        logger.info("Refreshed OAuth token for profile %r", record.profile_name)
        return record

    def ensure_fresh(
        self,
        record: CredentialRecord,
        store: ProfileStore,
        path: Path | None = None,
    ) -> bool:
        """Refresh an expired OAuth record and persist the whole store.

        Returns True when a refresh happened.
        """
        if not record.is_expired(self._clock()):
            return False
        self.refresh(record)
        store.upsert(record)
        save_profile_store(store, path)
        return True

    def exchange_code(
        self,
        code: str,
        *,
        client_id: str,
        client_secret: str,
        redirect_uri: str = "",
        profile_name: str = "",
    ) -> CredentialRecord:
        """Trade an authorization code for a new OAuth credential record."""
        data = {"grant_type": "authorization_code", "code": code}
        if redirect_uri:
            data["redirect_uri"] = redirect_uri
        try:
            payload = self._post_token(data, client_id=client_id, client_secret=client_secret)
        except (httpx.HTTPError, RefreshFailedError) as e:
            raise LoginError(f"Authorization code exchange failed: {e}") from e

        return CredentialRecord(
            profile_name=profile_name,
            auth_kind=AuthKind.OAUTH,
            created_at=self._clock(),
            access_token=str(payload["access_token"]),
            refresh_token=str(payload.get("refresh_token", "") or ""),
            token_type=str(payload.get("token_type", "") or "bearer"),
            expires_in=_expires_in(payload, default=0),
            scopes=str(payload.get("scopes", "") or ""),
            client_id=client_id,
            client_secret=client_secret,
        )

    @classmethod
    def from_config(
        cls,
        config: OAuthConfig,
        *,
        timeout_seconds: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> OAuthRefresher:
        return cls(
            token_url=config.token_url,
            timeout_seconds=timeout_seconds,
            transport=transport,
        )


def _expires_in(payload: dict[str, Any], *, default: int) -> int:
    value = payload.get("expires_in")
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
