"""Shared test fixtures for bbkt."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest

from bbkt.auth.credentials import AuthKind, CredentialRecord
from bbkt.config import Config, CredentialsConfig

BBKT_ENV_VARS = (
    "BBKT_PROFILE",
    "BBKT_CONFIG",
    "BBKT_LOG_LEVEL",
    "BITBUCKET_DISABLED_TOOLS",
    "BITBUCKET_USERNAME",
    "BITBUCKET_API_TOKEN",
    "BITBUCKET_ACCESS_TOKEN",
    "BITBUCKET_OAUTH_CLIENT_ID",
    "BITBUCKET_OAUTH_CLIENT_SECRET",
)

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's own Bitbucket credentials out of every test."""
    for name in BBKT_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def creds_path(tmp_path: Path) -> Path:
    """Credential store location inside a not-yet-created directory."""
    return tmp_path / "bbkt" / "credentials.json"


@pytest.fixture
def config(creds_path: Path) -> Config:
    """Provide a test configuration with a temp credential store."""
    return Config(credentials=CredentialsConfig(path=str(creds_path)))


@pytest.fixture
def make_record():
    """Factory for credential records with sensible defaults per kind."""

    def _make(
        name: str = "default",
        kind: AuthKind = AuthKind.API_TOKEN,
        **overrides,
    ) -> CredentialRecord:
        if kind is AuthKind.OAUTH:
            fields = {
                "access_token": "access-token-1234567890",
                "refresh_token": "refresh-token-abc",
                "token_type": "bearer",
                "expires_in": 7200,
                "scopes": "repository pullrequest",
                "client_id": "client-id",
                "client_secret": "client-secret",
            }
        else:
            fields = {"email": "dev@example.com", "api_token": "ATATT-secret-token-value"}
        fields.update(overrides)
        fields.setdefault("created_at", T0)
        return CredentialRecord(profile_name=name, auth_kind=kind, **fields)

    return _make
