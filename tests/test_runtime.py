"""Tests for per-process credential selection."""

from __future__ import annotations

import base64
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from pathlib import Path

import httpx
import pytest

from bbkt.auth.credentials import AuthKind
from bbkt.auth.oauth import OAuthRefresher
from bbkt.auth.runtime import (
    BearerAuth,
    SessionSource,
    authenticator_for,
    establish_session,
)
from bbkt.auth.store import load_profile_store, save_profile
from bbkt.config import Config, EnvOverrides
from bbkt.exceptions import NotAuthenticatedError, ProfileNotFoundError

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)


def _header(auth: httpx.Auth) -> str:
    flow = auth.sync_auth_flow(httpx.Request("GET", "https://api.bitbucket.org/2.0/user"))
    return next(flow).headers["Authorization"]


def _with_env(config: Config, **values) -> Config:
    return replace(config, env=EnvOverrides(**values))


def _write_corrupt_store(path: Path) -> None:
    path.parent.mkdir(parents=True)
    path.write_text("{broken", encoding="utf-8")


def test_bearer_auth_header():
    assert _header(BearerAuth("tok")) == "Bearer tok"


def test_authenticator_for_record_kinds(make_record):
    basic = base64.b64encode(b"dev@example.com:ATATT-secret-token-value").decode()
    assert _header(authenticator_for(make_record())) == f"Basic {basic}"
    assert _header(authenticator_for(make_record(kind=AuthKind.OAUTH))) == (
        "Bearer access-token-1234567890"
    )


class TestEnvironmentCredentials:
    def test_access_token_bypasses_corrupt_store(self, config: Config, creds_path: Path):
        _write_corrupt_store(creds_path)
        session = establish_session(_with_env(config, access_token="env-token"))
        assert session.source is SessionSource.ENV_TOKEN
        assert session.record is None
        assert _header(session.auth) == "Bearer env-token"

    def test_basic_pair_bypasses_missing_store(self, config: Config):
        session = establish_session(_with_env(config, username="bob", api_token="pw"))
        assert session.source is SessionSource.ENV_BASIC
        assert _header(session.auth) == "Basic " + base64.b64encode(b"bob:pw").decode()

    def test_access_token_beats_basic_pair(self, config: Config):
        session = establish_session(
            _with_env(config, access_token="tok", username="bob", api_token="pw"),
        )
        assert session.source is SessionSource.ENV_TOKEN

    def test_username_alone_is_not_enough(self, config: Config):
        with pytest.raises(NotAuthenticatedError):
            establish_session(_with_env(config, username="bob"), context_workspace=None)


class TestStoredProfiles:
    def test_empty_store_explains_options(self, config: Config):
        with pytest.raises(NotAuthenticatedError, match="BITBUCKET_ACCESS_TOKEN"):
            establish_session(config, context_workspace=None)

    def test_api_token_profile(self, config: Config, creds_path: Path, make_record):
        save_profile(make_record("work"), creds_path)
        session = establish_session(config, context_workspace=None)
        assert session.source is SessionSource.PROFILE
        assert session.record.profile_name == "work"
        assert session.refreshed is False

    def test_env_profile_override(self, config: Config, creds_path: Path, make_record):
        save_profile(make_record("work"), creds_path)
        save_profile(make_record("personal"), creds_path)
        session = establish_session(_with_env(config, profile="personal"), context_workspace=None)
        assert session.record.profile_name == "personal"

    def test_explicit_override_beats_env(self, config: Config, creds_path: Path, make_record):
        save_profile(make_record("work"), creds_path)
        save_profile(make_record("personal"), creds_path)
        session = establish_session(
            _with_env(config, profile="personal"), override="work", context_workspace=None,
        )
        assert session.record.profile_name == "work"

    def test_missing_override_raises(self, config: Config, creds_path: Path, make_record):
        save_profile(make_record("work"), creds_path)
        with pytest.raises(ProfileNotFoundError):
            establish_session(config, override="ghost", context_workspace=None)

    def test_context_workspace_selects_profile(
        self, config: Config, creds_path: Path, make_record,
    ):
        save_profile(make_record("work"), creds_path)
        save_profile(make_record("client", accessible_workspaces=["globex"]), creds_path)
        session = establish_session(config, context_workspace="globex")
        assert session.record.profile_name == "client"

    def test_context_detected_from_git(
        self, config: Config, creds_path: Path, make_record, monkeypatch,
    ):
        save_profile(make_record("work"), creds_path)
        save_profile(make_record("client", accessible_workspaces=["globex"]), creds_path)
        monkeypatch.setattr(
            "bbkt.auth.runtime.detect_context_workspace", lambda cwd=None: "globex",
        )
        assert establish_session(config).record.profile_name == "client"

    def test_expired_oauth_refreshed_once(
        self, config: Config, creds_path: Path, make_record,
    ):
        calls: list[httpx.Request] = []

        def _token(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={"access_token": "fresh", "expires_in": 7200})

        now = T0 + timedelta(hours=3)
        refresher = OAuthRefresher(transport=httpx.MockTransport(_token), clock=lambda: now)
        save_profile(make_record("work", kind=AuthKind.OAUTH, expires_in=3600), creds_path)

        session = establish_session(config, refresher=refresher, context_workspace=None)

        assert session.refreshed is True
        assert len(calls) == 1
        assert _header(session.auth) == "Bearer fresh"
        assert load_profile_store(creds_path).get("work").access_token == "fresh"

    def test_valid_oauth_not_refreshed(self, config: Config, creds_path: Path, make_record):
        def _token(request: httpx.Request) -> httpx.Response:
            raise AssertionError("token endpoint must not be called")

        refresher = OAuthRefresher(
            transport=httpx.MockTransport(_token), clock=lambda: T0 + timedelta(minutes=5),
        )
        save_profile(make_record("work", kind=AuthKind.OAUTH, expires_in=3600), creds_path)
        session = establish_session(config, refresher=refresher, context_workspace=None)
        assert session.refreshed is False
        assert _header(session.auth) == "Bearer access-token-1234567890"
