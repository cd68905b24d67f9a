"""Login flows that create credential profiles.

Both flows verify the credential against the API, cache the workspaces it
can see (used later for local-repository profile inference), and save the
profile to the store.
"""

from __future__ import annotations

import logging
import secrets
import time
import webbrowser
from collections.abc import Callable
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from urllib.parse import parse_qs, urlsplit

import httpx

from bbkt.auth.credentials import AuthKind, CredentialRecord
from bbkt.auth.oauth import OAuthRefresher, authorization_url
from bbkt.auth.runtime import authenticator_for
from bbkt.auth.store import DEFAULT_PROFILE, save_profile, update_profile
from bbkt.client import BitbucketClient
from bbkt.config import Config
from bbkt.exceptions import APIError, LoginError

logger = logging.getLogger(__name__)

API_TOKEN_URL = "https://id.atlassian.com/manage-profile/security/api-tokens"
RECOMMENDED_TOKEN_SCOPES = (
    "read:workspace", "read:account", "read:user",
    "read:repository:bitbucket", "write:repository:bitbucket",
    "read:pullrequest:bitbucket", "write:pullrequest:bitbucket",
    "read:pipeline:bitbucket", "write:pipeline:bitbucket",
)
RECOMMENDED_OAUTH_SCOPES = (
    "repository", "repository:write", "pullrequest", "pullrequest:write",
    "pipeline", "pipeline:write", "account",
)


@dataclass(frozen=True)
class LoginResult:
    record: CredentialRecord
    display_name: str
    path: Path
    scopes: frozenset[str] = frozenset()


def fetch_accessible_workspaces(client: BitbucketClient) -> list[str]:
    """Workspace slugs visible to the client; empty when listing fails."""
    try:
        return client.list_workspace_slugs()
    except APIError as e:
        logger.warning("Could not list accessible workspaces: %s", e)
        return []


def _display_name(user: object) -> str:
    if not isinstance(user, dict):
        return ""
    return str(user.get("display_name") or user.get("nickname") or "")


def api_token_login(
    email: str,
    api_token: str,
    *,
    config: Config,
    profile_name: str = DEFAULT_PROFILE,
    transport: httpx.BaseTransport | None = None,
) -> LoginResult:
    """Verify an Atlassian API token and save it as a Basic-auth profile."""
    clean_email = str(email or "").strip()
    clean_token = str(api_token or "").strip()
    if not clean_email:
        raise LoginError("Email is required.")
    if not clean_token:
        raise LoginError("API token is required.")

    record = CredentialRecord(
        profile_name=profile_name or DEFAULT_PROFILE,
        auth_kind=AuthKind.API_TOKEN,
        email=clean_email,
        api_token=clean_token,
    )
    display_name = ""
    scopes: frozenset[str] = frozenset()
    with BitbucketClient.from_config(
        authenticator_for(record), config.api, transport=transport,
    ) as client:
        try:
            user, scopes = client.get_with_scopes("/user")
            display_name = _display_name(user)
        except APIError as e:
            # 403 on /user: the token is valid but lacks account scopes.
            if e.status_code != 403:
                raise LoginError(
                    f"Credential verification failed: {e}. "
                    "Check that your email and API token are correct."
                ) from e
            logger.info("Token verified without account scope (403 on /user)")
        record.accessible_workspaces = fetch_accessible_workspaces(client)

    path = config.credentials_path
    save_profile(record, path)
    return LoginResult(record=record, display_name=display_name, path=path, scopes=scopes)


class _CallbackHandler(BaseHTTPRequestHandler):
    server: _CallbackServer

    def do_GET(self) -> None:  # noqa: N802
        params = {k: v[-1] for k, v in parse_qs(urlsplit(self.path).query).items()}
        if params.get("code") or params.get("error"):
            self.server.params = params
        body = (
            "<!DOCTYPE html><html><body><h3>Authorization complete.</h3>"
            "<p>You may close this window and return to the terminal.</p></body></html>"
        ).encode("utf-8")
        self.send_response(200)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: object) -> None:
        logger.debug("oauth callback: " + format, *args)


class _CallbackServer(HTTPServer):
    params: dict[str, str] | None = None


def wait_for_callback(
    port: int,
    *,
    on_ready: Callable[[str], None],
    timeout_seconds: float = 300.0,
) -> dict[str, str]:
    """Serve one loopback redirect on ``port`` and return its query params."""
    try:
        server = _CallbackServer(("127.0.0.1", port), _CallbackHandler)
    except OSError as e:
        raise LoginError(f"Cannot listen on localhost:{port} for the OAuth callback: {e}") from e
    server.timeout = 1.0
    deadline = time.monotonic() + timeout_seconds
    with server:
        on_ready(f"http://localhost:{server.server_port}/callback")
        while server.params is None:
            if time.monotonic() >= deadline:
                raise LoginError("Timed out waiting for the OAuth authorization callback.")
            server.handle_request()
    return server.params


def oauth_login(
    client_id: str,
    client_secret: str,
    *,
    config: Config,
    profile_name: str = DEFAULT_PROFILE,
    open_browser: Callable[[str], object] = webbrowser.open,
    echo: Callable[[str], None] = print,
    refresher: OAuthRefresher | None = None,
    transport: httpx.BaseTransport | None = None,
    timeout_seconds: float = 300.0,
) -> LoginResult:
    """Run the browser authorization-code flow and save an OAuth profile."""
    if not client_id or not client_secret:
        raise LoginError(
            "OAuth credentials required. Set BITBUCKET_OAUTH_CLIENT_ID and "
            "BITBUCKET_OAUTH_CLIENT_SECRET."
        )
    state = secrets.token_urlsafe(16)
    redirect: dict[str, str] = {}

    def _start(redirect_uri: str) -> None:
        redirect["uri"] = redirect_uri
        url = authorization_url(
            client_id,
            state=state,
            redirect_uri=redirect_uri,
            authorize_url=config.oauth.authorize_url,
        )
        echo(f"Opening browser for authorization:\n  {url}")
        open_browser(url)

    params = wait_for_callback(
        config.oauth.callback_port,
        on_ready=_start,
        timeout_seconds=timeout_seconds,
    )
    if params.get("error"):
        raise LoginError(
            f"Authorization denied: {params.get('error_description') or params['error']}"
        )
    if params.get("state") != state:
        raise LoginError("OAuth state mismatch; aborting login.")

    exchanger = refresher or OAuthRefresher.from_config(
        config.oauth, timeout_seconds=config.api.timeout_seconds, transport=transport,
    )
    record = exchanger.exchange_code(
        params["code"],
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=redirect.get("uri", ""),
        profile_name=profile_name or DEFAULT_PROFILE,
    )
    display_name = ""
    with BitbucketClient.from_config(
        authenticator_for(record), config.api, transport=transport,
    ) as client:
        try:
            display_name = _display_name(client.get_json("/user"))
        except APIError as e:
            logger.info("Could not read /user after OAuth login: %s", e)
        record.accessible_workspaces = fetch_accessible_workspaces(client)

    path = config.credentials_path
    save_profile(record, path)
    return LoginResult(
        record=record, display_name=display_name, path=path, scopes=record.scope_set(),
    )


def refresh_workspace_cache(
    record: CredentialRecord,
    *,
    config: Config,
    transport: httpx.BaseTransport | None = None,
) -> CredentialRecord:
    """Re-list the workspaces a profile can see and persist the cache."""
    with BitbucketClient.from_config(
        authenticator_for(record), config.api, transport=transport,
    ) as client:
        try:
            record.accessible_workspaces = client.list_workspace_slugs()
        except APIError as e:
            raise LoginError(f"Could not list workspaces for {record.profile_name!r}: {e}") from e
    update_profile(record, config.credentials_path)
    return record
