"""Thin synchronous Bitbucket Cloud REST client.

Only what the auth core and the MCP tools need: authenticated JSON
requests, scope discovery from response headers, and workspace listing.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from bbkt.auth.scopes import parse_scopes
from bbkt.config import APIConfig
from bbkt.exceptions import APIError, ScopeIntrospectionError

logger = logging.getLogger(__name__)

SCOPE_HEADER = "x-oauth-scopes"
USER_AGENT = "bbkt"


class BitbucketClient:
    """Authenticated JSON client for api.bitbucket.org."""

    def __init__(
        self,
        auth: httpx.Auth | None,
        *,
        base_url: str = APIConfig.base_url,
        timeout: float = APIConfig.timeout_seconds,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self.base_url,
            auth=auth,
            timeout=timeout,
            headers={"Accept": "application/json", "User-Agent": USER_AGENT},
            follow_redirects=True,
            transport=transport,
        )

    @classmethod
    def from_config(
        cls,
        auth: httpx.Auth | None,
        config: APIConfig,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> BitbucketClient:
        return cls(
            auth,
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> BitbucketClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _send(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
    ) -> httpx.Response:
        try:
            return self._client.request(method, path, params=params, json=json_body)
        except httpx.HTTPError as e:
            raise APIError(f"{method} {path} failed: {e}") from e

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if response.status_code == 204 or not response.content:
            return None
        content_type = response.headers.get("content-type", "")
        if "json" not in content_type:
            return response.text
        try:
            return response.json()
        except ValueError as e:
            raise APIError(
                f"Invalid JSON from {response.request.url}",
                status_code=response.status_code,
            ) from e

    @staticmethod
    def _raise_for_status(method: str, path: str, response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        detail = response.text[:500]
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
            detail = str(payload["error"].get("message") or detail)
        raise APIError(
            f"{method} {path}: {response.status_code} {response.reason_phrase}: {detail}",
            status_code=response.status_code,
        )

    def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
    ) -> Any:
        """Perform one request and return the decoded body."""
        response = self._send(method, path, params=params, json_body=json_body)
        self._raise_for_status(method, path, response)
        return self._decode(response)

    def get_json(self, path: str, *, params: dict[str, Any] | None = None) -> Any:
        return self.request("GET", path, params=params)

    def get_with_scopes(self, path: str) -> tuple[Any, frozenset[str]]:
        """GET ``path`` and also return the scopes granted to the credential."""
        response = self._send("GET", path)
        self._raise_for_status("GET", path, response)
        return self._decode(response), parse_scopes(response.headers.get(SCOPE_HEADER))

    def fetch_scopes(self) -> frozenset[str]:
        """Discover the scopes granted to the current credential.

        An empty set means the server did not report scopes.
        """
        try:
            response = self._client.get("/user")
        except httpx.HTTPError as e:
            raise ScopeIntrospectionError(f"Scope lookup failed: {e}") from e
        header = response.headers.get(SCOPE_HEADER)
        if header is not None:
            return parse_scopes(header)
        if response.status_code >= 400:
            raise ScopeIntrospectionError(
                f"Scope lookup failed: GET /user returned {response.status_code}"
            )
        return frozenset()

    def list_workspace_slugs(self, *, pagelen: int = 100) -> list[str]:
        """Slugs of the first page of workspaces visible to the credential."""
        payload = self.get_json("/workspaces", params={"pagelen": pagelen, "page": 1})
        values = payload.get("values", []) if isinstance(payload, dict) else []
        slugs: list[str] = []
        for item in values:
            if isinstance(item, dict) and item.get("slug"):
                slugs.append(str(item["slug"]))
        return slugs
