"""Tests for the Bitbucket REST client."""

from __future__ import annotations

import json

import httpx
import pytest

from bbkt.client import BitbucketClient
from bbkt.exceptions import APIError, ScopeIntrospectionError

BASE_URL = "https://api.bitbucket.example/2.0"


def _client(handler) -> BitbucketClient:
    return BitbucketClient(None, base_url=BASE_URL, transport=httpx.MockTransport(handler))


class TestFetchScopes:
    def test_reads_scope_header(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/2.0/user"
            return httpx.Response(
                200,
                json={"display_name": "Dev"},
                headers={"x-oauth-scopes": "repository, pullrequest:write"},
            )

        with _client(handler) as client:
            assert client.fetch_scopes() == {"repository", "pullrequest:write"}

    def test_header_on_error_response_still_counts(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, json={}, headers={"x-oauth-scopes": "repository"})

        with _client(handler) as client:
            assert client.fetch_scopes() == {"repository"}

    def test_missing_header_means_unknown(self):
        with _client(lambda request: httpx.Response(200, json={})) as client:
            assert client.fetch_scopes() == frozenset()

    def test_error_without_header_raises(self):
        with _client(lambda request: httpx.Response(401, json={})) as client:
            with pytest.raises(ScopeIntrospectionError, match="401"):
                client.fetch_scopes()

    def test_network_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        with _client(handler) as client:
            with pytest.raises(ScopeIntrospectionError, match="unreachable"):
                client.fetch_scopes()


class TestRequest:
    def test_json_body_and_params(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"id": 7})

        with _client(handler) as client:
            result = client.request(
                "POST",
                "/repositories/acme/widgets/pullrequests",
                params={"fields": "id"},
                json_body={"title": "Fix"},
            )

        assert result == {"id": 7}
        assert seen[0].url.path == "/2.0/repositories/acme/widgets/pullrequests"
        assert seen[0].url.params["fields"] == "id"
        assert json.loads(seen[0].content) == {"title": "Fix"}

    def test_no_content(self):
        with _client(lambda request: httpx.Response(204)) as client:
            assert client.request("DELETE", "/repositories/acme/widgets") is None

    def test_text_response(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="diff --git a b", headers={"content-type": "text/plain"})

        with _client(handler) as client:
            assert client.get_json("/repositories/acme/widgets/diff/a..b") == "diff --git a b"

    def test_error_status_carries_message(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"type": "error", "error": {"message": "Repository not found"}})

        with _client(handler) as client:
            with pytest.raises(APIError, match="Repository not found") as excinfo:
                client.get_json("/repositories/acme/missing")
        assert excinfo.value.status_code == 404

    def test_network_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        with _client(handler) as client:
            with pytest.raises(APIError) as excinfo:
                client.get_json("/user")
        assert excinfo.value.status_code is None


def test_get_with_scopes():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"nickname": "dev"}, headers={"x-oauth-scopes": "account"})

    with _client(handler) as client:
        body, scopes = client.get_with_scopes("/user")
    assert body == {"nickname": "dev"}
    assert scopes == {"account"}


def test_list_workspace_slugs():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["pagelen"] == "100"
        return httpx.Response(200, json={"values": [
            {"slug": "acme"}, {"name": "no slug"}, {"slug": "beta"},
        ]})

    with _client(handler) as client:
        assert client.list_workspace_slugs() == ["acme", "beta"]
