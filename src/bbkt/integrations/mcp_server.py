"""MCP server exposing Bitbucket operations as tools for external agents.

Tools come from the shared REST action catalog in ``bbkt.actions``.
Tools whose capability the current token lacks, or that appear in the
deny-list, are never registered.

Runs over stdio by default or over streamable HTTP when given a port.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx
import uvicorn
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.server.streamable_http_manager import StreamableHTTPSessionManager
from mcp.types import TextContent, Tool
from starlette.applications import Starlette
from starlette.routing import Mount
from starlette.types import Receive, Scope, Send

from bbkt.actions import (
    QUERY_PROPERTIES,
    TOOL_ACTIONS,
    TOOL_DESCRIPTIONS,
    Action,
    placeholders,
    run_action,
)
from bbkt.auth.gate import CapabilityGate
from bbkt.auth.runtime import AuthSession
from bbkt.client import BitbucketClient
from bbkt.config import Config
from bbkt.exceptions import ActionError, APIError, LocalRepoError
from bbkt.git import get_local_repo_info

logger = logging.getLogger(__name__)

SERVER_NAME = "bbkt"


def _input_schema(actions: dict[str, Action]) -> dict[str, Any]:
    properties: dict[str, Any] = {
        "action": {
            "type": "string",
            "enum": list(actions),
            "description": "Operation to perform",
        },
    }
    for action in actions.values():
        for name in placeholders(action.path):
            properties.setdefault(name, {"type": "string"})
    if any(a.method == "GET" for a in actions.values()):
        properties.update(QUERY_PROPERTIES)
    if any(a.body for a in actions.values()):
        properties["body"] = {
            "type": "object",
            "description": "JSON request body passed through to the REST API",
        }
    return {"type": "object", "properties": properties, "required": ["action"]}


def build_tool_list() -> list[dict]:
    """Definitions of every tool, before gating."""
    return [
        {
            "name": name,
            "description": TOOL_DESCRIPTIONS[name],
            "inputSchema": _input_schema(actions),
        }
        for name, actions in TOOL_ACTIONS.items()
    ]


class BbktMCPServer:
    """Gated Bitbucket tools served over MCP.

    The client and gate are built once at startup and shared read-only by
    all requests.
    """

    def __init__(
        self,
        client: BitbucketClient,
        gate: CapabilityGate,
        *,
        default_workspace: str = "",
        default_repo: str = "",
    ):
        self._client = client
        self.gate = gate
        self.default_workspace = default_workspace
        self.default_repo = default_repo
        self._tools = gate.filter(build_tool_list())
        self._exposed = {t["name"] for t in self._tools}
        logger.info("Exposing %d of %d tools", len(self._tools), len(TOOL_ACTIONS))

    def list_tools(self) -> list[dict]:
        """Return the tool definitions allowed for this token."""
        return self._tools

    async def call_tool(self, name: str, arguments: dict | None) -> list[dict]:
        """Dispatch an MCP tool call.

        Returns a list of content blocks (text).
        """
        if name not in self._exposed:
            return [{"type": "text", "text": json.dumps({"error": f"Unknown tool: {name}"})}]

        result = await self._run_action(name, dict(arguments or {}))
        return [{"type": "text", "text": json.dumps(result, indent=2)}]

    async def _run_action(self, tool: str, args: dict[str, Any]) -> Any:
        if self.default_workspace:
            args.setdefault("workspace", self.default_workspace)
        if self.default_repo:
            args.setdefault("repo_slug", self.default_repo)
        try:
            return await asyncio.to_thread(
                run_action, self._client, tool, args.get("action", ""), args,
            )
        except ActionError as e:
            error: dict[str, Any] = {"error": str(e)}
            if e.actions:
                error["actions"] = e.actions
            return error
        except APIError as e:
            return {"error": str(e), "status_code": e.status_code}

    def _build_sdk_server(self) -> Server:
        server = Server(SERVER_NAME)

        @server.list_tools()
        async def handle_list_tools() -> list[Tool]:
            return [
                Tool(
                    name=t["name"],
                    description=t["description"],
                    inputSchema=t["inputSchema"],
                )
                for t in self._tools
            ]

        @server.call_tool()
        async def handle_call_tool(name: str, arguments: dict) -> list[TextContent]:
            results = await self.call_tool(name, arguments)
            return [TextContent(type="text", text=r["text"]) for r in results]

        return server

    async def run_stdio(self) -> None:
        """Run the MCP server on stdio transport."""
        server = self._build_sdk_server()
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream, write_stream, server.create_initialization_options(),
            )

    def http_app(self) -> Starlette:
        """Starlette app serving streamable HTTP MCP at ``/mcp``."""
        manager = StreamableHTTPSessionManager(app=self._build_sdk_server(), stateless=True)

        async def handle_streamable_http(scope: Scope, receive: Receive, send: Send) -> None:
            await manager.handle_request(scope, receive, send)

        @contextlib.asynccontextmanager
        async def lifespan(app: Starlette) -> AsyncIterator[None]:
            async with manager.run():
                yield

        return Starlette(
            routes=[Mount("/mcp", app=handle_streamable_http)],
            lifespan=lifespan,
        )

    async def run_http(self, host: str, port: int) -> None:
        """Serve streamable HTTP on ``host:port`` until cancelled."""
        config = uvicorn.Config(self.http_app(), host=host, port=port, log_level="warning")
        logger.info("MCP streamable HTTP listening on http://%s:%d/mcp", host, port)
        await uvicorn.Server(config).serve()

    def close(self) -> None:
        self._client.close()


def create_server(
    config: Config,
    session: AuthSession,
    *,
    transport: httpx.BaseTransport | None = None,
    detect_repo: bool = True,
) -> BbktMCPServer:
    """Build the client and capability gate for ``session``.

    Scope introspection happens exactly once here.
    """
    client = BitbucketClient.from_config(session.auth, config.api, transport=transport)
    gate = CapabilityGate.introspect(client, config.disabled_tools)

    workspace = repo = ""
    if detect_repo:
        try:
            workspace, repo = get_local_repo_info()
        except LocalRepoError as e:
            logger.debug("No local repository defaults: %s", e)
    return BbktMCPServer(client, gate, default_workspace=workspace, default_repo=repo)
