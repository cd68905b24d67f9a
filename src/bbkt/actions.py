"""Catalog of Bitbucket REST actions shared by the CLI and the MCP server.

Each tool groups related REST actions (``manage_pull_requests`` with
``list``, ``get``, ``create``, ...). A call names a tool, an action and a
flat argument mapping; path placeholders, query parameters and the JSON
body are all drawn from that mapping.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

from bbkt.client import BitbucketClient
from bbkt.exceptions import ActionError


@dataclass(frozen=True)
class Action:
    method: str
    path: str
    body: bool = False


_REPO = "/repositories/{workspace}/{repo_slug}"
_PR = _REPO + "/pullrequests/{pr_id}"
_PIPELINE = _REPO + "/pipelines/{pipeline_uuid}"

TOOL_ACTIONS: dict[str, dict[str, Action]] = {
    "manage_workspaces": {
        "list": Action("GET", "/workspaces"),
        "get": Action("GET", "/workspaces/{workspace}"),
        "list_members": Action("GET", "/workspaces/{workspace}/members"),
        "list_projects": Action("GET", "/workspaces/{workspace}/projects"),
    },
    "manage_repositories": {
        "list": Action("GET", "/repositories/{workspace}"),
        "get": Action("GET", _REPO),
        "create": Action("POST", _REPO, body=True),
        "update": Action("PUT", _REPO, body=True),
        "delete": Action("DELETE", _REPO),
    },
    "manage_refs": {
        "list_branches": Action("GET", _REPO + "/refs/branches"),
        "get_branch": Action("GET", _REPO + "/refs/branches/{name}"),
        "create_branch": Action("POST", _REPO + "/refs/branches", body=True),
        "delete_branch": Action("DELETE", _REPO + "/refs/branches/{name}"),
        "list_tags": Action("GET", _REPO + "/refs/tags"),
        "create_tag": Action("POST", _REPO + "/refs/tags", body=True),
    },
    "manage_commits": {
        "list": Action("GET", _REPO + "/commits"),
        "get": Action("GET", _REPO + "/commit/{commit}"),
        "diff": Action("GET", _REPO + "/diff/{spec}"),
        "diffstat": Action("GET", _REPO + "/diffstat/{spec}"),
        "list_statuses": Action("GET", _REPO + "/commit/{commit}/statuses"),
    },
    "manage_pull_requests": {
        "list": Action("GET", _REPO + "/pullrequests"),
        "get": Action("GET", _PR),
        "create": Action("POST", _REPO + "/pullrequests", body=True),
        "update": Action("PUT", _PR, body=True),
        "merge": Action("POST", _PR + "/merge", body=True),
        "decline": Action("POST", _PR + "/decline"),
        "approve": Action("POST", _PR + "/approve"),
        "unapprove": Action("DELETE", _PR + "/approve"),
        "diff": Action("GET", _PR + "/diff"),
    },
    "manage_pr_comments": {
        "list": Action("GET", _PR + "/comments"),
        "get": Action("GET", _PR + "/comments/{comment_id}"),
        "create": Action("POST", _PR + "/comments", body=True),
        "update": Action("PUT", _PR + "/comments/{comment_id}", body=True),
        "delete": Action("DELETE", _PR + "/comments/{comment_id}"),
    },
    "manage_source": {
        "get": Action("GET", _REPO + "/src/{commit}/{path}"),
        "list_root": Action("GET", _REPO + "/src"),
    },
    "manage_pipelines": {
        "list": Action("GET", _REPO + "/pipelines"),
        "get": Action("GET", _PIPELINE),
        "trigger": Action("POST", _REPO + "/pipelines", body=True),
        "stop": Action("POST", _PIPELINE + "/stopPipeline"),
        "list_steps": Action("GET", _PIPELINE + "/steps"),
        "get_step_log": Action("GET", _PIPELINE + "/steps/{step_uuid}/log"),
    },
    "manage_issues": {
        "list": Action("GET", _REPO + "/issues"),
        "get": Action("GET", _REPO + "/issues/{issue_id}"),
        "create": Action("POST", _REPO + "/issues", body=True),
        "update": Action("PUT", _REPO + "/issues/{issue_id}", body=True),
        "delete": Action("DELETE", _REPO + "/issues/{issue_id}"),
    },
}

TOOL_DESCRIPTIONS = {
    "manage_workspaces": "List and inspect Bitbucket workspaces, their members and projects.",
    "manage_repositories": "List, inspect, create, update and delete repositories.",
    "manage_refs": "Manage branches and tags of a repository.",
    "manage_commits": "List commits, inspect one commit, its diff, diffstat or build statuses.",
    "manage_pull_requests": (
        "List, inspect, create, update, merge, decline and approve pull requests."
    ),
    "manage_pr_comments": "Read and write comments on a pull request.",
    "manage_source": "Read files and directory listings at a commit or branch.",
    "manage_pipelines": "List, trigger and stop Bitbucket Pipelines runs and read step logs.",
    "manage_issues": "Work with the repository issue tracker.",
}

QUERY_PROPERTIES = {
    "q": {"type": "string", "description": "Bitbucket query language filter"},
    "sort": {"type": "string", "description": "Field to sort by, prefix with - to reverse"},
    "pagelen": {"type": "integer", "description": "Page size"},
    "page": {"type": "integer", "description": "Page number"},
}

# Path arguments that may contain slashes.
_SLASHED_ARGS = frozenset({"path", "spec"})


@dataclass(frozen=True)
class PreparedCall:
    method: str
    path: str
    params: dict[str, Any] | None = None
    body: Any = None


def placeholders(path: str) -> list[str]:
    """Names of the ``{placeholder}`` segments in ``path``, in order."""
    names = []
    for chunk in path.split("{")[1:]:
        names.append(chunk.split("}", 1)[0])
    return names


def render_path(template: str, args: dict[str, Any]) -> str:
    """Fill ``template`` from ``args``; raises KeyError on a missing value."""
    values = {}
    for name in placeholders(template):
        value = args.get(name)
        if value is None or str(value) == "":
            raise KeyError(name)
        safe = "/" if name in _SLASHED_ARGS else ""
        values[name] = quote(str(value), safe=safe)
    return template.format(**values)


def prepare_call(tool: str, action_name: str, args: dict[str, Any]) -> PreparedCall:
    """Resolve ``tool.action_name`` against ``args`` into one REST call.

    Raises ActionError for an unknown tool or action, or when a path
    argument is missing.
    """
    actions = TOOL_ACTIONS.get(tool)
    if actions is None:
        raise ActionError(f"Unknown tool: {tool}")
    action = actions.get(action_name)
    if action is None:
        raise ActionError(
            f"Unknown action for {tool}: {action_name!r}", actions=list(actions),
        )
    try:
        path = render_path(action.path, args)
    except KeyError as e:
        raise ActionError(f"{e.args[0]} is required for {tool}.{action_name}") from e

    params = None
    if action.method == "GET":
        params = {k: args[k] for k in QUERY_PROPERTIES if args.get(k) not in (None, "")}
    body = args.get("body") if action.body else None
    return PreparedCall(action.method, path, params or None, body)


def run_action(
    client: BitbucketClient,
    tool: str,
    action_name: str,
    args: dict[str, Any],
) -> Any:
    """Perform one catalog action; a bodiless success reports ``{"status": "ok"}``."""
    call = prepare_call(tool, action_name, args)
    result = client.request(call.method, call.path, params=call.params, json_body=call.body)
    if result is None:
        return {"status": "ok"}
    return result
