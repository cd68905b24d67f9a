"""CLI entry point for bbkt."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import NoReturn

import click

from bbkt import __version__
from bbkt.actions import TOOL_ACTIONS, TOOL_DESCRIPTIONS, Action, placeholders, run_action
from bbkt.auth.credentials import utcnow
from bbkt.auth.login import (
    API_TOKEN_URL,
    RECOMMENDED_OAUTH_SCOPES,
    RECOMMENDED_TOKEN_SCOPES,
    api_token_login,
    oauth_login,
    refresh_workspace_cache,
)
from bbkt.auth.oauth import OAuthRefresher
from bbkt.auth.resolver import match_context_workspace, resolve_profile
from bbkt.auth.runtime import establish_session
from bbkt.auth.store import (
    DEFAULT_PROFILE,
    load_profile_store,
    remove_credentials,
    set_active_profile,
)
from bbkt.client import BitbucketClient
from bbkt.config import Config, load_config
from bbkt.exceptions import BbktError, ConfigError, LocalRepoError, ProfileNotFoundError
from bbkt.git import detect_context_workspace, get_local_repo_info

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _configure_logging(level_name: str) -> None:
    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        level = logging.WARNING
    # stdout carries the MCP stdio channel; logs always go to stderr.
    logging.basicConfig(stream=sys.stderr, level=level, format=LOG_FORMAT)


def _fail(message: str) -> NoReturn:
    click.echo(message, err=True)
    sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="bbkt")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to bbkt.toml configuration file.",
)
@click.option(
    "--profile",
    "profile_override",
    default=None,
    help="Profile to use for this command (overrides $BBKT_PROFILE).",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, profile_override: str | None) -> None:
    """bbkt: Bitbucket Cloud from the terminal and from MCP agents."""
    ctx.ensure_object(dict)
    try:
        config = load_config(config_path)
    except ConfigError as e:
        _fail(f"Configuration error: {e}")
    _configure_logging(config.log_level)
    ctx.obj["config"] = config
    ctx.obj["profile"] = profile_override or None


# -- Authentication --------------------------------------------------------

@cli.command()
@click.option("--oauth", "use_oauth", is_flag=True, default=False,
              help="Log in with OAuth in the browser instead of an API token.")
@click.option("--profile", "-p", "profile_name", default=DEFAULT_PROFILE,
              show_default=True, help="Name to save the credentials under.")
@click.option("--email", default=None, help="Atlassian account email (API token login).")
@click.pass_context
def auth(ctx: click.Context, use_oauth: bool, profile_name: str, email: str | None) -> None:
    """Log in and save credentials as a named profile."""
    config: Config = ctx.obj["config"]
    try:
        if use_oauth:
            client_id = config.env.oauth_client_id or click.prompt("OAuth consumer key")
            client_secret = config.env.oauth_client_secret or click.prompt(
                "OAuth consumer secret", hide_input=True,
            )
            click.echo("Requested OAuth scopes: " + ", ".join(RECOMMENDED_OAUTH_SCOPES))
            result = oauth_login(
                client_id,
                client_secret,
                config=config,
                profile_name=profile_name,
                echo=click.echo,
            )
        else:
            click.echo(f"Create an API token at {API_TOKEN_URL}")
            click.echo("Recommended scopes: " + ", ".join(RECOMMENDED_TOKEN_SCOPES))
            address = email or click.prompt("Atlassian account email")
            token = click.prompt("API token", hide_input=True)
            result = api_token_login(
                address, token, config=config, profile_name=profile_name,
            )
    except BbktError as e:
        _fail(f"Login failed: {e}")

    who = f" as {result.display_name}" if result.display_name else ""
    click.echo(f"Logged in{who} (profile: {result.record.profile_name})")
    if result.scopes:
        click.echo("Scopes: " + ", ".join(sorted(result.scopes)))
    workspaces = result.record.accessible_workspaces
    if workspaces:
        click.echo("Workspaces: " + ", ".join(workspaces))
    click.echo(f"Credentials saved to {result.path}")


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show which credential would be used and its state.

    Granted scopes are kept only for OAuth profiles; API-token scopes are
    shown once by `bbkt auth` and are not stored.
    """
    config: Config = ctx.obj["config"]
    env = config.env
    if env.access_token:
        click.echo("Authenticated via environment: BITBUCKET_ACCESS_TOKEN (Bearer)")
        return
    if env.username and env.api_token:
        click.echo(
            f"Authenticated via environment: BITBUCKET_USERNAME={env.username} (Basic)"
        )
        return

    path = config.credentials_path
    try:
        store = load_profile_store(path)
        if store.is_empty():
            _fail("Not authenticated. Run: bbkt auth")
        resolved = resolve_profile(
            store,
            override=ctx.obj["profile"] or env.profile,
            context_workspace=detect_context_workspace(),
        )
    except BbktError as e:
        _fail(str(e))

    record = resolved.record
    click.echo(f"Profile:    {resolved.name} ({resolved.source})")
    click.echo(f"Auth type:  {record.auth_kind}")
    if record.is_api_token():
        click.echo(f"Email:      {record.email}")
    click.echo(f"Token:      {record.masked_secret()}")
    if record.scopes:
        click.echo(f"Scopes:     {record.scopes}")
    elif record.is_api_token():
        click.echo("Scopes:     not stored for API tokens (shown by bbkt auth)")
    click.echo(f"Stored:     {record.created_at.isoformat(timespec='seconds')}")
    if record.is_oauth():
        expires_at = record.expires_at()
        when = expires_at.isoformat(timespec="seconds") if expires_at else "unknown"
        state = "expired, refreshes on next use" if record.is_expired(utcnow()) else "valid"
        click.echo(f"Expires:    {when} ({state})")
    if record.accessible_workspaces:
        click.echo(f"Workspaces: {', '.join(record.accessible_workspaces)}")
    click.echo(f"Store:      {path}")


@cli.command()
@click.pass_context
def logout(ctx: click.Context) -> None:
    """Delete all stored credentials."""
    config: Config = ctx.obj["config"]
    try:
        removed = remove_credentials(config.credentials_path)
    except BbktError as e:
        _fail(f"Logout failed: {e}")
    if removed:
        click.echo(f"Removed {config.credentials_path}")
    else:
        click.echo("No stored credentials.")


# -- Profiles --------------------------------------------------------------

@cli.group(invoke_without_command=True)
@click.pass_context
def profile(ctx: click.Context) -> None:
    """List profiles, or manage them with a subcommand."""
    if ctx.invoked_subcommand is None:
        ctx.invoke(profile_list)


@profile.command(name="list")
@click.pass_context
def profile_list(ctx: click.Context) -> None:
    """List stored profiles."""
    config: Config = ctx.obj["config"]
    try:
        store = load_profile_store(config.credentials_path)
    except BbktError as e:
        _fail(str(e))
    if store.is_empty():
        click.echo("No profiles. Run: bbkt auth")
        return

    context = match_context_workspace(store, detect_context_workspace() or "")
    for name in store.names():
        record = store.profiles[name]
        markers = []
        if name == store.active_profile:
            markers.append("(default)")
        if context is not None and context.profile_name == name:
            markers.append("[context]")
        suffix = f" {' '.join(markers)}" if markers else ""
        label = record.email if record.is_api_token() and record.email else record.auth_kind
        click.echo(f"  {name}: {label}{suffix}")


@profile.command(name="use")
@click.argument("name")
@click.pass_context
def profile_use(ctx: click.Context, name: str) -> None:
    """Make NAME the default profile."""
    config: Config = ctx.obj["config"]
    try:
        set_active_profile(name, config.credentials_path)
    except ProfileNotFoundError as e:
        _fail(str(e))
    except BbktError as e:
        _fail(f"Could not switch profile: {e}")
    click.echo(f"Default profile set to {name}")


@profile.command(name="refresh-workspaces")
@click.argument("name", required=False)
@click.pass_context
def profile_refresh_workspaces(ctx: click.Context, name: str | None) -> None:
    """Re-fetch the cached workspace list for a profile."""
    config: Config = ctx.obj["config"]
    try:
        store = load_profile_store(config.credentials_path)
        resolved = resolve_profile(store, override=name or ctx.obj["profile"] or None)
        record = refresh_workspace_cache(resolved.record, config=config)
    except BbktError as e:
        _fail(f"Refresh failed: {e}")
    workspaces = ", ".join(record.accessible_workspaces) or "(none)"
    click.echo(f"{record.profile_name}: {workspaces}")


# -- REST resources --------------------------------------------------------

RESOURCE_GROUPS = {
    "workspaces": "manage_workspaces",
    "repos": "manage_repositories",
    "refs": "manage_refs",
    "commits": "manage_commits",
    "prs": "manage_pull_requests",
    "pr-comments": "manage_pr_comments",
    "source": "manage_source",
    "pipelines": "manage_pipelines",
    "issues": "manage_issues",
}

_ARG_FLAGS = {
    "workspace": ("--workspace", "-w"),
    "repo_slug": ("--repo", "-r"),
}


def _parse_body(raw: str) -> object:
    """Decode a ``--body`` value: inline JSON, or ``@FILE`` to read it from disk."""
    text = raw
    if raw.startswith("@"):
        try:
            text = Path(raw[1:]).read_text(encoding="utf-8")
        except OSError as e:
            _fail(f"Cannot read body file {raw[1:]}: {e}")
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        _fail(f"Invalid JSON body: {e}")


def _fill_repo_defaults(action: Action, args: dict[str, object]) -> None:
    """Take workspace and repository from the local git remote when omitted."""
    if "workspace" not in placeholders(action.path) or args.get("workspace"):
        return
    try:
        workspace, repo = get_local_repo_info()
    except LocalRepoError as e:
        logger.debug("No local repository defaults: %s", e)
        return
    args["workspace"] = workspace
    args.setdefault("repo_slug", repo)


def _run_resource_action(
    ctx: click.Context,
    tool: str,
    action_name: str,
    options: dict[str, object],
) -> None:
    config: Config = ctx.obj["config"]
    transport = ctx.obj.get("transport")
    action = TOOL_ACTIONS[tool][action_name]

    args = {name: value for name, value in options.items() if value is not None}
    if "body" in args:
        args["body"] = _parse_body(str(args["body"]))
    _fill_repo_defaults(action, args)

    try:
        session = establish_session(
            config,
            override=ctx.obj["profile"],
            refresher=OAuthRefresher.from_config(
                config.oauth,
                timeout_seconds=config.api.timeout_seconds,
                transport=transport,
            ),
        )
        with BitbucketClient.from_config(session.auth, config.api, transport=transport) as client:
            result = run_action(client, tool, action_name, args)
    except BbktError as e:
        _fail(f"Error: {e}")
    click.echo(json.dumps(result, indent=2))


def _resource_command(tool: str, action_name: str, action: Action) -> click.Command:
    params: list[click.Parameter] = []
    for name in placeholders(action.path):
        flags = _ARG_FLAGS.get(name, ("--" + name.replace("_", "-"),))
        help_text = "Defaults to the local git remote." if name in _ARG_FLAGS else None
        params.append(click.Option([*flags, name], default=None, help=help_text))
    if action.method == "GET":
        params += [
            click.Option(["--query", "-q", "q"], default=None,
                         help="Bitbucket query language filter."),
            click.Option(["--sort"], default=None, help="Sort field, prefix with - to reverse."),
            click.Option(["--pagelen"], type=int, default=None, help="Page size."),
            click.Option(["--page"], type=int, default=None, help="Page number."),
        ]
    if action.body:
        params.append(click.Option(
            ["--body"], default=None, help="JSON request body, or @FILE to read it from a file.",
        ))

    @click.pass_context
    def callback(ctx: click.Context, **options: object) -> None:
        _run_resource_action(ctx, tool, action_name, options)

    return click.Command(
        name=action_name.replace("_", "-"),
        callback=callback,
        params=params,
        help=f"{action.method} {action.path}",
    )


def _resource_group(group_name: str, tool: str) -> click.Group:
    group = click.Group(name=group_name, help=TOOL_DESCRIPTIONS[tool])
    for action_name, action in TOOL_ACTIONS[tool].items():
        group.add_command(_resource_command(tool, action_name, action))
    return group


for _group_name, _tool in RESOURCE_GROUPS.items():
    cli.add_command(_resource_group(_group_name, _tool))


# -- MCP -------------------------------------------------------------------

@cli.command()
@click.option("--port", type=int, default=None,
              help="Serve streamable HTTP on this port instead of stdio.")
@click.option("--host", default=None, help="Bind address for HTTP mode.")
@click.pass_context
def mcp(ctx: click.Context, port: int | None, host: str | None) -> None:
    """Start the Bitbucket MCP server."""
    config: Config = ctx.obj["config"]
    try:
        session = establish_session(config, override=ctx.obj["profile"])
    except BbktError as e:
        _fail(str(e))

    from bbkt.integrations.mcp_server import create_server

    server = create_server(config, session)
    names = ", ".join(t["name"] for t in server.list_tools()) or "(none)"
    click.echo(f"Tools: {names}", err=True)

    effective_port = port if port is not None else config.server.port
    try:
        if effective_port:
            bind = host or config.server.host
            click.echo(f"Starting bbkt MCP server on http://{bind}:{effective_port}/mcp", err=True)
            asyncio.run(server.run_http(bind, effective_port))
        else:
            click.echo("Starting bbkt MCP server (stdio)", err=True)
            asyncio.run(server.run_stdio())
    finally:
        server.close()


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
