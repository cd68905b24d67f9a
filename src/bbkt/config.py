"""Configuration loader for bbkt.

Loads from bbkt.toml with sensible defaults when file is absent.
Configuration is loaded once at startup and passed via dependency injection.
Process environment overrides are parsed separately into ``EnvOverrides``.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from bbkt.exceptions import ConfigError

PROFILE_ENV = "BBKT_PROFILE"
CONFIG_ENV = "BBKT_CONFIG"
LOG_LEVEL_ENV = "BBKT_LOG_LEVEL"
DISABLED_TOOLS_ENV = "BITBUCKET_DISABLED_TOOLS"
USERNAME_ENV = "BITBUCKET_USERNAME"
API_TOKEN_ENV = "BITBUCKET_API_TOKEN"
ACCESS_TOKEN_ENV = "BITBUCKET_ACCESS_TOKEN"
OAUTH_CLIENT_ID_ENV = "BITBUCKET_OAUTH_CLIENT_ID"
OAUTH_CLIENT_SECRET_ENV = "BITBUCKET_OAUTH_CLIENT_SECRET"


@dataclass(frozen=True)
class APIConfig:
    base_url: str = "https://api.bitbucket.org/2.0"
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class OAuthConfig:
    authorize_url: str = "https://bitbucket.org/site/oauth2/authorize"
    token_url: str = "https://bitbucket.org/site/oauth2/access_token"
    callback_port: int = 8976


@dataclass(frozen=True)
class CredentialsConfig:
    path: str = "~/.config/bbkt/credentials.json"


@dataclass(frozen=True)
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 0  # 0 = stdio transport


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "WARNING"


@dataclass(frozen=True)
class ToolsConfig:
    disabled: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class EnvOverrides:
    """Process environment values consumed by the auth core."""

    profile: str = ""
    disabled_tools: str = ""
    username: str = ""
    api_token: str = ""
    access_token: str = ""
    oauth_client_id: str = ""
    oauth_client_secret: str = ""
    log_level: str = ""

    @classmethod
    def from_environ(cls, environ: Mapping[str, str] | None = None) -> EnvOverrides:
        env = os.environ if environ is None else environ

        def _get(name: str) -> str:
            return str(env.get(name, "") or "").strip()

        return cls(
            profile=_get(PROFILE_ENV),
            disabled_tools=_get(DISABLED_TOOLS_ENV),
            username=_get(USERNAME_ENV),
            api_token=_get(API_TOKEN_ENV),
            access_token=_get(ACCESS_TOKEN_ENV),
            oauth_client_id=_get(OAUTH_CLIENT_ID_ENV),
            oauth_client_secret=_get(OAUTH_CLIENT_SECRET_ENV),
            log_level=_get(LOG_LEVEL_ENV),
        )

    @property
    def has_static_credentials(self) -> bool:
        """True when env-supplied credentials should bypass the profile store."""
        return bool(self.access_token) or bool(self.username and self.api_token)

    def __repr__(self) -> str:
        return (
            f"EnvOverrides(profile={self.profile!r}, "
            f"disabled_tools={self.disabled_tools!r}, username={self.username!r}, "
            f"api_token={'***' if self.api_token else ''!r}, "
            f"access_token={'***' if self.access_token else ''!r})"
        )


@dataclass(frozen=True)
class Config:
    """Top-level bbkt configuration."""

    api: APIConfig = field(default_factory=APIConfig)
    oauth: OAuthConfig = field(default_factory=OAuthConfig)
    credentials: CredentialsConfig = field(default_factory=CredentialsConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    env: EnvOverrides = field(default_factory=EnvOverrides)

    @property
    def credentials_path(self) -> Path:
        return Path(self.credentials.path).expanduser()

    @property
    def log_level(self) -> str:
        return (self.env.log_level or self.logging.level or "WARNING").upper()

    @property
    def disabled_tools(self) -> str:
        """Comma-joined deny-list from config plus environment."""
        names = [str(name).strip() for name in self.tools.disabled]
        if self.env.disabled_tools:
            names.append(self.env.disabled_tools)
        return ",".join(name for name in names if name)


def default_config_candidates() -> list[Path]:
    return [
        Path.cwd() / "bbkt.toml",
        Path.home() / ".config" / "bbkt" / "bbkt.toml",
    ]


def _positive_float(value: object, default: float) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def _port(value: object, default: int) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if 0 <= parsed <= 65535 else default


def _section(raw: dict, name: str, path: Path) -> dict:
    data = raw.get(name, {})
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid [{name}] section in {path}: expected table.")
    return data


def load_config(
    path: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> Config:
    """Load configuration from a TOML file plus environment overrides.

    If path is None, uses $BBKT_CONFIG, then searches for bbkt.toml in the
    current directory and ~/.config/bbkt/. Returns default config if no file
    is found.
    """
    env = EnvOverrides.from_environ(environ)
    env_source = os.environ if environ is None else environ
    if path is None:
        explicit = str(env_source.get(CONFIG_ENV, "") or "").strip()
        if explicit:
            path = Path(explicit).expanduser()
            if not path.exists():
                raise ConfigError(f"Config file from ${CONFIG_ENV} not found: {path}")
        else:
            for candidate in default_config_candidates():
                if candidate.exists():
                    path = candidate
                    break

    if path is None or not path.exists():
        return Config(env=env)

    try:
        with open(path, "rb") as f:
            raw = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e

    api_data = _section(raw, "api", path)
    api = APIConfig(
        base_url=str(api_data.get("base_url", APIConfig.base_url)).rstrip("/"),
        timeout_seconds=_positive_float(
            api_data.get("timeout_seconds"), APIConfig.timeout_seconds,
        ),
    )

    oauth_data = _section(raw, "oauth", path)
    oauth = OAuthConfig(
        authorize_url=str(oauth_data.get("authorize_url", OAuthConfig.authorize_url)),
        token_url=str(oauth_data.get("token_url", OAuthConfig.token_url)),
        callback_port=_port(oauth_data.get("callback_port"), OAuthConfig.callback_port),
    )

    creds_data = _section(raw, "credentials", path)
    credentials = CredentialsConfig(
        path=str(creds_data.get("path", CredentialsConfig.path)),
    )

    server_data = _section(raw, "server", path)
    server = ServerConfig(
        host=str(server_data.get("host", ServerConfig.host)),
        port=_port(server_data.get("port"), ServerConfig.port),
    )

    log_data = _section(raw, "logging", path)
    logging_cfg = LoggingConfig(level=str(log_data.get("level", LoggingConfig.level)))

    tools_data = _section(raw, "tools", path)
    disabled_raw = tools_data.get("disabled", [])
    if isinstance(disabled_raw, str):
        disabled = [disabled_raw]
    elif isinstance(disabled_raw, list):
        disabled = [str(item) for item in disabled_raw]
    else:
        raise ConfigError(f"Invalid tools.disabled in {path}: expected list.")

    return Config(
        api=api,
        oauth=oauth,
        credentials=credentials,
        server=server,
        logging=logging_cfg,
        tools=ToolsConfig(disabled=disabled),
        env=env,
    )
