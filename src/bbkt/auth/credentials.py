"""Credential record model for one named auth profile."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any

from bbkt.auth.scopes import parse_scopes

EXPIRY_BUFFER = timedelta(minutes=5)

# Records written without an issue time are treated as issued long ago.
EPOCH_ZERO = datetime.min.replace(tzinfo=UTC)

_FRACTION_RE = re.compile(r"\.(\d+)")


class AuthKind(StrEnum):
    API_TOKEN = "api_token"
    OAUTH = "oauth"


_STATIC_FIELDS = ("email", "api_token")
_OAUTH_FIELDS = (
    "access_token",
    "refresh_token",
    "token_type",
    "expires_in",
    "scopes",
    "client_id",
    "client_secret",
)


def utcnow() -> datetime:
    return datetime.now(UTC)


def parse_timestamp(raw: object) -> datetime:
    """Parse an ISO-8601 / RFC 3339 timestamp into an aware UTC datetime.

    Accepts a trailing ``Z`` and fractional seconds longer than six digits.
    Instants that fall before year 1 once shifted to UTC clamp to
    ``EPOCH_ZERO``.
    """
    if isinstance(raw, datetime):
        parsed = raw
    else:
        text = str(raw or "").strip()
        if not text:
            raise ValueError("created_at is missing")
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    try:
        return parsed.astimezone(UTC)
    except OverflowError:
        return EPOCH_ZERO


@dataclass
class CredentialRecord:
    """One persisted authentication profile.

    Only the field group matching ``auth_kind`` may be populated: ``email``
    and ``api_token`` for API tokens (HTTP Basic), the OAuth token fields for
    OAuth (HTTP Bearer). ``profile_name`` is derived from the store key and
    never serialized inside the record itself.
    """

    profile_name: str
    auth_kind: AuthKind
    created_at: datetime = field(default_factory=utcnow)

    email: str = ""
    api_token: str = ""

    access_token: str = ""
    refresh_token: str = ""
    token_type: str = ""
    expires_in: int = 0
    scopes: str = ""
    client_id: str = ""
    client_secret: str = ""

    accessible_workspaces: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.auth_kind = AuthKind(self.auth_kind)
        self.created_at = parse_timestamp(self.created_at)
        foreign = _OAUTH_FIELDS if self.auth_kind is AuthKind.API_TOKEN else _STATIC_FIELDS
        populated = [name for name in foreign if getattr(self, name)]
        if populated:
            raise ValueError(
                f"{self.auth_kind.value} profile {self.profile_name!r} cannot carry "
                f"fields {', '.join(populated)}"
            )

    def __repr__(self) -> str:
        return (
            f"CredentialRecord(profile_name={self.profile_name!r}, "
            f"auth_kind={self.auth_kind.value!r}, email={self.email!r}, "
            f"created_at={self.created_at.isoformat()!r}, "
            f"secret={self.masked_secret()!r})"
        )

    def is_oauth(self) -> bool:
        return self.auth_kind is AuthKind.OAUTH

    def is_api_token(self) -> bool:
        return self.auth_kind is AuthKind.API_TOKEN

    def expires_at(self) -> datetime | None:
        if not self.is_oauth():
            return None
        return self.created_at + timedelta(seconds=self.expires_in)

    def is_expired(self, now: datetime | None = None) -> bool:
        """True when an OAuth access token is within 5 minutes of expiry.

        The boundary counts as expired. Static API tokens never expire.
        """
        if not self.is_oauth():
            return False
        current = now or utcnow()
        lifetime = timedelta(seconds=self.expires_in)
        return current - self.created_at >= lifetime - EXPIRY_BUFFER

    def scope_set(self) -> frozenset[str]:
        return parse_scopes(self.scopes)

    def serves_workspace(self, workspace: str) -> bool:
        wanted = str(workspace or "").strip().casefold()
        if not wanted:
            return False
        return any(
            str(slug).strip().casefold() == wanted
            for slug in self.accessible_workspaces
        )

    def masked_secret(self) -> str:
        secret = self.api_token if self.is_api_token() else self.access_token
        if len(secret) > 8:
            return f"{secret[:4]}...{secret[-4:]}"
        return "****"

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "auth_type": self.auth_kind.value,
            "created_at": self.created_at.isoformat(),
        }
        group = _STATIC_FIELDS if self.is_api_token() else _OAUTH_FIELDS
        for name in group:
            value = getattr(self, name)
            if value:
                payload[name] = value
        if self.accessible_workspaces:
            payload["accessible_workspaces"] = list(self.accessible_workspaces)
        return payload

    @classmethod
    def from_dict(cls, profile_name: str, raw: object) -> CredentialRecord:
        """Decode one serialized record; raises ValueError on a bad shape."""
        if not isinstance(raw, dict):
            raise ValueError(f"profile {profile_name!r}: expected a JSON object")

        tag = str(raw.get("auth_type", "") or "").strip().lower()
        if not tag:
            # Files written before OAuth support carried no tag.
            tag = AuthKind.OAUTH.value if raw.get("access_token") else AuthKind.API_TOKEN.value
        try:
            kind = AuthKind(tag)
        except ValueError as e:
            raise ValueError(f"profile {profile_name!r}: unknown auth_type {tag!r}") from e

        kwargs: dict[str, Any] = {}
        group = _STATIC_FIELDS if kind is AuthKind.API_TOKEN else _OAUTH_FIELDS
        for name in group:
            if name not in raw or raw[name] is None:
                continue
            value = raw[name]
            if name == "expires_in":
                if isinstance(value, bool) or not isinstance(value, (int, float)):
                    raise ValueError(f"profile {profile_name!r}: expires_in must be a number")
                kwargs[name] = int(value)
            else:
                kwargs[name] = str(value)

        workspaces_raw = raw.get("accessible_workspaces") or []
        if not isinstance(workspaces_raw, list):
            raise ValueError(f"profile {profile_name!r}: accessible_workspaces must be a list")

        created_raw = raw.get("created_at")
        created_at = parse_timestamp(created_raw) if created_raw else EPOCH_ZERO

        return cls(
            profile_name=profile_name,
            auth_kind=kind,
            created_at=created_at,
            accessible_workspaces=[str(slug) for slug in workspaces_raw if str(slug).strip()],
            **kwargs,
        )
