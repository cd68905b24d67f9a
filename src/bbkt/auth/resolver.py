"""Select the credential profile for the current invocation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum

from bbkt.auth.credentials import CredentialRecord
from bbkt.auth.store import ProfileStore
from bbkt.exceptions import NotAuthenticatedError, ProfileNotFoundError

logger = logging.getLogger(__name__)


class ProfileSource(StrEnum):
    OVERRIDE = "override"
    CONTEXT = "context"
    DEFAULT = "default"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class ResolvedProfile:
    record: CredentialRecord
    source: ProfileSource

    @property
    def name(self) -> str:
        return self.record.profile_name


def match_context_workspace(
    store: ProfileStore,
    workspace: str,
) -> CredentialRecord | None:
    """First profile whose cached workspaces include ``workspace``.

    Scan order follows the store's mapping order, so when several profiles
    cache the same workspace the earliest stored one wins.
    """
    for record in store.profiles.values():
        if record.serves_workspace(workspace):
            return record
    return None


def resolve_profile(
    store: ProfileStore,
    *,
    override: str | None = None,
    context_workspace: str | None = None,
) -> ResolvedProfile:
    """Pick exactly one profile.

    Priority, first match wins:
      1. explicit override (missing name is an error, never a fall-through)
      2. a profile whose workspace cache contains the local repo workspace
      3. the stored default profile
      4. any profile, when the stored default points nowhere
    """
    requested = str(override or "").strip()
    if requested:
        record = store.get(requested)
        if record is None:
            raise ProfileNotFoundError(
                f"Override profile '{requested}' not found in store."
            )
        return ResolvedProfile(record, ProfileSource.OVERRIDE)

    workspace = str(context_workspace or "").strip()
    if workspace:
        record = match_context_workspace(store, workspace)
        if record is not None:
            logger.debug(
                "Profile %r selected from local workspace %r",
                record.profile_name, workspace,
            )
            return ResolvedProfile(record, ProfileSource.CONTEXT)

    record = store.get(store.active_profile) if store.active_profile else None
    if record is not None:
        return ResolvedProfile(record, ProfileSource.DEFAULT)

    if store.profiles:
        record = next(iter(store.profiles.values()))
        logger.warning(
            "Default profile %r not found; using profile %r",
            store.active_profile, record.profile_name,
        )
        return ResolvedProfile(record, ProfileSource.FALLBACK)

    raise NotAuthenticatedError("Not authenticated. Run: bbkt auth")
