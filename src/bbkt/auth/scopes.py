"""Capability taxonomy and scope-string matching.

Bitbucket reports granted scopes in two dialects:

- OAuth consumers use bare words: ``repository``, ``repository:write``,
  ``pullrequest``, ...
- API tokens use triplets: ``read:repository:bitbucket``,
  ``write:pullrequest:bitbucket``, ...

Each internal capability maps to the full set of raw scopes, in both
dialects, that satisfy it. Within one resource family the sets are
monotonic: whatever satisfies ``*-admin`` satisfies ``*-write``, and
whatever satisfies ``*-write`` satisfies ``*-read``.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from enum import StrEnum

logger = logging.getLogger(__name__)

_SCOPE_SPLIT_RE = re.compile(r"[\s,]+")


class CapabilityTag(StrEnum):
    REPOSITORY_READ = "repository-read"
    REPOSITORY_WRITE = "repository-write"
    REPOSITORY_ADMIN = "repository-admin"
    PULLREQUEST_READ = "pullrequest-read"
    PULLREQUEST_WRITE = "pullrequest-write"
    PIPELINE_READ = "pipeline-read"
    PIPELINE_WRITE = "pipeline-write"
    ISSUE_READ = "issue-read"
    ISSUE_WRITE = "issue-write"


SCOPE_EQUIVALENTS: dict[CapabilityTag, frozenset[str]] = {
    CapabilityTag.REPOSITORY_READ: frozenset({
        "repository", "repository:write", "repository:admin",
        "read:repository:bitbucket", "write:repository:bitbucket",
        "admin:repository:bitbucket",
    }),
    CapabilityTag.REPOSITORY_WRITE: frozenset({
        "repository:write", "repository:admin",
        "write:repository:bitbucket", "admin:repository:bitbucket",
    }),
    CapabilityTag.REPOSITORY_ADMIN: frozenset({
        "repository:admin", "admin:repository:bitbucket",
    }),
    CapabilityTag.PULLREQUEST_READ: frozenset({
        "pullrequest", "pullrequest:write",
        "read:pullrequest:bitbucket", "write:pullrequest:bitbucket",
    }),
    CapabilityTag.PULLREQUEST_WRITE: frozenset({
        "pullrequest:write", "write:pullrequest:bitbucket",
    }),
    CapabilityTag.PIPELINE_READ: frozenset({
        "pipeline", "pipeline:write",
        "read:pipeline:bitbucket", "write:pipeline:bitbucket",
    }),
    CapabilityTag.PIPELINE_WRITE: frozenset({
        "pipeline:write", "write:pipeline:bitbucket",
    }),
    CapabilityTag.ISSUE_READ: frozenset({
        "issue", "issue:write",
        "read:issue:bitbucket", "write:issue:bitbucket",
    }),
    CapabilityTag.ISSUE_WRITE: frozenset({
        "issue:write", "write:issue:bitbucket",
    }),
}

# Exposed operation -> capability it needs. Operations without an entry
# need nothing and are always permitted.
TOOL_CAPABILITIES: dict[str, CapabilityTag] = {
    "manage_repositories": CapabilityTag.REPOSITORY_READ,
    "manage_refs": CapabilityTag.REPOSITORY_READ,
    "manage_commits": CapabilityTag.REPOSITORY_READ,
    "manage_source": CapabilityTag.REPOSITORY_READ,
    "manage_pull_requests": CapabilityTag.PULLREQUEST_READ,
    "manage_pr_comments": CapabilityTag.PULLREQUEST_READ,
    "manage_pipelines": CapabilityTag.PIPELINE_READ,
    "manage_issues": CapabilityTag.ISSUE_READ,
}


def parse_scopes(raw: str | Iterable[str] | None) -> frozenset[str]:
    """Split a provider scope string on commas and/or whitespace."""
    if not raw:
        return frozenset()
    if isinstance(raw, str):
        parts = _SCOPE_SPLIT_RE.split(raw)
    else:
        parts = [piece for item in raw for piece in _SCOPE_SPLIT_RE.split(str(item))]
    return frozenset(part.strip() for part in parts if part.strip())


def required_capability(operation: str) -> CapabilityTag | None:
    return TOOL_CAPABILITIES.get(str(operation or "").strip())


def satisfying_scopes(capability: CapabilityTag) -> frozenset[str]:
    """Raw scopes (both dialects) that grant ``capability``."""
    return SCOPE_EQUIVALENTS.get(CapabilityTag(capability), frozenset())


def is_granted(
    granted_scopes: Iterable[str] | None,
    required: CapabilityTag | None,
) -> bool:
    """Decide whether a token's scopes cover ``required``.

    An empty scope set means the scopes could not be determined; every
    capability is then reported as granted and the remote API stays the
    final authority on each request.
    """
    if not required:
        return True
    granted = frozenset(granted_scopes or ())
    if not granted:
        logger.debug("No scope data for token; allowing %s", required)
        return True
    capability = CapabilityTag(required)
    if capability.value in granted:
        return True
    return not granted.isdisjoint(satisfying_scopes(capability))
