"""Decide which operations to expose for the current token."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar

from bbkt.auth.scopes import is_granted, required_capability
from bbkt.exceptions import ScopeIntrospectionError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ScopeSource(Protocol):
    def fetch_scopes(self) -> frozenset[str]: ...


def parse_deny_list(raw: str | Iterable[str] | None) -> frozenset[str]:
    """Parse ``"a, b,,c"`` (or an iterable of such strings) into names."""
    if not raw:
        return frozenset()
    chunks = [raw] if isinstance(raw, str) else list(raw)
    names = {
        part.strip()
        for chunk in chunks
        for part in str(chunk).split(",")
    }
    return frozenset(name for name in names if name)


def operation_name(operation: Any) -> str:
    """Name of an operation given as a string, a mapping, or an object."""
    if isinstance(operation, str):
        return operation
    if isinstance(operation, Mapping):
        return str(operation.get("name", ""))
    return str(getattr(operation, "name", ""))


def is_operation_allowed(
    name: str,
    granted_scopes: Iterable[str],
    deny_list: Iterable[str],
) -> bool:
    if name in frozenset(deny_list):
        return False
    return is_granted(granted_scopes, required_capability(name))


def filter_operations(
    operations: Iterable[T],
    granted_scopes: Iterable[str],
    deny_list: Iterable[str],
) -> list[T]:
    """Keep operations that are not denied and whose capability is granted.

    Dropped operations are omitted silently; order is preserved.
    """
    granted = frozenset(granted_scopes)
    denied = frozenset(deny_list)
    return [
        op for op in operations
        if is_operation_allowed(operation_name(op), granted, denied)
    ]


@dataclass(frozen=True)
class CapabilityGate:
    """Scope snapshot plus deny-list, fixed for the process lifetime."""

    granted_scopes: frozenset[str] = field(default_factory=frozenset)
    deny_list: frozenset[str] = field(default_factory=frozenset)

    @property
    def fail_open(self) -> bool:
        """True when no scope data is known and every capability is allowed."""
        return not self.granted_scopes

    def allows(self, name: str) -> bool:
        return is_operation_allowed(name, self.granted_scopes, self.deny_list)

    def filter(self, operations: Iterable[T]) -> list[T]:
        return filter_operations(operations, self.granted_scopes, self.deny_list)

    @classmethod
    def introspect(
        cls,
        source: ScopeSource,
        deny_list: str | Iterable[str] | None = None,
    ) -> CapabilityGate:
        """Ask ``source`` for the token's scopes once and build the gate.

        Introspection failures are logged and leave the scope set empty.
        """
        try:
            scopes = frozenset(source.fetch_scopes())
        except ScopeIntrospectionError as e:
            logger.warning("Failed to fetch token scopes for introspection: %s", e)
            scopes = frozenset()
        if not scopes:
            logger.info("Token scopes unknown; exposing all tools not denied")
        return cls(granted_scopes=scopes, deny_list=parse_deny_list(deny_list))
