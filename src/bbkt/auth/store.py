"""On-disk profile store: load, save, and legacy migration.

The store is one JSON document::

    {"active_profile": "work", "profiles": {"work": {...}, "personal": {...}}}

Files written by older releases hold a single bare credential object. They
are wrapped under the ``"default"`` profile on load and rewritten in the
current format.

Every mutation rewrites the whole file. There is no locking: two processes
saving concurrently race and the last writer wins.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from bbkt.auth.credentials import CredentialRecord
from bbkt.exceptions import ProfileNotFoundError, StoreCorruptError, StoreError

logger = logging.getLogger(__name__)

DEFAULT_PROFILE = "default"


@dataclass
class ProfileStore:
    """Named credential profiles plus the default ("active") pointer."""

    active_profile: str = ""
    profiles: dict[str, CredentialRecord] = field(default_factory=dict)

    def get(self, name: str) -> CredentialRecord | None:
        return self.profiles.get(name)

    def names(self) -> list[str]:
        return list(self.profiles)

    def is_empty(self) -> bool:
        return not self.profiles

    def upsert(self, record: CredentialRecord) -> None:
        """Insert or replace ``record``; the first profile becomes active."""
        if not record.profile_name:
            record.profile_name = DEFAULT_PROFILE
        self.profiles[record.profile_name] = record
        if not self.active_profile:
            self.active_profile = record.profile_name

    def to_dict(self) -> dict[str, Any]:
        return {
            "active_profile": self.active_profile,
            "profiles": {
                name: record.to_dict() for name, record in self.profiles.items()
            },
        }


def default_credentials_path() -> Path:
    """Default credential store path (~/.config/bbkt/credentials.json)."""
    try:
        home = Path.home()
    except RuntimeError as e:
        raise StoreError(f"Cannot resolve home directory: {e}") from e
    return home / ".config" / "bbkt" / "credentials.json"


def _decode_current(raw: object, *, path: Path) -> ProfileStore | None:
    """Decode the multi-profile shape; None when the document has another shape."""
    if not isinstance(raw, dict) or "profiles" not in raw:
        return None
    profiles_raw = raw.get("profiles")
    if profiles_raw is None:
        profiles_raw = {}
    if not isinstance(profiles_raw, dict):
        raise StoreCorruptError(f"Invalid profiles in {path}: expected an object.")

    profiles: dict[str, CredentialRecord] = {}
    for name_raw, record_raw in profiles_raw.items():
        name = str(name_raw).strip()
        if not name:
            raise StoreCorruptError(f"Empty profile name in {path}.")
        try:
            profiles[name] = CredentialRecord.from_dict(name, record_raw)
        except ValueError as e:
            raise StoreCorruptError(f"Invalid profile in {path}: {e}") from e

    return ProfileStore(
        active_profile=str(raw.get("active_profile", "") or "").strip(),
        profiles=profiles,
    )


def _decode_legacy(raw: object, *, path: Path) -> ProfileStore:
    """Decode a pre-profiles single-record file into a one-profile store."""
    try:
        record = CredentialRecord.from_dict(DEFAULT_PROFILE, raw)
    except ValueError as e:
        raise StoreCorruptError(f"Invalid legacy credentials in {path}: {e}") from e
    return ProfileStore(
        active_profile=DEFAULT_PROFILE,
        profiles={DEFAULT_PROFILE: record},
    )


def load_profile_store(path: Path | None = None) -> ProfileStore:
    """Load the profile store, migrating the legacy format when found.

    A missing file yields an empty store.
    """
    store_path = path or default_credentials_path()
    if not store_path.exists():
        return ProfileStore()
    try:
        text = store_path.read_text(encoding="utf-8")
    except OSError as e:
        raise StoreCorruptError(f"Cannot read credentials file {store_path}: {e}") from e
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as e:
        raise StoreCorruptError(f"Invalid JSON in {store_path}: {e}") from e

    store = _decode_current(raw, path=store_path)
    if store is not None:
        return store

    store = _decode_legacy(raw, path=store_path)
    try:
        save_profile_store(store, store_path)
    except StoreError as e:
        logger.warning("Could not rewrite migrated credentials file %s: %s", store_path, e)
    else:
        logger.info("Migrated legacy credentials file %s to profile format", store_path)
    return store


def _atomic_write_private(path: Path, content: str) -> None:
    path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp-{os.getpid()}")
    try:
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, path)
    finally:
        try:
            if tmp_path.exists():
                tmp_path.unlink()
        except OSError:
            pass


def save_profile_store(store: ProfileStore, path: Path | None = None) -> Path:
    """Serialize and write the full store with owner-only permissions."""
    store_path = path or default_credentials_path()
    content = json.dumps(store.to_dict(), indent=2) + "\n"
    try:
        _atomic_write_private(store_path, content)
    except OSError as e:
        raise StoreError(f"Cannot write credentials file {store_path}: {e}") from e
    return store_path


def save_profile(record: CredentialRecord, path: Path | None = None) -> ProfileStore:
    """Upsert one profile into the persisted store."""
    store = load_profile_store(path)
    store.upsert(record)
    save_profile_store(store, path)
    return store


def update_profile(record: CredentialRecord, path: Path | None = None) -> ProfileStore:
    """Replace an existing profile, failing if it disappeared from disk."""
    store = load_profile_store(path)
    if record.profile_name not in store.profiles:
        raise ProfileNotFoundError(f"Profile '{record.profile_name}' not found in store.")
    store.upsert(record)
    save_profile_store(store, path)
    return store


def set_active_profile(name: str, path: Path | None = None) -> ProfileStore:
    """Make ``name`` the default profile."""
    clean = str(name or "").strip()
    store = load_profile_store(path)
    if clean not in store.profiles:
        raise ProfileNotFoundError(f"Profile '{clean}' not found.")
    store.active_profile = clean
    save_profile_store(store, path)
    return store


def remove_credentials(path: Path | None = None) -> bool:
    """Delete the store file. Returns False when there was nothing to delete."""
    store_path = path or default_credentials_path()
    try:
        store_path.unlink()
    except FileNotFoundError:
        return False
    except OSError as e:
        raise StoreError(f"Cannot remove credentials file {store_path}: {e}") from e
    return True
