"""Tests for profile resolution priority."""

from __future__ import annotations

import logging

import pytest

from bbkt.auth.resolver import ProfileSource, match_context_workspace, resolve_profile
from bbkt.auth.store import ProfileStore
from bbkt.exceptions import NotAuthenticatedError, ProfileNotFoundError


@pytest.fixture
def store(make_record) -> ProfileStore:
    store = ProfileStore()
    store.upsert(make_record("personal", accessible_workspaces=["me"]))
    store.upsert(make_record("work", accessible_workspaces=["Acme", "acme-labs"]))
    store.upsert(make_record("client", accessible_workspaces=["globex"]))
    return store


def test_override_beats_context_and_default(store):
    resolved = resolve_profile(store, override="client", context_workspace="acme")
    assert resolved.name == "client"
    assert resolved.source is ProfileSource.OVERRIDE


def test_missing_override_is_an_error(store):
    with pytest.raises(ProfileNotFoundError, match="ghost"):
        resolve_profile(store, override="ghost", context_workspace="acme")


def test_context_beats_default(store):
    resolved = resolve_profile(store, context_workspace="acme-labs")
    assert resolved.name == "work"
    assert resolved.source is ProfileSource.CONTEXT


def test_context_match_is_case_insensitive(store):
    assert resolve_profile(store, context_workspace="ACME").name == "work"


def test_unmatched_context_uses_default(store):
    resolved = resolve_profile(store, context_workspace="unknown-ws")
    assert resolved.name == "personal"
    assert resolved.source is ProfileSource.DEFAULT


def test_no_context_uses_default(store):
    store.active_profile = "client"
    resolved = resolve_profile(store)
    assert resolved.name == "client"
    assert resolved.source is ProfileSource.DEFAULT


def test_blank_override_is_ignored(store):
    assert resolve_profile(store, override="  ").source is ProfileSource.DEFAULT


def test_dangling_default_falls_back(store, caplog):
    store.active_profile = "deleted"
    with caplog.at_level(logging.WARNING, logger="bbkt.auth.resolver"):
        resolved = resolve_profile(store)
    assert resolved.name == "personal"
    assert resolved.source is ProfileSource.FALLBACK
    assert "deleted" in caplog.text


def test_empty_store_not_authenticated():
    with pytest.raises(NotAuthenticatedError):
        resolve_profile(ProfileStore())


def test_match_context_workspace_none_when_unknown(store):
    assert match_context_workspace(store, "nobody") is None
