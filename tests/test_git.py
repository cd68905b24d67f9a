"""Tests for local git remote inspection."""

from __future__ import annotations

import subprocess

import pytest

from bbkt import git
from bbkt.exceptions import LocalRepoError


@pytest.mark.parametrize(
    "url",
    [
        "git@bitbucket.org:acme/widgets.git",
        "https://bitbucket.org/acme/widgets.git",
        "https://dev@bitbucket.org/acme/widgets.git",
        "git@bitbucket.org:acme/widgets",
        "https://bitbucket.org/acme/widgets",
    ],
)
def test_parse_remote_url_shapes(url):
    assert git.parse_remote_url(url) == ("acme", "widgets")


def test_parse_remote_url_other_host():
    assert git.parse_remote_url("git@github.com:acme/widgets.git") is None


def test_parse_remotes_picks_first_bitbucket_remote():
    output = (
        "upstream\tgit@github.com:acme/widgets.git (fetch)\n"
        "origin\tgit@bitbucket.org:acme/widgets.git (fetch)\n"
        "origin\tgit@bitbucket.org:acme/widgets.git (push)\n"
    )
    assert git.parse_remotes(output) == ("acme", "widgets")


def test_parse_remotes_reports_github():
    with pytest.raises(LocalRepoError, match="GitHub"):
        git.parse_remotes("origin\thttps://github.com/acme/widgets.git (fetch)\n")


def test_parse_remotes_without_bitbucket():
    with pytest.raises(LocalRepoError, match="No Bitbucket remotes"):
        git.parse_remotes("")


def test_get_local_repo_info_runs_git(monkeypatch, tmp_path):
    seen = {}

    def _run(cmd, **kwargs):
        seen["cmd"] = cmd
        seen["cwd"] = kwargs.get("cwd")
        return subprocess.CompletedProcess(
            cmd, 0, stdout="origin\thttps://bitbucket.org/acme/widgets.git (fetch)\n", stderr="",
        )

    monkeypatch.setattr(git.subprocess, "run", _run)
    assert git.get_local_repo_info(tmp_path) == ("acme", "widgets")
    assert seen == {"cmd": ["git", "remote", "-v"], "cwd": str(tmp_path)}


def test_get_local_repo_info_outside_repo(monkeypatch):
    def _run(cmd, **kwargs):
        raise subprocess.CalledProcessError(128, cmd)

    monkeypatch.setattr(git.subprocess, "run", _run)
    with pytest.raises(LocalRepoError, match="Not a git repository"):
        git.get_local_repo_info()


def test_get_local_repo_info_without_git(monkeypatch):
    def _run(cmd, **kwargs):
        raise FileNotFoundError("git")

    monkeypatch.setattr(git.subprocess, "run", _run)
    with pytest.raises(LocalRepoError, match="not installed"):
        git.get_local_repo_info()


def test_detect_context_workspace_swallows_errors(monkeypatch):
    def _missing(cwd=None):
        raise LocalRepoError("nope")

    monkeypatch.setattr(git, "get_local_repo_info", _missing)
    assert git.detect_context_workspace() is None

    monkeypatch.setattr(git, "get_local_repo_info", lambda cwd=None: ("acme", "widgets"))
    assert git.detect_context_workspace() == "acme"
