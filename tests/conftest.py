"""Shared fixtures."""

from pathlib import Path

import pytest
from git import Actor, Repo

from git_commit.git.exceptions import IdentityResolutionError
from git_commit.git.models import CredentialKind, PlaintextCredential, SshAgentCredential
from git_commit.settings import NegotiationEnvironment

AUTHOR = Actor("Test User", "test@example.com")


class FakeConfig:
    """Stand-in for a GitPython config reader."""

    def __init__(self, values=None):
        self.values = values or {}

    def sections(self):
        return list(self.values)

    def has_option(self, section, option):
        return option in self.values.get(section, {})

    def get_value(self, section, option):
        return self.values[section][option]


class FakeAgent:
    """SSH agent resolver recording the usernames it is asked for."""

    def __init__(self, fail=False):
        self.fail = fail
        self.requested = []
        self.closed = False

    def resolve(self, username):
        self.requested.append(username)
        if self.fail:
            raise IdentityResolutionError(
                "No identities in SSH agent",
                kind=CredentialKind.SSH_KEY,
                username=username,
            )
        return SshAgentCredential(username=username, keys=("key",))

    def close(self):
        self.closed = True


class FakeHelper:
    """Credential helper resolver returning fixed credentials."""

    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def fill(self, url, username=None):
        self.calls.append((url, username))
        if self.fail:
            raise IdentityResolutionError(
                "Credential helper failed",
                kind=CredentialKind.USER_PASS_PLAINTEXT,
                username=username,
            )
        return PlaintextCredential(username="helper-user", password="helper-secret")


@pytest.fixture
def environment():
    """Environment with an OS user and no token."""
    return NegotiationEnvironment(local_username="alice", ssh_auth_sock="/tmp/agent.sock")


@pytest.fixture
def agent():
    return FakeAgent()


@pytest.fixture
def helper():
    return FakeHelper()


def commit_file(repo: Repo, name: str, content: str, message: str, **kwargs):
    """Write a file and commit it without relying on user config."""
    path = Path(repo.working_tree_dir) / name
    path.write_text(content)
    repo.index.add([name])
    return repo.index.commit(message, author=AUTHOR, committer=AUTHOR, **kwargs)


@pytest.fixture
def source_repo(tmp_path):
    """A non-bare repository with one commit and a tag."""
    repo = Repo.init(tmp_path / "source")
    commit_file(repo, "README.md", "# Test Repository\n", "Initial commit")
    repo.create_tag("v1.0")
    yield repo
    repo.close()
