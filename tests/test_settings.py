"""Tests for environment configuration."""

import pytest
from pydantic import ValidationError

from git_commit.settings import (
    DEFAULT_FALLBACK_USERNAME,
    NegotiationEnvironment,
)


class TestNegotiationEnvironment:
    """Tests for NegotiationEnvironment."""

    def test_from_env(self):
        env = NegotiationEnvironment.from_env({
            "GH_TOKEN": "ghp_xxxx",
            "USER": "alice",
            "SSH_AUTH_SOCK": "/tmp/agent.sock",
        })
        assert env.get_token() == "ghp_xxxx"
        assert env.local_username == "alice"
        assert env.ssh_auth_sock == "/tmp/agent.sock"
        assert env.fallback_username == DEFAULT_FALLBACK_USERNAME

    def test_username_fallback(self):
        env = NegotiationEnvironment.from_env({"USERNAME": "bob"})
        assert env.local_username == "bob"

    def test_user_preferred_over_username(self):
        env = NegotiationEnvironment.from_env({"USER": "alice", "USERNAME": "bob"})
        assert env.local_username == "alice"

    def test_empty_values_are_unset(self):
        env = NegotiationEnvironment.from_env({"GH_TOKEN": "", "USER": "", "SSH_AUTH_SOCK": ""})
        assert env.token is None
        assert env.get_token() is None
        assert env.local_username is None
        assert env.ssh_auth_sock is None

    def test_custom_token_variable(self):
        env = NegotiationEnvironment.from_env(
            {"GH_TOKEN": "wrong", "GITLAB_TOKEN": "glpat"},
            token_variable="GITLAB_TOKEN",
        )
        assert env.get_token() == "glpat"

    def test_from_process_environment(self, monkeypatch):
        monkeypatch.setenv("GH_TOKEN", "from-process")
        assert NegotiationEnvironment.from_env().get_token() == "from-process"

    def test_token_hidden(self):
        env = NegotiationEnvironment(token="secret-token")
        assert "secret-token" not in repr(env)
        assert "secret-token" not in str(env)
        assert "secret-token" not in env.model_dump_json()

    def test_frozen(self):
        env = NegotiationEnvironment()
        with pytest.raises(ValidationError):
            env.local_username = "mallory"

    def test_rejects_unknown_fields(self):
        with pytest.raises(ValidationError):
            NegotiationEnvironment(password="x")

    def test_empty_fallback_rejected(self):
        with pytest.raises(ValidationError):
            NegotiationEnvironment(fallback_username="")
