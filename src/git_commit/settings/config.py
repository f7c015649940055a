"""
Environment configuration.

This module reads the process environment values the credential negotiator
depends on, once, into an immutable model that is injected into the
negotiator instead of being looked up ad hoc.
"""

import os
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator


DEFAULT_TOKEN_VARIABLE = "GH_TOKEN"
DEFAULT_FALLBACK_USERNAME = "git"


class NegotiationEnvironment(BaseModel):
    """
    Read-only environment inputs for credential negotiation.

    SECURITY: The access token is a SecretStr and will not be exposed in
    string representations, logging, or serialization.

    Example:
        ```python
        # From the real process environment
        env = NegotiationEnvironment.from_env()

        # Fixed values, e.g. in tests
        env = NegotiationEnvironment(token="T", local_username="alice")
        ```
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    token: Optional[SecretStr] = Field(
        default=None,
        description="Access token sent as a plaintext username (GH_TOKEN)",
    )
    local_username: Optional[str] = Field(
        default=None,
        description="OS account name (USER, then USERNAME)",
    )
    ssh_auth_sock: Optional[str] = Field(
        default=None,
        description="SSH agent socket path (SSH_AUTH_SOCK)",
    )
    fallback_username: str = Field(
        default=DEFAULT_FALLBACK_USERNAME,
        description="Last-resort SSH username",
    )

    @field_validator("local_username", "ssh_auth_sock")
    @classmethod
    def empty_to_none(cls, v: Optional[str]) -> Optional[str]:
        """Treat empty variables as unset."""
        return v or None

    @field_validator("token")
    @classmethod
    def empty_token_to_none(cls, v: Optional[SecretStr]) -> Optional[SecretStr]:
        """Treat an empty token as unset."""
        if v is not None and not v.get_secret_value():
            return None
        return v

    @field_validator("fallback_username")
    @classmethod
    def require_fallback(cls, v: str) -> str:
        """The fallback must always yield a name."""
        if not v:
            raise ValueError("fallback_username must not be empty")
        return v

    def get_token(self) -> Optional[str]:
        """Get the token as a plain string. Internal use only."""
        if self.token:
            return self.token.get_secret_value()
        return None

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        *,
        token_variable: str = DEFAULT_TOKEN_VARIABLE,
    ) -> "NegotiationEnvironment":
        """
        Load the negotiation inputs from environment variables.

        Environment variables:
            GH_TOKEN - Access token (name configurable via token_variable)
            USER - Local account name
            USERNAME - Local account name when USER is unset (Windows)
            SSH_AUTH_SOCK - SSH agent socket

        Args:
            environ: Mapping to read instead of os.environ
            token_variable: Name of the token variable

        Returns:
            NegotiationEnvironment instance
        """
        if environ is None:
            environ = os.environ

        return cls(
            token=environ.get(token_variable),
            local_username=environ.get("USER") or environ.get("USERNAME"),
            ssh_auth_sock=environ.get("SSH_AUTH_SOCK"),
        )

    def __repr__(self) -> str:
        """Safe representation that hides the token."""
        token = "'***'" if self.token else "None"
        return (
            f"NegotiationEnvironment(token={token}, "
            f"local_username={self.local_username!r}, "
            f"ssh_auth_sock={self.ssh_auth_sock!r})"
        )
