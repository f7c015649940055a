"""
Git data models.

This module defines the credential kinds a transport can ask for, the
Pydantic models for the credentials offered in return, and refspecs.
"""

import enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, SecretStr


class CredentialKind(enum.Flag):
    """
    Credential kinds a transport may declare acceptable.

    Values combine into a bit set, e.g. ``USERNAME | SSH_KEY``. Only the
    first four can be satisfied by the negotiator; the SSH variants at the
    end are declared by servers but never offered.
    """

    USERNAME = enum.auto()
    SSH_KEY = enum.auto()
    USER_PASS_PLAINTEXT = enum.auto()
    DEFAULT = enum.auto()
    SSH_CUSTOM = enum.auto()
    SSH_INTERACTIVE = enum.auto()
    SSH_MEMORY = enum.auto()

    @classmethod
    def none(cls) -> "CredentialKind":
        """The empty set."""
        return cls(0)

    def names(self) -> list[str]:
        """Member names contained in this set, in declaration order."""
        return [kind.name for kind in type(self) if kind in self and kind.name]


class UsernameCredential(BaseModel):
    """Answer to a username probe; not an authentication by itself."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["username"] = "username"
    username: str = Field(description="Username the transport should continue with")


class SshAgentCredential(BaseModel):
    """SSH identities held by the local agent, offered for one username."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: Literal["ssh_key"] = "ssh_key"
    username: str = Field(description="Username to authenticate as")
    keys: tuple[Any, ...] = Field(
        default=(),
        repr=False,
        exclude=True,
        description="paramiko AgentKey objects to try in order",
    )


class PlaintextCredential(BaseModel):
    """Username and secret, from an access token or a credential helper."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["userpass_plaintext"] = "userpass_plaintext"
    username: str = Field(description="Username (or the token itself)")
    password: SecretStr = Field(
        default=SecretStr(""),
        description="Secret; empty when the token is sent as the username",
    )

    def get_password(self) -> str:
        """Get the password as a plain string."""
        return self.password.get_secret_value()


class DefaultCredential(BaseModel):
    """Implicit credential: let the transport use its own default."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["default"] = "default"


Credential = Annotated[
    Union[UsernameCredential, SshAgentCredential, PlaintextCredential, DefaultCredential],
    Field(discriminator="kind"),
]

CREDENTIAL_KINDS: dict[str, CredentialKind] = {
    "username": CredentialKind.USERNAME,
    "ssh_key": CredentialKind.SSH_KEY,
    "userpass_plaintext": CredentialKind.USER_PASS_PLAINTEXT,
    "default": CredentialKind.DEFAULT,
}


def kind_of(credential: Credential) -> CredentialKind:
    """Get the CredentialKind a credential satisfies."""
    return CREDENTIAL_KINDS[credential.kind]


class Refspec(BaseModel):
    """
    A fetch refspec such as ``+refs/heads/*:refs/remotes/origin/*``.

    Each side may contain at most one ``*``. A missing destination means
    the matched refs are fetched but not stored.

    Example:
        ```python
        spec = Refspec.parse("refs/heads/*:refs/heads/*")
        spec.translate("refs/heads/main")  # "refs/heads/main"
        ```
    """

    model_config = ConfigDict(frozen=True)

    source: str = Field(description="Remote side pattern")
    destination: Optional[str] = Field(default=None, description="Local side pattern")
    force: bool = Field(default=False, description="Allow non-fast-forward updates")

    @classmethod
    def parse(cls, spec: str) -> "Refspec":
        """
        Parse a refspec string.

        Raises:
            ValueError: If the refspec is empty or its wildcards do not pair up
        """
        force = spec.startswith("+")
        if force:
            spec = spec[1:]
        source, sep, destination = spec.partition(":")
        if not source:
            raise ValueError(f"Empty source in refspec: {spec!r}")
        if source.count("*") > 1 or destination.count("*") > 1:
            raise ValueError(f"Too many wildcards in refspec: {spec!r}")
        if sep and destination and ("*" in source) != ("*" in destination):
            raise ValueError(f"Wildcard mismatch in refspec: {spec!r}")
        return cls(source=source, destination=destination or None, force=force)

    @property
    def is_wildcard(self) -> bool:
        return "*" in self.source

    def matches(self, name: str) -> bool:
        """Check if a remote ref name matches the source side."""
        if not self.is_wildcard:
            return name == self.source
        prefix, suffix = self.source.split("*")
        return (
            len(name) >= len(prefix) + len(suffix)
            and name.startswith(prefix)
            and name.endswith(suffix)
        )

    def translate(self, name: str) -> Optional[str]:
        """
        Map a remote ref name to its local name.

        Returns:
            The local ref name, or None if the name does not match or the
            refspec has no destination
        """
        if not self.matches(name) or self.destination is None:
            return None
        if not self.is_wildcard:
            return self.destination
        prefix, suffix = self.source.split("*")
        middle = name[len(prefix):len(name) - len(suffix)]
        return self.destination.replace("*", middle)

    def __str__(self) -> str:
        text = self.source
        if self.destination is not None:
            text = f"{text}:{self.destination}"
        return f"+{text}" if self.force else text
