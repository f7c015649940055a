"""
Git-specific exceptions.

This module defines exceptions that can occur while talking to remote
repositories, including the credential negotiation failures raised by
:class:`~git_commit.git.negotiator.CredentialNegotiator`.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from git_commit.git.models import CredentialKind


class GitError(Exception):
    """Base exception for all Git-related errors."""

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        repo_path: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.url = url
        self.repo_path = repo_path

    def __str__(self) -> str:
        # Imported lazily, auth imports this module
        from git_commit.git.auth import mask_credentials

        parts = [self.message]
        if self.url:
            parts.append(f"url='{mask_credentials(self.url)}'")
        return " ".join(parts)


class RepositoryNotFoundError(GitError):
    """Raised when the repository does not exist or is not a valid Git repo."""

    pass


class CloneError(GitError):
    """Raised when cloning a repository fails."""

    pass


class PushError(GitError):
    """Raised when the remote rejects one or more pushed references."""

    def __init__(
        self,
        message: str,
        *,
        rejected: Optional[dict[str, str]] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.rejected = rejected or {}


class RemoteError(GitError):
    """Raised when a named remote is missing or has no URL."""

    pass


class InvalidRefError(GitError):
    """Raised when a reference (branch, tag, refspec) is invalid."""

    pass


class TransportError(GitError):
    """
    Raised for network or protocol failures unrelated to credentials.

    The original exception is kept as ``__cause__``.
    """

    pass


class AuthenticationError(GitError):
    """Base exception for credential negotiation failures."""

    pass


class AuthExhaustedError(AuthenticationError):
    """Every credential kind the remote accepts has already been attempted."""

    def __init__(self, message: str, *, attempted: "CredentialKind", **kwargs):
        super().__init__(message, **kwargs)
        self.attempted = attempted


class AuthUnavailableError(AuthenticationError):
    """The remote declared no credential kind the negotiator can satisfy."""

    def __init__(self, message: str, *, requested: "CredentialKind", **kwargs):
        super().__init__(message, **kwargs)
        self.requested = requested


class IdentityResolutionError(AuthenticationError):
    """
    A single credential lookup failed.

    Raised for an unavailable SSH agent, an agent without identities or a
    failing credential helper. The transport answers it with a fresh
    callback round-trip; the kind involved is already tracked by the
    negotiation session.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: "CredentialKind",
        username: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.kind = kind
        self.username = username
