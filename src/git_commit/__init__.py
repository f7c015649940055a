"""
git-commit - fetch, clone and push with non-interactive credential negotiation.
"""

__version__ = "0.1.0"

from git_commit.git import (
    AuthExhaustedError,
    AuthUnavailableError,
    AuthenticationError,
    CredentialKind,
    CredentialNegotiator,
    GitError,
    GitRepository,
    TransportError,
)

from git_commit.settings import NegotiationEnvironment

__all__ = [
    # Version
    "__version__",
    # Git
    "GitRepository",
    "CredentialNegotiator",
    "CredentialKind",
    "GitError",
    "AuthenticationError",
    "AuthExhaustedError",
    "AuthUnavailableError",
    "TransportError",
    # Settings
    "NegotiationEnvironment",
]
