"""
Git remote operations with credential negotiation.

Fetch, clone and push negotiate credentials the way git itself would,
without ever prompting: an access token from the environment, SSH agent
identities under a few candidate usernames and the configured git
credential helper are tried in turn.

Example:
    ```python
    from git_commit.git import GitRepository

    # Clone, into ./repo
    repo = GitRepository.clone("git@github.com:user/repo.git")

    # Fetch every branch and tag
    repo.fetch("https://github.com/user/repo.git")

    # Push a branch
    repo.push("origin", ["main"])
    ```
"""

from git_commit.git.auth import (
    CredentialHelperResolver,
    SSHAgentResolver,
    configured_username,
    mask_credentials,
    strip_credentials,
)
from git_commit.git.exceptions import (
    AuthenticationError,
    AuthExhaustedError,
    AuthUnavailableError,
    CloneError,
    GitError,
    IdentityResolutionError,
    InvalidRefError,
    PushError,
    RemoteError,
    RepositoryNotFoundError,
    TransportError,
)
from git_commit.git.models import (
    Credential,
    CredentialKind,
    DefaultCredential,
    PlaintextCredential,
    Refspec,
    SshAgentCredential,
    UsernameCredential,
)
from git_commit.git.negotiator import (
    CredentialNegotiator,
    NegotiationSession,
    UsernameSource,
    next_username_source,
    with_authentication,
)
from git_commit.git.repository import DEFAULT_REFSPEC, GitRepository, directory_from_url

__all__ = [
    # Repository
    "GitRepository",
    "DEFAULT_REFSPEC",
    "directory_from_url",
    # Negotiation
    "CredentialNegotiator",
    "NegotiationSession",
    "UsernameSource",
    "next_username_source",
    "with_authentication",
    # Models
    "Credential",
    "CredentialKind",
    "DefaultCredential",
    "PlaintextCredential",
    "Refspec",
    "SshAgentCredential",
    "UsernameCredential",
    # Identity sources
    "CredentialHelperResolver",
    "SSHAgentResolver",
    "configured_username",
    # Exceptions
    "GitError",
    "AuthenticationError",
    "AuthExhaustedError",
    "AuthUnavailableError",
    "IdentityResolutionError",
    "TransportError",
    "RepositoryNotFoundError",
    "CloneError",
    "PushError",
    "RemoteError",
    "InvalidRefError",
    # Utilities
    "mask_credentials",
    "strip_credentials",
]
