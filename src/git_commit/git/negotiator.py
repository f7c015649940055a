"""
Credential negotiation.

A transport that needs to authenticate calls back with the set of
credential kinds the remote currently accepts. The negotiator answers with
one credential per call, trying in order:

* a username, when the transport only needs one to continue (SSH asks
  for it before key authentication);
* an access token from the environment, when plaintext credentials are
  accepted;
* SSH agent identities, once for each of the remote-supplied username, the
  username configured for the credential helper, the local account name
  and finally ``git``;
* the host's git credential helper (``credential.helper``), which is what
  ties into e.g. the OS keychain;
* the transport's default credential.

A transport keeps asking until it is given a reason to stop. Every kind is
marked as attempted when it is used, and a kind is never offered twice in a
session, so the negotiation always ends: SSH keys back at most four
credentials, every other kind at most one.

Example:
    ```python
    negotiator = CredentialNegotiator(url, repo.config_reader())
    try:
        transport.fetch(url, target, refspecs, negotiator)
    finally:
        negotiator.close()
    ```
"""

import enum
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar, Union

from git_commit.git.auth import (
    CredentialHelperResolver,
    SSHAgentResolver,
    configured_username,
    mask_credentials,
)
from git_commit.git.exceptions import (
    AuthExhaustedError,
    AuthUnavailableError,
    IdentityResolutionError,
)
from git_commit.git.models import (
    Credential,
    CredentialKind,
    DefaultCredential,
    PlaintextCredential,
    UsernameCredential,
)
from git_commit.settings.config import NegotiationEnvironment

logger = logging.getLogger(__name__)

T = TypeVar("T")


class UsernameSource(enum.Enum):
    """Where an SSH username comes from, in the order they are tried."""

    REMOTE = 1  # Supplied by the transport, e.g. from the URL
    CREDENTIAL_HELPER = 2  # credential.username in git config
    LOCAL_ACCOUNT = 3  # USER / USERNAME
    FALLBACK = 4  # "git", common for hosted services


_NEXT_SOURCE = {
    UsernameSource.REMOTE: UsernameSource.CREDENTIAL_HELPER,
    UsernameSource.CREDENTIAL_HELPER: UsernameSource.LOCAL_ACCOUNT,
    UsernameSource.LOCAL_ACCOUNT: UsernameSource.FALLBACK,
    UsernameSource.FALLBACK: None,
}


def next_username_source(source: UsernameSource) -> Optional[UsernameSource]:
    """Get the source tried after ``source``, or None once exhausted."""
    return _NEXT_SOURCE[source]


@dataclass
class NegotiationSession:
    """
    State of one negotiation, from the first callback to the end of the
    transfer. Never shared between transfers.
    """

    attempted: CredentialKind = field(default_factory=CredentialKind.none)
    username_source: Optional[UsernameSource] = UsernameSource.REMOTE
    usernames_tried: list[str] = field(default_factory=list)
    helper_failed: bool = False

    def is_attempted(self, kind: CredentialKind) -> bool:
        return kind in self.attempted

    def mark_attempted(self, kind: CredentialKind) -> None:
        self.attempted |= kind

    def advance_username_source(self) -> Optional[UsernameSource]:
        """
        Move the cursor one step and return the source to use now.

        Leaving the last source marks SSH_KEY attempted, so no further SSH
        key credential is handed out after this one.
        """
        source = self.username_source
        if source is None:
            return None
        self.username_source = next_username_source(source)
        if self.username_source is None:
            self.mark_attempted(CredentialKind.SSH_KEY)
        return source


class CredentialNegotiator:
    """
    Authentication callback for one transfer.

    Create one per operation; the negotiator owns its NegotiationSession.
    Identity sources are injected so tests can replace them.
    """

    def __init__(
        self,
        url: str,
        config: Any,
        *,
        environment: Optional[NegotiationEnvironment] = None,
        agent: Optional[SSHAgentResolver] = None,
        helper: Optional[CredentialHelperResolver] = None,
        repo_path: Optional[Union[str, Path]] = None,
    ):
        """
        Args:
            url: Remote URL the transfer talks to
            config: GitPython config reader for credential settings
            environment: Environment inputs (default: read from os.environ)
            agent: SSH agent resolver (default: uses the environment's socket)
            helper: Credential helper resolver (default: runs in repo_path)
            repo_path: Repository whose config the helper should see
        """
        if environment is None:
            environment = NegotiationEnvironment.from_env()

        self.url = url
        self.config = config
        self.environment = environment
        self.agent = agent or SSHAgentResolver(environment.ssh_auth_sock)
        self.helper = helper or CredentialHelperResolver(repo_path)
        self.session = NegotiationSession()

    def __call__(
        self,
        url: str,
        username: Optional[str],
        allowed: CredentialKind,
    ) -> Credential:
        """
        Produce the next credential to try.

        Args:
            url: URL the transport is authenticating against
            username: Username the transport already has, if any
            allowed: Credential kinds the remote accepts right now

        Returns:
            A credential of one of the allowed, unattempted kinds

        Raises:
            AuthExhaustedError: All allowed kinds were already attempted
            AuthUnavailableError: No allowed kind can be satisfied
            IdentityResolutionError: An SSH agent or credential helper
                lookup failed; calling again moves on
        """
        session = self.session
        remaining = allowed & ~session.attempted

        if allowed and not remaining:
            raise AuthExhaustedError(
                "All authentication methods have been attempted",
                attempted=session.attempted,
                url=url,
            )

        # A username request is the transport asking who to be before it
        # can ask for real credentials; SSH does this when the URL has no
        # user. Better names are tried in the SSH_KEY branch.
        if CredentialKind.USERNAME in remaining:
            session.mark_attempted(CredentialKind.USERNAME)
            name = username or self.environment.fallback_username
            logger.debug(f"Answering username probe with '{name}'")
            return UsernameCredential(username=name)

        # With a token in the environment, plaintext credentials go to it
        token = self.environment.get_token()
        if CredentialKind.USER_PASS_PLAINTEXT in remaining and token:
            session.mark_attempted(CredentialKind.USER_PASS_PLAINTEXT)
            logger.debug(f"Offering access token for {mask_credentials(url)}")
            return PlaintextCredential(username=token, password="")

        if CredentialKind.SSH_KEY in remaining:
            while True:
                source = session.advance_username_source()
                if source is None:
                    break
                name = self._username_from(source, url, username)
                if not name:
                    continue
                session.usernames_tried.append(name)
                logger.debug(f"Trying SSH agent identities as '{name}' ({source.name.lower()})")
                return self.agent.resolve(name)

        # No interactive prompt; the credential helper is the only other
        # source of a plaintext password.
        if CredentialKind.USER_PASS_PLAINTEXT in remaining:
            session.mark_attempted(CredentialKind.USER_PASS_PLAINTEXT)
            try:
                return self.helper.fill(url, username)
            except IdentityResolutionError as e:
                session.helper_failed = True
                logger.warning(f"Credential helper lookup failed for {mask_credentials(url)}: {e.message}")
                raise

        if CredentialKind.DEFAULT in remaining:
            session.mark_attempted(CredentialKind.DEFAULT)
            return DefaultCredential()

        raise AuthUnavailableError(
            "no authentication available",
            requested=allowed,
            url=url,
        )

    def _username_from(
        self,
        source: UsernameSource,
        url: str,
        username: Optional[str],
    ) -> Optional[str]:
        """Get the username a source yields, None if it has none."""
        if source is UsernameSource.REMOTE:
            return username
        if source is UsernameSource.CREDENTIAL_HELPER:
            return configured_username(self.config, url)
        if source is UsernameSource.LOCAL_ACCOUNT:
            return self.environment.local_username
        return self.environment.fallback_username

    def close(self) -> None:
        """Release the SSH agent connection, if one was opened."""
        self.agent.close()

    def __repr__(self) -> str:
        return (
            f"CredentialNegotiator(url={mask_credentials(self.url)!r}, "
            f"attempted={self.session.attempted.names()!r})"
        )


def with_authentication(
    url: str,
    config: Any,
    operation: Callable[[CredentialNegotiator], T],
    **kwargs: Any,
) -> T:
    """
    Run ``operation`` with a fresh negotiator for ``url``.

    Args:
        url: Remote URL
        config: GitPython config reader
        operation: Called with the negotiator, typically passing it on to
            a transport as its credentials callback
        **kwargs: Passed to CredentialNegotiator

    Returns:
        Whatever ``operation`` returns
    """
    negotiator = CredentialNegotiator(url, config, **kwargs)
    try:
        return operation(negotiator)
    finally:
        negotiator.close()
