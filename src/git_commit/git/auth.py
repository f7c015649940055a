"""
Git authentication utilities.

This module provides the identity sources the credential negotiator draws
from: the SSH agent, the host's configured git credential helper and the
``credential.username`` configuration. It also has helpers to keep
credentials out of URLs that end up in logs and error messages.
"""

import logging
import socket
import sys
import tempfile
from pathlib import Path
from typing import Any, Optional, Union
from urllib.parse import ParseResult, urlparse, urlunparse

import paramiko
import paramiko.agent
from git import Git, GitCommandError

from git_commit.git.exceptions import IdentityResolutionError
from git_commit.git.models import CredentialKind, PlaintextCredential, SshAgentCredential

logger = logging.getLogger(__name__)

# Make sure git never falls back to asking a human
NO_PROMPT_ENV = {
    "GIT_TERMINAL_PROMPT": "0",
    "GIT_ASKPASS": "",
    "SSH_ASKPASS": "",
}

SSH_SCHEMES = ("ssh", "git+ssh", "ssh+git")


class SocketAgent(paramiko.agent.AgentSSH):
    """SSH agent client bound to an explicit socket path."""

    def __init__(self, path: str):
        super().__init__()
        conn = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            conn.connect(path)
        except OSError as e:
            conn.close()
            raise paramiko.SSHException(f"Cannot connect to agent at {path}: {e}") from e
        self._connect(conn)

    def close(self) -> None:
        self._close()


class SSHAgentResolver:
    """
    Resolve SSH identities through the local SSH agent.

    The agent is contacted lazily and the connection is reused for every
    lookup until :meth:`close` is called, since the returned keys sign
    through it.

    Example:
        ```python
        resolver = SSHAgentResolver(os.environ.get("SSH_AUTH_SOCK"))
        try:
            credential = resolver.resolve("git")
        except IdentityResolutionError as e:
            print(f"No agent identity: {e}")
        finally:
            resolver.close()
        ```
    """

    def __init__(self, auth_sock: Optional[str]):
        """
        Args:
            auth_sock: Value of SSH_AUTH_SOCK, None if unset. Ignored on
                Windows where the agent is reached through Pageant.
        """
        self.auth_sock = auth_sock
        self._agent: Optional[paramiko.Agent] = None

    def resolve(self, username: str) -> SshAgentCredential:
        """
        Look up agent identities to authenticate as ``username``.

        Raises:
            IdentityResolutionError: If the agent is unavailable or holds
                no identities
        """
        if not self.auth_sock and sys.platform != "win32":
            raise IdentityResolutionError(
                "SSH agent unavailable: SSH_AUTH_SOCK is not set",
                kind=CredentialKind.SSH_KEY,
                username=username,
            )

        try:
            if self._agent is None:
                if sys.platform == "win32":
                    self._agent = paramiko.Agent()
                else:
                    self._agent = SocketAgent(self.auth_sock)
            keys = self._agent.get_keys()
        except paramiko.SSHException as e:
            raise IdentityResolutionError(
                f"SSH agent unavailable: {e}",
                kind=CredentialKind.SSH_KEY,
                username=username,
            ) from e

        if not keys:
            raise IdentityResolutionError(
                f"No identities in SSH agent for '{username}'",
                kind=CredentialKind.SSH_KEY,
                username=username,
            )

        logger.debug(f"SSH agent offers {len(keys)} identities for {username}")
        return SshAgentCredential(username=username, keys=tuple(keys))

    def close(self) -> None:
        if self._agent is not None:
            self._agent.close()
            self._agent = None


class CredentialHelperResolver:
    """
    Ask the configured git credential helper for a username and secret.

    Runs ``git credential fill`` with prompting disabled, so a missing
    helper or an unknown host fails instead of blocking on input.
    """

    def __init__(self, working_dir: Optional[Union[str, Path]] = None):
        """
        Args:
            working_dir: Repository whose local config should apply
        """
        self._git = Git(working_dir)

    def fill(self, url: str, username: Optional[str] = None) -> PlaintextCredential:
        """
        Get credentials for ``url``.

        Args:
            url: Remote URL; any password it embeds is not forwarded
            username: Username to ask for, if already known

        Returns:
            PlaintextCredential from the helper

        Raises:
            IdentityResolutionError: If the helper fails or returns nothing
        """
        request = [f"url={strip_credentials(url)}"]
        if username:
            request.append(f"username={username}")
        payload = "\n".join(request) + "\n\n"

        with tempfile.TemporaryFile() as stdin:
            stdin.write(payload.encode("utf-8"))
            stdin.seek(0)
            try:
                output = self._git.execute(
                    ["git", "-c", "core.askPass=", "credential", "fill"],
                    istream=stdin,
                    env=NO_PROMPT_ENV,
                )
            except GitCommandError as e:
                raise IdentityResolutionError(
                    f"Credential helper failed: {str(e.stderr).strip()}",
                    kind=CredentialKind.USER_PASS_PLAINTEXT,
                    username=username,
                    url=url,
                ) from e

        values = parse_credential_output(output)
        if "username" not in values or "password" not in values:
            raise IdentityResolutionError(
                "Credential helper returned no username/password",
                kind=CredentialKind.USER_PASS_PLAINTEXT,
                username=username,
                url=url,
            )

        return PlaintextCredential(
            username=values["username"],
            password=values["password"],
        )


def parse_credential_output(output: str) -> dict[str, str]:
    """Parse ``key=value`` lines as printed by ``git credential fill``."""
    values = {}
    for line in output.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            values[key.strip()] = value
    return values


def configured_username(config: Any, url: str) -> Optional[str]:
    """
    Get the username the credential configuration sets for ``url``.

    Looks at ``credential.<url>.username`` sections matching the URL,
    most specific first, then at the generic ``credential.username``.

    Args:
        config: GitPython config reader (e.g. ``Repo.config_reader()``)
        url: Remote URL

    Returns:
        The configured username, or None
    """
    parsed_url = urlparse(url)
    candidates: list[tuple[int, str]] = []

    for section in config.sections():
        name, _, subsection = section.partition(" ")
        if name != "credential" or not config.has_option(section, "username"):
            continue

        value = str(config.get_value(section, "username"))
        if not subsection:
            candidates.append((0, value))
            continue

        pattern = subsection.strip().strip('"')
        score = _credential_match_score(parsed_url, pattern)
        if score:
            candidates.append((score, value))

    if not candidates:
        return None

    # Highest score wins, later sections win ties
    best = max(range(len(candidates)), key=lambda i: (candidates[i][0], i))
    return candidates[best][1] or None


def _credential_match_score(url: ParseResult, pattern: str) -> int:
    """
    Score how specifically a ``credential.<pattern>`` section matches.

    Returns 0 for no match; otherwise 1 plus the number of pattern path
    segments.
    """
    if "://" not in pattern:
        parsed = urlparse("scheme://" + pattern)
    else:
        parsed = urlparse(pattern)
        if parsed.scheme != url.scheme:
            return 0

    if parsed.hostname and parsed.hostname != url.hostname:
        return 0
    if parsed.username and parsed.username != url.username:
        return 0
    if parsed.port and parsed.port != url.port:
        return 0

    pattern_path = parsed.path.rstrip("/")
    url_path = url.path.rstrip("/")
    if pattern_path and not (
        url_path == pattern_path or url_path.startswith(pattern_path + "/")
    ):
        return 0

    return 1 + len([s for s in pattern_path.split("/") if s])


def strip_credentials(url: str) -> str:
    """
    Remove credentials from a Git URL.

    Useful for logging URLs without exposing secrets.

    Args:
        url: URL possibly containing credentials

    Returns:
        URL with credentials removed

    Example:
        ```python
        clean = strip_credentials("https://token@github.com/user/repo.git")
        # Result: https://github.com/user/repo.git
        ```
    """
    parsed = urlparse(url)

    if not parsed.username:
        return url

    if parsed.port:
        netloc = f"{parsed.hostname}:{parsed.port}"
    else:
        netloc = parsed.hostname or ""

    return urlunparse((
        parsed.scheme,
        netloc,
        parsed.path,
        parsed.params,
        parsed.query,
        parsed.fragment,
    ))


def mask_credentials(url: str) -> str:
    """
    Mask credentials in a Git URL for safe logging.

    A bare username in an SSH URL is kept, it is not a secret there.

    Example:
        ```python
        masked = mask_credentials("https://token@github.com/user/repo.git")
        # Result: https://***@github.com/user/repo.git
        ```
    """
    parsed = urlparse(url)

    if not parsed.username:
        return url
    if parsed.scheme in SSH_SCHEMES and parsed.password is None:
        return url

    host = parsed.hostname or ""
    if parsed.port:
        host = f"{host}:{parsed.port}"

    return urlunparse((
        parsed.scheme,
        f"***@{host}",
        parsed.path,
        parsed.params,
        parsed.query,
        parsed.fragment,
    ))
