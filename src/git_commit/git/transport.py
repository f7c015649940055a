"""
Authenticated transfers over dulwich.

This module drives dulwich's git clients and calls a credentials callback
(usually a :class:`~git_commit.git.negotiator.CredentialNegotiator`) with
the credential kinds the remote accepts, until the remote lets it in or the
callback gives up:

* HTTP(S): every 401 response triggers a callback round-trip with
  ``USER_PASS_PLAINTEXT`` (and ``DEFAULT`` when the server offers
  Negotiate or NTLM), and the request is retried with the answer.
* SSH: a paramiko based SSH vendor asks for a username when the URL has
  none, probes which methods the server accepts and offers credentials
  until one is accepted. Host keys are checked against known_hosts before
  anything is sent.
* Local paths need no authentication.

Example:
    ```python
    from dulwich.repo import Repo

    with Repo("/path/to/repo") as target:
        fetch(
            "https://github.com/user/repo.git",
            target,
            [Refspec.parse("refs/heads/*:refs/heads/*")],
            negotiator,
        )
    ```
"""

import logging
import os
import socket
import warnings
from typing import BinaryIO, Callable, Optional, Sequence, TypeVar, Union, cast
from urllib.parse import urlparse

import paramiko
import paramiko.config
import urllib3.exceptions
from dulwich.client import (
    FetchPackResult,
    GitClient,
    HTTPProxyUnauthorized,
    HTTPUnauthorized,
    SendPackResult,
    SSHGitClient,
    SSHVendor,
    get_transport_and_path,
)
from dulwich.errors import GitProtocolError, NotGitRepository
from dulwich.graph import can_fast_forward
from dulwich.protocol import PEELED_TAG_SUFFIX
from dulwich.repo import Repo

from git_commit.git.auth import mask_credentials
from git_commit.git.exceptions import (
    AuthenticationError,
    IdentityResolutionError,
    InvalidRefError,
    PushError,
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

logger = logging.getLogger(__name__)

T = TypeVar("T")

CredentialCallback = Callable[[str, Optional[str], CredentialKind], Credential]

# Failures that are not about credentials; surfaced as TransportError
TRANSPORT_EXCEPTIONS = (
    GitProtocolError,
    HTTPProxyUnauthorized,
    NotGitRepository,
    paramiko.SSHException,
    urllib3.exceptions.HTTPError,
    OSError,
)

SSH_METHOD_KINDS = {
    "publickey": CredentialKind.SSH_KEY | CredentialKind.SSH_CUSTOM | CredentialKind.SSH_MEMORY,
    "password": CredentialKind.USER_PASS_PLAINTEXT,
    "keyboard-interactive": CredentialKind.SSH_INTERACTIVE | CredentialKind.USER_PASS_PLAINTEXT,
}

TAG_PREFIX = "refs/tags/"


# =========================================================================
# Credential round-trips
# =========================================================================


def request_credential(
    credentials: CredentialCallback,
    url: str,
    username: Optional[str],
    allowed: CredentialKind,
) -> Credential:
    """
    Ask the callback for a credential, retrying failed lookups.

    A failed lookup (IdentityResolutionError) is answered with a fresh
    round-trip; the callback tracks what it has tried and eventually
    returns a credential or raises a terminal error.
    """
    while True:
        try:
            return credentials(url, username, allowed)
        except IdentityResolutionError as e:
            logger.debug(f"{e.message}; asking for another credential")


def http_allowed_kinds(www_authenticate: Optional[str]) -> CredentialKind:
    """Credential kinds an HTTP 401 response lets us try."""
    allowed = CredentialKind.USER_PASS_PLAINTEXT
    challenge = (www_authenticate or "").lower()
    if "negotiate" in challenge or "ntlm" in challenge:
        allowed |= CredentialKind.DEFAULT
    return allowed


def ssh_allowed_kinds(methods: Sequence[str]) -> CredentialKind:
    """Credential kinds matching the SSH auth methods a server lists."""
    allowed = CredentialKind.none()
    for method in methods:
        allowed |= SSH_METHOD_KINDS.get(method, CredentialKind.none())
    return allowed


def _run_authenticated(
    url: str,
    credentials: CredentialCallback,
    operation: Callable[[GitClient, str], T],
    *,
    kind: str,
    config=None,
    include_tags: bool = False,
    ssh_timeout: Optional[float] = None,
) -> T:
    """
    Run a dulwich client operation against ``url``, authenticating as
    needed.

    Args:
        url: Remote URL or local path
        credentials: Credentials callback
        operation: Called with the client and remote path
        kind: "pull" or "push"
        config: dulwich config for URL rewriting and HTTP settings
        include_tags: Ask for tags pointing at fetched objects
        ssh_timeout: Connect timeout for SSH in seconds
    """
    username = urlparse(url).username
    credential: Optional[Credential] = None

    while True:
        kwargs = {}
        if isinstance(credential, PlaintextCredential):
            kwargs["username"] = credential.username
            kwargs["password"] = credential.get_password()

        try:
            client, path = get_transport_and_path(
                url,
                config=config,
                operation=kind,
                include_tags=include_tags,
                **kwargs,
            )
        except ValueError as e:
            raise InvalidRefError(f"Unsupported remote location: {e}", url=url) from e

        if isinstance(client, SSHGitClient):
            client.ssh_vendor = NegotiatingSSHVendor(url, credentials, timeout=ssh_timeout)

        try:
            return operation(client, path)
        except HTTPUnauthorized as e:
            allowed = http_allowed_kinds(e.www_authenticate)
            logger.debug(
                f"{mask_credentials(url)} requires authentication "
                f"({', '.join(allowed.names())})"
            )
            credential = request_credential(credentials, url, username, allowed)
        except TRANSPORT_EXCEPTIONS as e:
            raise TransportError(f"Transfer failed: {e}", url=url) from e


# =========================================================================
# Fetch
# =========================================================================


def fetch(
    url: str,
    target: Repo,
    refspecs: Sequence[Refspec],
    credentials: CredentialCallback,
    *,
    download_tags: bool = True,
    config=None,
    ssh_timeout: Optional[float] = None,
) -> FetchPackResult:
    """
    Fetch the refs ``refspecs`` select from ``url`` into ``target``.

    Args:
        url: Remote URL or local path
        target: dulwich repository to fetch into
        refspecs: Which remote refs to fetch and where to store them
        credentials: Credentials callback
        download_tags: Also fetch every tag into refs/tags/
        config: dulwich config (default: target's config stack)
        ssh_timeout: Connect timeout for SSH in seconds

    Returns:
        dulwich FetchPackResult with all remote refs and symrefs

    Raises:
        AuthenticationError: If the credentials callback gives up
        TransportError: If the transfer fails or a ref update is rejected
    """
    if config is None:
        config = target.get_config_stack()

    def determine_wants(refs, depth=None):
        wants = []
        for name, sha in refs.items():
            if sha is None or name.endswith(PEELED_TAG_SUFFIX):
                continue
            if not _is_wanted(name.decode("utf-8"), refspecs, download_tags):
                continue
            if sha not in target.object_store and sha not in wants:
                wants.append(sha)
        return wants

    result = _run_authenticated(
        url,
        credentials,
        lambda client, path: client.fetch(path, target, determine_wants=determine_wants),
        kind="pull",
        config=config,
        include_tags=download_tags,
        ssh_timeout=ssh_timeout,
    )

    rejected = update_local_refs(target, result.refs, refspecs, download_tags=download_tags)
    if rejected:
        raise TransportError(
            f"Rejected ref updates: {', '.join(sorted(rejected))}",
            url=url,
        )
    return result


def _is_wanted(name: str, refspecs: Sequence[Refspec], download_tags: bool) -> bool:
    if download_tags and name.startswith(TAG_PREFIX):
        return True
    return any(spec.matches(name) for spec in refspecs)


def update_local_refs(
    target: Repo,
    remote_refs: dict,
    refspecs: Sequence[Refspec],
    *,
    download_tags: bool = True,
) -> list[str]:
    """
    Store fetched refs locally as the refspecs map them.

    Branches only move forward unless the refspec is forced; existing tags
    are never moved by the implicit tag download.

    Returns:
        Names of local refs whose update was rejected
    """
    rejected = []
    for name_bytes, sha in remote_refs.items():
        if sha is None or name_bytes.endswith(PEELED_TAG_SUFFIX):
            continue
        name = name_bytes.decode("utf-8")

        for spec in refspecs:
            local = spec.translate(name)
            if local is not None:
                if not _update_ref(target, local, sha, force=spec.force):
                    rejected.append(local)
                break
        else:
            if download_tags and name.startswith(TAG_PREFIX):
                if name_bytes not in target.refs:
                    target.refs[name_bytes] = sha
                    logger.debug(f"New tag {name}")

    return rejected


def _update_ref(target: Repo, name: str, sha: bytes, *, force: bool) -> bool:
    """Point local ref ``name`` at ``sha``; False if the update is refused."""
    ref = name.encode("utf-8")
    try:
        old = target.refs[ref]
    except KeyError:
        old = None

    if old == sha:
        return True

    if old is not None and not force:
        if name.startswith(TAG_PREFIX):
            logger.warning(f"Refusing to move existing tag {name}")
            return False
        if not can_fast_forward(target, old, sha):
            logger.warning(f"Refusing non-fast-forward update of {name}")
            return False

    target.refs[ref] = sha
    logger.debug(f"Updated {name} -> {sha.decode('ascii')}")
    return True


# =========================================================================
# Push
# =========================================================================


def push(
    url: str,
    source: Repo,
    refnames: Sequence[str],
    credentials: CredentialCallback,
    *,
    force: bool = False,
    config=None,
    ssh_timeout: Optional[float] = None,
) -> SendPackResult:
    """
    Push local refs to the same names on ``url``.

    Args:
        url: Remote URL or local path
        source: dulwich repository to push from
        refnames: Full local ref names, e.g. refs/heads/main
        credentials: Credentials callback
        force: Allow non-fast-forward updates
        config: dulwich config (default: source's config stack)
        ssh_timeout: Connect timeout for SSH in seconds

    Raises:
        AuthenticationError: If the credentials callback gives up
        PushError: If an update is not a fast-forward or the remote
            rejects it
        TransportError: If the transfer fails
    """
    if config is None:
        config = source.get_config_stack()

    local_refs = {}
    for name in refnames:
        try:
            local_refs[name.encode("utf-8")] = source.refs[name.encode("utf-8")]
        except KeyError:
            raise InvalidRefError(f"No such local ref: {name}", url=url)

    def update_refs(remote_refs):
        rejected = {}
        for ref, sha in local_refs.items():
            old = remote_refs.get(ref)
            if old is None or old == sha or force or ref.startswith(b"refs/tags/"):
                continue
            if old not in source.object_store or not can_fast_forward(source, old, sha):
                rejected[ref.decode("utf-8")] = "non-fast-forward"
        if rejected:
            raise PushError("Updates were rejected", rejected=rejected, url=url)
        return dict(local_refs)

    result = _run_authenticated(
        url,
        credentials,
        lambda client, path: client.send_pack(
            path, update_refs, generate_pack_data=source.generate_pack_data
        ),
        kind="push",
        config=config,
        ssh_timeout=ssh_timeout,
    )

    failed = {
        ref.decode("utf-8"): error
        for ref, error in (result.ref_status or {}).items()
        if error is not None
    }
    if failed:
        raise PushError("Remote rejected updates", rejected=failed, url=url)
    return result


# =========================================================================
# SSH
# =========================================================================


class _ChannelWrapper:
    """File-like view of a paramiko channel, as dulwich expects."""

    def __init__(self, transport: paramiko.Transport, channel: paramiko.Channel):
        self.transport = transport
        self.channel = channel

        # Channel must block
        self.channel.setblocking(True)

    @property
    def stderr(self) -> BinaryIO:
        return cast(BinaryIO, self.channel.makefile_stderr("rb"))

    def can_read(self) -> bool:
        return self.channel.recv_ready()

    def write(self, data: bytes) -> None:
        return self.channel.sendall(data)

    def read(self, n: Optional[int] = None) -> bytes:
        data = self.channel.recv(n or 4096)
        if not data:
            return b""
        if n and len(data) < n:
            return data + self.read(n - len(data))
        return data

    def close(self) -> None:
        self.channel.close()
        self.transport.close()


class NegotiatingSSHVendor(SSHVendor):
    """
    dulwich SSH vendor that authenticates through a credentials callback.

    Example:
        ```python
        client, path = get_transport_and_path("git@github.com:user/repo.git")
        client.ssh_vendor = NegotiatingSSHVendor(url, negotiator)
        ```
    """

    def __init__(
        self,
        url: str,
        credentials: CredentialCallback,
        *,
        timeout: Optional[float] = None,
        known_hosts: Optional[str] = None,
        ssh_config: Optional[paramiko.config.SSHConfig] = None,
    ):
        """
        Args:
            url: Remote URL, passed on to the callback
            credentials: Credentials callback
            timeout: Connect timeout in seconds
            known_hosts: known_hosts file (default: ~/.ssh/known_hosts)
            ssh_config: Parsed ssh config (default: ~/.ssh/config)
        """
        self.url = url
        self.credentials = credentials
        self.timeout = timeout
        self.host_keys = load_host_keys(known_hosts or os.path.expanduser("~/.ssh/known_hosts"))
        self.ssh_config = ssh_config if ssh_config is not None else load_ssh_config()

    def run_command(
        self,
        host: str,
        command: Union[str, bytes],
        username: Optional[str] = None,
        port: Optional[int] = None,
        password: Optional[str] = None,
        key_filename: Optional[str] = None,
        ssh_command: Optional[str] = None,
        protocol_version: Optional[int] = None,
        **kwargs,
    ) -> _ChannelWrapper:
        host_config = self.ssh_config.lookup(host)
        hostname = host_config.get("hostname", host)
        if port is None:
            port = int(host_config.get("port", 22))

        logger.debug(f"Connecting to {hostname}:{port}")
        sock = socket.create_connection((hostname, port), timeout=self.timeout)
        transport = paramiko.Transport(sock)
        try:
            transport.start_client(timeout=self.timeout)
            self.check_host_key(transport, host, port)
            self.authenticate(transport, username or host_config.get("user"))

            channel = transport.open_session()
            if protocol_version is None or protocol_version == 2:
                channel.set_environment_variable(name="GIT_PROTOCOL", value="version=2")
            channel.exec_command(command)
        except BaseException:
            transport.close()
            raise

        return _ChannelWrapper(transport, channel)

    def check_host_key(self, transport: paramiko.Transport, host: str, port: int) -> None:
        """
        Compare the server's key with known_hosts.

        Raises:
            TransportError: If known_hosts has a different key of the same
                type for this host
        """
        key = transport.get_remote_server_key()
        host_config = self.ssh_config.lookup(host)
        # known_hosts is keyed by the real host, not the ssh config alias
        key_host = host_config.get("hostkeyalias") or host_config.get("hostname", host)
        name = key_host if port == 22 else f"[{key_host}]:{port}"
        known = self.host_keys.lookup(name)

        if known is None or key.get_name() not in known:
            logger.warning(f"No known {key.get_name()} host key for {name}, accepting it")
            return

        if not self.host_keys.check(name, key):
            raise TransportError(
                f"Host key for {name} does not match known_hosts; refusing to authenticate",
                url=self.url,
            )

    def authenticate(self, transport: paramiko.Transport, username: Optional[str]) -> None:
        """
        Authenticate ``transport`` with credentials from the callback.

        Args:
            transport: Started paramiko transport
            username: Username from the URL, if any

        Raises:
            AuthenticationError: If the callback gives up
        """
        probe_user = username
        if probe_user is None:
            credential = request_credential(
                self.credentials, self.url, None, CredentialKind.USERNAME
            )
            if not isinstance(credential, UsernameCredential):
                raise AuthenticationError(
                    "Expected a username for the SSH handshake", url=self.url
                )
            probe_user = credential.username

        allowed = self.probe(transport, probe_user)

        while not transport.is_authenticated():
            credential = request_credential(self.credentials, self.url, username, allowed)
            try:
                remaining = self._apply(transport, credential, probe_user)
            except paramiko.BadAuthenticationType as e:
                logger.debug(f"Server rejected {credential.kind}, accepts {e.allowed_types}")
                allowed = ssh_allowed_kinds(e.allowed_types)
                continue
            except paramiko.AuthenticationException as e:
                logger.debug(f"Server rejected {credential.kind}: {e}")
                continue

            if remaining and not transport.is_authenticated():
                # Partial success, the server wants another method as well
                allowed = ssh_allowed_kinds(remaining)

    def probe(self, transport: paramiko.Transport, username: str) -> CredentialKind:
        """
        Ask the server which methods it accepts for ``username``.

        Returns:
            The matching credential kinds; empty if "none" authentication
            already succeeded
        """
        try:
            transport.auth_none(username)
        except paramiko.BadAuthenticationType as e:
            allowed = ssh_allowed_kinds(e.allowed_types)
            logger.debug(f"Server accepts {e.allowed_types} for {username}")
            return allowed
        return CredentialKind.none()

    def _apply(
        self,
        transport: paramiko.Transport,
        credential: Credential,
        probe_user: str,
    ) -> list[str]:
        """Try one credential; returns the methods still required."""
        if isinstance(credential, SshAgentCredential):
            for key in credential.keys:
                try:
                    return transport.auth_publickey(credential.username, key)
                except paramiko.BadAuthenticationType:
                    raise
                except paramiko.AuthenticationException:
                    logger.debug(f"Agent identity rejected for {credential.username}")
            raise paramiko.AuthenticationException(
                f"No agent identity accepted for '{credential.username}'"
            )
        if isinstance(credential, PlaintextCredential):
            return transport.auth_password(credential.username, credential.get_password())
        if isinstance(credential, DefaultCredential):
            return transport.auth_none(probe_user)
        raise paramiko.AuthenticationException(f"Cannot authenticate with a {credential.kind} credential")


def load_host_keys(path: str) -> paramiko.HostKeys:
    """Load a known_hosts file; missing files give an empty set."""
    host_keys = paramiko.HostKeys()
    try:
        host_keys.load(path)
    except FileNotFoundError:
        pass
    return host_keys


def load_ssh_config() -> paramiko.config.SSHConfig:
    """Load SSH configuration from ~/.ssh/config."""
    ssh_config = paramiko.config.SSHConfig()
    config_path = os.path.expanduser("~/.ssh/config")
    try:
        with open(config_path) as config_file:
            ssh_config.parse(config_file)
    except FileNotFoundError:
        pass
    except OSError as e:
        warnings.warn(f"Could not read SSH config file {config_path}: {e}")
    return ssh_config
