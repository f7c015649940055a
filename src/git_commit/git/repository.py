"""
Git repository interface.

This module provides the repository-level operations that talk to remotes:
fetch, clone and push. GitPython is used for the repository itself (config,
remotes, refs, working tree); the transfers go through
:mod:`git_commit.git.transport` with a fresh
:class:`~git_commit.git.negotiator.CredentialNegotiator` per operation.
"""

import logging
import re
import shutil
from pathlib import Path
from typing import Optional, Sequence, Union
from urllib.parse import urlparse

from dulwich.client import FetchPackResult
from dulwich.errors import NotGitRepository
from dulwich.repo import Repo as DulwichRepo
from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo

from git_commit.git import transport
from git_commit.git.auth import mask_credentials
from git_commit.git.exceptions import (
    CloneError,
    GitError,
    InvalidRefError,
    RemoteError,
    RepositoryNotFoundError,
)
from git_commit.git.models import Refspec
from git_commit.git.negotiator import with_authentication
from git_commit.settings.config import NegotiationEnvironment

logger = logging.getLogger(__name__)

DEFAULT_REFSPEC = "refs/heads/*:refs/heads/*"


class GitRepository:
    """
    A local repository that can fetch from, clone and push to remotes.

    Example:
        ```python
        # Clone into ./repo
        repo = GitRepository.clone("https://github.com/user/repo.git")

        # Fetch all branches and tags
        repo.fetch("https://github.com/user/repo.git")

        # Push a branch and a tag
        repo.push("origin", ["main", "v1.0"])
        ```
    """

    def __init__(
        self,
        path: Union[str, Path],
        *,
        environment: Optional[NegotiationEnvironment] = None,
    ):
        """
        Open a Git repository.

        Args:
            path: Path to the repository root
            environment: Negotiation inputs (default: read from os.environ
                for every operation)

        Raises:
            RepositoryNotFoundError: If the path is not a valid Git repository
        """
        self.path = Path(path).resolve()
        self.environment = environment

        try:
            self._repo = Repo(self.path)
        except InvalidGitRepositoryError:
            raise RepositoryNotFoundError(
                f"Not a valid Git repository: {self.path}",
                repo_path=str(self.path),
            )
        except NoSuchPathError:
            raise RepositoryNotFoundError(
                f"Path does not exist: {self.path}",
                repo_path=str(self.path),
            )

    @classmethod
    def init(
        cls,
        path: Union[str, Path],
        *,
        environment: Optional[NegotiationEnvironment] = None,
    ) -> "GitRepository":
        """
        Initialize a new, empty Git repository.

        Raises:
            GitError: If initialization fails
        """
        path = Path(path).resolve()
        path.mkdir(parents=True, exist_ok=True)

        try:
            Repo.init(path)
        except GitCommandError as e:
            raise GitError(
                f"Failed to initialize repository: {e.stderr}",
                repo_path=str(path),
            ) from e
        return cls(path, environment=environment)

    # =========================================================================
    # Configuration
    # =========================================================================

    def config_reader(self):
        """Layered (system, global, repository) git configuration."""
        return self._repo.config_reader()

    def remote_url(self, name: str) -> str:
        """
        Get the URL of a named remote.

        Raises:
            RemoteError: If the remote does not exist or has no URL
        """
        reader = self.config_reader()
        section = f'remote "{name}"'

        if not reader.has_section(section):
            raise RemoteError(f"No such remote: '{name}'", repo_path=str(self.path))
        if not reader.has_option(section, "url"):
            raise RemoteError(f"Remote '{name}' has no URL", repo_path=str(self.path))
        return str(reader.get_value(section, "url"))

    def resolve_refnames(self, names: Sequence[str]) -> list[str]:
        """
        Map short names to full ref names, tags first.

        Raises:
            InvalidRefError: If a name is neither a tag nor a local branch
        """
        tags = {tag.name for tag in self._repo.tags}
        heads = {head.name for head in self._repo.heads}

        refnames = []
        for name in names:
            if name in tags:
                refnames.append(f"refs/tags/{name}")
            elif name in heads:
                refnames.append(f"refs/heads/{name}")
            else:
                raise InvalidRefError(
                    f"'{name}' is neither a tag nor a local branch",
                    repo_path=str(self.path),
                )
        return refnames

    # =========================================================================
    # Remote Operations
    # =========================================================================

    def fetch(self, url: str, refspec: str = DEFAULT_REFSPEC) -> None:
        """
        Fetch from ``url`` into this repository.

        All tags are fetched as well. Local refs the refspec maps to are
        updated; nothing is checked out.

        Args:
            url: Remote URL or local path
            refspec: Refspec, e.g. ``+refs/heads/*:refs/remotes/origin/*``

        Raises:
            InvalidRefError: If the refspec is malformed
            AuthenticationError: If no credential is accepted
            TransportError: If the transfer fails
        """
        try:
            refspecs = [Refspec.parse(refspec)]
        except ValueError as e:
            raise InvalidRefError(f"Invalid refspec '{refspec}': {e}", url=url) from e

        self._fetch(url, refspecs)

    def _fetch(self, url: str, refspecs: list[Refspec]) -> FetchPackResult:
        logger.info(f"Fetching from {mask_credentials(url)}")

        try:
            target = DulwichRepo(str(self.path))
        except NotGitRepository as e:
            raise RepositoryNotFoundError(
                f"Not a valid Git repository: {self.path}",
                repo_path=str(self.path),
            ) from e

        with target:
            return with_authentication(
                url,
                self.config_reader(),
                lambda negotiator: transport.fetch(url, target, refspecs, negotiator),
                environment=self.environment,
                repo_path=self.path,
            )

    @classmethod
    def clone(
        cls,
        url: str,
        directory: Optional[Union[str, Path]] = None,
        *,
        environment: Optional[NegotiationEnvironment] = None,
    ) -> "GitRepository":
        """
        Clone a repository.

        Fetches every branch and tag, checks out the remote's default branch
        and records the URL as ``origin``.

        Args:
            url: Remote URL or local path
            directory: Target directory (default: derived from the URL)
            environment: Negotiation inputs

        Returns:
            GitRepository instance for the clone

        Raises:
            CloneError: If the target exists or cannot be derived
            AuthenticationError: If no credential is accepted
            TransportError: If the transfer fails

        Example:
            ```python
            repo = GitRepository.clone("git@github.com:user/repo.git")
            print(repo.path)  # ./repo
            ```
        """
        if directory is None:
            directory = directory_from_url(url)
        target = Path(directory).resolve()

        if target.exists():
            raise CloneError(
                f"Destination already exists: {target}",
                url=url,
                repo_path=str(target),
            )

        repo = cls.init(target, environment=environment)
        try:
            result = repo._fetch(url, [Refspec.parse(DEFAULT_REFSPEC)])
            repo._checkout_remote_head(result)
            repo._repo.create_remote("origin", url)
        except BaseException:
            shutil.rmtree(target, ignore_errors=True)
            raise

        logger.info(f"Cloned {mask_credentials(url)} into {target}")
        return repo

    def _checkout_remote_head(self, result: FetchPackResult) -> None:
        """Point HEAD at the remote's default branch and check it out."""
        head = (result.symrefs or {}).get(b"HEAD")
        if head is not None:
            branch = head.decode("utf-8")
            if branch.startswith("refs/heads/") and branch[len("refs/heads/"):] in self._repo.heads:
                self._repo.head.set_reference(self._repo.heads[branch[len("refs/heads/"):]])

        if not self._repo.head.is_valid():
            logger.warning("Remote HEAD is not a fetched branch, nothing checked out")
            return

        self._repo.head.reset(index=True, working_tree=True)

    def push(self, remote: str, names: Sequence[str], *, force: bool = False) -> None:
        """
        Push branches and tags to a named remote.

        Args:
            remote: Remote name, e.g. ``origin``
            names: Branch or tag names
            force: Allow non-fast-forward updates

        Raises:
            RemoteError: If the remote is missing or has no URL
            InvalidRefError: If a name is neither a tag nor a branch
            PushError: If an update is rejected
            AuthenticationError: If no credential is accepted
            TransportError: If the transfer fails
        """
        url = self.remote_url(remote)
        refnames = self.resolve_refnames(names)
        logger.info(f"Pushing {', '.join(refnames)} to {mask_credentials(url)}")

        with DulwichRepo(str(self.path)) as source:
            with_authentication(
                url,
                self.config_reader(),
                lambda negotiator: transport.push(url, source, refnames, negotiator, force=force),
                environment=self.environment,
                repo_path=self.path,
            )

    # =========================================================================
    # Utility
    # =========================================================================

    def __repr__(self) -> str:
        return f"GitRepository({self.path!r})"

    def __str__(self) -> str:
        return str(self.path)


def directory_from_url(url: str) -> str:
    """
    Derive a clone directory name from a URL.

    The last path segment without its extension is used.

    Raises:
        CloneError: If the URL has no path

    Example:
        ```python
        directory_from_url("https://github.com/user/repo.git")  # "repo"
        directory_from_url("git@github.com:user/repo.git")  # "repo"
        ```
    """
    if "://" in url:
        path = urlparse(url).path
    elif re.match(r"^[^/:]+:", url):
        # scp-like user@host:path
        path = url.split(":", 1)[1]
    else:
        path = url

    name = Path(path.rstrip("/")).stem
    if not name or name in (".", ".."):
        raise CloneError("Cannot derive a directory name from the URL", url=url)
    return name
