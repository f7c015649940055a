"""
CLI for git-commit.

Fetch, clone and push without interactive prompts; credentials come from
GH_TOKEN, the SSH agent and the configured git credential helper.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from git_commit import __version__
from git_commit.git.auth import mask_credentials
from git_commit.git.exceptions import GitError
from git_commit.git.repository import DEFAULT_REFSPEC, GitRepository, directory_from_url

# Load environment variables (GH_TOKEN etc.)
load_dotenv()

console = Console()
err_console = Console(stderr=True)


def setup_logging(verbose: bool = False) -> None:
    """Setup rich logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True)],
    )
    # Reduce noise from the transports
    logging.getLogger("paramiko").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def fail(error: GitError) -> None:
    """Report an error and exit with status 1."""
    err_console.print(f"[bold red]error:[/bold red] {escape(str(error))}")
    sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--path",
    "-p",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    help="Repository path (for clone: where the clone is created)",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Log credential negotiation details",
)
@click.pass_context
def cli(ctx: click.Context, path: Path, verbose: bool):
    """git-commit - fetch, clone and push with credential negotiation."""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["path"] = path


@cli.command()
@click.argument("url")
@click.argument("refspec", default=DEFAULT_REFSPEC)
@click.pass_context
def fetch(ctx: click.Context, url: str, refspec: str):
    """
    Fetch branches and tags from URL.

    Examples:

        # All branches and tags
        git-commit fetch https://github.com/user/repo.git

        # Into remote-tracking refs
        git-commit fetch origin-url '+refs/heads/*:refs/remotes/origin/*'
    """
    try:
        repo = GitRepository(ctx.obj["path"])
        repo.fetch(url, refspec)
    except GitError as e:
        fail(e)

    console.print(f"[green]Fetched[/green] {escape(mask_credentials(url))}")


@cli.command()
@click.argument("url")
@click.argument("directory", required=False)
@click.pass_context
def clone(ctx: click.Context, url: str, directory: Optional[str]):
    """
    Clone URL into DIRECTORY.

    DIRECTORY defaults to the last component of the URL, without extension.
    """
    try:
        if directory is None:
            directory = directory_from_url(url)
        repo = GitRepository.clone(url, ctx.obj["path"] / directory)
    except GitError as e:
        fail(e)

    console.print(f"[green]Cloned[/green] {escape(mask_credentials(url))} into {repo.path}")


@cli.command()
@click.argument("remote")
@click.argument("branches", nargs=-1, required=True)
@click.option("--force", "-f", is_flag=True, help="Allow non-fast-forward updates")
@click.pass_context
def push(ctx: click.Context, remote: str, branches: tuple[str, ...], force: bool):
    """
    Push BRANCHES (branch or tag names) to REMOTE.

    Examples:

        git-commit push origin main v1.0
    """
    try:
        repo = GitRepository(ctx.obj["path"])
        repo.push(remote, list(branches), force=force)
    except GitError as e:
        fail(e)

    console.print(f"[green]Pushed[/green] {', '.join(branches)} to {remote}")


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
