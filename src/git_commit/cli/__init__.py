"""
CLI module for git-commit.

Provides the fetch, clone and push commands.
"""

from git_commit.cli.main import cli

__all__ = ["cli"]
