"""
Settings and configuration for git-commit.

Example:
    ```python
    from git_commit.settings import NegotiationEnvironment

    env = NegotiationEnvironment.from_env()
    print(env.local_username)
    ```
"""

from git_commit.settings.config import (
    DEFAULT_FALLBACK_USERNAME,
    DEFAULT_TOKEN_VARIABLE,
    NegotiationEnvironment,
)

__all__ = [
    "DEFAULT_FALLBACK_USERNAME",
    "DEFAULT_TOKEN_VARIABLE",
    "NegotiationEnvironment",
]
