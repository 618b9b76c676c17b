"""Git operations module.

Usage:
    from spmx.git import Repository

    result = Repository.clone(url, dest, runner=SubprocessRunner(), ref="1.0.0")
"""

from spmx.git.repository import GitError, Repository, checkout_args, clone_args

__all__ = [
    "GitError",
    "Repository",
    "checkout_args",
    "clone_args",
]
