"""
Workspace naming utilities for burrow.

Directory names are built from the repository name plus a random suffix and
never include the session's display slug: the slug changes on rename, the
directory does not.
"""

import os
import secrets
import string

ID_ALPHABET = string.ascii_lowercase + string.digits
ID_LENGTH = 6

# Branch prefix for worktree sessions
BRANCH_PREFIX = "burrow"

# Owner segment used when a remote URL has no parsable owner
UNKNOWN_OWNER = "_"


def generate_id(length: int = ID_LENGTH) -> str:
    """Random lowercase alphanumeric identifier, e.g. 'k3x9qa'."""
    return ''.join(secrets.choice(ID_ALPHABET) for _ in range(length))


def full_clone_dir_name(repo_name: str, dir_id: str) -> str:
    """
    Directory name for a fresh full clone.

    Examples:
        >>> full_clone_dir_name("burrow", "a1b2c3")
        'burrow-a1b2c3'
    """
    return f"{repo_name}-{dir_id}"


def worktree_dir_name(repo_name: str, dir_id: str) -> str:
    """
    Directory name for a fresh worktree.

    Examples:
        >>> worktree_dir_name("burrow", "a1b2c3")
        'burrow-wt-a1b2c3'
    """
    return f"{repo_name}-wt-{dir_id}"


def worktree_branch_name(slug: str, session_id: str) -> str:
    """Branch checked out in a worktree session: burrow/{slug}-{id}."""
    return f"{BRANCH_PREFIX}/{slug}-{session_id}"


def bare_dir(repos_dir: str, owner: str, repo: str) -> str:
    """Location of the shared bare mirror: {repos_dir}/.bare/{owner}/{repo}."""
    return os.path.join(repos_dir, ".bare", owner or UNKNOWN_OWNER, repo)
