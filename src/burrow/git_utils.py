"""
Git operations for burrow workspaces.

GitClient shells out to git through an Executor so commands can be streamed,
cancelled and recorded in tests.
"""

import logging
import os
from pathlib import Path
from typing import Optional, Tuple

from burrow.errors import CommandError, CorruptedRepositoryError
from burrow.executil import CancelToken, Executor

logger = logging.getLogger(__name__)

FALLBACK_DEFAULT_BRANCH = "main"


def _strip_remote(remote: str) -> str:
    url = remote.strip().rstrip('/')
    if url.endswith('.git'):
        url = url[:-4]
    return url


def extract_owner_repo(remote: str) -> Tuple[str, str]:
    """
    Split a remote URL into (owner, repo).

    Supports https, ssh and scp-style URLs. For nested groups the owner is
    the segment directly above the repository.

    Examples:
        >>> extract_owner_repo("git@github.com:acme/widgets.git")
        ('acme', 'widgets')
        >>> extract_owner_repo("https://gitlab.com/org/subgroup/repo.git")
        ('subgroup', 'repo')
        >>> extract_owner_repo("invalid")
        ('', '')
    """
    url = _strip_remote(remote)
    if not url:
        return "", ""

    if '://' in url:
        # Drop scheme and host
        parts = url.split('://', 1)[1].split('/')[1:]
    elif ':' in url:
        parts = url.split(':', 1)[1].split('/')
    else:
        parts = url.split('/')

    parts = [p for p in parts if p]
    if len(parts) < 2:
        return "", ""
    return parts[-2], parts[-1]


def extract_repo_name(remote: str) -> str:
    """Repository name from a remote URL; last path segment when unparsable."""
    _, repo = extract_owner_repo(remote)
    if repo:
        return repo
    url = _strip_remote(remote)
    name = url.replace(':', '/').rsplit('/', 1)[-1]
    return name or "repo"


class GitClient:
    """Git command-line wrapper."""

    def __init__(self, executor: Executor, git_path: str = "git"):
        self.executor = executor
        self.git_path = git_path

    def clone(self, remote: str, dest: str, ctx: Optional[CancelToken] = None) -> None:
        Path(dest).parent.mkdir(parents=True, exist_ok=True)
        try:
            self.executor.run(self.git_path, "clone", remote, dest, ctx=ctx)
        except CommandError as e:
            raise e.add_context(f"clone {remote} to {dest}")

    def clone_bare(self, remote: str, dest: str, ctx: Optional[CancelToken] = None) -> None:
        Path(dest).parent.mkdir(parents=True, exist_ok=True)
        try:
            self.executor.run(self.git_path, "clone", "--bare", remote, dest, ctx=ctx)
        except CommandError as e:
            raise e.add_context(f"bare clone {remote} to {dest}")

    def fetch(self, bare_dir: str, ctx: Optional[CancelToken] = None) -> None:
        """Update origin's branches in a bare mirror as refs/remotes/origin/*."""
        # Bare clones have no fetch refspec. Local heads are left alone: worktrees
        # have them checked out and git refuses to fetch into those.
        try:
            self.executor.run_dir(
                bare_dir, self.git_path, "fetch", "origin",
                "+refs/heads/*:refs/remotes/origin/*", ctx=ctx,
            )
        except CommandError as e:
            raise e.add_context("fetch")

    def pull(self, path: str, ctx: Optional[CancelToken] = None) -> None:
        try:
            self.executor.run_dir(path, self.git_path, "pull", ctx=ctx)
        except CommandError as e:
            raise e.add_context("pull")

    def worktree_add(self, bare_dir: str, path: str, branch: str,
                     ctx: Optional[CancelToken] = None) -> None:
        """Add a worktree at path on a new branch created from origin's default branch."""
        start = self._mirror_start_point(bare_dir, ctx)
        try:
            self.executor.run_dir(
                bare_dir, self.git_path, "worktree", "add", "-b", branch, path, start, ctx=ctx,
            )
        except CommandError as e:
            raise e.add_context(f"worktree add {path}")

    def _mirror_start_point(self, bare_dir: str, ctx: Optional[CancelToken]) -> str:
        """
        origin/<default> when the mirror has fetched it, else the mirror's HEAD.

        A fresh bare clone only has local heads; once fetch has run the
        remote-tracking ref is the up-to-date one.
        """
        try:
            head = self.executor.run_dir(
                bare_dir, self.git_path, "symbolic-ref", "--short", "HEAD", ctx=ctx,
            ).strip()
        except CommandError:
            return "HEAD"
        if not head:
            return "HEAD"
        try:
            self.executor.run_dir(
                bare_dir, self.git_path, "rev-parse", "--verify", "--quiet",
                f"refs/remotes/origin/{head}", ctx=ctx,
            )
        except CommandError:
            return head
        return f"origin/{head}"

    def worktree_remove(self, bare_dir: str, path: str, branch: str,
                        ctx: Optional[CancelToken] = None) -> None:
        """Remove a worktree and delete its branch."""
        try:
            self.executor.run_dir(
                bare_dir, self.git_path, "worktree", "remove", "--force", path, ctx=ctx,
            )
        except CommandError as e:
            # Directory already gone: drop the stale worktree entry instead
            if os.path.exists(path):
                raise e.add_context(f"worktree remove {path}")
            self.executor.run_dir(bare_dir, self.git_path, "worktree", "prune", ctx=ctx)

        if branch:
            try:
                self.executor.run_dir(bare_dir, self.git_path, "branch", "-D", branch, ctx=ctx)
            except CommandError as e:
                raise e.add_context(f"delete branch {branch}")

    def default_branch(self, path: str, ctx: Optional[CancelToken] = None) -> str:
        """
        Default branch of origin, e.g. 'main'.

        Raises:
            CommandError: if origin/HEAD is not set
        """
        out = self.executor.run_dir(
            path, self.git_path, "symbolic-ref", "--short", "refs/remotes/origin/HEAD", ctx=ctx,
        ).strip()
        return out.split('/', 1)[1] if out.startswith('origin/') else out

    def is_valid_repo(self, path: str, ctx: Optional[CancelToken] = None) -> None:
        """
        Integrity check for a workspace.

        Raises:
            CorruptedRepositoryError: if path is missing or git cannot read it
        """
        if not os.path.isdir(path):
            raise CorruptedRepositoryError(path, "directory does not exist")
        try:
            self.executor.run_dir(path, self.git_path, "rev-parse", "--git-dir", ctx=ctx)
            self.executor.run_dir(path, self.git_path, "rev-parse", "--verify", "HEAD", ctx=ctx)
        except CommandError as e:
            raise CorruptedRepositoryError(path, e.output or str(e))

    def remote_url(self, path: str, ctx: Optional[CancelToken] = None) -> str:
        try:
            out = self.executor.run_dir(path, self.git_path, "remote", "get-url", "origin", ctx=ctx)
        except CommandError as e:
            raise e.add_context("get remote url")
        return out.strip()
