"""
Session lifecycle engine.

SessionService owns the create / recycle / corrupt / delete state machine for
workspaces. It decides whether a recycled workspace can be reused or a fresh
one must be provisioned, applies per-remote rules, enforces the recycled
quota and publishes lifecycle events. All subordinate output (hooks, recycle
commands, spawn commands) goes through one OutputSwitch so a full-screen UI
can silence it.
"""

import logging
import os
import shutil
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Union

from burrow.config import Config
from burrow.errors import (
    BurrowError,
    CommandError,
    CorruptedRepositoryError,
    InvalidInputError,
    InvalidStateError,
    WorkspaceError,
)
from burrow.events import EventBus
from burrow.executil import CancelToken, Executor, check_cancelled
from burrow.git_utils import GitClient, extract_owner_repo, extract_repo_name
from burrow.hooks import FileCopier, HookRunner
from burrow.output import OutputSwitch
from burrow.recycler import Recycler
from burrow.registry import SessionStore
from burrow.rules import matches_pattern
from burrow.session import (
    META_WORKTREE_BRANCH,
    CloneStrategy,
    Session,
    SessionState,
    slugify,
)
from burrow.spawner import CommandSpawn, SpawnData, Spawner, WindowSpawn, resolve_spawn
from burrow.tmux_utils import RenderedWindow, TmuxClient
from burrow.workspace_naming import (
    UNKNOWN_OWNER,
    bare_dir,
    full_clone_dir_name,
    generate_id,
    worktree_branch_name,
    worktree_dir_name,
)

logger = logging.getLogger(__name__)

DEFAULT_BRANCH_FALLBACK = "main"


@dataclass
class CreateOptions:
    """Request for create_session()."""

    name: str
    session_id: str = ""       # generated when empty
    prompt: str = ""
    remote: str = ""           # detected from the current directory when empty
    source: str = ""           # source directory for copy rules
    clone_strategy: Optional[Union[CloneStrategy, str]] = None  # None = from config
    use_batch_spawn: bool = False
    # Caller launches the terminal itself (see create_session_with_windows)
    skip_spawn: bool = False


class SessionService:
    """Orchestrates burrow session operations."""

    def __init__(
        self,
        store: SessionStore,
        git: GitClient,
        config: Config,
        bus: EventBus,
        executor: Executor,
        stdout,
        stderr,
        tmux: Optional[TmuxClient] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.git = git
        self.config = config
        self.bus = bus
        self.executor = executor
        self.output = OutputSwitch(stdout, stderr)
        self.tmux = tmux or TmuxClient(executor)
        self._now = clock

        out, err = self.output.stdout, self.output.stderr
        self.spawner = Spawner(executor, self.tmux, out, err)
        self.recycler = Recycler(executor, out, err)
        self.hook_runner = HookRunner(executor, out, err)
        self.file_copier = FileCopier(out)

    def silence_output(self) -> Callable[[], None]:
        """
        Discard hook/recycle/spawn output until the returned restore function
        is called. Use before a full-screen UI takes over the terminal.
        """
        return self.output.suspend()

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_session(self, opts: CreateOptions, ctx: Optional[CancelToken] = None) -> Session:
        """Reuse a recycled workspace for the remote when possible, else provision a fresh one."""
        logger.info("creating session name=%s remote=%s", opts.name, opts.remote)
        check_cancelled(ctx)

        name = opts.name.strip()
        slug = slugify(name)
        if not slug:
            raise InvalidInputError(f"name {opts.name!r} produces an empty slug")

        remote = opts.remote
        if not remote:
            try:
                remote = self.detect_remote(".", ctx=ctx)
            except BurrowError as e:
                raise e.add_context("detect remote")
            logger.debug("detected remote %s", remote)

        if opts.clone_strategy:
            strategy = CloneStrategy.parse(opts.clone_strategy)
        else:
            strategy = self.config.get_clone_strategy(remote)

        sess = None
        candidate = self._find_valid_recyclable(remote, strategy, ctx)

        if candidate is not None and strategy == CloneStrategy.WORKTREE:
            sess = self._reuse_worktree(candidate, name, slug, ctx)
        elif candidate is not None:
            sess = self._reuse_full_clone(candidate, name, ctx)

        if sess is None:
            check_cancelled(ctx)
            sess = self._create_fresh_session(opts, name, remote, strategy, slug, ctx)

        check_cancelled(ctx)
        try:
            self._execute_rules(remote, opts.source, sess.path, ctx)
        except BurrowError as e:
            raise e.add_context("execute rules")

        try:
            self.store.save(sess)
        except BurrowError as e:
            raise e.add_context("save session")

        if not opts.skip_spawn:
            check_cancelled(ctx)
            self._spawn(sess, remote, opts, ctx)

        logger.info("session created id=%s path=%s", sess.id, sess.path)
        self.bus.publish_session_created(sess)
        return sess

    def _reuse_worktree(self, candidate: Session, name: str, slug: str,
                        ctx: Optional[CancelToken]) -> Optional[Session]:
        """Re-add a worktree at the recycled path. None (and candidate corrupted) on failure."""
        logger.debug("reusing recycled worktree session %s", candidate.id)
        bare = self._bare_dir_for_remote(candidate.remote)
        branch = worktree_branch_name(slug, candidate.id)
        try:
            self._ensure_bare_clone(candidate.remote, bare, ctx)
            self.git.worktree_add(bare, candidate.path, branch, ctx=ctx)
        except CommandError as e:
            logger.warning("worktree reuse failed for %s, marking corrupted: %s", candidate.id, e)
            self._mark_corrupted(candidate)
            return None

        candidate.reactivate(name, self._now())
        candidate.set_meta(META_WORKTREE_BRANCH, branch)
        return candidate

    def _reuse_full_clone(self, candidate: Session, name: str,
                          ctx: Optional[CancelToken]) -> Optional[Session]:
        """Pull the recycled clone. None (and candidate corrupted) on failure."""
        logger.debug("pulling latest changes into %s", candidate.path)
        try:
            self.git.pull(candidate.path, ctx=ctx)
        except CommandError as e:
            logger.warning("pull failed for %s, marking corrupted: %s", candidate.id, e)
            self._mark_corrupted(candidate)
            return None

        candidate.reactivate(name, self._now())
        return candidate

    def _create_fresh_session(self, opts: CreateOptions, name: str, remote: str,
                              strategy: CloneStrategy, slug: str,
                              ctx: Optional[CancelToken]) -> Session:
        session_id = opts.session_id or generate_id()
        dir_id = generate_id()
        repo_name = extract_repo_name(remote)
        metadata: Dict[str, str] = {}

        if strategy == CloneStrategy.WORKTREE:
            bare = self._bare_dir_for_remote(remote)
            try:
                self._ensure_bare_clone(remote, bare, ctx)
            except BurrowError as e:
                raise e.add_context("ensure bare clone")

            path = os.path.join(self.config.repos_dir, worktree_dir_name(repo_name, dir_id))
            branch = worktree_branch_name(slug, session_id)
            logger.info("adding worktree %s (branch %s) from %s", path, branch, bare)
            try:
                self.git.worktree_add(bare, path, branch, ctx=ctx)
            except BurrowError as e:
                raise e.add_context("add worktree")
            metadata[META_WORKTREE_BRANCH] = branch
        else:
            path = os.path.join(self.config.repos_dir, full_clone_dir_name(repo_name, dir_id))
            logger.info("cloning %s into %s", remote, path)
            try:
                self.git.clone(remote, path, ctx=ctx)
            except BurrowError as e:
                raise e.add_context("clone repository")

        sess = Session.new(session_id, name, path, remote, strategy, now=self._now())
        sess.metadata.update(metadata)
        return sess

    def _spawn(self, sess: Session, remote: str, opts: CreateOptions,
               ctx: Optional[CancelToken]) -> None:
        strategy = resolve_spawn(self.config.rules, remote, opts.use_batch_spawn, self.config.windows)
        data = self._spawn_data(sess.name, sess.path, remote, prompt=opts.prompt)
        try:
            if isinstance(strategy, WindowSpawn):
                self.spawner.spawn_windows(strategy.windows, data, opts.use_batch_spawn, ctx=ctx)
            elif isinstance(strategy, CommandSpawn) and strategy.commands:
                self.spawner.spawn(strategy.commands, data, ctx=ctx)
            else:
                raise InvalidInputError(f"no spawn strategy resolved for remote {remote!r}")
        except BurrowError as e:
            raise e.add_context("spawn terminal")

    def create_session_with_windows(self, name: str, remote: str, windows: List[RenderedWindow],
                                    sh_cmd: str = "", background: bool = False,
                                    ctx: Optional[CancelToken] = None) -> Session:
        """
        Create a session, optionally run sh_cmd in its directory, then open the
        given tmux windows. If anything after creation fails, the new session
        is deleted again.
        """
        try:
            sess = self.create_session(
                CreateOptions(name=name, remote=remote, skip_spawn=True), ctx=ctx
            )
        except BurrowError as e:
            raise e.add_context("create session")

        succeeded = False
        try:
            if sh_cmd:
                try:
                    self.executor.run_sh(sess.path, sh_cmd, ctx=ctx)
                except BurrowError as e:
                    raise e.add_context("sh")
            try:
                self.tmux.create_session(sess.name, sess.path, windows, background, ctx=ctx)
            except BurrowError as e:
                raise e.add_context("create tmux session")
            succeeded = True
        finally:
            if not succeeded:
                self._rollback(sess)
        return sess

    def _rollback(self, sess: Session) -> None:
        try:
            self.delete_session(sess.id)
        except BurrowError as e:
            logger.warning("failed to clean up session %s after setup failure: %s", sess.id, e)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_sessions(self) -> List[Session]:
        return self.store.list()

    def get_session(self, session_id: str) -> Session:
        return self.store.get(session_id)

    def detect_remote(self, directory: str = ".", ctx: Optional[CancelToken] = None) -> str:
        """origin URL of the repository at directory."""
        return self.git.remote_url(directory, ctx=ctx)

    def detect_session(self, cwd: Optional[str] = None) -> Optional[Session]:
        """The session whose workspace contains cwd (deepest match), or None."""
        here = os.path.realpath(cwd or os.getcwd())
        best = None
        for sess in self.store.list():
            root = os.path.realpath(sess.path)
            if here == root or here.startswith(root + os.sep):
                if best is None or len(root) > len(os.path.realpath(best.path)):
                    best = sess
        return best

    # ------------------------------------------------------------------
    # Recycle
    # ------------------------------------------------------------------

    def recycle_session(self, session_id: str, out=None, ctx: Optional[CancelToken] = None) -> None:
        """
        Reset an active session for reuse. The directory stays where it is
        (full clones) or is removed until reuse (worktrees).

        Recycle command output goes to `out` when given, otherwise through
        the output switch.
        """
        try:
            sess = self.store.get(session_id)
        except BurrowError as e:
            raise e.add_context("get session")

        if not sess.can_recycle():
            raise InvalidStateError(
                f"session {session_id} cannot be recycled (state: {sess.state.value})"
            )

        if sess.clone_strategy == CloneStrategy.WORKTREE:
            self._recycle_worktree_session(sess, ctx)
        else:
            self._recycle_full_session(sess, out, ctx)

    def _recycle_full_session(self, sess: Session, out, ctx: Optional[CancelToken]) -> None:
        try:
            self.git.is_valid_repo(sess.path, ctx=ctx)
        except CorruptedRepositoryError as e:
            logger.warning("session %s has a corrupted repository: %s", sess.id, e)
            self._mark_corrupted(sess)
            raise e.add_context(f"session {sess.id}")

        try:
            branch = self.git.default_branch(sess.path, ctx=ctx)
        except CommandError as e:
            logger.warning("could not resolve default branch, using %r: %s",
                           DEFAULT_BRANCH_FALLBACK, e)
            branch = DEFAULT_BRANCH_FALLBACK
        branch = branch or DEFAULT_BRANCH_FALLBACK

        commands = self.config.get_recycle_commands(sess.remote)
        try:
            self.recycler.recycle(sess.path, commands, {'default_branch': branch}, out=out, ctx=ctx)
        except BurrowError as e:
            raise e.add_context(f"recycle session {sess.id}")

        self._finish_recycle(sess)

    def _recycle_worktree_session(self, sess: Session, ctx: Optional[CancelToken]) -> None:
        branch = sess.get_meta(META_WORKTREE_BRANCH)
        if branch:
            bare = self._bare_dir_for_remote(sess.remote)
            try:
                self.git.worktree_remove(bare, sess.path, branch, ctx=ctx)
            except CommandError as e:
                logger.warning("worktree remove failed for %s: %s", sess.id, e)

        self._finish_recycle(sess)

    def _finish_recycle(self, sess: Session) -> None:
        self._kill_tmux(sess.name)

        sess.mark_recycled(self._now())
        try:
            self.store.save(sess)
        except BurrowError as e:
            raise e.add_context("save session")

        try:
            self.enforce_max_recycled(sess.remote)
        except BurrowError as e:
            logger.warning("failed to enforce max recycled for %s: %s", sess.remote, e)

        logger.info("session recycled id=%s path=%s", sess.id, sess.path)
        self.bus.publish_session_recycled(sess)

    def _kill_tmux(self, name: str) -> None:
        try:
            self.tmux.kill_session(name)
        except CommandError as e:
            logger.debug("no tmux session %s to kill: %s", name, e)

    # ------------------------------------------------------------------
    # Rename / delete / prune
    # ------------------------------------------------------------------

    def rename_session(self, session_id: str, new_name: str,
                       ctx: Optional[CancelToken] = None) -> Session:
        """Change name and slug. The workspace path never changes."""
        check_cancelled(ctx)
        new_name = new_name.strip()
        if not new_name:
            raise InvalidInputError("rename session: name cannot be empty")
        if not slugify(new_name):
            raise InvalidInputError(f"rename session: name {new_name!r} produces an empty slug")

        try:
            sess = self.store.get(session_id)
        except BurrowError as e:
            raise e.add_context("get session")

        old_name = sess.name
        sess.rename(new_name, self._now())
        try:
            self.store.save(sess)
        except BurrowError as e:
            raise e.add_context("save session")

        self.bus.publish_session_renamed(sess, old_name)
        logger.info("session renamed id=%s name=%s", session_id, new_name)
        return sess

    def delete_session(self, session_id: str, ctx: Optional[CancelToken] = None) -> None:
        """
        Remove a session's directory, then its record.

        If the directory cannot be removed the record is kept and
        WorkspaceError is raised.
        """
        check_cancelled(ctx)
        try:
            sess = self.store.get(session_id)
        except BurrowError as e:
            raise e.add_context("get session")

        logger.info("deleting session id=%s path=%s", session_id, sess.path)

        if sess.clone_strategy == CloneStrategy.WORKTREE:
            branch = sess.get_meta(META_WORKTREE_BRANCH)
            if branch:
                bare = self._bare_dir_for_remote(sess.remote)
                try:
                    self.git.worktree_remove(bare, sess.path, branch, ctx=ctx)
                except CommandError as e:
                    logger.warning("worktree remove failed for %s, removing directory anyway: %s",
                                   session_id, e)

        try:
            shutil.rmtree(sess.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise WorkspaceError(f"remove directory {sess.path}: {e}")

        try:
            self.store.delete(session_id)
        except BurrowError as e:
            raise e.add_context("delete session")

        self.bus.publish_session_deleted(session_id)

    def prune(self, all: bool = False, ctx: Optional[CancelToken] = None) -> int:
        """
        Delete corrupted sessions, then either every recycled session (all)
        or the recycled sessions over each remote's quota. Returns the count.
        """
        logger.info("pruning sessions all=%s", all)
        try:
            sessions = self.store.list()
        except BurrowError as e:
            raise e.add_context("list sessions")

        count = 0
        for sess in sessions:
            if sess.state == SessionState.CORRUPTED and self._try_delete(sess, ctx):
                count += 1

        if all:
            for sess in sessions:
                if sess.state == SessionState.RECYCLED and self._try_delete(sess, ctx):
                    count += 1
        else:
            for remote in sorted({s.remote for s in sessions if s.state == SessionState.RECYCLED}):
                count += self._delete_excess_recycled(sessions, remote, ctx)

        logger.info("prune complete: %d deleted", count)
        return count

    def _try_delete(self, sess: Session, ctx: Optional[CancelToken]) -> bool:
        try:
            self.delete_session(sess.id, ctx=ctx)
        except BurrowError as e:
            logger.warning("failed to delete session %s: %s", sess.id, e)
            return False
        return True

    def enforce_max_recycled(self, remote: str, ctx: Optional[CancelToken] = None) -> int:
        """Delete the oldest recycled sessions for remote beyond its quota."""
        try:
            sessions = self.store.list()
        except BurrowError as e:
            raise e.add_context("list sessions")
        return self._delete_excess_recycled(sessions, remote, ctx)

    def _delete_excess_recycled(self, sessions: List[Session], remote: str,
                                ctx: Optional[CancelToken]) -> int:
        limit = self.config.get_max_recycled(remote)
        if limit == 0:
            return 0

        recycled = [s for s in sessions if s.state == SessionState.RECYCLED and s.remote == remote]
        if len(recycled) <= limit:
            return 0

        recycled.sort(key=lambda s: s.updated_at, reverse=True)
        count = 0
        for sess in recycled[limit:]:
            logger.info("deleting excess recycled session %s (remote %s, limit %d)",
                        sess.id, remote, limit)
            if self._try_delete(sess, ctx):
                count += 1
        return count

    # ------------------------------------------------------------------
    # tmux
    # ------------------------------------------------------------------

    def open_tmux_session(self, name: str, path: str, remote: str, target_window: str = "",
                          background: bool = False, ctx: Optional[CancelToken] = None) -> None:
        """Attach to the session's tmux session, creating it from the window config if needed."""
        strategy = resolve_spawn(self.config.rules, remote, False, self.config.windows)
        if not isinstance(strategy, WindowSpawn):
            raise InvalidInputError("opening a tmux session requires a windows configuration")

        data = self._spawn_data(name, path, remote)
        self.spawner.open_windows(strategy.windows, data, background, target_window, ctx=ctx)

    def add_windows_to_tmux_session(self, tmux_name: str, work_dir: str,
                                    windows: List[RenderedWindow], background: bool = False,
                                    ctx: Optional[CancelToken] = None) -> None:
        self.spawner.add_windows_to_session(tmux_name, work_dir, windows, background, ctx=ctx)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _spawn_data(self, name: str, path: str, remote: str, prompt: str = "") -> SpawnData:
        owner, repo = extract_owner_repo(remote)
        repo = repo or extract_repo_name(remote)
        return SpawnData(
            path=path,
            name=name,
            prompt=prompt,
            slug=slugify(name),
            context_dir=self.config.repo_context_dir(owner, repo),
            owner=owner,
            repo=repo,
            vars=dict(self.config.vars),
        )

    def _find_valid_recyclable(self, remote: str, strategy: CloneStrategy,
                               ctx: Optional[CancelToken]) -> Optional[Session]:
        """
        First recycled session for remote with the same clone strategy.

        Worktree candidates are returned without validation since their
        directory is absent between uses. Full clones that fail the integrity
        check are marked corrupted and skipped.
        """
        try:
            sessions = self.store.list()
        except BurrowError as e:
            logger.warning("failed to list sessions: %s", e)
            return None

        for sess in sessions:
            if sess.state != SessionState.RECYCLED or sess.remote != remote:
                continue
            if sess.clone_strategy != strategy:
                continue
            if strategy == CloneStrategy.WORKTREE:
                return sess

            try:
                self.git.is_valid_repo(sess.path, ctx=ctx)
            except CorruptedRepositoryError as e:
                logger.warning("corrupted session %s at %s: %s", sess.id, sess.path, e)
                self._mark_corrupted(sess)
                continue
            return sess

        return None

    def _mark_corrupted(self, sess: Session) -> None:
        """Transition to corrupted, then delete (auto_delete_corrupted) or persist it."""
        sess.mark_corrupted(self._now())
        self.bus.publish_session_corrupted(sess)

        if self.config.auto_delete_corrupted:
            logger.info("auto-deleting corrupted session %s", sess.id)
            try:
                self.delete_session(sess.id)
                return
            except BurrowError as e:
                logger.warning("failed to delete corrupted session %s, keeping it: %s", sess.id, e)

        try:
            self.store.save(sess)
        except BurrowError as e:
            logger.error("failed to save corrupted session %s: %s", sess.id, e)

    def _execute_rules(self, remote: str, source: str, dest: str,
                       ctx: Optional[CancelToken]) -> None:
        """Every matching rule in order: copy files first, then run hooks."""
        for rule in self.config.rules:
            if not matches_pattern(rule.pattern, remote):
                continue

            logger.debug("rule matched pattern=%r copy=%s commands=%s",
                         rule.pattern, rule.copy, rule.commands)
            if rule.copy and source:
                try:
                    self.file_copier.copy_files(rule, source, dest, ctx=ctx)
                except BurrowError as e:
                    raise e.add_context("copy files")
            if rule.commands:
                try:
                    self.hook_runner.run_hooks(rule, dest, ctx=ctx)
                except BurrowError as e:
                    raise e.add_context("run hooks")

    def _bare_dir_for_remote(self, remote: str) -> str:
        owner, repo = extract_owner_repo(remote)
        if not owner or not repo:
            owner, repo = UNKNOWN_OWNER, extract_repo_name(remote)
        return bare_dir(self.config.repos_dir, owner, repo)

    def _ensure_bare_clone(self, remote: str, bare: str, ctx: Optional[CancelToken]) -> None:
        """Create the bare mirror if absent, else fetch into it."""
        if not os.path.exists(bare):
            logger.info("creating bare clone of %s at %s", remote, bare)
            self.git.clone_bare(remote, bare, ctx=ctx)
        else:
            logger.debug("fetching into bare clone %s", bare)
            self.git.fetch(bare, ctx=ctx)
