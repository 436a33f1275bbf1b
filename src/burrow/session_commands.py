"""Session lifecycle commands: new, ls, recycle, rm, rename, prune, open, log."""

import functools
import json
import sys
import time
import traceback
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from burrow.error_logging import ErrorLogger, ErrorType, classify_error
from burrow.errors import BurrowError
from burrow.logging import BurrowLogger
from burrow.output import DeferredWriter
from burrow.service import CreateOptions, SessionService
from burrow.session import SessionState

STATE_STYLES = {
    SessionState.ACTIVE: "green",
    SessionState.RECYCLED: "blue",
    SessionState.CORRUPTED: "red",
}


def get_service(ctx: click.Context) -> SessionService:
    """The SessionService for this invocation, built on first use."""
    obj = ctx.find_root().obj
    if 'service' not in obj:
        obj['service'] = obj['build_service'](obj['config'])
    return obj['service']


def _command_line(ctx: click.Context) -> str:
    args = [str(v) for v in ctx.params.values() if v not in (None, False, '')]
    return " ".join([ctx.command_path, *args])


def reports_errors(func):
    """
    Report burrow errors as `❌ message`, record them in errors.jsonl and
    exit non-zero. Unexpected exceptions are recorded with a stack trace and
    re-raised.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        ctx = click.get_current_context()
        start = time.time()
        try:
            return func(*args, **kwargs)
        except (click.ClickException, click.exceptions.Exit, click.Abort):
            raise
        except BurrowError as e:
            _record_error(ctx, e, start)
            click.echo(f"❌ {e}", err=True)
            raise click.Abort()
        except Exception as e:
            _record_error(ctx, e, start, stack_trace=traceback.format_exc())
            raise

    return wrapper


def _record_error(ctx: click.Context, exc: BaseException, start: float,
                  stack_trace: Optional[str] = None) -> None:
    config = ctx.find_root().obj['config']
    error_type = classify_error(exc)
    context = {k: v for k, v in ctx.params.items() if isinstance(v, (str, int, bool)) and v != ''}
    try:
        ErrorLogger(config.errors_file).log_error(
            command=_command_line(ctx),
            subcommand=ctx.info_name or '',
            error_type=error_type,
            message=str(exc),
            context=context or None,
            stack_trace=stack_trace if error_type == ErrorType.UNEXPECTED_ERROR else None,
            duration_ms=int((time.time() - start) * 1000),
        )
    except OSError as log_exc:
        click.echo(f"⚠️  Could not record error: {log_exc}", err=True)


def register_session_commands(cli):
    """Register session lifecycle commands with the CLI."""

    @cli.command()
    @click.argument('name')
    @click.option('--remote', default='', help='Remote URL (default: origin of the current repo)')
    @click.option('--prompt', default='', help='Prompt passed to spawn templates as {{ prompt }}')
    @click.option('--source', type=click.Path(file_okay=False), default=None,
                  help='Directory to copy rule files from (default: current directory)')
    @click.option('--strategy', type=click.Choice(['full', 'worktree']), default=None,
                  help='Clone strategy (default: from config)')
    @click.option('--id', 'session_id', default='', help='Explicit session ID')
    @click.option('--batch', is_flag=True, help='Use batch_spawn commands and a background tmux session')
    @click.option('--no-spawn', is_flag=True, help='Create the workspace without launching anything')
    @click.pass_context
    @reports_errors
    def new(ctx, name, remote, prompt, source, strategy, session_id, batch, no_spawn):
        """Create a session, reusing a recycled workspace when one is available.

        \b
        Examples:
            burrow new "fix login bug"
            burrow new refactor --strategy worktree
            burrow new triage --batch --prompt "Triage open issues"
        """
        service = get_service(ctx)
        opts = CreateOptions(
            name=name,
            session_id=session_id,
            prompt=prompt,
            remote=remote,
            source=source if source is not None else '.',
            clone_strategy=strategy,
            use_batch_spawn=batch,
            skip_spawn=no_spawn,
        )

        if batch or no_spawn:
            # Nothing needs the terminal, so show a spinner and replay output afterwards
            buffer = DeferredWriter()
            restore = service.output.redirect(buffer, buffer)
            try:
                with Console(stderr=True).status(f"Creating {name}..."):
                    sess = service.create_session(opts)
            finally:
                restore()
                buffer.flush_to(sys.stdout)
        else:
            sess = service.create_session(opts)

        click.echo(f"✅ Session {sess.id} ready: {sess.path}")

    @cli.command(name='ls')
    @click.option('--json', 'output_json', is_flag=True, help='Output as JSON')
    @click.option('--state', type=click.Choice([s.value for s in SessionState]), default=None,
                  help='Only show sessions in this state')
    @click.pass_context
    @reports_errors
    def list_sessions(ctx, output_json, state):
        """List sessions."""
        sessions = get_service(ctx).list_sessions()
        if state:
            sessions = [s for s in sessions if s.state.value == state]
        sessions.sort(key=lambda s: s.updated_at, reverse=True)

        if output_json:
            click.echo(json.dumps([s.to_dict() for s in sessions], indent=2))
            return

        if not sessions:
            click.echo("No sessions.")
            return

        table = Table(title="Sessions")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Name")
        table.add_column("State", no_wrap=True)
        table.add_column("Strategy", no_wrap=True)
        table.add_column("Path", overflow="fold")
        table.add_column("Updated", no_wrap=True)
        for sess in sessions:
            style = STATE_STYLES.get(sess.state, "white")
            table.add_row(
                sess.id,
                sess.name,
                f"[{style}]{sess.state.value}[/{style}]",
                sess.clone_strategy.value,
                sess.path,
                sess.updated_at.strftime('%Y-%m-%d %H:%M'),
            )
        Console().print(table)

    @cli.command()
    @click.argument('session_id')
    @click.pass_context
    @reports_errors
    def recycle(ctx, session_id):
        """Reset a session's workspace so the next `burrow new` can reuse it."""
        get_service(ctx).recycle_session(session_id)
        click.echo(f"♻️  Recycled {session_id}")

    @cli.command(name='rm')
    @click.argument('session_id')
    @click.option('--yes', '-y', is_flag=True, help='Skip confirmation')
    @click.pass_context
    @reports_errors
    def remove(ctx, session_id, yes):
        """Delete a session and its workspace directory."""
        service = get_service(ctx)
        sess = service.get_session(session_id)
        if not yes:
            click.confirm(f"Delete {sess.id} ({sess.name}) and {sess.path}?", abort=True)
        service.delete_session(session_id)
        click.echo(f"🗑️  Deleted {session_id}")

    @cli.command()
    @click.argument('session_id')
    @click.argument('name')
    @click.pass_context
    @reports_errors
    def rename(ctx, session_id, name):
        """Rename a session. Its directory stays where it is."""
        sess = get_service(ctx).rename_session(session_id, name)
        click.echo(f"✏️  {sess.id} is now '{sess.name}'")

    @cli.command()
    @click.option('--all', 'prune_all', is_flag=True,
                  help='Delete every recycled session, not just those over quota')
    @click.pass_context
    @reports_errors
    def prune(ctx, prune_all):
        """Delete corrupted sessions and recycled sessions over quota."""
        count = get_service(ctx).prune(all=prune_all)
        click.echo(f"Pruned {count} session{'s' if count != 1 else ''}.")

    @cli.command(name='open')
    @click.argument('session_id')
    @click.option('--window', default='', help='Window to select when the tmux session exists')
    @click.option('--background', is_flag=True, help="Don't attach")
    @click.pass_context
    @reports_errors
    def open_session(ctx, session_id, window, background):
        """Open (or create) a session's tmux session."""
        service = get_service(ctx)
        sess = service.get_session(session_id)
        service.open_tmux_session(sess.name, sess.path, sess.remote,
                                  target_window=window, background=background)

    @cli.command(name='log')
    @click.option('--limit', default=20, type=int, help='Number of entries (default: 20)')
    @click.option('--command', 'command_filter', default=None,
                  help='Only this event, e.g. session.recycled')
    @click.option('--level', 'level_filter', default=None, help='Only this level, e.g. WARNING')
    @click.pass_context
    def show_log(ctx, limit, command_filter, level_filter):
        """Show recent lifecycle events."""
        logger = BurrowLogger(ctx.find_root().obj['config'].logs_dir)
        entries = logger.read_logs(limit=limit, command_filter=command_filter,
                                   level_filter=level_filter)
        if not entries:
            click.echo("No log entries.")
            return
        for entry in entries:
            click.echo(f"{entry['timestamp']} {entry['level']:5} [{entry['command']}] {entry['message']}")
