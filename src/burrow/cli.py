import logging
import sys

import click

from burrow import __version__
from burrow.config import load_config
from burrow.error_commands import register_error_commands
from burrow.errors import ConfigError
from burrow.events import EventBus
from burrow.executil import Executor
from burrow.git_utils import GitClient
from burrow.logging import BurrowLogger, attach_event_log
from burrow.registry import JsonSessionStore
from burrow.service import SessionService
from burrow.session_commands import register_session_commands


def build_service(config, stdout=None, stderr=None) -> SessionService:
    """Wire the lifecycle engine with the on-disk store, real git and the lifecycle log."""
    executor = Executor()
    bus = EventBus()
    attach_event_log(bus, BurrowLogger(config.logs_dir))
    return SessionService(
        store=JsonSessionStore(config.sessions_file),
        git=GitClient(executor, config.git_path),
        config=config,
        bus=bus,
        executor=executor,
        stdout=stdout or sys.stdout,
        stderr=stderr or sys.stderr,
    )


@click.group()
@click.version_option(version=__version__, prog_name="burrow")
@click.option('--config', 'config_file', type=click.Path(dir_okay=False),
              help='Config file (default: $BURROW_CONFIG or ~/.burrow/config.yaml)')
@click.option('--verbose', '-v', is_flag=True, help='Debug logging to stderr')
@click.pass_context
def cli(ctx, config_file, verbose):
    """Recyclable git workspaces for AI coding-agent sessions."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format='%(levelname)s %(name)s: %(message)s')

    ctx.ensure_object(dict)
    if 'config' not in ctx.obj:
        try:
            ctx.obj['config'] = load_config(config_file)
        except ConfigError as e:
            click.echo(f"❌ {e}", err=True)
            raise click.Abort()
    ctx.obj.setdefault('build_service', build_service)


register_session_commands(cli)
register_error_commands(cli)
