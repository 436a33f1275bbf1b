"""Error reporting commands for the burrow CLI.

Provides `burrow errors` for viewing error statistics and history.
"""

import json
from datetime import datetime
from typing import Optional

import click

from burrow.error_logging import ErrorLogger


def register_error_commands(cli):
    """Register error commands with the CLI."""

    @cli.command()
    @click.option('--days', default=7, type=int,
                  help='Number of days to include in stats (default: 7)')
    @click.option('--type', 'error_type', default=None,
                  help='Only show one error type (e.g., CORRUPTED_REPOSITORY)')
    @click.option('--json', 'output_json', is_flag=True,
                  help='Output as JSON for programmatic access')
    @click.option('--limit', default=10, type=int,
                  help='Number of recent errors to show (default: 10)')
    @click.pass_context
    def errors(ctx, days: int, error_type: Optional[str], output_json: bool, limit: int):
        """Show error statistics and recent errors.

        \b
        Examples:
            burrow errors                            # Last 7 days
            burrow errors --days 30                  # Last 30 days
            burrow errors --type COMMAND_FAILED      # One error type
            burrow errors --json                     # Machine-readable
        """
        logger = ErrorLogger(ctx.obj['config'].errors_file)
        stats = logger.get_error_stats(days=days)
        recent = logger.get_recent_errors(limit=limit)

        if error_type:
            recent = [e for e in recent if e.get('error_type') == error_type]
            count = stats['by_type'].get(error_type, 0)
            stats = {
                'total': count,
                'by_type': {error_type: count} if count else {},
                'by_command': {},
            }

        if output_json:
            click.echo(json.dumps({'stats': stats, 'recent_errors': recent, 'days': days}, indent=2))
        else:
            _output_human(stats, recent, days, error_type)


def _format_timestamp(ts_str: str) -> str:
    try:
        return datetime.fromisoformat(ts_str.rstrip('Z')).strftime('%Y-%m-%d %H:%M')
    except (ValueError, AttributeError):
        return ts_str[:16] if ts_str else 'unknown'


def _output_human(stats: dict, recent: list, days: int, error_type: Optional[str]) -> None:
    total = stats['total']
    if total == 0:
        if error_type:
            click.echo(f"No errors of type '{error_type}' in the last {days} days.")
        else:
            click.echo(f"No errors in the last {days} days.")
        return

    click.echo(f"Error summary (last {days} days):")
    click.echo()

    for title, counts, prefix in (("By type:", stats.get('by_type', {}), ""),
                                  ("By command:", stats.get('by_command', {}), "burrow ")):
        if not counts:
            continue
        click.echo(title)
        for key, count in sorted(counts.items(), key=lambda x: x[1], reverse=True):
            click.echo(f"  {prefix}{key:25} {count:4} ({count / total * 100:.0f}%)")
        click.echo()

    if recent:
        click.echo("Recent errors:")
        for error in recent:
            message = error.get('message', '')
            if len(message) > 60:
                message = message[:57] + '...'
            click.echo(
                f"  {_format_timestamp(error.get('timestamp', ''))}  "
                f"{error.get('subcommand', 'unknown'):10}  "
                f"{error.get('error_type', 'UNKNOWN'):22}  {message}"
            )
