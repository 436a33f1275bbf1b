"""Tests for `burrow errors`."""

import json

import pytest

from burrow.cli import cli
from burrow.error_logging import ErrorLogger, ErrorType


@pytest.fixture
def logger_with_errors(config):
    """Error log with a few sample entries."""
    logger = ErrorLogger(error_file=config.errors_file)
    logger.log_error(
        command="burrow recycle k3x9qa",
        subcommand="recycle",
        error_type=ErrorType.CORRUPTED_REPOSITORY,
        message="session k3x9qa: /repos/widgets-1a2b3c is not a valid git repository",
    )
    logger.log_error(
        command="burrow new task",
        subcommand="new",
        error_type=ErrorType.COMMAND_FAILED,
        message="clone repository: command 'git clone' failed (exit 128)",
    )
    logger.log_error(
        command="burrow rm nope",
        subcommand="rm",
        error_type=ErrorType.SESSION_NOT_FOUND,
        message="get session: session 'nope' not found",
    )
    return logger


def run(cli_runner, config, *args):
    return cli_runner.invoke(cli, ['errors', *args], obj={'config': config})


class TestErrorsCommand:
    def test_no_errors(self, cli_runner, config):
        result = run(cli_runner, config)

        assert result.exit_code == 0
        assert "No errors in the last 7 days." in result.output

    def test_summary(self, cli_runner, config, logger_with_errors):
        result = run(cli_runner, config)

        assert result.exit_code == 0
        assert "Error summary (last 7 days):" in result.output
        assert "CORRUPTED_REPOSITORY" in result.output
        assert "burrow recycle" in result.output
        assert "Recent errors:" in result.output

    def test_type_filter(self, cli_runner, config, logger_with_errors):
        result = run(cli_runner, config, '--type', 'COMMAND_FAILED', '--json')

        data = json.loads(result.output)
        assert data['stats']['total'] == 1
        assert [e['subcommand'] for e in data['recent_errors']] == ['new']

    def test_type_filter_no_match(self, cli_runner, config, logger_with_errors):
        result = run(cli_runner, config, '--type', 'CANCELLED')

        assert "No errors of type 'CANCELLED' in the last 7 days." in result.output

    def test_json(self, cli_runner, config, logger_with_errors):
        result = run(cli_runner, config, '--json', '--limit', '2', '--days', '30')

        data = json.loads(result.output)
        assert data['days'] == 30
        assert data['stats']['total'] == 3
        assert data['stats']['by_command'] == {'recycle': 1, 'new': 1, 'rm': 1}
        assert [e['subcommand'] for e in data['recent_errors']] == ['rm', 'new']

    def test_long_messages_truncated(self, cli_runner, config):
        ErrorLogger(config.errors_file).log_error(
            "burrow new x", "new", ErrorType.INVALID_INPUT, "x" * 100)

        result = run(cli_runner, config)

        assert "x" * 57 + "..." in result.output
        assert "x" * 58 not in result.output
