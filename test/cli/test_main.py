from datetime import time
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from server_scheduler.__main__ import cli, main
from server_scheduler.db.repository import EventRow
from server_scheduler.error import SessionControllerError


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def app_context(make_server):
    app_context = MagicMock()
    server = make_server()
    app_context.repository.get_all_servers.return_value = [server]
    app_context.repository.get_server.side_effect = (
        lambda sid: server if sid == 1 else None
    )
    app_context.repository.get_event_rows.return_value = [
        EventRow(1, 4, time(17, 55), ["5"]),
        EventRow(2, 3, time(18, 0), []),
        EventRow(3, 42, time(18, 5), []),
    ]
    return app_context


def test_servers_command(runner, app_context):
    result = runner.invoke(cli, ["servers"], obj={"app_context": app_context})

    assert result.exit_code == 0
    assert "minecraft_survival-1" in result.output


def test_events_command(runner, app_context):
    result = runner.invoke(
        cli, ["events", "--server", "1"], obj={"app_context": app_context}
    )

    assert result.exit_code == 0
    assert "WARN_COMMAND" in result.output
    assert "STOP_COMMAND" in result.output
    assert "UNKNOWN(42)" in result.output


def test_events_command_unknown_server(runner, app_context):
    result = runner.invoke(
        cli, ["events", "--server", "9"], obj={"app_context": app_context}
    )

    assert result.exit_code == 1
    assert "No server with id 9" in result.output


def test_init_db_command(runner, app_context):
    result = runner.invoke(cli, ["init-db"], obj={"app_context": app_context})

    assert result.exit_code == 0
    app_context.repository.seed_event_types.assert_called_once_with()


@patch("server_scheduler.__main__.ScheduleController")
def test_run_command(mock_controller_class, runner, app_context):
    result = runner.invoke(
        cli, ["run", "--no-console"], obj={"app_context": app_context}
    )

    assert result.exit_code == 0
    mock_controller_class.assert_called_once_with(
        app_context, run_console=False, console_only=False
    )
    mock_controller_class.return_value.start.assert_called_once_with()
    assert "Scheduler stopped." in result.output


@patch("server_scheduler.__main__.ScheduleController")
def test_run_command_propagates_launch_failure(mock_controller_class, runner, app_context):
    error = SessionControllerError("Failed to launch 'screen'")
    mock_controller_class.return_value.start.side_effect = error

    result = runner.invoke(
        cli, ["run", "--no-console"], obj={"app_context": app_context}
    )

    assert result.exception is error
    assert "Scheduler stopped." not in result.output


@patch("server_scheduler.__main__.log_separator")
@patch("server_scheduler.__main__.setup_logging")
def test_group_builds_app_context(mock_setup_logging, mock_log_separator, runner, db):
    result = runner.invoke(cli, ["servers"])

    mock_setup_logging.assert_called_once()
    mock_log_separator.assert_called_once()

    assert result.exit_code == 0
    assert "No servers configured." in result.output


@patch("server_scheduler.__main__.Settings", side_effect=RuntimeError("broken"))
def test_startup_failure_exits(mock_settings, runner):
    result = runner.invoke(cli, ["servers"])

    assert result.exit_code == 1
    assert "CRITICAL STARTUP ERROR: broken" in result.output


@patch("server_scheduler.__main__.cli", side_effect=ValueError("unexpected"))
def test_main_reports_fatal_errors(mock_cli, capsys):
    with pytest.raises(SystemExit) as excinfo:
        main()

    assert excinfo.value.code == 1
    assert "FATAL UNHANDLED ERROR: ValueError: unexpected" in capsys.readouterr().out
