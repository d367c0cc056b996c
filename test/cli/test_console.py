from unittest.mock import MagicMock

import pytest

from server_scheduler.cli.console import ServerConsole
from server_scheduler.core.events import EventFactory, EventType
from server_scheduler.error import SchedulerShutdownError


@pytest.fixture
def callback():
    return MagicMock()


@pytest.fixture
def repository(make_server):
    repository = MagicMock()
    server = make_server()
    repository.get_all_servers.return_value = [server]
    repository.get_server.side_effect = lambda sid: server if sid == 1 else None
    return repository


@pytest.fixture
def output():
    return []


@pytest.fixture
def console(callback, repository, fake_controller, output):
    return ServerConsole(
        callback,
        repository,
        EventFactory(fake_controller),
        input_func=MagicMock(),
        output=output.append,
    )


def submitted(callback):
    return [c.args[0] for c in callback.schedule_now.call_args_list]


def test_start_submits_start_event(console, callback):
    console.handle_line("start 1")

    (event,) = submitted(callback)
    assert event.event_type is EventType.START_SERVER
    assert event.server.sid == 1


def test_warn_passes_minutes(console, callback):
    console.handle_line("warn 1 15")

    (event,) = submitted(callback)
    assert event.event_type is EventType.WARN_COMMAND
    assert event.args == ("15",)


def test_cmd_sends_text_as_typed(console, callback):
    console.handle_line('cmd 1 say "hello there"  everyone')

    (event,) = submitted(callback)
    assert event.event_type is EventType.RUN_COMMAND
    assert event.args == ('say "hello there"  everyone',)


def test_cmd_accepts_unbalanced_quotes(console, callback, output):
    console.handle_line("cmd 1 say it's time")

    (event,) = submitted(callback)
    assert event.args == ("say it's time",)
    assert not any("Could not parse" in line for line in output)


def test_other_commands_reject_unbalanced_quotes(console, callback, output):
    console.handle_line("exec 1 '/srv/start.sh")

    callback.schedule_now.assert_not_called()
    assert "Could not parse input" in output[-1]


def test_exec_passes_path_and_args(console, callback, start_file):
    console.handle_line(f"exec 1 {start_file} --backup")

    (event,) = submitted(callback)
    assert event.event_type is EventType.EXECUTE_FILE
    assert event.args == (start_file, "--backup")


def test_unknown_server(console, callback, output):
    console.handle_line("stop 7")

    callback.schedule_now.assert_not_called()
    assert "No server with id 7" in output[-1]


@pytest.mark.parametrize("line", ["stop", "stop abc", "warn 1", "cmd 1", "exec 1"])
def test_bad_arguments_are_reported(console, callback, output, line):
    console.handle_line(line)

    callback.schedule_now.assert_not_called()
    assert "Invalid arguments" in output[-1]


def test_unknown_command(console, output):
    console.handle_line("reboot")
    assert "Unknown command 'reboot'" in output[-1]


def test_scheduler_errors_are_printed(console, callback, output):
    callback.schedule_now.side_effect = SchedulerShutdownError("shut down")

    console.handle_line("stop 1")

    assert "shut down" in output[-1]


def test_data_errors_are_printed(console, callback, output, tmp_path):
    console.handle_line(f"exec 1 {tmp_path / 'missing.sh'}")

    callback.schedule_now.assert_not_called()
    assert "does not exist" in output[-1]


def test_servers_lists_servers(console, output):
    console.handle_line("servers")
    assert "minecraft_survival-1" in output[-1]


def test_exit_and_kill(console, callback):
    console.handle_line("quit")
    callback.shutdown.assert_called_once_with()
    assert console.stopped

    console.handle_line("kill")
    callback.shutdown_now.assert_called_once_with()


def test_run_until_exit(console, callback):
    console._input.side_effect = ["", "help", "exit", "never read"]

    console.run()

    callback.shutdown.assert_called_once_with()
    assert console._input.call_count == 3


def test_eof_behaves_like_exit(console, callback):
    console._input.side_effect = EOFError

    console.run()

    callback.shutdown.assert_called_once_with()
    assert console.stopped
