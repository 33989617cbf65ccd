"""Tests for command execution options."""

import io

import pytest

from hostlink.core.exec_options import (
    REDACTED,
    AllowWinStderr,
    ExecOptions,
    HideCommand,
    HideOutput,
    Output,
    Redact,
    Stdin,
    Sudo,
    group_params,
    truncate_command,
)


@pytest.mark.unit
def test_build_applies_every_option():
    buffer = io.StringIO()

    options = ExecOptions.build(Stdin("data"), Output(buffer), Sudo(), HideOutput(), AllowWinStderr())

    assert options.stdin == "data"
    assert options.output is buffer
    assert options.sudo is True
    assert options.hide_output is True
    assert options.allow_win_stderr is True
    assert options.hide_command is False


@pytest.mark.unit
def test_defaults():
    options = ExecOptions.build()

    assert options.stdin is None
    assert options.output is None
    assert options.redact == []


@pytest.mark.unit
def test_redaction_applies_to_logged_command():
    options = ExecOptions.build(Redact(r"password=\S+"))

    assert options.log_command("login password=hunter2 now") == f"login {REDACTED} now"
    assert options.redact_text("no secrets") == "no secrets"


@pytest.mark.unit
def test_hidden_command_is_not_logged():
    assert ExecOptions.build(HideCommand()).log_command("echo secret") is None


@pytest.mark.unit
def test_write_output_only_with_buffer():
    buffer = io.StringIO()

    ExecOptions().write_output("ignored")
    options = ExecOptions.build(Output(buffer))
    options.write_output("line 1\n")
    options.write_output("")
    options.write_output("line 2\n")

    assert buffer.getvalue() == "line 1\nline 2\n"


@pytest.mark.unit
def test_group_params_separates_options_and_flattens_lists():
    hide = HideOutput()
    sudo = Sudo()

    opts, args = group_params("a", hide, [1, sudo, ["b"]], ("x", "y"))

    assert opts == [hide, sudo]
    assert args == ["a", 1, "b", ("x", "y")]


@pytest.mark.unit
@pytest.mark.parametrize(
    "command, expected",
    [
        ("echo hi", "echo hi"),
        ("line1\nline2", "line1 line2"),
        ("x" * 130, "x" * 117 + "..."),
    ],
)
def test_truncate_command(command, expected):
    assert truncate_command(command) == expected
