"""SSH executor over a mocked fabric Connection."""

import threading
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from wgondemand.cancel import CancelToken
from wgondemand.errors import ProvisionCancelled, RemoteCommandError
from wgondemand.ssh import SSHExecutor, generate_ssh_key


def fabric_result(stdout="", stderr="", exited=0):
    return SimpleNamespace(stdout=stdout, stderr=stderr, exited=exited, failed=exited != 0)


@pytest.fixture
def key():
    return generate_ssh_key("wg1")


def test_generated_key_is_openssh_ed25519(key):
    kind, body, comment = key.public_key.split(" ")
    assert kind == "ssh-ed25519"
    assert comment == "wg1"
    assert key.pkey.get_base64() == body


def test_keys_are_fresh():
    assert generate_ssh_key().public_key != generate_ssh_key().public_key


def test_run_wraps_script_in_bash(key):
    with patch("wgondemand.ssh.Connection") as connection:
        conn = connection.return_value
        conn.run.return_value = fabric_result(stdout="1\n")
        result = SSHExecutor(key).run("203.0.113.5", "echo 'hi'", CancelToken())

    assert result.stdout == "1\n"
    connection.assert_called_once()
    assert connection.call_args.args == ("203.0.113.5",)
    assert connection.call_args.kwargs["user"] == "root"
    assert connection.call_args.kwargs["connect_kwargs"]["pkey"] is key.pkey
    cmd = conn.run.call_args.args[0]
    assert cmd == "bash -c 'echo '\\''hi'\\'''"
    conn.client.get_host_keys.return_value.clear.assert_called_once()
    conn.close.assert_called_once()


def test_nonzero_exit_raises_with_output(key):
    with patch("wgondemand.ssh.Connection") as connection:
        connection.return_value.run.return_value = fabric_result("out", "err", exited=3)
        with pytest.raises(RemoteCommandError) as exc_info:
            SSHExecutor(key).run("203.0.113.5", "exit 3", CancelToken())
    assert (exc_info.value.stdout, exc_info.value.stderr) == ("out", "err")
    assert exc_info.value.exit_code == 3


def test_cancel_abandons_running_command(key):
    cancel = CancelToken()
    release = threading.Event()

    def hang(*args, **kwargs):
        cancel.cancel()
        release.wait(5)
        return fabric_result()

    try:
        with patch("wgondemand.ssh.Connection") as connection:
            connection.return_value.run.side_effect = hang
            with pytest.raises(ProvisionCancelled):
                SSHExecutor(key).run("203.0.113.5", "sleep 600", cancel)
            connection.return_value.close.assert_called_once()
    finally:
        release.set()


def test_cancelled_before_connect(key):
    cancel = CancelToken()
    cancel.cancel()
    with patch("wgondemand.ssh.Connection") as connection:
        with pytest.raises(ProvisionCancelled):
            SSHExecutor(key).run("203.0.113.5", "true", cancel)
    connection.assert_not_called()
