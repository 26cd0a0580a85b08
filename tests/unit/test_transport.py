"""Tests for SSH sessions and file installation."""

from unittest.mock import MagicMock, call

import paramiko
import pytest

from sshcluster import transport
from sshcluster.credentials import RemoteCredential
from sshcluster.exceptions import RemoteExecutionError
from sshcluster.models.provider import SSHConfig
from sshcluster.transport import SSHMachineClient, install_file

CREDENTIAL = RemoteCredential(username="core", private_key="-----BEGIN KEY-----")


@pytest.fixture
def ssh_client(monkeypatch):
    """Replace paramiko's SSHClient and key parsing with mocks."""
    mock_client = MagicMock()
    monkeypatch.setattr(transport.paramiko, "SSHClient", lambda: mock_client)
    monkeypatch.setattr(transport, "load_private_key", lambda pem: "private-key")
    host_key = MagicMock()
    host_key.get_name.return_value = "ssh-ed25519"
    monkeypatch.setattr(transport, "parse_authorized_key", lambda line: host_key)
    return mock_client


def test_known_host_keys_are_enforced(ssh_client):
    config = SSHConfig(
        host="10.0.0.1", port=2222, public_keys=["ssh-ed25519 AAAA"], credential_secret="cred"
    )

    SSHMachineClient.connect(config, CREDENTIAL)

    policy = ssh_client.set_missing_host_key_policy.call_args.args[0]
    assert isinstance(policy, paramiko.RejectPolicy)
    host_keys = ssh_client.get_host_keys.return_value
    assert host_keys.add.call_args.args[:2] == ("[10.0.0.1]:2222", "ssh-ed25519")
    kwargs = ssh_client.connect.call_args.kwargs
    assert kwargs["hostname"] == "10.0.0.1"
    assert kwargs["port"] == 2222
    assert kwargs["username"] == "core"
    assert kwargs["pkey"] == "private-key"


def test_unverified_host_logs_warning(ssh_client, caplog):
    config = SSHConfig(host="10.0.0.1", credential_secret="cred")

    SSHMachineClient.connect(config, CREDENTIAL)

    policy = ssh_client.set_missing_host_key_policy.call_args.args[0]
    assert isinstance(policy, paramiko.AutoAddPolicy)
    assert "Not able to verify SSH identity of 10.0.0.1" in caplog.text


def test_connection_failure(ssh_client):
    ssh_client.connect.side_effect = OSError("No route to host")
    config = SSHConfig(host="10.0.0.1", credential_secret="cred")

    with pytest.raises(RemoteExecutionError, match="unable to connect"):
        SSHMachineClient.connect(config, CREDENTIAL)
    ssh_client.close.assert_called_once()


def exec_result(mock_client, stdout, stderr, status):
    out, err = MagicMock(), MagicMock()
    out.read.return_value = stdout
    err.read.return_value = stderr
    out.channel.recv_exit_status.return_value = status
    mock_client.exec_command.return_value = (MagicMock(), out, err)


def test_run_command_returns_output():
    mock_client = MagicMock()
    exec_result(mock_client, b"ok\n", b"", 0)

    assert SSHMachineClient(mock_client, "h").run_command("true") == (b"ok\n", b"")


def test_run_command_nonzero_exit():
    mock_client = MagicMock()
    exec_result(mock_client, b"partial", b"boom", 2)

    with pytest.raises(RemoteExecutionError) as exc_info:
        SSHMachineClient(mock_client, "h").run_command("false")

    error = exc_info.value
    assert error.command == "false"
    assert error.exit_status == 2
    assert error.stdout == b"partial"
    assert error.stderr == b"boom"


def test_read_file_uses_sudo():
    mock_client = MagicMock()
    exec_result(mock_client, b"data", b"", 0)

    assert SSHMachineClient(mock_client, "h").read_file("/etc/a b") == b"data"
    mock_client.exec_command.assert_called_once_with("sudo cat '/etc/a b'")


def test_write_file_restricts_mode_before_writing():
    mock_client = MagicMock()
    sftp = mock_client.open_sftp.return_value
    remote_file = sftp.open.return_value.__enter__.return_value

    SSHMachineClient(mock_client, "h").write_file("/tmp/ca.key", 0o600, b"secret")

    sftp.open.assert_called_once_with("/tmp/ca.key", "wb")
    assert remote_file.method_calls == [call.chmod(0o600), call.write(b"secret")]
    sftp.close.assert_called_once()


def test_install_file_writes_then_moves(client_builder):
    client = client_builder.client("10.0.0.1")

    install_file(client, b"secret", "/etc/etcd/pki/ca.key", 0o600)

    assert client.commands == [
        "mkdir /etc/etcd/pki",
        "write /tmp/ca.key 600",
        "move /tmp/ca.key /etc/etcd/pki/ca.key",
    ]
    assert client.files == {"/etc/etcd/pki/ca.key": b"secret"}
