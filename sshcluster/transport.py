"""Remote command execution and file transfer."""

import posixpath
import shlex
from abc import ABC, abstractmethod

import paramiko

from sshcluster.credentials import (
    RemoteCredential,
    credential_from_secret,
    load_private_key,
    parse_authorized_key,
)
from sshcluster.exceptions import RemoteExecutionError
from sshcluster.logging_config import get_logger
from sshcluster.models.objects import Secret
from sshcluster.models.provider import SSHConfig

logger = get_logger(__name__)


class MachineClient(ABC):
    """A session on one machine."""

    host: str

    @abstractmethod
    def run_command(self, command: str) -> tuple[bytes, bytes]:
        """Run a command and return its stdout and stderr.

        Raises:
            RemoteExecutionError: If the command cannot be run or exits non-zero
        """

    @abstractmethod
    def read_file(self, path: str) -> bytes:
        pass

    @abstractmethod
    def write_file(self, path: str, mode: int, data: bytes) -> None:
        pass

    @abstractmethod
    def mkdir_all(self, path: str, mode: int) -> None:
        pass

    @abstractmethod
    def move_file(self, src: str, dst: str) -> None:
        pass

    def close(self) -> None:
        pass


class SSHMachineClient(MachineClient):
    """Machine session over SSH. Privileged operations go through sudo."""

    def __init__(self, client: paramiko.SSHClient, host: str):
        self.client = client
        self.host = host

    @classmethod
    def connect(
        cls,
        ssh_config: SSHConfig,
        credential: RemoteCredential,
        timeout: float = 30.0,
    ) -> "SSHMachineClient":
        """Open a session, verifying the host key when public keys are configured.

        Raises:
            RemoteExecutionError: If the connection cannot be established
        """
        client = paramiko.SSHClient()
        if ssh_config.public_keys:
            host_entry = (
                ssh_config.host if ssh_config.port == 22 else f"[{ssh_config.host}]:{ssh_config.port}"
            )
            host_keys = client.get_host_keys()
            for line in ssh_config.public_keys:
                key = parse_authorized_key(line)
                host_keys.add(host_entry, key.get_name(), key)
            client.set_missing_host_key_policy(paramiko.RejectPolicy())
        else:
            logger.warning(
                f"Not able to verify SSH identity of {ssh_config.host}: "
                "no public keys given. Continuing..."
            )
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        try:
            client.connect(
                hostname=ssh_config.host,
                port=ssh_config.port,
                username=credential.username,
                pkey=load_private_key(credential.private_key),
                timeout=timeout,
                allow_agent=False,
                look_for_keys=False,
            )
        except (paramiko.SSHException, OSError) as e:
            client.close()
            raise RemoteExecutionError(
                f"ssh {credential.username}@{ssh_config.host}:{ssh_config.port}",
                reason=f"unable to connect: {e}",
            )
        logger.debug(f"Connected to {ssh_config.host}:{ssh_config.port}")
        return cls(client, ssh_config.host)

    def run_command(self, command: str) -> tuple[bytes, bytes]:
        logger.debug(f"[{self.host}] running: {command}")
        try:
            _, stdout, stderr = self.client.exec_command(command)
            out = stdout.read()
            err = stderr.read()
            exit_status = stdout.channel.recv_exit_status()
        except (paramiko.SSHException, OSError) as e:
            raise RemoteExecutionError(command, reason=str(e))
        if exit_status != 0:
            raise RemoteExecutionError(command, out, err, exit_status)
        return out, err

    def read_file(self, path: str) -> bytes:
        stdout, _ = self.run_command(f"sudo cat {shlex.quote(path)}")
        return stdout

    def write_file(self, path: str, mode: int, data: bytes) -> None:
        logger.debug(f"[{self.host}] writing {len(data)} bytes to {path}")
        try:
            sftp = self.client.open_sftp()
            try:
                with sftp.open(path, "wb") as f:
                    f.chmod(mode)
                    f.write(data)
            finally:
                sftp.close()
        except (paramiko.SSHException, OSError) as e:
            raise RemoteExecutionError(f"sftp put {path}", reason=str(e))

    def mkdir_all(self, path: str, mode: int) -> None:
        quoted = shlex.quote(path)
        self.run_command(f"sudo mkdir -p {quoted} && sudo chmod {mode:o} {quoted}")

    def move_file(self, src: str, dst: str) -> None:
        self.run_command(f"sudo mv {shlex.quote(src)} {shlex.quote(dst)}")

    def close(self) -> None:
        self.client.close()


def install_file(
    client: MachineClient, data: bytes, path: str, mode: int, tmp_dir: str = "/tmp"
) -> None:
    """Write a file to a path the session user may not write to directly.

    The data goes to ``tmp_dir`` first and is then moved into place.
    """
    client.mkdir_all(posixpath.dirname(path), 0o755)
    tmp_path = posixpath.join(tmp_dir, posixpath.basename(path))
    client.write_file(tmp_path, mode, data)
    client.move_file(tmp_path, path)


class ClientBuilder:
    """Opens machine sessions from SSH configs and credential secrets."""

    def __init__(self, connect_timeout: float = 30.0):
        self.connect_timeout = connect_timeout

    def build(self, ssh_config: SSHConfig, credential_secret: Secret) -> MachineClient:
        credential = credential_from_secret(credential_secret)
        return SSHMachineClient.connect(ssh_config, credential, timeout=self.connect_timeout)
