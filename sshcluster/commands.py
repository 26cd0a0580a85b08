"""Typed commands for the remote tools this package drives.

Each command renders its command line and parses its output in one place, so
the assumptions about a tool's output shape live next to the tool.
"""

import json
import math
import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timedelta
from typing import Generic, TypeVar

from pydantic import ValidationError

from sshcluster.exceptions import UnparseableOutputError
from sshcluster.models.provider import EtcdMember
from sshcluster.transport import MachineClient

R = TypeVar("R")

KUBEADM_JOIN_FIELDS = 7
KUBEADM_TOKEN_FIELD = 4
KUBEADM_CA_HASH_FIELD = 6


class RemoteCommand(ABC, Generic[R]):
    """A command line plus the parser for what it prints."""

    @abstractmethod
    def render(self) -> str:
        pass

    def parse(self, stdout: bytes) -> R:
        return None

    def __str__(self) -> str:
        return self.render()


def run(client: MachineClient, command: RemoteCommand[R]) -> R:
    """Execute ``command`` on ``client`` and return its parsed output."""
    stdout, _ = client.run_command(command.render())
    return command.parse(stdout)


@dataclass(frozen=True)
class BootstrapToken:
    token: str
    ca_hash: str


def parse_join_command(output: str) -> BootstrapToken:
    """Extract the token and CA hash from ``kubeadm token create --print-join-command``.

    The output looks like
    ``kubeadm join <server:port> --token <token> --discovery-token-ca-cert-hash <hash>``.

    Raises:
        UnparseableOutputError: If the output does not have exactly seven fields
    """
    fields = output.split()
    if len(fields) != KUBEADM_JOIN_FIELDS:
        raise UnparseableOutputError(
            f"Unable to parse bootstrap token: expected {KUBEADM_JOIN_FIELDS} fields, "
            f"found {len(fields)}",
            f"output: {output!r}",
        )
    return BootstrapToken(token=fields[KUBEADM_TOKEN_FIELD], ca_hash=fields[KUBEADM_CA_HASH_FIELD])


@dataclass(frozen=True)
class JoinTokenCommand(RemoteCommand[BootstrapToken]):
    kubeadm: str = "/opt/bin/kubeadm"

    def render(self) -> str:
        return f"sudo {self.kubeadm} token create --print-join-command"

    def parse(self, stdout: bytes) -> BootstrapToken:
        return parse_join_command(stdout.decode(errors="replace"))


# etcdadm


@dataclass(frozen=True)
class EtcdadmInfo(RemoteCommand[EtcdMember]):
    etcdadm: str = "/opt/bin/etcdadm"

    def render(self) -> str:
        return f"sudo {self.etcdadm} info"

    def parse(self, stdout: bytes) -> EtcdMember:
        try:
            return EtcdMember.model_validate(json.loads(stdout))
        except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as e:
            raise UnparseableOutputError(
                "Unable to parse etcd member from etcdadm info output",
                f"{e}; output: {stdout!r}",
            )


@dataclass(frozen=True)
class EtcdadmInit(RemoteCommand[None]):
    etcdadm: str = "/opt/bin/etcdadm"
    snapshot: str | None = None

    def render(self) -> str:
        command = f"sudo {self.etcdadm} init"
        if self.snapshot:
            command += f" --snapshot {shlex.quote(self.snapshot)}"
        return command


@dataclass(frozen=True)
class EtcdadmJoin(RemoteCommand[None]):
    endpoint: str
    etcdadm: str = "/opt/bin/etcdadm"

    def render(self) -> str:
        return f"sudo {self.etcdadm} join {shlex.quote(self.endpoint)}"


@dataclass(frozen=True)
class EtcdadmReset(RemoteCommand[None]):
    etcdadm: str = "/opt/bin/etcdadm"
    skip_remove_member: bool = False

    def render(self) -> str:
        command = f"sudo {self.etcdadm} reset"
        if self.skip_remove_member:
            command += " --skip-remove-member"
        return command


# nodeadm


@dataclass(frozen=True)
class NodeadmInit(RemoteCommand[None]):
    config_path: str
    nodeadm: str = "/opt/bin/nodeadm"

    def render(self) -> str:
        return f"sudo {self.nodeadm} init --cfg {shlex.quote(self.config_path)}"


@dataclass(frozen=True)
class NodeadmJoin(RemoteCommand[None]):
    config_path: str
    master: str
    token: str
    ca_hash: str
    nodeadm: str = "/opt/bin/nodeadm"

    def render(self) -> str:
        return (
            f"sudo {self.nodeadm} join --cfg {shlex.quote(self.config_path)} "
            f"--master {shlex.quote(self.master)} --token {shlex.quote(self.token)} "
            f"--cahash {shlex.quote(self.ca_hash)}"
        )


@dataclass(frozen=True)
class NodeadmReset(RemoteCommand[None]):
    nodeadm: str = "/opt/bin/nodeadm"

    def render(self) -> str:
        return f"sudo {self.nodeadm} reset"


# kubectl


@dataclass(frozen=True)
class NodeForHostname(RemoteCommand[str | None]):
    """Find the cluster node whose hostname label matches the machine's own hostname."""

    kubectl: str = "/opt/bin/kubectl"
    kubeconfig: str = "/etc/kubernetes/admin.conf"

    def render(self) -> str:
        return (
            f"sudo {self.kubectl} --kubeconfig={self.kubeconfig} get node "
            "--selector kubernetes.io/hostname=$(hostname -f) -oname"
        )

    def parse(self, stdout: bytes) -> str | None:
        lines = stdout.decode(errors="replace").split()
        if not lines:
            return None
        if len(lines) != 1 or not lines[0].startswith("node/"):
            raise UnparseableOutputError(
                "Unable to identify the cluster node: expected a single 'node/<name>'",
                f"output: {stdout!r}",
            )
        return lines[0]


def go_duration(value: timedelta) -> str:
    """Render a duration for a kubectl flag.

    Sub-second parts are kept as milliseconds, rounded up, because kubectl
    reads a zero timeout as no timeout at all.
    """
    ms = math.ceil(value / timedelta(milliseconds=1))
    if ms % 1000 == 0:
        return f"{ms // 1000}s"
    return f"{ms}ms"


@dataclass(frozen=True)
class DrainNode(RemoteCommand[str]):
    """Drain a node.

    Daemonset pods are ignored. Pods with local data and unmanaged pods are
    not forced out; the drain fails instead.
    """

    node: str
    timeout: timedelta = timedelta(minutes=5)
    grace_period_seconds: int = -1
    kubectl: str = "/opt/bin/kubectl"
    kubeconfig: str = "/etc/kubernetes/admin.conf"

    def render(self) -> str:
        return (
            f"sudo {self.kubectl} --kubeconfig={self.kubeconfig} drain "
            f"--timeout={go_duration(self.timeout)} "
            f"--grace-period={self.grace_period_seconds} --ignore-daemonsets "
            f"{shlex.quote(self.node)}"
        )

    def parse(self, stdout: bytes) -> str:
        return stdout.decode(errors="replace").strip()


@dataclass(frozen=True)
class DeleteNode(RemoteCommand[str]):
    node: str
    kubectl: str = "/opt/bin/kubectl"
    kubeconfig: str = "/etc/kubernetes/admin.conf"

    def render(self) -> str:
        return f"sudo {self.kubectl} --kubeconfig={self.kubeconfig} delete {shlex.quote(self.node)}"

    def parse(self, stdout: bytes) -> str:
        return stdout.decode(errors="replace").strip()


@dataclass(frozen=True)
class KubeletVersion(RemoteCommand[str]):
    kubelet: str = "/opt/bin/kubelet"

    def render(self) -> str:
        return f"{self.kubelet} --version"

    def parse(self, stdout: bytes) -> str:
        # "Kubernetes v1.10.4"
        fields = stdout.decode(errors="replace").split()
        if len(fields) != 2:
            raise UnparseableOutputError(
                "Unable to parse kubelet version", f"output: {stdout!r}"
            )
        return fields[1]


@dataclass(frozen=True)
class RestartService(RemoteCommand[None]):
    service: str

    def render(self) -> str:
        return f"sudo systemctl restart {shlex.quote(self.service)}"
