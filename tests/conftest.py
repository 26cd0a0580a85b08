"""Pytest configuration and shared fixtures."""

import json

import pytest
from hypothesis import Verbosity, settings

from sshcluster.binder import MachineBinder
from sshcluster.codec import ProviderConfigCodec
from sshcluster.config import Settings
from sshcluster.context import Context
from sshcluster.exceptions import NotFoundError, RemoteExecutionError
from sshcluster.models.objects import Cluster, Machine, ObjectMeta, Secret
from sshcluster.models.provider import (
    MASTER_ROLE,
    ClusterSpec,
    EtcdMember,
    MachineStatus,
    SSHConfig,
)
from sshcluster.store import ObjectStore
from sshcluster.transport import ClientBuilder, MachineClient

# Configure Hypothesis for property-based testing
settings.register_profile("default", max_examples=100, verbosity=Verbosity.normal)
settings.register_profile("ci", max_examples=1000, verbosity=Verbosity.verbose)
settings.register_profile("dev", max_examples=10, verbosity=Verbosity.verbose)

# Load the default profile
settings.load_profile("default")


class FakeStore(ObjectStore):
    """In-memory object store that records every mutation."""

    def __init__(self, namespace: str = "default"):
        super().__init__(namespace)
        self.objects: dict[tuple[type, str], object] = {}
        self.mutations: list[tuple[str, str, str]] = []
        self.fail_on: dict[tuple[str, str], Exception] = {}

    def _check(self, op: str, kind: type) -> None:
        error = self.fail_on.get((op, kind.__name__))
        if error is not None:
            raise error

    def get(self, kind, name):
        try:
            return self.objects[(kind, name)].model_copy(deep=True)
        except KeyError:
            raise NotFoundError(kind.__name__, name) from None

    def list(self, kind):
        return [obj.model_copy(deep=True) for (k, _), obj in self.objects.items() if k is kind]

    def create(self, obj):
        self._check("create", type(obj))
        self.objects[(type(obj), obj.name)] = obj.model_copy(deep=True)
        self.mutations.append(("create", type(obj).__name__, obj.name))
        return obj

    def update(self, obj):
        self._check("update", type(obj))
        self.get(type(obj), obj.name)
        self.objects[(type(obj), obj.name)] = obj.model_copy(deep=True)
        self.mutations.append(("update", type(obj).__name__, obj.name))
        return obj

    def update_status(self, obj):
        self._check("update_status", type(obj))
        self.get(type(obj), obj.name)
        self.objects[(type(obj), obj.name)] = obj.model_copy(deep=True)
        self.mutations.append(("update_status", type(obj).__name__, obj.name))
        return obj

    def delete(self, kind, name):
        self._check("delete", kind)
        self.get(kind, name)
        del self.objects[(kind, name)]
        self.mutations.append(("delete", kind.__name__, name))


class FakeMachineClient(MachineClient):
    """Machine session that answers commands from scripted responses.

    Every command is appended to the shared ``log`` as ``(host, command)``.
    """

    def __init__(self, host: str, log: list):
        self.host = host
        self.log = log
        self.rules: list[tuple[str, bytes | Exception]] = []
        self.files: dict[str, bytes] = {}
        self.closed = False

    def respond(self, pattern: str, output: bytes | Exception) -> "FakeMachineClient":
        """Answer commands containing ``pattern``; later rules take precedence."""
        self.rules.insert(0, (pattern, output))
        return self

    @property
    def commands(self) -> list[str]:
        return [command for host, command in self.log if host == self.host]

    def run_command(self, command):
        self.log.append((self.host, command))
        for pattern, output in self.rules:
            if pattern in command:
                if isinstance(output, Exception):
                    raise output
                return output, b""
        return b"", b""

    def read_file(self, path):
        self.log.append((self.host, f"read {path}"))
        try:
            return self.files[path]
        except KeyError:
            raise RemoteExecutionError(f"sudo cat {path}", exit_status=1) from None

    def write_file(self, path, mode, data):
        self.log.append((self.host, f"write {path} {mode:o}"))
        self.files[path] = data

    def mkdir_all(self, path, mode):
        self.log.append((self.host, f"mkdir {path}"))

    def move_file(self, src, dst):
        self.log.append((self.host, f"move {src} {dst}"))
        self.files[dst] = self.files.pop(src)

    def close(self):
        self.closed = True


class FakeClientBuilder(ClientBuilder):
    """Hands out one FakeMachineClient per host."""

    def __init__(self):
        super().__init__()
        self.log: list[tuple[str, str]] = []
        self.clients: dict[str, FakeMachineClient] = {}
        self.unreachable: set[str] = set()

    def client(self, host: str) -> FakeMachineClient:
        if host not in self.clients:
            self.clients[host] = FakeMachineClient(host, self.log).respond(
                "kubelet --version", b"Kubernetes v1.10.4\n"
            )
        return self.clients[host]

    def build(self, ssh_config, credential_secret):
        if ssh_config.host in self.unreachable:
            raise RemoteExecutionError(
                f"ssh {ssh_config.host}:{ssh_config.port}", reason="unable to connect: timed out"
            )
        return self.client(ssh_config.host)


def etcd_member(member_id: int, host: str) -> EtcdMember:
    return EtcdMember(
        id=member_id,
        name=host,
        peer_urls=[f"https://{host}:2380"],
        client_urls=[f"https://{host}:2379"],
    )


def etcdadm_info(member: EtcdMember) -> bytes:
    return json.dumps(member.model_dump(by_alias=True)).encode()


@pytest.fixture
def codec():
    return ProviderConfigCodec()


@pytest.fixture
def test_settings(tmp_path):
    return Settings(state_file=tmp_path / "state.yaml")


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def client_builder():
    return FakeClientBuilder()


@pytest.fixture
def ctx(test_settings, store, client_builder, codec):
    return Context(test_settings, store, client_builder, codec)


@pytest.fixture
def cluster(ctx, store, codec):
    """A cluster with an SSH credential and etcd CA, and no machines."""
    cluster = Cluster(metadata=ObjectMeta.new(ctx.settings.cluster_name, "default"))
    codec.put_cluster_spec(ClusterSpec(), cluster)
    store.objects[(Cluster, cluster.name)] = cluster
    credential = Secret(
        metadata=ObjectMeta.new(ctx.settings.ssh_credential_secret, "default"),
        data={"username": b"core", "ssh-privatekey": b"unused by the fake transport"},
    )
    store.objects[(Secret, credential.name)] = credential
    ca = Secret(
        metadata=ObjectMeta.new("etcd-ca", "default"),
        data={"tls.crt": b"CA CERT", "tls.key": b"CA KEY"},
    )
    store.objects[(Secret, ca.name)] = ca
    return cluster


@pytest.fixture
def make_machine(ctx, store, codec, cluster):
    """Factory persisting a bound, bootstrapped machine without touching the transport."""

    def _make(ip: str, role: str = MASTER_ROLE, member: EtcdMember | None = None) -> Machine:
        from sshcluster.machine import MachineLifecycle

        lifecycle = MachineLifecycle(ctx, binder=MachineBinder(store, codec))
        ssh_config = SSHConfig(host=ip, credential_secret=ctx.settings.ssh_credential_secret)
        machine, provisioned = lifecycle.new_pair(ip, role, ssh_config, "eth0")
        codec.put_machine_status(
            MachineStatus(etcd_member=member, bootstrapped=True, kubelet_version="v1.10.4"),
            machine,
        )
        lifecycle.binder.persist(machine, provisioned)
        if member is not None:
            stored = store.objects[(Cluster, cluster.name)]
            status = codec.get_cluster_status(stored)
            status.etcd_members.append(member)
            codec.put_cluster_status(status, stored)
        return machine

    return _make
