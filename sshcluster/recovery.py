"""Rebuild the etcd cluster from a snapshot.

The masters are taken in store order. The first one becomes the seed: it is
initialized from the snapshot and every other master joins it, one at a time.
Every step before the kubelet restarts is fatal and nothing is rolled back;
an interrupted recovery has to be re-run or finished by hand.
"""

from pathlib import Path

from sshcluster import commands
from sshcluster.binder import MachineBinder
from sshcluster.context import Context
from sshcluster.exceptions import NotFoundError, SSHClusterError
from sshcluster.logging_config import get_logger
from sshcluster.membership import (
    insert_cluster_etcd_member,
    remove_cluster_etcd_member,
    update_machine_etcd_member,
)
from sshcluster.models.objects import Cluster, Machine, Secret
from sshcluster.saga import Saga, SagaReport
from sshcluster.transport import MachineClient, install_file

logger = get_logger(__name__)

CA_CERT_KEY = "tls.crt"
CA_KEY_KEY = "tls.key"


class EtcdRecovery:
    """Disaster recovery of the etcd quorum across all masters."""

    name = "recover etcd"

    def __init__(self, ctx: Context, binder: MachineBinder | None = None):
        self.ctx = ctx
        self.binder = binder or MachineBinder(ctx.store, ctx.codec)
        self.saga: Saga | None = None
        self._clients: dict[str, MachineClient] = {}
        self._cluster: Cluster | None = None
        self._ca_secret: Secret | None = None
        self._snapshot: bytes = b""
        self._seed = None

    def masters(self) -> list[Machine]:
        masters = [m for m in self.ctx.store.list(Machine) if m.is_master]
        for master in masters:
            logger.info(f"[{self.name}] Found master {master.name!r}")
        return masters

    def recover(self, snapshot_path: str | Path) -> SagaReport:
        """Recover etcd on every master from the snapshot at ``snapshot_path``.

        Returns:
            The report of every step that ran

        Raises:
            NotFoundError: If the cluster or its etcd CA secret is missing
            SSHClusterError: If any fatal step fails; see ``self.saga.report``
        """
        masters = self.masters()
        if not masters:
            logger.info(f"[{self.name}] No masters found, nothing to recover")
            return SagaReport(self.name)

        self._cluster = self.ctx.get_cluster()
        self._ca_secret = self._etcd_ca_secret()
        self._snapshot = self._read_snapshot(Path(snapshot_path))

        self.saga = self.plan(masters)
        report = self.saga.run()
        logger.info(f"[{self.name}] Recovered etcd successfully ({report.summary()})")
        return report

    def plan(self, masters: list[Machine]) -> Saga:
        """Lay out the recovery steps for ``masters``; the first master is the seed."""
        seed, others = masters[0], masters[1:]
        saga = Saga(self.name)
        for master in masters:
            saga.add("connect", lambda m=master: self._connect(m), master.name)
        for master in masters:
            saga.add("reset etcd", lambda m=master: self._reset(m), master.name)
        for master in masters:
            saga.add("write etcd CA", lambda m=master: self._write_ca(m), master.name)
        saga.add("initialize from snapshot", lambda: self._initialize_seed(seed), seed.name)
        for master in others:
            saga.add("join etcd", lambda m=master: self._join(m), master.name)
        for master in masters:
            saga.add(
                "restart kubelet", lambda m=master: self._restart_kubelet(m), master.name, best_effort=True
            )
        return saga

    def _etcd_ca_secret(self) -> Secret:
        name = self.ctx.codec.get_cluster_spec(self._cluster).etcd_ca_secret
        try:
            return self.ctx.store.get(Secret, name)
        except NotFoundError as e:
            raise NotFoundError("Secret", name, "The etcd CA secret is needed to recover etcd") from e

    @staticmethod
    def _read_snapshot(path: Path) -> bytes:
        try:
            return path.read_bytes()
        except OSError as e:
            raise SSHClusterError(f"Unable to read etcd snapshot {str(path)!r}: {e}")

    def _connect(self, machine: Machine) -> None:
        provisioned = self.binder.provisioned_machine_for(machine)
        self._clients[machine.name] = self.ctx.client_for(provisioned)

    def _reset(self, machine: Machine) -> None:
        # Peers are unreachable as a quorum, so member removal would hang
        logger.info(f"[{self.name}] Resetting etcd on {machine.name}")
        commands.run(
            self._clients[machine.name],
            commands.EtcdadmReset(self.ctx.settings.etcdadm_path, skip_remove_member=True),
        )
        member = self.ctx.codec.get_machine_status(machine).etcd_member
        if member is not None:
            self._cluster = remove_cluster_etcd_member(self.ctx, self._cluster, member)
            update_machine_etcd_member(self.ctx, machine, None)

    def _write_ca(self, machine: Machine) -> None:
        settings = self.ctx.settings
        client = self._clients[machine.name]
        for key, path, mode in (
            (CA_CERT_KEY, settings.etcd_ca_cert_path, 0o644),
            (CA_KEY_KEY, settings.etcd_ca_key_path, 0o600),
        ):
            data = self._ca_secret.data.get(key)
            if data is None:
                raise SSHClusterError(f"Did not find key {key!r} in secret {self._ca_secret.name!r}")
            install_file(client, data, path, mode, settings.remote_tmp_dir)

    def _initialize_seed(self, machine: Machine) -> None:
        settings = self.ctx.settings
        client = self._clients[machine.name]
        logger.info(f"[{self.name}] Initializing new etcd cluster from snapshot on {machine.name}")
        client.write_file(settings.etcd_snapshot_remote_path, 0o600, self._snapshot)
        commands.run(
            client,
            commands.EtcdadmInit(settings.etcdadm_path, snapshot=settings.etcd_snapshot_remote_path),
        )
        self._seed = self._record_member(machine)
        if not self._seed.client_urls:
            raise SSHClusterError(
                "Unable to proceed: etcd member of seed master has no client URLs",
                f"seed member: {self._seed}",
            )

    def _join(self, machine: Machine) -> None:
        endpoint = self._seed.client_urls[0]
        logger.info(f"[{self.name}] Joining {machine.name} to new etcd cluster at {endpoint}")
        commands.run(
            self._clients[machine.name],
            commands.EtcdadmJoin(endpoint, self.ctx.settings.etcdadm_path),
        )
        self._record_member(machine)

    def _record_member(self, machine: Machine):
        member = commands.run(
            self._clients[machine.name], commands.EtcdadmInfo(self.ctx.settings.etcdadm_path)
        )
        update_machine_etcd_member(self.ctx, machine, member)
        self._cluster = insert_cluster_etcd_member(self.ctx, self._cluster, member)
        return member

    def _restart_kubelet(self, machine: Machine) -> None:
        logger.info(f"[{self.name}] Restarting kubelet on {machine.name} to restart the API server")
        commands.run(self._clients[machine.name], commands.RestartService("kubelet"))
