"""Create and delete machines.

Each workflow is fail-fast: a failing step raises and whatever the earlier
steps persisted stays in the store for the operator to inspect.
"""

from datetime import timedelta

from pydantic import ValidationError

from sshcluster import commands
from sshcluster.actuator import Actuator, SSHActuator
from sshcluster.binder import MachineBinder
from sshcluster.context import Context
from sshcluster.exceptions import ConfigurationError, NotFoundError, WouldOrphanNodesError
from sshcluster.logging_config import get_logger
from sshcluster.membership import insert_cluster_etcd_member, remove_cluster_etcd_member
from sshcluster.models.objects import Machine, ObjectMeta, ProvisionedMachine, Secret
from sshcluster.models.provider import (
    MASTER_ROLE,
    NODE_ROLE,
    MachineSpec,
    MachineStatus,
    ProvisionedMachineSpec,
    SSHConfig,
    normalize_role,
)
from sshcluster.transport import MachineClient, install_file

logger = get_logger(__name__)


class MachineLifecycle:
    """Sequences the create and delete workflows for a single machine."""

    def __init__(
        self,
        ctx: Context,
        actuator: Actuator | None = None,
        binder: MachineBinder | None = None,
    ):
        self.ctx = ctx
        self.binder = binder or MachineBinder(ctx.store, ctx.codec)
        self.actuator = actuator or SSHActuator(ctx, self.binder)

    @property
    def store(self):
        return self.ctx.store

    @property
    def settings(self):
        return self.ctx.settings

    def get(self, name: str) -> Machine:
        return self.store.get(Machine, name)

    def list_machines(self) -> list[Machine]:
        return self.store.list(Machine)

    def new_pair(
        self,
        ip: str,
        role: str,
        ssh_config: SSHConfig,
        iface: str | None = None,
    ) -> tuple[Machine, ProvisionedMachine]:
        """Build a bound machine/provisioned machine pair named after ``ip``."""
        namespace = self.settings.namespace
        provisioned = ProvisionedMachine(metadata=ObjectMeta.new(ip, namespace))
        self.ctx.codec.put_provisioned_machine_spec(
            ProvisionedMachineSpec(ssh_config=ssh_config, vip_network_interface=iface),
            provisioned,
        )
        machine = Machine(metadata=ObjectMeta.new(ip, namespace))
        machine.spec.roles = [role]
        self.ctx.codec.put_machine_spec(MachineSpec(roles=[role]), machine)
        self.ctx.codec.put_machine_status(MachineStatus(), machine)
        self.binder.bind(machine, provisioned)
        return machine, provisioned

    def create(
        self,
        ip: str,
        role: str,
        port: int | None = None,
        public_keys: list[str] | None = None,
        iface: str | None = None,
    ) -> Machine:
        """Add a machine to the cluster.

        Raises:
            InvalidRoleError: If ``role`` is not master or node
            NotFoundError: If the cluster, credential or (for nodes) a master is missing
            UnparseableOutputError: If the master's join command output is malformed
            RemoteExecutionError: If a remote step fails
        """
        role = normalize_role(role)
        cluster = self.ctx.get_cluster()
        credential_name = self.settings.ssh_credential_secret
        if not self.store.exists(Secret, credential_name):
            raise NotFoundError(
                "Secret", credential_name, "Create an SSH credential before creating a machine"
            )

        try:
            ssh_config = SSHConfig(
                host=ip,
                port=port or self.settings.default_ssh_port,
                public_keys=public_keys or [],
                credential_secret=credential_name,
            )
            machine, provisioned = self.new_pair(ip, role, ssh_config, iface)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid machine {ip!r}", str(e))
        logger.info(f"[create machine] Creating {role.lower()} machine {ip}")
        self.binder.persist(machine, provisioned)

        master_client = None
        if role == NODE_ROLE:
            _, master_provisioned = self.first_master()
            master_client = self.ctx.client_for(master_provisioned)
            logger.info(f"[create machine] Getting a bootstrap token from master {master_provisioned.name}")
            token = commands.run(master_client, commands.JoinTokenCommand(self.settings.kubeadm_path))
            self._save_bootstrap_token(token)

        logger.info(f"[create machine] Bootstrapping {ip}")
        self.actuator.create(cluster, machine)

        if master_client is not None:
            logger.info(f"[create machine] Writing admin kubeconfig to {ip}")
            self._copy_admin_kubeconfig(master_client, self.ctx.client_for(provisioned))

        status = self.ctx.codec.get_machine_status(machine)
        if status.etcd_member is not None:
            logger.info(f"[create machine] Adding etcd member {status.etcd_member} to cluster status")
            insert_cluster_etcd_member(self.ctx, cluster, status.etcd_member)

        logger.info(f"[create machine] Machine {ip} created successfully")
        return machine

    def delete(
        self,
        name: str,
        drain_timeout: timedelta | None = None,
        drain_grace_period: int | None = None,
    ) -> None:
        """Remove a machine from the cluster.

        Raises:
            NotFoundError: If the machine or cluster does not exist
            DanglingReferenceError: If the machine's provisioned machine is missing
            WouldOrphanNodesError: If this is the last master and nodes remain
            RemoteExecutionError: If a remote step fails
        """
        machine = self.store.get(Machine, name)
        provisioned = self.binder.provisioned_machine_for(machine)
        cluster = self.ctx.get_cluster()

        self.check_not_orphaning_nodes(machine)

        self.drain_and_delete_node(
            machine,
            provisioned,
            drain_timeout if drain_timeout is not None else self.settings.drain_timeout,
            drain_grace_period
            if drain_grace_period is not None
            else self.settings.drain_grace_period_seconds,
        )

        logger.info(f"[delete machine] Tearing down {name}")
        self.actuator.delete(cluster, machine)

        status = self.ctx.codec.get_machine_status(machine)
        if status.etcd_member is not None:
            logger.info(f"[delete machine] Removing etcd member {status.etcd_member} from cluster status")
            remove_cluster_etcd_member(self.ctx, cluster, status.etcd_member)

        self.store.delete(Machine, machine.name)
        self.store.delete(ProvisionedMachine, provisioned.name)
        self.ctx.release(provisioned.name)
        logger.info(f"[delete machine] Machine {name} deleted successfully")

    def check_not_orphaning_nodes(self, machine: Machine) -> None:
        """Refuse to delete the only master while nodes still depend on it."""
        if not machine.is_master:
            return
        machines = self.store.list(Machine)
        masters = sum(1 for m in machines if m.has_role(MASTER_ROLE))
        nodes = sum(1 for m in machines if m.has_role(NODE_ROLE))
        if masters == 1 and nodes > 0:
            raise WouldOrphanNodesError(
                f"Not deleting last master while {nodes} node(s) are in the cluster",
                "Delete the nodes first",
            )

    def drain_and_delete_node(
        self,
        machine: Machine,
        provisioned: ProvisionedMachine,
        timeout: timedelta,
        grace_period: int,
    ) -> None:
        """Drain and delete the cluster node backing ``machine``, if there is one."""
        settings = self.settings
        client = self.ctx.client_for(provisioned)
        node = commands.run(
            client, commands.NodeForHostname(settings.kubectl_path, settings.admin_kubeconfig_path)
        )
        if node is None:
            logger.info(f"[delete machine] No cluster node found for {machine.name}, skipping drain")
            return

        logger.info(f"[delete machine] Draining cluster node {node} for machine {machine.name}")
        output = commands.run(
            client,
            commands.DrainNode(
                node, timeout, grace_period, settings.kubectl_path, settings.admin_kubeconfig_path
            ),
        )
        logger.debug(output)
        logger.info(f"[delete machine] Deleting cluster node {node} for machine {machine.name}")
        output = commands.run(
            client,
            commands.DeleteNode(node, settings.kubectl_path, settings.admin_kubeconfig_path),
        )
        logger.debug(output)

    def first_master(self) -> tuple[Machine, ProvisionedMachine]:
        """Return the first master in store order with its provisioned machine."""
        for machine in self.store.list(Machine):
            if machine.is_master:
                return machine, self.binder.provisioned_machine_for(machine)
        raise NotFoundError(
            "Machine", "<master>", "A node can only join a cluster that has a master"
        )

    def _save_bootstrap_token(self, token: commands.BootstrapToken) -> None:
        secret = Secret(
            metadata=ObjectMeta.new(self.settings.bootstrap_token_secret, self.settings.namespace),
            data={"token": token.token.encode(), "cahash": token.ca_hash.encode()},
        )
        self.store.create_or_update(secret)

    def _copy_admin_kubeconfig(self, master: MachineClient, target: MachineClient) -> None:
        path = self.settings.admin_kubeconfig_path
        kubeconfig = master.read_file(path)
        install_file(target, kubeconfig, path, 0o600, self.settings.remote_tmp_dir)
