"""Remote bootstrap and teardown of a machine's software stack."""

from abc import ABC, abstractmethod

import yaml

from sshcluster import commands
from sshcluster.binder import MachineBinder
from sshcluster.context import Context
from sshcluster.exceptions import NotFoundError, SSHClusterError
from sshcluster.logging_config import get_logger
from sshcluster.models.objects import Cluster, Machine, Secret
from sshcluster.transport import MachineClient, install_file

logger = get_logger(__name__)

API_SERVER_PORT = 6443


class Actuator(ABC):
    """Performs the remote side of creating and deleting a machine."""

    @abstractmethod
    def create(self, cluster: Cluster, machine: Machine) -> None:
        """Bootstrap the machine and record the result in its status."""

    @abstractmethod
    def delete(self, cluster: Cluster, machine: Machine) -> None:
        """Tear down the machine's remote state."""


class SSHActuator(Actuator):
    """Bootstraps machines with etcdadm and nodeadm over SSH."""

    def __init__(self, ctx: Context, binder: MachineBinder | None = None):
        self.ctx = ctx
        self.binder = binder or MachineBinder(ctx.store, ctx.codec)

    def create(self, cluster: Cluster, machine: Machine) -> None:
        settings = self.ctx.settings
        provisioned = self.binder.provisioned_machine_for(machine)
        client = self.ctx.client_for(provisioned)
        status = self.ctx.codec.get_machine_status(machine)

        self._write_nodeadm_config(client, cluster, provisioned)
        if machine.is_master:
            status.etcd_member = self._bootstrap_etcd(client, cluster)
            logger.info(f"Initializing control plane on {machine.name}")
            commands.run(client, commands.NodeadmInit(settings.nodeadm_config_path, settings.nodeadm_path))
        else:
            token = self._bootstrap_token()
            master = self._api_server_endpoint(cluster, exclude=machine.name)
            logger.info(f"Joining {machine.name} to control plane at {master}")
            commands.run(
                client,
                commands.NodeadmJoin(
                    settings.nodeadm_config_path,
                    master,
                    token["token"],
                    token["cahash"],
                    settings.nodeadm_path,
                ),
            )

        status.kubelet_version = commands.run(client, commands.KubeletVersion(settings.kubelet_path))
        status.bootstrapped = True
        self.ctx.codec.put_machine_status(status, machine)
        self.ctx.store.update_status(machine)

    def delete(self, cluster: Cluster, machine: Machine) -> None:
        settings = self.ctx.settings
        provisioned = self.binder.provisioned_machine_for(machine)
        client = self.ctx.client_for(provisioned)

        logger.info(f"Resetting node software on {machine.name}")
        commands.run(client, commands.NodeadmReset(settings.nodeadm_path))
        if machine.is_master:
            logger.info(f"Removing {machine.name} from etcd cluster")
            commands.run(client, commands.EtcdadmReset(settings.etcdadm_path))

    def _bootstrap_etcd(self, client: MachineClient, cluster: Cluster):
        settings = self.ctx.settings
        members = self.ctx.codec.get_cluster_status(cluster).etcd_members
        endpoints = [url for member in members for url in member.client_urls]
        if endpoints:
            logger.info(f"Joining etcd cluster at {endpoints[0]}")
            commands.run(client, commands.EtcdadmJoin(endpoints[0], settings.etcdadm_path))
        else:
            logger.info("Initializing new etcd cluster")
            commands.run(client, commands.EtcdadmInit(settings.etcdadm_path))
        return commands.run(client, commands.EtcdadmInfo(settings.etcdadm_path))

    def _bootstrap_token(self) -> dict[str, str]:
        name = self.ctx.settings.bootstrap_token_secret
        try:
            secret = self.ctx.store.get(Secret, name)
        except NotFoundError as e:
            raise NotFoundError("Secret", name, "A node needs a bootstrap token to join") from e
        token = {k: v.decode() for k, v in secret.data.items()}
        missing = [key for key in ("token", "cahash") if key not in token]
        if missing:
            raise SSHClusterError(
                f"Bootstrap token secret {name!r} is missing key(s): {', '.join(missing)}"
            )
        return token

    def _api_server_endpoint(self, cluster: Cluster, exclude: str) -> str:
        spec = self.ctx.codec.get_cluster_spec(cluster)
        if spec.vip_configuration:
            return f"{spec.vip_configuration.ip}:{API_SERVER_PORT}"
        for machine in self.ctx.store.list(Machine):
            if machine.is_master and machine.name != exclude:
                provisioned = self.binder.provisioned_machine_for(machine)
                host = self.ctx.codec.get_provisioned_machine_spec(provisioned).ssh_config.host
                return f"{host}:{API_SERVER_PORT}"
        raise SSHClusterError("Unable to find an API server endpoint: cluster has no master")

    def _write_nodeadm_config(self, client: MachineClient, cluster: Cluster, provisioned) -> None:
        spec = self.ctx.codec.get_cluster_spec(cluster)
        interface = self.ctx.codec.get_provisioned_machine_spec(provisioned).vip_network_interface
        config = {"clusterName": cluster.name}
        if spec.vip_configuration:
            config["vipConfiguration"] = {
                "IP": spec.vip_configuration.ip,
                "RouterID": spec.vip_configuration.router_id,
                "NetworkInterface": interface or "",
            }
        install_file(
            client,
            yaml.safe_dump(config, default_flow_style=False).encode(),
            self.ctx.settings.nodeadm_config_path,
            0o600,
            self.ctx.settings.remote_tmp_dir,
        )
