"""Per-command context: store, transport and settings handles."""

from sshcluster.codec import ProviderConfigCodec
from sshcluster.config import Settings
from sshcluster.exceptions import NotFoundError
from sshcluster.logging_config import get_logger
from sshcluster.models.objects import Cluster, ProvisionedMachine, Secret
from sshcluster.store import KubernetesObjectStore, ObjectStore
from sshcluster.transport import ClientBuilder, MachineClient

logger = get_logger(__name__)


class Context:
    """Handles shared by every component for the duration of one command.

    Sessions opened through :meth:`client_for` are cached per provisioned
    machine and released by :meth:`close`.
    """

    def __init__(
        self,
        settings: Settings,
        store: ObjectStore,
        client_builder: ClientBuilder,
        codec: ProviderConfigCodec | None = None,
    ):
        self.settings = settings
        self.store = store
        self.client_builder = client_builder
        self.codec = codec or ProviderConfigCodec()
        self._clients: dict[str, MachineClient] = {}

    @classmethod
    def init(cls, settings: Settings) -> "Context":
        """Create the context at command start from settings."""
        store = KubernetesObjectStore.from_kubeconfig(
            settings.kubeconfig, settings.kube_context, settings.namespace
        )
        return cls(settings, store, ClientBuilder(settings.ssh_connect_timeout))

    def get_cluster(self) -> Cluster:
        """Fetch the deployment's cluster object.

        Raises:
            NotFoundError: If the cluster has not been created yet
        """
        try:
            return self.store.get(Cluster, self.settings.cluster_name)
        except NotFoundError as e:
            raise NotFoundError(
                "Cluster",
                self.settings.cluster_name,
                "Create a cluster before managing machines",
            ) from e

    def client_for(self, provisioned: ProvisionedMachine) -> MachineClient:
        """Return a session on the machine, opening it on first use."""
        if provisioned.name in self._clients:
            return self._clients[provisioned.name]

        spec = self.codec.get_provisioned_machine_spec(provisioned)
        ssh_config = spec.ssh_config
        try:
            secret = self.store.get(Secret, ssh_config.credential_secret)
        except NotFoundError as e:
            raise NotFoundError(
                "Secret",
                ssh_config.credential_secret,
                "Create the SSH credential before adding machines",
            ) from e

        client = self.client_builder.build(ssh_config, secret)
        self._clients[provisioned.name] = client
        return client

    def release(self, provisioned_name: str) -> None:
        client = self._clients.pop(provisioned_name, None)
        if client is not None:
            client.close()

    def close(self) -> None:
        for name in list(self._clients):
            self.release(name)

    def __enter__(self) -> "Context":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
