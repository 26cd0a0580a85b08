"""Generic objects held by the remote object store.

The store understands metadata, roles and opaque provider payloads only; the
typed provider configuration travels inside ``ProviderConfig.value`` and is
interpreted by :mod:`sshcluster.codec`.
"""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from sshcluster.models.provider import MASTER_ROLE, NODE_ROLE


class StoreModel(BaseModel):
    """Base for store objects, serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ObjectMeta(StoreModel):
    """Name and bookkeeping shared by all store objects."""

    name: str
    namespace: str = "default"
    creation_timestamp: datetime | None = None
    resource_version: str | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate name is not empty."""
        if not v:
            raise ValueError("name cannot be empty")
        return v

    @classmethod
    def new(cls, name: str, namespace: str) -> "ObjectMeta":
        """Metadata for an object about to be created."""
        return cls(name=name, namespace=namespace, creation_timestamp=datetime.now(timezone.utc))


class ProviderConfig(StoreModel):
    """Opaque provider payload; the store never looks inside ``value``."""

    value: bytes | None = None


class ClusterObjectSpec(StoreModel):
    provider_spec: ProviderConfig = Field(default_factory=ProviderConfig)


class ClusterObjectStatus(StoreModel):
    provider_status: ProviderConfig | None = None


class Cluster(StoreModel):
    """Top-level cluster object; its status holds the etcd member set."""

    metadata: ObjectMeta
    spec: ClusterObjectSpec = Field(default_factory=ClusterObjectSpec)
    status: ClusterObjectStatus = Field(default_factory=ClusterObjectStatus)

    @property
    def name(self) -> str:
        return self.metadata.name


class MachineObjectSpec(StoreModel):
    roles: list[str] = Field(default_factory=list)
    provider_spec: ProviderConfig = Field(default_factory=ProviderConfig)


class MachineObjectStatus(StoreModel):
    provider_status: ProviderConfig | None = None


class Machine(StoreModel):
    """Logical cluster member. Its name is the address it is reached at."""

    metadata: ObjectMeta
    spec: MachineObjectSpec = Field(default_factory=MachineObjectSpec)
    status: MachineObjectStatus = Field(default_factory=MachineObjectStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    def has_role(self, role: str) -> bool:
        return role in self.spec.roles

    @property
    def is_master(self) -> bool:
        return self.has_role(MASTER_ROLE)

    @property
    def is_node(self) -> bool:
        return self.has_role(NODE_ROLE)


class ProvisionedMachineObjectSpec(StoreModel):
    provider_spec: ProviderConfig = Field(default_factory=ProviderConfig)


class ProvisionedMachine(StoreModel):
    """Provisioning counterpart of a Machine: how to reach and set it up."""

    metadata: ObjectMeta
    spec: ProvisionedMachineObjectSpec = Field(default_factory=ProvisionedMachineObjectSpec)

    @property
    def name(self) -> str:
        return self.metadata.name


class Secret(StoreModel):
    """Opaque credential object."""

    metadata: ObjectMeta
    type: str = "Opaque"
    data: dict[str, bytes] = Field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.metadata.name
