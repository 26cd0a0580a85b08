"""Typed provider configuration carried inside generic store objects."""

from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from sshcluster.exceptions import InvalidRoleError

API_VERSION = "sshprovider.sshcluster.io/v1alpha1"

MASTER_ROLE = "Master"
NODE_ROLE = "Node"
ROLES = (MASTER_ROLE, NODE_ROLE)


def normalize_role(role: str) -> str:
    """Map user input such as ``master`` or ``NODE`` to a machine role.

    Raises:
        InvalidRoleError: If the role is neither master nor node
    """
    normalized = (role or "").strip().title()
    if normalized not in ROLES:
        raise InvalidRoleError(
            f"Machine role {role!r} is not supported, must be 'master' or 'node'"
        )
    return normalized


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProviderModel(CamelModel):
    """Base for typed provider shapes. ``kind`` identifies the shape on the wire."""

    api_version: ClassVar[str] = API_VERSION
    kind: ClassVar[str]


class EtcdMember(BaseModel):
    """One etcd cluster participant, as reported by ``etcdadm info``.

    Two members with the same ``id`` are the same participant, whatever
    their URLs say.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: int = Field(alias="ID")
    name: str = ""
    peer_urls: list[str] = Field(default_factory=list, alias="peerURLs")
    client_urls: list[str] = Field(default_factory=list, alias="clientURLs")

    def __str__(self) -> str:
        return f"{self.name or '<unnamed>'} ({self.id:x})"


class VIPConfiguration(CamelModel):
    ip: str
    router_id: int = Field(ge=0, le=255)


class SSHConfig(CamelModel):
    """How to reach a machine over SSH."""

    host: str
    port: int = Field(default=22, ge=1, le=65535)
    public_keys: list[str] = Field(default_factory=list)
    credential_secret: str

    @field_validator("host", "credential_secret")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        """Validate host and credential secret are set."""
        if not v:
            raise ValueError("cannot be empty")
        return v


class ClusterSpec(ProviderModel):
    kind: ClassVar[str] = "ClusterSpec"

    etcd_ca_secret: str = "etcd-ca"
    vip_configuration: VIPConfiguration | None = None


class ClusterStatus(ProviderModel):
    kind: ClassVar[str] = "ClusterStatus"

    etcd_members: list[EtcdMember] = Field(default_factory=list)


class MachineSpec(ProviderModel):
    kind: ClassVar[str] = "MachineSpec"

    roles: list[str] = Field(default_factory=list)
    provisioned_machine_name: str | None = None

    @field_validator("roles")
    @classmethod
    def validate_roles(cls, v: list[str]) -> list[str]:
        """Validate every role is a known machine role."""
        for role in v:
            if role not in ROLES:
                raise ValueError(f"role must be one of {list(ROLES)}, got {role!r}")
        return v


class MachineStatus(ProviderModel):
    kind: ClassVar[str] = "MachineStatus"

    etcd_member: EtcdMember | None = None
    bootstrapped: bool = False
    kubelet_version: str | None = None


class ProvisionedMachineSpec(ProviderModel):
    kind: ClassVar[str] = "ProvisionedMachineSpec"

    ssh_config: SSHConfig
    vip_network_interface: str | None = None
    machine_name: str | None = None
