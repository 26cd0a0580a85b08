"""Data models for store objects and provider configuration."""

from sshcluster.models.objects import (
    Cluster,
    Machine,
    ObjectMeta,
    ProviderConfig,
    ProvisionedMachine,
    Secret,
)
from sshcluster.models.provider import (
    MASTER_ROLE,
    NODE_ROLE,
    ClusterSpec,
    ClusterStatus,
    EtcdMember,
    MachineSpec,
    MachineStatus,
    ProvisionedMachineSpec,
    SSHConfig,
    VIPConfiguration,
    normalize_role,
)

__all__ = [
    "MASTER_ROLE",
    "NODE_ROLE",
    "Cluster",
    "ClusterSpec",
    "ClusterStatus",
    "EtcdMember",
    "Machine",
    "MachineSpec",
    "MachineStatus",
    "ObjectMeta",
    "ProviderConfig",
    "ProvisionedMachine",
    "ProvisionedMachineSpec",
    "Secret",
    "SSHConfig",
    "VIPConfiguration",
    "normalize_role",
]
