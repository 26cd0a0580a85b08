"""Keep etcd membership in cluster and machine status in step with etcd.

Every helper here decodes the status it changes, applies the change, encodes
it again and writes it back to the store; the change is not complete until
the write-back succeeds.
"""

from sshcluster.context import Context
from sshcluster.logging_config import get_logger
from sshcluster.models.objects import Cluster, Machine
from sshcluster.models.provider import EtcdMember
from sshcluster.sets import EtcdMemberSet

logger = get_logger(__name__)


def insert_cluster_etcd_member(ctx: Context, cluster: Cluster, member: EtcdMember) -> Cluster:
    """Add ``member`` to the cluster's etcd member set and persist the cluster status."""
    status = ctx.codec.get_cluster_status(cluster)
    members = EtcdMemberSet(*status.etcd_members)
    members.insert(member)
    status.etcd_members = members.list()
    ctx.codec.put_cluster_status(status, cluster)
    logger.debug(f"Inserting etcd member {member} into cluster {cluster.name!r} status")
    return ctx.store.update_status(cluster)


def remove_cluster_etcd_member(ctx: Context, cluster: Cluster, member: EtcdMember) -> Cluster:
    """Remove ``member`` (by id) from the cluster's etcd member set and persist."""
    status = ctx.codec.get_cluster_status(cluster)
    members = EtcdMemberSet(*status.etcd_members)
    members.delete(member)
    status.etcd_members = members.list()
    ctx.codec.put_cluster_status(status, cluster)
    logger.debug(f"Removing etcd member {member} from cluster {cluster.name!r} status")
    return ctx.store.update_status(cluster)


def update_machine_etcd_member(
    ctx: Context, machine: Machine, member: EtcdMember | None
) -> Machine:
    """Record ``member`` (or its absence) in the machine status and persist."""
    status = ctx.codec.get_machine_status(machine)
    status.etcd_member = member
    ctx.codec.put_machine_status(status, machine)
    return ctx.store.update_status(machine)
