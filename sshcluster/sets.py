"""De-duplicated set of etcd members keyed by member id."""

from collections.abc import Iterator

from sshcluster.models.provider import EtcdMember


class EtcdMemberSet:
    """Set of etcd members with identity by ``EtcdMember.id``.

    Inserting a member whose id is already present replaces the stored
    record; deleting only looks at the id. ``list()`` is sorted by id because
    its result is persisted verbatim in the cluster status.
    """

    def __init__(self, *members: EtcdMember):
        self._members: dict[int, EtcdMember] = {}
        for member in members:
            self.insert(member)

    def insert(self, *members: EtcdMember) -> None:
        for member in members:
            self._members[member.id] = member

    def delete(self, *members: EtcdMember) -> None:
        for member in members:
            self._members.pop(member.id, None)

    def has(self, member: EtcdMember) -> bool:
        return member.id in self._members

    def list(self) -> list[EtcdMember]:
        return [self._members[member_id] for member_id in sorted(self._members)]

    def __len__(self) -> int:
        return len(self._members)

    def __iter__(self) -> Iterator[EtcdMember]:
        return iter(self.list())

    def __contains__(self, member: object) -> bool:
        return isinstance(member, EtcdMember) and self.has(member)
