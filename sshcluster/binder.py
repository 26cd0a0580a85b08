"""Bidirectional binding between a Machine and its ProvisionedMachine.

Each side stores the other's name inside its provider spec. Neither side is
trusted on its own: resolution checks that the counterpart points back.
"""

from sshcluster.codec import ProviderConfigCodec
from sshcluster.exceptions import DanglingReferenceError, EncodingError, NotFoundError
from sshcluster.logging_config import get_logger
from sshcluster.models.objects import Machine, ProvisionedMachine
from sshcluster.store import ObjectStore

logger = get_logger(__name__)


class MachineBinder:
    """Creates, persists and resolves machine/provisioned machine pairs."""

    def __init__(self, store: ObjectStore, codec: ProviderConfigCodec):
        self.store = store
        self.codec = codec

    def bind(self, machine: Machine, provisioned: ProvisionedMachine) -> None:
        """Write each object's name into the other's provider spec.

        Both payloads are encoded before either object is touched, so a
        failure leaves both objects as they were.

        Raises:
            EncodingError: If either side's spec cannot be decoded or encoded
        """
        try:
            machine_spec = self.codec.get_machine_spec(machine)
            provisioned_spec = self.codec.get_provisioned_machine_spec(provisioned)
        except EncodingError as e:
            raise EncodingError(
                f"Unable to bind machine {machine.name!r} and provisioned machine "
                f"{provisioned.name!r}: {e.message}",
                e.details,
            ) from e

        machine_spec.provisioned_machine_name = provisioned.name
        provisioned_spec.machine_name = machine.name
        machine_payload = self.codec.encode_to_provider_config(machine_spec)
        provisioned_payload = self.codec.encode_to_provider_config(provisioned_spec)

        machine.spec.provider_spec = machine_payload
        provisioned.spec.provider_spec = provisioned_payload

    def persist(self, machine: Machine, provisioned: ProvisionedMachine) -> None:
        """Create both bound objects in the store.

        If the machine cannot be created, the provisioned machine created just
        before it is deleted again so no one-sided bind is left behind.
        """
        self.check_bound(machine, provisioned)
        self.store.create(provisioned)
        try:
            self.store.create(machine)
        except Exception:
            logger.warning(
                f"Creating machine {machine.name!r} failed, "
                f"deleting provisioned machine {provisioned.name!r}"
            )
            self.store.delete(ProvisionedMachine, provisioned.name)
            raise

    def check_bound(self, machine: Machine, provisioned: ProvisionedMachine) -> None:
        """Verify both objects name each other.

        Raises:
            DanglingReferenceError: If either reference is missing or points elsewhere
        """
        machine_ref = self.codec.get_machine_spec(machine).provisioned_machine_name
        provisioned_ref = self.codec.get_provisioned_machine_spec(provisioned).machine_name
        if machine_ref != provisioned.name or provisioned_ref != machine.name:
            raise DanglingReferenceError(
                f"Machine {machine.name!r} and provisioned machine {provisioned.name!r} "
                "are not bound to each other",
                f"machine references {machine_ref!r}, "
                f"provisioned machine references {provisioned_ref!r}",
            )

    def provisioned_machine_for(self, machine: Machine) -> ProvisionedMachine:
        """Resolve the provisioned machine bound to ``machine``.

        Raises:
            DanglingReferenceError: If the reference is unset, the object is absent,
                or it does not point back at ``machine``
        """
        name = self.codec.get_machine_spec(machine).provisioned_machine_name
        if not name:
            raise DanglingReferenceError(
                f"Machine {machine.name!r} does not reference a provisioned machine"
            )
        try:
            provisioned = self.store.get(ProvisionedMachine, name)
        except NotFoundError as e:
            raise DanglingReferenceError(
                f"Machine {machine.name!r} references provisioned machine {name!r}, "
                "which does not exist"
            ) from e
        self.check_bound(machine, provisioned)
        return provisioned

    def machine_for(self, provisioned: ProvisionedMachine) -> Machine:
        """Resolve the machine bound to ``provisioned``.

        Raises:
            DanglingReferenceError: If the reference is unset, the object is absent,
                or it does not point back at ``provisioned``
        """
        name = self.codec.get_provisioned_machine_spec(provisioned).machine_name
        if not name:
            raise DanglingReferenceError(
                f"Provisioned machine {provisioned.name!r} does not reference a machine"
            )
        try:
            machine = self.store.get(Machine, name)
        except NotFoundError as e:
            raise DanglingReferenceError(
                f"Provisioned machine {provisioned.name!r} references machine {name!r}, "
                "which does not exist"
            ) from e
        self.check_bound(machine, provisioned)
        return machine
