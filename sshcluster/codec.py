"""Encode and decode typed provider configuration.

Payloads are JSON documents carrying ``apiVersion`` and ``kind`` next to the
shape's own fields, so a payload always says what it is and can be checked
against the shape the caller expects.
"""

import json
from typing import TypeVar

from pydantic import ValidationError

from sshcluster.exceptions import EncodingError, SchemaMismatchError
from sshcluster.models.objects import Cluster, Machine, ProviderConfig, ProvisionedMachine
from sshcluster.models.provider import (
    ClusterSpec,
    ClusterStatus,
    MachineSpec,
    MachineStatus,
    ProviderModel,
    ProvisionedMachineSpec,
)

T = TypeVar("T", bound=ProviderModel)


class ProviderConfigCodec:
    """Codec between typed provider shapes and opaque payloads."""

    def encode(self, obj: ProviderModel) -> bytes:
        """Serialize a typed provider object.

        Raises:
            EncodingError: If the object is not a provider shape or cannot be serialized
        """
        if not isinstance(obj, ProviderModel):
            raise EncodingError(f"cannot encode {type(obj).__name__}: not a provider config type")
        try:
            document = {
                "apiVersion": obj.api_version,
                "kind": obj.kind,
                **obj.model_dump(mode="json", by_alias=True),
            }
            return json.dumps(document, sort_keys=True).encode()
        except (TypeError, ValueError) as e:
            raise EncodingError(f"encoding {obj.kind} failed: {e}")

    def decode(self, payload: bytes | None, shape: type[T]) -> T:
        """Deserialize a payload into ``shape``.

        Raises:
            SchemaMismatchError: If the payload's apiVersion/kind is not ``shape``'s
            EncodingError: If the payload is missing, not JSON, or fails validation
        """
        if not payload:
            raise EncodingError(f"decoding {shape.kind} failed: empty payload")
        try:
            document = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise EncodingError(f"decoding {shape.kind} failed: {e}")
        if not isinstance(document, dict):
            raise EncodingError(f"decoding {shape.kind} failed: payload is not an object")

        api_version = document.pop("apiVersion", None)
        kind = document.pop("kind", None)
        if (api_version, kind) != (shape.api_version, shape.kind):
            raise SchemaMismatchError(
                f"cannot decode {api_version}/{kind} as {shape.api_version}/{shape.kind}"
            )
        try:
            return shape.model_validate(document)
        except ValidationError as e:
            raise EncodingError(f"decoding {shape.kind} failed", str(e))

    def encode_to_provider_config(self, obj: ProviderModel) -> ProviderConfig:
        return ProviderConfig(value=self.encode(obj))

    def decode_from_provider_config(self, config: ProviderConfig | None, shape: type[T]) -> T:
        return self.decode(config.value if config else None, shape)

    # Accessors for the payloads embedded in store objects

    def get_cluster_spec(self, cluster: Cluster) -> ClusterSpec:
        return self.decode_from_provider_config(cluster.spec.provider_spec, ClusterSpec)

    def put_cluster_spec(self, spec: ClusterSpec, cluster: Cluster) -> None:
        cluster.spec.provider_spec = self.encode_to_provider_config(spec)

    def get_cluster_status(self, cluster: Cluster) -> ClusterStatus:
        """Decode the cluster status; a cluster with no status yet has no members."""
        if cluster.status.provider_status is None or not cluster.status.provider_status.value:
            return ClusterStatus()
        return self.decode_from_provider_config(cluster.status.provider_status, ClusterStatus)

    def put_cluster_status(self, status: ClusterStatus, cluster: Cluster) -> None:
        cluster.status.provider_status = self.encode_to_provider_config(status)

    def get_machine_spec(self, machine: Machine) -> MachineSpec:
        return self.decode_from_provider_config(machine.spec.provider_spec, MachineSpec)

    def put_machine_spec(self, spec: MachineSpec, machine: Machine) -> None:
        machine.spec.provider_spec = self.encode_to_provider_config(spec)

    def get_machine_status(self, machine: Machine) -> MachineStatus:
        """Decode the machine status; a machine with no status yet is not bootstrapped."""
        if machine.status.provider_status is None or not machine.status.provider_status.value:
            return MachineStatus()
        return self.decode_from_provider_config(machine.status.provider_status, MachineStatus)

    def put_machine_status(self, status: MachineStatus, machine: Machine) -> None:
        machine.status.provider_status = self.encode_to_provider_config(status)

    def get_provisioned_machine_spec(self, provisioned: ProvisionedMachine) -> ProvisionedMachineSpec:
        return self.decode_from_provider_config(
            provisioned.spec.provider_spec, ProvisionedMachineSpec
        )

    def put_provisioned_machine_spec(
        self, spec: ProvisionedMachineSpec, provisioned: ProvisionedMachine
    ) -> None:
        provisioned.spec.provider_spec = self.encode_to_provider_config(spec)
