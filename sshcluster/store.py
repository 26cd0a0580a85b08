"""Remote object store access.

The store holds clusters, machines and provisioned machines as custom
resources and credentials as secrets. It never interprets provider payloads.
"""

import base64
import json
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import TypeVar

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from pydantic import ValidationError
from urllib3.exceptions import HTTPError

from sshcluster.exceptions import NotFoundError, StoreError
from sshcluster.logging_config import get_logger
from sshcluster.models.objects import Cluster, Machine, ObjectMeta, ProvisionedMachine, Secret
from sshcluster.models.provider import API_VERSION

logger = get_logger(__name__)

StoreObject = Cluster | Machine | ProvisionedMachine | Secret
T = TypeVar("T", Cluster, Machine, ProvisionedMachine, Secret)

CLUSTER_API_GROUP = "cluster.k8s.io"
CLUSTER_API_VERSION = "v1alpha1"
PROVIDER_GROUP, PROVIDER_VERSION = API_VERSION.split("/")

# kind -> (group, version, plural)
CUSTOM_RESOURCES = {
    Cluster: (CLUSTER_API_GROUP, CLUSTER_API_VERSION, "clusters"),
    Machine: (CLUSTER_API_GROUP, CLUSTER_API_VERSION, "machines"),
    ProvisionedMachine: (PROVIDER_GROUP, PROVIDER_VERSION, "provisionedmachines"),
}

PAYLOAD_KEYS = ("providerSpec", "providerStatus")


class ObjectStore(ABC):
    """CRUD access to store objects within one namespace."""

    def __init__(self, namespace: str = "default"):
        self.namespace = namespace

    @abstractmethod
    def get(self, kind: type[T], name: str) -> T:
        """Fetch one object.

        Raises:
            NotFoundError: If no object of this kind has that name
        """

    @abstractmethod
    def list(self, kind: type[T]) -> list[T]:
        """List all objects of a kind, in store order."""

    @abstractmethod
    def create(self, obj: T) -> T:
        """Create an object; returns the stored copy."""

    @abstractmethod
    def update(self, obj: T) -> T:
        """Replace an object's spec (and data, for secrets)."""

    @abstractmethod
    def update_status(self, obj: T) -> T:
        """Replace the status sub-resource of a cluster or machine."""

    @abstractmethod
    def delete(self, kind: type[T], name: str) -> None:
        """Delete an object.

        Raises:
            NotFoundError: If no object of this kind has that name
        """

    def exists(self, kind: type[T], name: str) -> bool:
        try:
            self.get(kind, name)
        except NotFoundError:
            return False
        return True

    def create_or_update(self, obj: T) -> T:
        """Create the object, or overwrite it if it is already present."""
        if self.exists(type(obj), obj.name):
            return self.update(obj)
        return self.create(obj)


class KubernetesObjectStore(ObjectStore):
    """Object store backed by a Kubernetes API server."""

    def __init__(self, api_client: client.ApiClient, namespace: str = "default"):
        super().__init__(namespace)
        self.custom = client.CustomObjectsApi(api_client)
        self.core = client.CoreV1Api(api_client)

    @classmethod
    def from_kubeconfig(
        cls, kubeconfig: str | None = None, context: str | None = None, namespace: str = "default"
    ) -> "KubernetesObjectStore":
        """Build a store from a kubeconfig without touching the global client configuration."""
        try:
            api_client = config.new_client_from_config(config_file=kubeconfig, context=context)
        except (config.ConfigException, OSError) as e:
            raise StoreError(
                f"Failed to load kubeconfig: {e}",
                "Pass --kubeconfig or set 'kubeconfig' in the settings file",
            )
        return cls(api_client, namespace)

    def get(self, kind: type[T], name: str) -> T:
        logger.debug(f"Getting {kind.__name__} {name!r}")
        with _api_errors(kind, name):
            if kind is Secret:
                return _secret_from_api(self.core.read_namespaced_secret(name, self.namespace))
            group, version, plural = CUSTOM_RESOURCES[kind]
            body = self.custom.get_namespaced_custom_object(
                group, version, self.namespace, plural, name
            )
        return _from_body(kind, body)

    def list(self, kind: type[T]) -> list[T]:
        with _api_errors(kind, None):
            if kind is Secret:
                items = self.core.list_namespaced_secret(self.namespace).items
                return [_secret_from_api(item) for item in items]
            group, version, plural = CUSTOM_RESOURCES[kind]
            body = self.custom.list_namespaced_custom_object(group, version, self.namespace, plural)
        return [_from_body(kind, item) for item in body.get("items", [])]

    def create(self, obj: T) -> T:
        logger.debug(f"Creating {type(obj).__name__} {obj.name!r}")
        with _api_errors(type(obj), obj.name):
            if isinstance(obj, Secret):
                created = self.core.create_namespaced_secret(self.namespace, _secret_to_api(obj))
                return _secret_from_api(created)
            group, version, plural = CUSTOM_RESOURCES[type(obj)]
            body = self.custom.create_namespaced_custom_object(
                group, version, self.namespace, plural, _to_body(obj)
            )
        return self._refresh(obj, body)

    def update(self, obj: T) -> T:
        logger.debug(f"Updating {type(obj).__name__} {obj.name!r}")
        with _api_errors(type(obj), obj.name):
            if isinstance(obj, Secret):
                updated = self.core.replace_namespaced_secret(
                    obj.name, self.namespace, _secret_to_api(obj)
                )
                return _secret_from_api(updated)
            group, version, plural = CUSTOM_RESOURCES[type(obj)]
            body = self.custom.replace_namespaced_custom_object(
                group, version, self.namespace, plural, obj.name, _to_body(obj)
            )
        return self._refresh(obj, body)

    def update_status(self, obj: T) -> T:
        if type(obj) not in (Cluster, Machine):
            raise StoreError(f"{type(obj).__name__} has no status sub-resource")
        logger.debug(f"Updating status of {type(obj).__name__} {obj.name!r}")
        with _api_errors(type(obj), obj.name):
            group, version, plural = CUSTOM_RESOURCES[type(obj)]
            body = self.custom.replace_namespaced_custom_object_status(
                group, version, self.namespace, plural, obj.name, _to_body(obj)
            )
        return self._refresh(obj, body)

    def delete(self, kind: type[T], name: str) -> None:
        logger.debug(f"Deleting {kind.__name__} {name!r}")
        with _api_errors(kind, name):
            if kind is Secret:
                self.core.delete_namespaced_secret(name, self.namespace)
                return
            group, version, plural = CUSTOM_RESOURCES[kind]
            self.custom.delete_namespaced_custom_object(group, version, self.namespace, plural, name)

    @staticmethod
    def _refresh(obj: T, body: dict) -> T:
        """Carry the server-assigned resource version back to the caller's copy."""
        obj.metadata.resource_version = body.get("metadata", {}).get("resourceVersion")
        return obj


@contextmanager
def _api_errors(kind: type, name: str | None):
    """Translate Kubernetes API and connection failures into store errors."""
    target = f"{kind.__name__} {name!r}" if name else f"{kind.__name__} list"
    try:
        yield
    except ApiException as e:
        if e.status == 404 and name is not None:
            raise NotFoundError(kind.__name__, name) from e
        raise StoreError(f"Store request for {target} failed: {e.status} {e.reason}", e.body) from e
    except (HTTPError, OSError) as e:
        raise StoreError(f"Unable to reach the store for {target}", str(e)) from e


def _to_body(obj: StoreObject) -> dict:
    group, version, _ = CUSTOM_RESOURCES[type(obj)]
    body = {
        "apiVersion": f"{group}/{version}",
        "kind": type(obj).__name__,
        **obj.model_dump(mode="json", by_alias=True, exclude_none=True),
    }
    return map_payloads(body, json.loads)


def _from_body(kind: type[T], body: dict) -> T:
    body = {k: v for k, v in body.items() if k not in ("apiVersion", "kind")}
    body = map_payloads(body, lambda value: json.dumps(value).encode())
    try:
        return kind.model_validate(body)
    except ValidationError as e:
        name = body.get("metadata", {}).get("name", "<unknown>")
        raise StoreError(f"Store returned a malformed {kind.__name__} {name!r}", str(e))


def map_payloads(body: dict, convert) -> dict:
    """Apply ``convert`` to every provider payload value in a store document."""
    result = {}
    for key, value in body.items():
        if isinstance(value, dict):
            if key in PAYLOAD_KEYS and value.get("value") is not None:
                value = {**value, "value": convert(value["value"])}
            else:
                value = map_payloads(value, convert)
        result[key] = value
    return result


def _secret_to_api(secret: Secret) -> client.V1Secret:
    return client.V1Secret(
        metadata=client.V1ObjectMeta(
            name=secret.metadata.name,
            namespace=secret.metadata.namespace,
            resource_version=secret.metadata.resource_version,
        ),
        type=secret.type,
        data={k: base64.b64encode(v).decode() for k, v in secret.data.items()},
    )


def _secret_from_api(secret: client.V1Secret) -> Secret:
    return Secret(
        metadata=ObjectMeta(
            name=secret.metadata.name,
            namespace=secret.metadata.namespace or "default",
            creation_timestamp=secret.metadata.creation_timestamp,
            resource_version=secret.metadata.resource_version,
        ),
        type=secret.type or "Opaque",
        data={k: base64.b64decode(v) for k, v in (secret.data or {}).items()},
    )
