"""Settings for sshcluster commands."""

import re
from datetime import timedelta
from pathlib import Path

import yaml
from pydantic import BaseModel, ValidationError, field_validator

from sshcluster.exceptions import ConfigurationError

DEFAULT_CONFIG_PATH = Path.home() / ".sshcluster" / "config.yaml"


class Settings(BaseModel):
    """Names, remote paths and timeouts used by the orchestrators."""

    namespace: str = "default"
    cluster_name: str = "sshcluster"
    ssh_credential_secret: str = "sshcredential"
    bootstrap_token_secret: str = "bootstrap-token"
    default_ssh_port: int = 22
    ssh_connect_timeout: float = 30.0

    etcdadm_path: str = "/opt/bin/etcdadm"
    kubeadm_path: str = "/opt/bin/kubeadm"
    kubectl_path: str = "/opt/bin/kubectl"
    nodeadm_path: str = "/opt/bin/nodeadm"
    kubelet_path: str = "/opt/bin/kubelet"
    nodeadm_config_path: str = "/etc/nodeadm.yaml"
    admin_kubeconfig_path: str = "/etc/kubernetes/admin.conf"
    etcd_ca_cert_path: str = "/etc/etcd/pki/ca.crt"
    etcd_ca_key_path: str = "/etc/etcd/pki/ca.key"
    etcd_snapshot_remote_path: str = "/tmp/etcd-snapshot.db"
    remote_tmp_dir: str = "/tmp"

    drain_timeout: timedelta = timedelta(minutes=5)
    drain_grace_period_seconds: int = -1

    kubeconfig: str | None = None
    kube_context: str | None = None
    state_file: Path = Path.home() / ".sshcluster" / "state.yaml"

    @field_validator("namespace", "cluster_name", "ssh_credential_secret", "bootstrap_token_secret")
    @classmethod
    def validate_object_name(cls, v: str) -> str:
        """Validate store object names follow DNS-1123 subdomain rules."""
        if not v:
            raise ValueError("name cannot be empty")
        if not re.match(r"^[a-z0-9]([-a-z0-9.]*[a-z0-9])?$", v):
            raise ValueError(f"'{v}' must be lowercase alphanumeric, '-' or '.'")
        return v

    @field_validator(
        "etcdadm_path",
        "kubeadm_path",
        "kubectl_path",
        "nodeadm_path",
        "kubelet_path",
        "nodeadm_config_path",
        "admin_kubeconfig_path",
        "etcd_ca_cert_path",
        "etcd_ca_key_path",
        "etcd_snapshot_remote_path",
        "remote_tmp_dir",
    )
    @classmethod
    def validate_remote_path(cls, v: str) -> str:
        """Validate remote paths are absolute."""
        if not v.startswith("/"):
            raise ValueError(f"remote path '{v}' must be absolute")
        return v

    def save(self, path: str | Path) -> None:
        """Save settings to a YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, default_flow_style=False)

    @classmethod
    def load(cls, path: str | Path | None = None) -> "Settings":
        """Load settings from a YAML file, falling back to defaults.

        Raises:
            ConfigurationError: If the file cannot be parsed or is invalid
        """
        path = Path(path) if path else DEFAULT_CONFIG_PATH
        if not path.exists():
            return cls()
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
            return cls(**data)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse settings file {path}", str(e))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid settings in {path}", str(e))
        except TypeError as e:
            raise ConfigurationError(f"Settings file {path} must contain a mapping", str(e))
