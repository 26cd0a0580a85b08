"""On-disk copy of the cluster state.

After each successful change the CLI pulls the cluster, machines and
provisioned machines from the store and writes them to a YAML file, using
ruamel.yaml so comments an operator adds to the file survive rewrites.
"""

import json
import shutil
from pathlib import Path

from ruamel.yaml import YAML
from ruamel.yaml.comments import CommentedMap

from sshcluster.exceptions import NotFoundError, SSHClusterError
from sshcluster.logging_config import get_logger
from sshcluster.models.objects import Cluster, Machine, ProvisionedMachine
from sshcluster.store import ObjectStore, map_payloads

logger = get_logger(__name__)


class StateFileError(SSHClusterError):
    """Exception raised when the state file cannot be read or written."""

    pass


class StateFile:
    """YAML snapshot of the store objects this tool manages."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.yaml = YAML()
        self.yaml.preserve_quotes = True
        self.yaml.default_flow_style = False
        self.yaml.indent(mapping=2, sequence=2, offset=0)

    def read(self) -> dict:
        """Read the state file.

        Raises:
            StateFileError: If the file is missing or cannot be parsed
        """
        logger.debug(f"Reading state file: {self.path}")
        if not self.path.exists():
            raise StateFileError(
                f"State file not found: {self.path}",
                "The file is written after the first successful create, delete or recover",
            )
        try:
            with open(self.path) as f:
                data = self.yaml.load(f)
        except Exception as e:
            raise StateFileError(f"Failed to read state file: {e}", f"Check {self.path.absolute()}")
        return data or CommentedMap()

    def write(self, data: dict) -> None:
        """Write the state file, keeping the previous version as ``.backup``.

        Raises:
            StateFileError: If the file cannot be written
        """
        logger.debug(f"Writing state file: {self.path}")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if self.path.exists():
                backup_path = self.path.with_suffix(self.path.suffix + ".backup")
                logger.debug(f"Creating backup at: {backup_path}")
                shutil.copy2(self.path, backup_path)
            with open(self.path, "w") as f:
                self.yaml.dump(data, f)
        except OSError as e:
            raise StateFileError(
                f"Failed to write state file: {e}", "Check disk space and file system permissions"
            )
        logger.info(f"Wrote cluster state to {self.path}")

    def pull(self, store: ObjectStore, cluster_name: str) -> None:
        """Replace the file's object sections with the store's current objects."""
        data = self.read() if self.path.exists() else CommentedMap()
        try:
            cluster = store.get(Cluster, cluster_name)
            data["cluster"] = plain_object(cluster)
        except NotFoundError:
            data.pop("cluster", None)
        data["machines"] = [plain_object(m) for m in store.list(Machine)]
        data["provisionedMachines"] = [plain_object(p) for p in store.list(ProvisionedMachine)]
        self.write(data)


def plain_object(obj) -> dict:
    """Dump a store object with its provider payloads expanded into mappings."""
    return map_payloads(obj.model_dump(mode="json", by_alias=True, exclude_none=True), json.loads)
