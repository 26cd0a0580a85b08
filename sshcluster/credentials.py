"""SSH credentials and host keys."""

import base64
import binascii
import io
from dataclasses import dataclass
from pathlib import Path

import paramiko

from sshcluster.exceptions import CredentialError
from sshcluster.models.objects import Secret

USERNAME_KEY = "username"
PRIVATE_KEY_KEY = "ssh-privatekey"


@dataclass(frozen=True)
class RemoteCredential:
    """Username and private key resolved from a credential secret.

    Held only while a remote session is being set up.
    """

    username: str
    private_key: str

    def __repr__(self) -> str:
        return f"RemoteCredential(username={self.username!r}, private_key=<redacted>)"


def credential_from_secret(secret: Secret) -> RemoteCredential:
    """Read the username and private key from a credential secret.

    Raises:
        CredentialError: If either key is missing from the secret
    """
    missing = [k for k in (USERNAME_KEY, PRIVATE_KEY_KEY) if not secret.data.get(k)]
    if missing:
        raise CredentialError(
            f"Secret {secret.name!r} is not an SSH credential",
            f"Missing keys: {', '.join(missing)}",
        )
    return RemoteCredential(
        username=secret.data[USERNAME_KEY].decode().strip(),
        private_key=secret.data[PRIVATE_KEY_KEY].decode(),
    )


def load_private_key(pem: str) -> paramiko.PKey:
    """Parse a private key of any type paramiko supports.

    Raises:
        CredentialError: If the key cannot be parsed
    """
    for key_cls in (paramiko.RSAKey, paramiko.Ed25519Key, paramiko.ECDSAKey):
        try:
            return key_cls.from_private_key(io.StringIO(pem))
        except paramiko.SSHException:
            continue
    raise CredentialError(
        "Unable to parse SSH private key",
        "Supported key types are RSA, Ed25519 and ECDSA; encrypted keys are not supported",
    )


def parse_authorized_key(line: str) -> paramiko.PKey:
    """Parse one ``<type> <base64> [comment]`` public key line.

    Raises:
        CredentialError: If the line is not a valid public key
    """
    fields = line.split()
    if len(fields) < 2:
        raise CredentialError(f"Invalid public key {line!r}: expected '<type> <base64-data>'")
    key_type, data = fields[0], fields[1]
    try:
        return paramiko.PKey.from_type_string(key_type, base64.b64decode(data))
    except (binascii.Error, paramiko.SSHException, ValueError) as e:
        raise CredentialError(f"Invalid public key of type {key_type!r}: {e}")


def public_key_from_file(path: str | Path) -> str:
    """Read a public key file and return it as a single authorized-key line."""
    path = Path(path).expanduser()
    try:
        content = path.read_text().strip()
    except OSError as e:
        raise CredentialError(f"Unable to read SSH public key from {str(path)!r}: {e}")
    key = parse_authorized_key(content.splitlines()[0] if content else "")
    return f"{key.get_name()} {key.get_base64()}\n"
