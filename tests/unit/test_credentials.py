"""Tests for SSH credentials and host keys."""

import paramiko
import pytest

from sshcluster.credentials import (
    credential_from_secret,
    load_private_key,
    parse_authorized_key,
    public_key_from_file,
)
from sshcluster.exceptions import CredentialError
from sshcluster.models.objects import ObjectMeta, Secret


@pytest.fixture(scope="module")
def rsa_key():
    return paramiko.RSAKey.generate(2048)


def test_credential_from_secret():
    secret = Secret(
        metadata=ObjectMeta(name="sshcredential"),
        data={"username": b"core\n", "ssh-privatekey": b"PEM"},
    )

    credential = credential_from_secret(secret)

    assert credential.username == "core"
    assert credential.private_key == "PEM"
    assert "PEM" not in repr(credential)


def test_credential_missing_keys():
    secret = Secret(metadata=ObjectMeta(name="sshcredential"), data={"username": b"core"})

    with pytest.raises(CredentialError) as exc_info:
        credential_from_secret(secret)
    assert "ssh-privatekey" in exc_info.value.details


def test_unparseable_private_key():
    with pytest.raises(CredentialError):
        load_private_key("not a key")


def test_authorized_key_round_trip(rsa_key):
    key = parse_authorized_key(f"ssh-rsa {rsa_key.get_base64()} admin@host")
    assert key.get_base64() == rsa_key.get_base64()


@pytest.mark.parametrize("line", ["", "ssh-rsa", "ssh-rsa !!!notbase64!!!"])
def test_invalid_authorized_key(line):
    with pytest.raises(CredentialError):
        parse_authorized_key(line)


def test_public_key_from_file(tmp_path, rsa_key):
    path = tmp_path / "host.pub"
    path.write_text(f"ssh-rsa {rsa_key.get_base64()} root@m1\n")

    assert public_key_from_file(path) == f"ssh-rsa {rsa_key.get_base64()}\n"


def test_public_key_file_missing(tmp_path):
    with pytest.raises(CredentialError, match="Unable to read"):
        public_key_from_file(tmp_path / "missing.pub")
