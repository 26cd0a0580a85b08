"""Tests for the per-command context."""

import pytest

from sshcluster.exceptions import NotFoundError
from sshcluster.models.objects import ProvisionedMachine, Secret
from sshcluster.models.provider import MASTER_ROLE


def test_sessions_are_cached_and_released(ctx, make_machine, store):
    make_machine("10.0.0.1", MASTER_ROLE)
    provisioned = store.get(ProvisionedMachine, "10.0.0.1")

    first = ctx.client_for(provisioned)
    second = ctx.client_for(store.get(ProvisionedMachine, "10.0.0.1"))

    assert first is second
    ctx.close()
    assert first.closed is True


def test_context_manager_closes_sessions(ctx, make_machine, store):
    make_machine("10.0.0.1", MASTER_ROLE)

    with ctx:
        client = ctx.client_for(store.get(ProvisionedMachine, "10.0.0.1"))

    assert client.closed is True


def test_missing_credential_secret(ctx, make_machine, store):
    make_machine("10.0.0.1", MASTER_ROLE)
    del store.objects[(Secret, "sshcredential")]

    with pytest.raises(NotFoundError, match="sshcredential"):
        ctx.client_for(store.get(ProvisionedMachine, "10.0.0.1"))


def test_missing_cluster(ctx):
    with pytest.raises(NotFoundError) as exc_info:
        ctx.get_cluster()
    assert exc_info.value.details == "Create a cluster before managing machines"
