"""Tests for binding machines to provisioned machines."""

import pytest

from sshcluster.binder import MachineBinder
from sshcluster.exceptions import DanglingReferenceError, EncodingError, StoreError
from sshcluster.models.objects import Machine, ObjectMeta, ProvisionedMachine
from sshcluster.models.provider import MachineSpec, ProvisionedMachineSpec, SSHConfig


@pytest.fixture
def binder(store, codec):
    return MachineBinder(store, codec)


@pytest.fixture
def pair(codec):
    machine = Machine(metadata=ObjectMeta(name="10.0.0.1"))
    machine.spec.roles = ["Master"]
    codec.put_machine_spec(MachineSpec(roles=["Master"]), machine)
    provisioned = ProvisionedMachine(metadata=ObjectMeta(name="10.0.0.1-pm"))
    codec.put_provisioned_machine_spec(
        ProvisionedMachineSpec(ssh_config=SSHConfig(host="10.0.0.1", credential_secret="cred")),
        provisioned,
    )
    return machine, provisioned


def test_bind_writes_both_references(binder, codec, pair):
    machine, provisioned = pair

    binder.bind(machine, provisioned)

    assert codec.get_machine_spec(machine).provisioned_machine_name == "10.0.0.1-pm"
    assert codec.get_provisioned_machine_spec(provisioned).machine_name == "10.0.0.1"
    binder.check_bound(machine, provisioned)


def test_bind_leaves_objects_untouched_on_decode_failure(binder, pair):
    machine, provisioned = pair
    provisioned.spec.provider_spec.value = b"not json"
    before = machine.spec.provider_spec.value

    with pytest.raises(EncodingError, match="Unable to bind"):
        binder.bind(machine, provisioned)

    assert machine.spec.provider_spec.value == before


def test_persist_creates_provisioned_machine_first(binder, store, pair):
    machine, provisioned = pair
    binder.bind(machine, provisioned)

    binder.persist(machine, provisioned)

    assert store.mutations == [
        ("create", "ProvisionedMachine", "10.0.0.1-pm"),
        ("create", "Machine", "10.0.0.1"),
    ]


def test_persist_removes_provisioned_machine_when_machine_create_fails(binder, store, pair):
    machine, provisioned = pair
    binder.bind(machine, provisioned)
    store.fail_on[("create", "Machine")] = StoreError("conflict")

    with pytest.raises(StoreError, match="conflict"):
        binder.persist(machine, provisioned)

    assert not store.exists(ProvisionedMachine, "10.0.0.1-pm")
    assert not store.exists(Machine, "10.0.0.1")


def test_persist_refuses_unbound_pair(binder, store, pair):
    machine, provisioned = pair

    with pytest.raises(DanglingReferenceError):
        binder.persist(machine, provisioned)
    assert store.mutations == []


def test_resolution_in_both_directions(binder, pair):
    machine, provisioned = pair
    binder.bind(machine, provisioned)
    binder.persist(machine, provisioned)

    assert binder.provisioned_machine_for(machine).name == "10.0.0.1-pm"
    assert binder.machine_for(provisioned).name == "10.0.0.1"


def test_unset_reference(binder, pair):
    machine, provisioned = pair

    with pytest.raises(DanglingReferenceError, match="does not reference"):
        binder.provisioned_machine_for(machine)
    with pytest.raises(DanglingReferenceError, match="does not reference"):
        binder.machine_for(provisioned)


def test_reference_to_missing_object(binder, store, pair):
    machine, provisioned = pair
    binder.bind(machine, provisioned)
    store.create(machine)

    with pytest.raises(DanglingReferenceError, match="does not exist"):
        binder.provisioned_machine_for(machine)


def test_one_sided_reference_is_rejected(binder, store, codec, pair):
    machine, provisioned = pair
    binder.bind(machine, provisioned)
    binder.persist(machine, provisioned)

    spec = codec.get_provisioned_machine_spec(provisioned)
    spec.machine_name = "someone-else"
    codec.put_provisioned_machine_spec(spec, provisioned)
    store.update(provisioned)

    with pytest.raises(DanglingReferenceError, match="not bound"):
        binder.provisioned_machine_for(machine)
