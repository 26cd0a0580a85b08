"""Basic tests to verify project setup."""


def test_import_sshcluster():
    """Test that sshcluster package can be imported."""
    import sshcluster

    assert sshcluster.__version__ == "0.1.0"


def test_import_cli():
    """Test that CLI module can be imported."""
    from sshcluster import cli

    assert cli.app is not None


def test_import_models():
    """Test that models module can be imported."""
    from sshcluster import models

    assert models.Machine is not None
    assert models.EtcdMember is not None


def test_import_workflows():
    """Test that the workflow modules can be imported."""
    from sshcluster import machine, recovery

    assert machine.MachineLifecycle is not None
    assert recovery.EtcdRecovery is not None
