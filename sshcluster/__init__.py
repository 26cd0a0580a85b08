"""Provision and repair SSH-reachable Kubernetes clusters."""

__version__ = "0.1.0"
