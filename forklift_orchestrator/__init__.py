"""
forklift-orchestrator: drive a VM migration through Forklift custom resources.

Takes a migration request describing a vSphere source, the VMs to move and the
network/storage mappings, then creates and reconciles the Forklift resource chain
on an OpenShift Virtualization cluster:

- credential Secret and source Provider
- destination Provider (looked up, created when missing)
- NetworkMap and StorageMap
- Plan
- Migration

Each resource is created through a cluster gateway and watched until its status
converges, with exponential backoff and per-kind timeouts.
"""

__version__ = "0.1.0"
