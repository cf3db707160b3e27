"""Cluster Service Registrar (CSR).

Keeps a service registry in step with a Mesos-style cluster:
 - every control-plane node and worker agent becomes a registry entry
 - every running task becomes one or more entries (one per named port)
 - unchanged entries are confirmed from a local cache instead of re-registered
 - entries that no longer match the cluster are replaced or swept away

The decision logic lives in `csr.reconciler`; everything else is I/O.
"""
