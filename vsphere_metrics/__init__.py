"""vsphere_metrics: poll VMware vSphere for host, datastore and VM metrics."""

__version__ = "1.0.0"
