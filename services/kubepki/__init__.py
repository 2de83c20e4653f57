"""kubepki: bootstrap the control plane and etcd PKI of a cluster."""

__version__ = "0.1.0"
