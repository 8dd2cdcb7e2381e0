"""Dependency-ordered deployment and teardown of the grafana-eks EKS system."""

__version__ = "0.1.0"
