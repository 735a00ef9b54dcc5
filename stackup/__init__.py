"""stackup - staged Jenkins-on-AWS provisioning."""

__version__ = "1.0.0"
