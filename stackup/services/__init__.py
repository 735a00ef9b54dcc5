"""
stackup Services

State store, SSH and pre-flight services.
"""

from .preflight_service import PreflightService
from .ssh_service import SSHService
from .state_service import StateStoreClient

__all__ = [
    "PreflightService",
    "SSHService",
    "StateStoreClient",
]
