"""
stackup Base Command Classes

Abstract base classes for consistent command structure.
"""

from .base_command import BaseCommand
from .workflow_command import WorkflowCommand

__all__ = [
    "BaseCommand",
    "WorkflowCommand",
]
