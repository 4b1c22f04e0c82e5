"""Capacity checks, conflict detection and team selection for resource allocation."""

from .conflicts import CapacityConflictError, classify_severity, evaluate
from .models import EngineConfig
from .orchestrator import AllocationOrchestrator
from .validation import ValidationError

__all__ = [
    "AllocationOrchestrator",
    "CapacityConflictError",
    "EngineConfig",
    "ValidationError",
    "classify_severity",
    "evaluate",
]
