"""
Policy Reconciliation Engine

Applies, removes and verifies named security measures built from low-level
Group Policy, registry and security policy entries, honoring declared
dependencies and specialized verification strategies.
"""

__version__ = "1.0.0"

from .core.engine import PolicyEngine
from .core.models import PolicyUnit, ReconciliationRun
from .core.orchestrator import ReconciliationOrchestrator

__all__ = ["PolicyEngine", "PolicyUnit", "ReconciliationRun", "ReconciliationOrchestrator"]
