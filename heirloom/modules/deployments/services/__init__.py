"""Deployment services."""
from .ledger import DeploymentLedger, select_prunable, select_rollback_target

__all__ = [
    "DeploymentLedger",
    "select_prunable",
    "select_rollback_target",
]
