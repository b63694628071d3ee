"""
Reconciliation Module

Matches usage events against vendor print jobs and bills confirmed work.
"""

from .reconciler import Reconciler, ReconcileOutcome, ReconcileResult, open_reconciler
from .dispatch import Acknowledgment, dispatch

__all__ = [
    "Reconciler",
    "ReconcileOutcome",
    "ReconcileResult",
    "open_reconciler",
    "Acknowledgment",
    "dispatch",
]
