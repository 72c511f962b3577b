"""
Reconciliation of batched reads with pending and event-sourced overlays.
"""
from perp_positions.reconciliation.overlays import ExpiringOverlay, is_within_window
from perp_positions.reconciliation.reconciler import (
    apply_pending_changes,
    apply_updated_position,
    get_positions,
)

__all__ = [
    "ExpiringOverlay",
    "is_within_window",
    "apply_pending_changes",
    "apply_updated_position",
    "get_positions",
]
