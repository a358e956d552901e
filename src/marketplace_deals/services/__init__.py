"""Application services — use case orchestration."""

from marketplace_deals.services.base import TransitionResult
from marketplace_deals.services.escrow_synchronizer import EscrowSynchronizer
from marketplace_deals.services.project_lifecycle import ProjectLifecycleService
from marketplace_deals.services.transition_coordinator import TransitionCoordinator

__all__ = [
    "EscrowSynchronizer",
    "ProjectLifecycleService",
    "TransitionCoordinator",
    "TransitionResult",
]
