"""
Core coordination logic.

- state_machine: legal lobby status transitions and the round counter
- readiness: polls player readiness and triggers judging
- judging: at-most-once judging workflow and score accumulation
"""
from .judging import JudgingCoordinator
from .readiness import ReadinessAggregator, all_ready
from .state_machine import LobbyStateMachine, TRANSITIONS, can_transition

__all__ = [
    "JudgingCoordinator",
    "LobbyStateMachine",
    "ReadinessAggregator",
    "TRANSITIONS",
    "all_ready",
    "can_transition",
]
