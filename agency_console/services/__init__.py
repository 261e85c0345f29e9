"""Service layer for the Agency Console.

This package holds the orchestration engine that sits between the
Flask route handlers and the remote data gateway: the trust score
calculator, the agency selection state machine, the dependent
collections loader, the mutation coordinator and the console that
composes them. It also holds the collaborators those need (asset
storage, notifications, the acting user).

Nothing in this package performs any HTTP handling. Services return
plain Python data structures and raise exceptions defined in
``agency_console.errors`` when something goes wrong.
"""

from .console import AdminConsole, ConsoleServices
from .identity import Actor
from .mutations import MutationCoordinator
from .selection import Phase, SelectionController
from .trust_score import TrustScoreMetrics, calculate_trust_score, compute_metrics

__all__ = [
    "AdminConsole",
    "ConsoleServices",
    "Actor",
    "MutationCoordinator",
    "Phase",
    "SelectionController",
    "TrustScoreMetrics",
    "calculate_trust_score",
    "compute_metrics",
]
