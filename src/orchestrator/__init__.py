"""
ReviewSight Orchestrator Module
===============================

Orchestration layer for review collection sessions.

Components:
    - CollectionOrchestrator: Phase state machine (recent -> worst -> best -> deduplication)
    - ProgressTracker: Per-session progress, ETA and observer fan-out
    - CLI: Command-line interface

Usage:
    from src.orchestrator import CollectionOrchestrator

    orchestrator = CollectionOrchestrator(harvester=harvester)
    session_id = await orchestrator.start_collection(url)
    status = await orchestrator.wait_for(session_id)
"""

from .session_models import (
    Phase,
    SessionStatus,
    StoppedReason,
    CollectionConfig,
    CollectionProgress,
    CollectionResults,
    CollectionSession,
    PhaseMetric,
    PhaseResult,
)
from .progress_tracker import ProgressTracker, Subscription
from .collection_orchestrator import CollectionOrchestrator

__all__ = [
    # Session model
    "Phase",
    "SessionStatus",
    "StoppedReason",
    "CollectionConfig",
    "CollectionProgress",
    "CollectionResults",
    "CollectionSession",
    "PhaseMetric",
    "PhaseResult",
    # Tracking
    "ProgressTracker",
    "Subscription",
    # Orchestration
    "CollectionOrchestrator",
]
