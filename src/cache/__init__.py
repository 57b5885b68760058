"""
ReviewSight Cache Module
========================

Optional persistence of final session results in Redis,
with fallback to an in-memory store.

Usage:
    from src.cache import ResultStore

    store = ResultStore()
    store.save_results(session_id, payload)
    payload = store.get_results(session_id)
"""

from .result_store import ResultStore

__all__ = ["ResultStore"]
