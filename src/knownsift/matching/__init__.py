"""
Matching module - classify candidate records against the reference store.

This module provides:
- ClassificationEngine: per-chunk known/unknown/duplicate/empty decisions
- HashLookup: batched set-membership queries
- SeenHashSet: run-wide registry of hashes already classified known
- ParallelDispatcher: chunked, thread-pooled execution of the engine
- RunSummary: counts and the final report

Usage:
    from knownsift.matching import ClassificationEngine, ParallelDispatcher
"""
from __future__ import annotations

from .classifier import ChunkMatches, ChunkResult, ClassificationEngine
from .dispatcher import DEFAULT_CHUNK_SIZE, ParallelDispatcher, iter_chunks
from .lookup import MAX_VALUES_PER_QUERY, HashLookup
from .seen import SeenHashSet
from .summary import RunSummary

__all__ = [
    # Engine
    "ChunkMatches",
    "ChunkResult",
    "ClassificationEngine",
    "HashLookup",
    "MAX_VALUES_PER_QUERY",
    "SeenHashSet",
    # Dispatch
    "DEFAULT_CHUNK_SIZE",
    "ParallelDispatcher",
    "iter_chunks",
    # Reporting
    "RunSummary",
]
