"""Reconciliation module for donation settlement data.

This module backfills processor-side charge, balance transaction and fee
data onto donations recorded in the ledger.

Features:
- Select unsettled donations for a time window
- Look up each donation at the processor, scoped to its connected account
- Commit each donation independently, isolating per-donation failures
- Safe to re-run: settled donations are never rewritten
"""

from .models import (
    CandidateOutcome,
    CandidateResult,
    ReconciliationResult,
    SyncRequest,
    DEFAULT_LIMIT,
    MAX_LIMIT,
)
from .worker import (
    ReconciliationWorker,
    ReconciliationError,
    CandidateSelectionError,
)

__all__ = [
    # Models
    "CandidateOutcome",
    "CandidateResult",
    "ReconciliationResult",
    "SyncRequest",
    "DEFAULT_LIMIT",
    "MAX_LIMIT",
    # Core Components
    "ReconciliationWorker",
    "ReconciliationError",
    "CandidateSelectionError",
]
