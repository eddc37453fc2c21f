"""Models for donation settlement reconciliation."""

import enum
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field, field_validator

DEFAULT_LOOKBACK = timedelta(days=30)
DEFAULT_LIMIT = 200
MAX_LIMIT = 500


def to_naive_utc(value: datetime) -> datetime:
    """Convert a datetime to naive UTC, the form timestamps are stored in."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def clamp_limit(limit: Optional[int]) -> int:
    """Clamp a requested batch size into [1, MAX_LIMIT]; None or 0 means the default."""
    if not limit:
        return DEFAULT_LIMIT
    return min(MAX_LIMIT, max(1, int(limit)))


class CandidateOutcome(str, enum.Enum):
    """Outcome of reconciling a single candidate donation."""
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    FAILED = "failed"
    CANCELLED = "cancelled"


class CandidateResult(BaseModel):
    """Result of one candidate; failures are values, not exceptions."""
    payment_intent_id: str = Field(..., description="Payment intent reference of the donation")
    outcome: CandidateOutcome = Field(..., description="What happened to this candidate")
    charge_id: Optional[str] = Field(None, description="Charge recorded, if any")
    balance_transaction_id: Optional[str] = Field(None, description="Balance transaction recorded, if any")
    fee_cents: Optional[int] = Field(None, description="Fee recorded, in minor units")
    error: Optional[str] = Field(None, description="Error message for failed candidates")


class ReconciliationResult(BaseModel):
    """Aggregate result of a reconciliation batch."""
    since: datetime = Field(..., description="Lower bound used for candidate selection")
    limit: int = Field(..., description="Batch size used for candidate selection")
    started_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = Field(None)
    results: List[CandidateResult] = Field(default_factory=list)

    def _count(self, outcome: CandidateOutcome) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    @property
    def processed(self) -> int:
        return len(self.results)

    @property
    def updated(self) -> int:
        return self._count(CandidateOutcome.UPDATED)

    @property
    def skipped(self) -> int:
        return self._count(CandidateOutcome.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(CandidateOutcome.FAILED)

    @property
    def cancelled(self) -> int:
        return self._count(CandidateOutcome.CANCELLED)

    def to_response_dict(self) -> Dict[str, int]:
        """The trigger endpoint's response body."""
        return {"updated": self.updated, "processed": self.processed}

    def to_summary_dict(self) -> Dict[str, Any]:
        """Return a summary of the batch without per-candidate results."""
        return {
            "since": self.since.isoformat(),
            "limit": self.limit,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "statistics": {
                "processed": self.processed,
                "updated": self.updated,
                "unchanged": self._count(CandidateOutcome.UNCHANGED),
                "skipped": self.skipped,
                "failed": self.failed,
                "cancelled": self.cancelled,
            },
        }

    def to_full_dict(self) -> Dict[str, Any]:
        """Return the summary plus every candidate result."""
        result = self.to_summary_dict()
        result["results"] = [r.model_dump(mode="json") for r in self.results]
        return result


class SyncRequest(BaseModel):
    """Parameters of a reconciliation trigger."""
    since: Optional[datetime] = Field(None, description="Only reconcile donations created at or after this time")
    limit: int = Field(default=DEFAULT_LIMIT, description="Maximum number of candidates (1-500)")

    @field_validator("limit", mode="before")
    @classmethod
    def _lenient_limit(cls, value: Any) -> int:
        try:
            return clamp_limit(None if value in (None, "") else int(value))
        except (TypeError, ValueError):
            return DEFAULT_LIMIT

    def resolved_since(self, now: Optional[datetime] = None) -> datetime:
        """`since` as naive UTC, defaulting to the lookback window."""
        if self.since is None:
            return (now or datetime.utcnow()) - DEFAULT_LOOKBACK
        return to_naive_utc(self.since)
