"""SQLAlchemy models for the donation ledger."""

import uuid
from datetime import datetime
from typing import Optional, Dict, Any, FrozenSet, List

from sqlalchemy import (
    String,
    Integer,
    DateTime,
    ForeignKey,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column
import enum


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class SettlementStatus(str, enum.Enum):
    """Settlement state of a donation. Transitions only move forward."""
    PENDING = "pending"
    CHARGE_KNOWN = "charge_known"
    SETTLED = "settled"

    @property
    def prior_states(self) -> FrozenSet[str]:
        """States a donation may be in for a write of this status to apply."""
        if self is SettlementStatus.SETTLED:
            return frozenset({SettlementStatus.PENDING.value, SettlementStatus.CHARGE_KNOWN.value})
        if self is SettlementStatus.CHARGE_KNOWN:
            return frozenset({SettlementStatus.PENDING.value, SettlementStatus.CHARGE_KNOWN.value})
        return frozenset({SettlementStatus.PENDING.value})


class Campaign(Base):
    """Campaign a donation belongs to. Only the fields reports need."""
    __tablename__ = "campaigns"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    donations: Mapped[List["Donation"]] = relationship("Donation", back_populates="campaign")


class Donation(Base):
    """One record per contribution, keyed to the processor by payment intent."""
    __tablename__ = "donations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    campaign_id: Mapped[str] = mapped_column(String(36), ForeignKey("campaigns.id"), nullable=False)
    organizer_account_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Processor references
    stripe_payment_intent_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)
    stripe_charge_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    stripe_balance_txn_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Amounts in minor units
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    stripe_fee_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    platform_fee_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    refunded_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    donor_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    settlement_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SettlementStatus.PENDING.value
    )

    # Timestamps (naive UTC)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    campaign: Mapped["Campaign"] = relationship("Campaign", back_populates="donations")

    __table_args__ = (
        CheckConstraint("stripe_fee_cents >= 0", name="ck_donations_stripe_fee_non_negative"),
        Index("ix_donations_created_at", "created_at"),
        Index("ix_donations_settlement_status", "settlement_status"),
        Index("ix_donations_campaign_id", "campaign_id"),
    )

    @property
    def net_cents(self) -> int:
        """Gross amount less the processor fee."""
        return self.amount_cents - (self.stripe_fee_cents or 0)

    def to_dict(self) -> Dict[str, Any]:
        """Convert donation to dictionary representation."""
        return {
            "id": self.id,
            "campaign_id": self.campaign_id,
            "organizer_account_id": self.organizer_account_id,
            "stripe_payment_intent_id": self.stripe_payment_intent_id,
            "stripe_charge_id": self.stripe_charge_id,
            "stripe_balance_txn_id": self.stripe_balance_txn_id,
            "amount_cents": self.amount_cents,
            "stripe_fee_cents": self.stripe_fee_cents,
            "platform_fee_cents": self.platform_fee_cents,
            "refunded_cents": self.refunded_cents,
            "net_cents": self.net_cents,
            "currency": self.currency,
            "donor_email": self.donor_email,
            "settlement_status": self.settlement_status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
