"""Repository layer for donation ledger persistence operations."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, List

from sqlalchemy import select, update, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Campaign, Donation, SettlementStatus

logger = logging.getLogger(__name__)


class DonationNotFoundError(LookupError):
    """Raised when no donation matches a payment intent reference."""

    def __init__(self, payment_intent_id: str):
        super().__init__(f"No donation with payment intent {payment_intent_id}")
        self.payment_intent_id = payment_intent_id


@dataclass(frozen=True)
class SettlementCandidate:
    """A donation that still needs processor fee/charge data."""
    payment_intent_id: str
    campaign_id: str
    connected_account_id: Optional[str]


class DonationRepository:
    """Repository for the narrow donation queries reconciliation needs."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def create(
        self,
        campaign_id: str,
        amount_cents: int,
        payment_intent_id: Optional[str] = None,
        organizer_account_id: Optional[str] = None,
        donor_email: Optional[str] = None,
        currency: str = "USD",
        platform_fee_cents: int = 0,
        created_at: Optional[datetime] = None,
    ) -> Donation:
        """Create a new, unsettled donation record.

        Args:
            campaign_id: Campaign the donation belongs to.
            amount_cents: Gross amount in minor units.
            payment_intent_id: Processor payment intent reference.
            organizer_account_id: Connected account holding the funds.
            donor_email: Optional donor email.
            currency: Three-letter currency code.
            platform_fee_cents: Platform fee retained, in minor units.
            created_at: Creation time (naive UTC). Defaults to now.

        Returns:
            Created Donation instance.
        """
        donation = Donation(
            campaign_id=campaign_id,
            amount_cents=amount_cents,
            stripe_payment_intent_id=payment_intent_id,
            organizer_account_id=organizer_account_id,
            donor_email=donor_email,
            currency=currency.upper(),
            platform_fee_cents=platform_fee_cents,
            settlement_status=SettlementStatus.PENDING.value,
        )
        if created_at is not None:
            donation.created_at = created_at
            donation.updated_at = created_at

        self.session.add(donation)
        await self.session.flush()

        logger.info(f"Created donation {donation.id} for campaign {campaign_id}")
        return donation

    async def create_campaign(self, title: str, slug: str, campaign_id: Optional[str] = None) -> Campaign:
        """Create a campaign row (title and slug feed the by-campaign view)."""
        campaign = Campaign(title=title, slug=slug)
        if campaign_id:
            campaign.id = campaign_id
        self.session.add(campaign)
        await self.session.flush()
        return campaign

    async def get_by_payment_intent_id(self, payment_intent_id: str) -> Optional[Donation]:
        """Get a donation by its processor payment intent reference.

        Args:
            payment_intent_id: Processor payment intent identifier.

        Returns:
            Donation instance if found, None otherwise.
        """
        result = await self.session.execute(
            select(Donation).where(Donation.stripe_payment_intent_id == payment_intent_id)
        )
        return result.scalar_one_or_none()

    async def select_settlement_candidates(
        self,
        since: datetime,
        limit: int,
    ) -> List[SettlementCandidate]:
        """Select donations created at or after `since` that are not settled.

        Ordering is deterministic (oldest first, then by id) so repeated calls
        over the same data return the same candidates.

        Args:
            since: Lower bound on created_at (naive UTC, inclusive).
            limit: Maximum number of candidates.

        Returns:
            List of SettlementCandidate.
        """
        result = await self.session.execute(
            select(
                Donation.stripe_payment_intent_id,
                Donation.campaign_id,
                Donation.organizer_account_id,
            )
            .where(
                and_(
                    Donation.created_at >= since,
                    Donation.stripe_payment_intent_id.is_not(None),
                    Donation.settlement_status != SettlementStatus.SETTLED.value,
                )
            )
            .order_by(Donation.created_at, Donation.id)
            .limit(limit)
        )

        candidates = [
            SettlementCandidate(
                payment_intent_id=row.stripe_payment_intent_id,
                campaign_id=row.campaign_id,
                connected_account_id=row.organizer_account_id,
            )
            for row in result.all()
        ]
        logger.info(f"Selected {len(candidates)} settlement candidates since {since.isoformat()}")
        return candidates

    async def update_donation_settlement(
        self,
        payment_intent_id: str,
        charge_id: str,
        balance_transaction_id: Optional[str],
        fee_cents: int,
        status: SettlementStatus,
    ) -> bool:
        """Overwrite the settlement fields of the donation for a payment intent.

        The write only applies when it moves the row forward (or keeps it in
        the same non-terminal state) and changes at least one value, so
        replaying the same processor observation is a no-op.

        Args:
            payment_intent_id: Unique payment intent reference.
            charge_id: Processor charge id.
            balance_transaction_id: Balance transaction id, if known.
            fee_cents: Processor fee in minor units (0 until settled).
            status: Settlement status the values represent.

        Returns:
            True if the row changed, False if it was already up to date or
            already further along.

        Raises:
            DonationNotFoundError: If no donation has this payment intent.
            ValueError: If fee_cents is negative.
        """
        if fee_cents < 0:
            raise ValueError(f"fee_cents must be non-negative, got {fee_cents}")

        stmt = (
            update(Donation)
            .where(
                and_(
                    Donation.stripe_payment_intent_id == payment_intent_id,
                    Donation.settlement_status.in_(status.prior_states),
                    or_(
                        Donation.stripe_charge_id.is_distinct_from(charge_id),
                        Donation.stripe_balance_txn_id.is_distinct_from(balance_transaction_id),
                        Donation.stripe_fee_cents != fee_cents,
                        Donation.settlement_status != status.value,
                    ),
                )
            )
            .values(
                stripe_charge_id=charge_id,
                stripe_balance_txn_id=balance_transaction_id,
                stripe_fee_cents=fee_cents,
                settlement_status=status.value,
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)

        if result.rowcount:
            logger.info(
                f"Updated donation {payment_intent_id} to {status.value} "
                f"(charge {charge_id}, fee {fee_cents})"
            )
            return True

        if await self.get_by_payment_intent_id(payment_intent_id) is None:
            raise DonationNotFoundError(payment_intent_id)

        logger.debug(f"Donation {payment_intent_id} already up to date")
        return False
