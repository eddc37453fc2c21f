"""Read access to the precomputed ledger views."""

import enum
import logging
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Union

from pydantic import BaseModel, Field
from sqlalchemy import desc
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import (
    Donation,
    daily_ledger_view,
    campaign_ledger_view,
    ledger_day_expression,
    coerce_day,
)

logger = logging.getLogger(__name__)


class LedgerViewKind(str, enum.Enum):
    """Available ledger views."""
    DAILY = "daily"
    CAMPAIGN = "campaign"


class DailyLedgerRow(BaseModel):
    """Totals for one UTC day across all campaigns. Field order is export order."""
    day: date
    donations_count: int = 0
    gross_cents: int = 0
    stripe_fee_cents: int = 0
    platform_fee_cents: int = 0
    refunded_cents: int = 0
    net_cents: int = Field(0, description="gross_cents - stripe_fee_cents")
    net_to_organizer_cents: int = Field(0, description="net after refunds and platform fee")


class CampaignLedgerRow(BaseModel):
    """Lifetime totals for one campaign. Field order is export order."""
    campaign_id: str
    title: Optional[str] = None
    slug: Optional[str] = None
    donations_count: int = 0
    gross_cents: int = 0
    stripe_fee_cents: int = 0
    platform_fee_cents: int = 0
    refunded_cents: int = 0
    net_cents: int = 0
    net_to_organizer_cents: int = 0


LedgerRow = Union[DailyLedgerRow, CampaignLedgerRow]


def parse_report_date(value: Optional[str]) -> Optional[date]:
    """Parse an ISO date or datetime string to its date part.

    Raises:
        ValueError: If the value is not an ISO-8601 date.
    """
    if not value:
        return None
    return date.fromisoformat(value.split("T")[0])


def _derived_amounts(row) -> dict:
    gross = int(row.gross_cents)
    stripe_fee = int(row.stripe_fee_cents)
    platform_fee = int(row.platform_fee_cents)
    refunded = int(row.refunded_cents)
    return {
        "donations_count": int(row.donations_count),
        "gross_cents": gross,
        "stripe_fee_cents": stripe_fee,
        "platform_fee_cents": platform_fee,
        "refunded_cents": refunded,
        "net_cents": gross - stripe_fee,
        "net_to_organizer_cents": gross - refunded - stripe_fee - platform_fee,
    }


class LedgerViewAggregator:
    """Read-only access to the daily and by-campaign ledger views."""

    def __init__(self, session: AsyncSession):
        """Initialize the aggregator.

        Args:
            session: Async database session used for reads only.
        """
        self.session = session

    async def get_view(
        self,
        kind: LedgerViewKind,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[LedgerRow]:
        """Return the rows of a ledger view.

        Args:
            kind: Which view to read.
            start: First day to include (daily view only).
            end: Last day to include (daily view only).

        Returns:
            Daily rows ascending by day, or campaign rows descending by gross.
            The campaign view is lifetime-only and ignores start/end.
        """
        kind = LedgerViewKind(kind)
        if kind is LedgerViewKind.CAMPAIGN:
            return await self.campaign_rows()
        return await self.daily_rows(start=start, end=end)

    async def daily_rows(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[DailyLedgerRow]:
        """Daily totals, filtered inclusively on UTC day."""
        query = daily_ledger_view()
        if start is not None:
            query = query.where(Donation.created_at >= datetime.combine(start, time.min))
        if end is not None:
            query = query.where(Donation.created_at < datetime.combine(end + timedelta(days=1), time.min))
        query = query.order_by(ledger_day_expression())

        result = await self.session.execute(query)
        rows = [
            DailyLedgerRow(day=coerce_day(row.day), **_derived_amounts(row))
            for row in result.all()
        ]
        logger.info(f"Found {len(rows)} daily ledger rows from {start or 'beginning'} to {end or 'now'}")
        return rows

    async def campaign_rows(self) -> List[CampaignLedgerRow]:
        """Lifetime totals per campaign, largest gross first."""
        query = campaign_ledger_view()
        query = query.order_by(desc("gross_cents"), Donation.campaign_id)

        result = await self.session.execute(query)
        rows = [
            CampaignLedgerRow(
                campaign_id=row.campaign_id,
                title=row.title,
                slug=row.slug,
                **_derived_amounts(row),
            )
            for row in result.all()
        ]
        logger.info(f"Found {len(rows)} campaign ledger rows")
        return rows
