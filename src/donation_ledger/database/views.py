"""Derived, read-only ledger views over the donations table."""

from datetime import date, datetime
from typing import Union

from sqlalchemy import Select, select, func

from .models import Campaign, Donation


def _money_columns():
    return (
        func.count(Donation.id).label("donations_count"),
        func.coalesce(func.sum(Donation.amount_cents), 0).label("gross_cents"),
        func.coalesce(func.sum(Donation.stripe_fee_cents), 0).label("stripe_fee_cents"),
        func.coalesce(func.sum(Donation.platform_fee_cents), 0).label("platform_fee_cents"),
        func.coalesce(func.sum(Donation.refunded_cents), 0).label("refunded_cents"),
    )


def ledger_day_expression():
    """UTC calendar day of a donation (timestamps are stored as naive UTC)."""
    return func.date(Donation.created_at)


def daily_ledger_view() -> Select:
    """One row per UTC day with summed amounts across all campaigns."""
    day = ledger_day_expression()
    return select(day.label("day"), *_money_columns()).group_by(day)


def campaign_ledger_view() -> Select:
    """One row per campaign with lifetime totals."""
    return (
        select(
            Donation.campaign_id.label("campaign_id"),
            Campaign.title.label("title"),
            Campaign.slug.label("slug"),
            *_money_columns(),
        )
        .outerjoin(Campaign, Campaign.id == Donation.campaign_id)
        .group_by(Donation.campaign_id, Campaign.title, Campaign.slug)
    )


def coerce_day(value: Union[str, date, datetime]) -> date:
    """Normalize the day column, which SQLite returns as text."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])
