"""Ledger reporting: aggregated views and CSV export."""

from .aggregator import (
    LedgerViewKind,
    LedgerViewAggregator,
    DailyLedgerRow,
    CampaignLedgerRow,
    parse_report_date,
)
from .csv_exporter import CSVExporter, format_csv_value

__all__ = [
    "LedgerViewKind",
    "LedgerViewAggregator",
    "DailyLedgerRow",
    "CampaignLedgerRow",
    "parse_report_date",
    "CSVExporter",
    "format_csv_value",
]
