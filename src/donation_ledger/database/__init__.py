"""Database module for donation ledger persistence."""

from .models import (
    Base,
    Campaign,
    Donation,
    SettlementStatus,
)
from .session import (
    DatabaseNotInitializedError,
    get_db,
    get_session_factory,
    get_database_url,
    init_db,
    close_db,
    create_async_engine,
    get_async_session_factory,
    DatabaseManager,
)
from .repository import (
    DonationRepository,
    DonationNotFoundError,
    SettlementCandidate,
)
from .views import (
    daily_ledger_view,
    campaign_ledger_view,
    ledger_day_expression,
    coerce_day,
)

__all__ = [
    # Models
    "Base",
    "Campaign",
    "Donation",
    "SettlementStatus",
    # Session management
    "DatabaseNotInitializedError",
    "get_db",
    "get_session_factory",
    "get_database_url",
    "init_db",
    "close_db",
    "create_async_engine",
    "get_async_session_factory",
    "DatabaseManager",
    # Repositories
    "DonationRepository",
    "DonationNotFoundError",
    "SettlementCandidate",
    # Views
    "daily_ledger_view",
    "campaign_ledger_view",
    "ledger_day_expression",
    "coerce_day",
]
