# donation_ledger package
__version__ = "0.1.0"

from .database import (
    Campaign,
    Donation,
    SettlementStatus,
    DonationRepository,
    init_db,
    close_db,
    get_db,
)
from .processors import (
    ProcessorClient,
    StripeProcessorClient,
    SimulatorProcessorClient,
    get_processor_client,
)

# Reconciliation exports
from .reconciliation import (
    ReconciliationWorker,
    ReconciliationResult,
    CandidateOutcome,
    SyncRequest,
)

# Reporting exports
from .reporting import (
    LedgerViewAggregator,
    LedgerViewKind,
    CSVExporter,
)
