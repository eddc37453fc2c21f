"""Simulator processor for exercising reconciliation without real PSP calls."""

import time
import logging
import threading
from typing import Dict, Any, Optional, Set, Tuple, List
from dataclasses import dataclass, field

from .base import (
    ProcessorClient,
    ProcessorCharge,
    ProcessorPaymentIntent,
    ProcessorBalanceTransaction,
    ProcessorError,
    ProcessorNotFoundError,
    ProcessorConnectionError,
)

logger = logging.getLogger(__name__)


@dataclass
class SimulatedPaymentIntent:
    """In-memory payment intent living in one connected account."""
    id: str
    account_id: str
    amount: int = 0
    charge_id: Optional[str] = None
    balance_transaction_id: Optional[str] = None


@dataclass
class SimulatorConfig:
    """Configuration for simulator behavior."""
    delay_ms: int = 0  # Simulated response delay in ms
    failing_payment_intents: Set[str] = field(default_factory=set)
    failing_balance_transactions: Set[str] = field(default_factory=set)


class SimulatorProcessorClient(ProcessorClient):
    """
    Simulator processor for running reconciliation without a real PSP.

    Features:
    - In-memory payment intents and balance transactions, keyed by connected account
    - Lookups outside the owning account behave like Stripe: not found
    - Configurable failures per payment intent or balance transaction
    - Delayed response simulation
    - Call log for asserting account scoping
    """

    def __init__(self, config: Optional[SimulatorConfig] = None):
        """Initialize the simulator with optional configuration."""
        self.config = config or SimulatorConfig()
        self._payment_intents: Dict[Tuple[str, str], SimulatedPaymentIntent] = {}
        self._balance_transactions: Dict[Tuple[str, str], ProcessorBalanceTransaction] = {}
        self._lock = threading.Lock()
        self.calls: List[Tuple[str, str, str]] = []
        logger.info("SimulatorProcessorClient initialized")

    def _apply_delay(self) -> None:
        """Apply configured response delay."""
        if self.config.delay_ms > 0:
            time.sleep(self.config.delay_ms / 1000.0)

    def _record(self, method: str, object_id: str, account_id: str) -> None:
        with self._lock:
            self.calls.append((method, object_id, account_id))

    def add_payment_intent(
        self,
        payment_intent_id: str,
        account_id: str,
        amount: int = 0,
        charge_id: Optional[str] = None,
        balance_transaction_id: Optional[str] = None,
        fee: Optional[int] = None,
    ) -> SimulatedPaymentIntent:
        """Register a payment intent (and optionally its settlement) in an account."""
        intent = SimulatedPaymentIntent(
            id=payment_intent_id,
            account_id=account_id,
            amount=amount,
            charge_id=charge_id,
            balance_transaction_id=balance_transaction_id,
        )
        self._payment_intents[(account_id, payment_intent_id)] = intent
        if balance_transaction_id and fee is not None:
            self._balance_transactions[(account_id, balance_transaction_id)] = ProcessorBalanceTransaction(
                id=balance_transaction_id,
                fee=fee,
                amount=amount,
                net=amount - fee,
                currency="usd",
            )
        return intent

    def get_payment_intent(self, payment_intent_id: str, account_id: str) -> ProcessorPaymentIntent:
        """Return the simulated payment intent from the given account."""
        self._record("get_payment_intent", payment_intent_id, account_id)
        self._apply_delay()

        if payment_intent_id in self.config.failing_payment_intents:
            raise ProcessorConnectionError(f"Simulated failure for PaymentIntent {payment_intent_id}")

        intent = self._payment_intents.get((account_id, payment_intent_id))
        if intent is None:
            raise ProcessorNotFoundError(f"No such payment_intent: '{payment_intent_id}'")

        charges = []
        if intent.charge_id:
            charges.append(ProcessorCharge(
                id=intent.charge_id,
                balance_transaction_id=intent.balance_transaction_id,
                amount=intent.amount,
                status="succeeded",
            ))
        return ProcessorPaymentIntent(
            id=intent.id,
            status="succeeded" if charges else "requires_payment_method",
            amount=intent.amount,
            charges=charges,
        )

    def get_balance_transaction(self, balance_transaction_id: str, account_id: str) -> ProcessorBalanceTransaction:
        """Return the simulated balance transaction from the given account."""
        self._record("get_balance_transaction", balance_transaction_id, account_id)
        self._apply_delay()

        if balance_transaction_id in self.config.failing_balance_transactions:
            raise ProcessorError(f"Simulated failure for BalanceTransaction {balance_transaction_id}")

        bal = self._balance_transactions.get((account_id, balance_transaction_id))
        if bal is None:
            raise ProcessorNotFoundError(f"No such balance_transaction: '{balance_transaction_id}'")
        return bal

    def clear(self) -> None:
        """Clear all stored objects and the call log (for test cleanup)."""
        self._payment_intents.clear()
        self._balance_transactions.clear()
        self.calls.clear()

    def health_check(self) -> Dict[str, Any]:
        """Return health status of the simulator."""
        return {
            "ok": True,
            "provider": "simulator",
            "payment_intent_count": len(self._payment_intents),
            "config": {
                "delay_ms": self.config.delay_ms,
            },
        }
