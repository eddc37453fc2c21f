from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field


class ProcessorError(Exception):
    """A processor lookup failed."""


class ProcessorNotFoundError(ProcessorError):
    """The object does not exist in the given connected account."""


class ProcessorAuthenticationError(ProcessorError):
    """The processor rejected our credentials."""


class ProcessorConnectionError(ProcessorError):
    """The processor could not be reached."""


class ProcessorConfigurationError(ValueError):
    """The processor client cannot be built (missing key, unknown provider)."""


# Canonical models
class ProcessorCharge(BaseModel):
    id: str
    balance_transaction_id: Optional[str] = None
    amount: Optional[int] = None  # minor units
    status: Optional[str] = None


class ProcessorPaymentIntent(BaseModel):
    id: str
    status: Optional[str] = None
    amount: Optional[int] = None  # minor units
    charges: List[ProcessorCharge] = Field(default_factory=list)

    @property
    def first_charge(self) -> Optional[ProcessorCharge]:
        return self.charges[0] if self.charges else None


class ProcessorBalanceTransaction(BaseModel):
    id: str
    fee: int = Field(..., ge=0)  # minor units
    amount: Optional[int] = None
    net: Optional[int] = None
    currency: Optional[str] = None


class ProcessorClient(ABC):
    """
    Read-only view of the payment processor. Every lookup is scoped to the
    connected account that owns the funds; implementations must never fall
    back to the platform account.
    """

    @abstractmethod
    def get_payment_intent(self, payment_intent_id: str, account_id: str) -> ProcessorPaymentIntent:
        """
        Retrieve a payment intent and its charges from the connected account.
        """
        raise NotImplementedError

    @abstractmethod
    def get_balance_transaction(self, balance_transaction_id: str, account_id: str) -> ProcessorBalanceTransaction:
        """
        Retrieve the balance transaction recording a charge's settlement and fee.
        """
        raise NotImplementedError

    def health_check(self) -> Dict[str, Any]:
        return {"ok": True}
