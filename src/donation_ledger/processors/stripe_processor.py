"""Stripe implementation of the processor client."""

import os
import logging
from typing import Dict, Any, Optional

import stripe

from .base import (
    ProcessorClient,
    ProcessorCharge,
    ProcessorPaymentIntent,
    ProcessorBalanceTransaction,
    ProcessorError,
    ProcessorNotFoundError,
    ProcessorAuthenticationError,
    ProcessorConnectionError,
    ProcessorConfigurationError,
)

logger = logging.getLogger(__name__)


def _object_id(value: Any) -> Optional[str]:
    """Stripe returns either an id string or an expanded object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return value.get("id")


class StripeProcessorClient(ProcessorClient):
    """
    Processor client backed by stripe-python. The API key is passed on every
    request together with the connected account, so no global Stripe state
    is touched.
    """

    def __init__(self, api_key: Optional[str] = None):
        """Initialize the Stripe client.

        Args:
            api_key: Stripe secret key. Falls back to STRIPE_API_KEY env var.

        Raises:
            ProcessorConfigurationError: If no API key is provided or found.
        """
        self._api_key = api_key or os.getenv("STRIPE_API_KEY")
        if not self._api_key:
            raise ProcessorConfigurationError(
                "STRIPE_API_KEY must be provided either as argument or environment variable"
            )

    def _request_options(self, account_id: str) -> Dict[str, Any]:
        if not account_id:
            raise ProcessorError("A connected account is required for processor lookups")
        return {"api_key": self._api_key, "stripe_account": account_id}

    def _translate_error(self, e: Exception, what: str) -> ProcessorError:
        """Map Stripe errors to processor errors."""
        if isinstance(e, stripe.AuthenticationError):
            logger.error("Stripe authentication failed")
            return ProcessorAuthenticationError("Invalid Stripe API key")
        if isinstance(e, stripe.APIConnectionError):
            logger.error("Failed to connect to Stripe API")
            return ProcessorConnectionError("Failed to connect to Stripe API")
        if isinstance(e, stripe.InvalidRequestError) and "No such" in str(e):
            return ProcessorNotFoundError(f"{what} not found: {e}")
        logger.error(f"Stripe API error: {type(e).__name__}")
        return ProcessorError(f"Stripe API error while fetching {what}: {e}")

    def _convert_charge(self, charge: Dict[str, Any]) -> ProcessorCharge:
        return ProcessorCharge(
            id=charge["id"],
            balance_transaction_id=_object_id(charge.get("balance_transaction")),
            amount=charge.get("amount"),
            status=charge.get("status"),
        )

    def _charges_for(self, raw: Dict[str, Any], account_id: str) -> list:
        # Older API versions embed a charges list; newer ones only expose latest_charge.
        embedded = (raw.get("charges") or {}).get("data") or []
        if embedded:
            return [self._convert_charge(c) for c in embedded]

        latest = raw.get("latest_charge")
        if latest is None:
            return []
        if isinstance(latest, str):
            charge = stripe.Charge.retrieve(latest, **self._request_options(account_id))
            latest = charge.to_dict()
        return [self._convert_charge(latest)]

    def get_payment_intent(self, payment_intent_id: str, account_id: str) -> ProcessorPaymentIntent:
        """Retrieve a PaymentIntent from the connected account.

        Args:
            payment_intent_id: Stripe PaymentIntent id.
            account_id: Connected account id the intent was created on.

        Returns:
            ProcessorPaymentIntent with its charges (possibly empty).

        Raises:
            ProcessorError: On any Stripe failure.
        """
        options = self._request_options(account_id)
        try:
            pi = stripe.PaymentIntent.retrieve(
                payment_intent_id,
                expand=["latest_charge"],
                **options,
            )
            raw = pi.to_dict()
            return ProcessorPaymentIntent(
                id=raw["id"],
                status=raw.get("status"),
                amount=raw.get("amount"),
                charges=self._charges_for(raw, account_id),
            )
        except stripe.StripeError as e:
            raise self._translate_error(e, f"PaymentIntent {payment_intent_id}") from e

    def get_balance_transaction(self, balance_transaction_id: str, account_id: str) -> ProcessorBalanceTransaction:
        """Retrieve a BalanceTransaction from the connected account.

        Args:
            balance_transaction_id: Stripe BalanceTransaction id.
            account_id: Connected account id.

        Returns:
            ProcessorBalanceTransaction carrying the fee in minor units.

        Raises:
            ProcessorError: On any Stripe failure.
        """
        options = self._request_options(account_id)
        try:
            bal = stripe.BalanceTransaction.retrieve(balance_transaction_id, **options)
            raw = bal.to_dict()
            return ProcessorBalanceTransaction(
                id=raw["id"],
                fee=raw.get("fee") or 0,
                amount=raw.get("amount"),
                net=raw.get("net"),
                currency=raw.get("currency"),
            )
        except stripe.StripeError as e:
            raise self._translate_error(e, f"BalanceTransaction {balance_transaction_id}") from e

    def health_check(self) -> Dict[str, Any]:
        return {"ok": True, "provider": "stripe"}
