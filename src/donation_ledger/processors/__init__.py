"""Payment processor clients used for settlement lookups."""

import os
from typing import Callable, Optional

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
from .stripe_processor import StripeProcessorClient
from .simulator_processor import (
    SimulatorProcessorClient,
    SimulatorConfig,
    SimulatedPaymentIntent,
)


def get_processor_client(provider: Optional[str] = None, api_key: Optional[str] = None) -> ProcessorClient:
    """Factory function to get the configured processor client.

    Args:
        provider: Processor name. Falls back to LEDGER_PROCESSOR env var, then "stripe".
        api_key: Optional API key for the provider.

    Returns:
        ProcessorClient implementation for the provider.

    Raises:
        ProcessorConfigurationError: If the provider is unsupported or not configured.
    """
    provider = (provider or os.getenv("LEDGER_PROCESSOR") or "stripe").lower()
    if provider == "stripe":
        return StripeProcessorClient(api_key=api_key)
    if provider == "simulator":
        return SimulatorProcessorClient()
    raise ProcessorConfigurationError(f"Unsupported processor: {provider}")


def get_processor_factory() -> Callable[[], ProcessorClient]:
    """
    Dependency injection function for FastAPI. Returns a factory rather than
    a client so configuration errors surface inside the handler.
    """
    return get_processor_client


__all__ = [
    # Base classes and models
    "ProcessorClient",
    "ProcessorCharge",
    "ProcessorPaymentIntent",
    "ProcessorBalanceTransaction",
    # Errors
    "ProcessorError",
    "ProcessorNotFoundError",
    "ProcessorAuthenticationError",
    "ProcessorConnectionError",
    "ProcessorConfigurationError",
    # Clients
    "StripeProcessorClient",
    "SimulatorProcessorClient",
    "SimulatorConfig",
    "SimulatedPaymentIntent",
    # Factories
    "get_processor_client",
    "get_processor_factory",
]
