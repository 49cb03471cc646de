"""Expose constructed client wrappers."""

from .graph import GraphAPIError, GraphClient
from .identity import AuthenticationError, AzureIdentityClient
from .netsuite import NetSuiteClient, NetSuitePaymentApplier, PaymentApplicationError
from .payment_store import DuplicatePaymentError, SQLitePaymentStore

__all__ = [
    "AuthenticationError",
    "AzureIdentityClient",
    "DuplicatePaymentError",
    "GraphAPIError",
    "GraphClient",
    "NetSuiteClient",
    "NetSuitePaymentApplier",
    "PaymentApplicationError",
    "SQLitePaymentStore",
]
