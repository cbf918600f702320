"""Core order fulfillment and settlement logic."""
from .card_reader import CardReader, CardScan, CardScanFeed, ScanAttempt
from .credentials import CredentialVerifier, validate_pin_format
from .identity import IdentityResolver, Payer, PayerSummary
from .ledger import LineRequest, OrderDetails, OrderLedger
from .settlement import SettlementEngine, SettlementResult

__all__ = [
    "CardReader",
    "CardScan",
    "CardScanFeed",
    "ScanAttempt",
    "CredentialVerifier",
    "validate_pin_format",
    "IdentityResolver",
    "Payer",
    "PayerSummary",
    "LineRequest",
    "OrderDetails",
    "OrderLedger",
    "SettlementEngine",
    "SettlementResult",
]
