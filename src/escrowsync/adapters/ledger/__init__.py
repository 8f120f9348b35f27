"""Public interface for the ledger gateway adapter."""

from __future__ import annotations

from .client import NOT_FOUND_CODES, JsonRpcLedgerClient, LedgerAPIError, LedgerRpcError
from .feed import LedgerNotificationFeed
from .schema import AgreementPayload, MilestonePayload, NotificationPayload
from .translator import parse_agreement, parse_milestone, parse_notification, parse_notifications

__all__ = [
    "NOT_FOUND_CODES",
    "AgreementPayload",
    "JsonRpcLedgerClient",
    "LedgerAPIError",
    "LedgerNotificationFeed",
    "LedgerRpcError",
    "MilestonePayload",
    "NotificationPayload",
    "parse_agreement",
    "parse_milestone",
    "parse_notification",
    "parse_notifications",
]
