"""
Gateway and reconciliation outcome codes, plus CRM discount type constants.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    """Outcome codes for submission, notification and configuration failures."""

    # Gateway errors (6xxxx)
    GATEWAY_ERROR = 60000
    CARD_DECLINED = 60001
    SIGNATURE_ERROR = 60002
    NO_RESPONSE = 60003

    # Local reconciliation errors (7xxxx)
    FATAL = 70000
    PAYER_EMAIL_MISSING = 70001
    PROCESSOR_NOT_CONFIGURED = 70002
    REPLAY_REJECTED = 70003
    MISSING_CARD_TOKEN = 70004
    # CRM REST call failed or returned is_error
    CRM_REQUEST_FAILED = 70005


# Legacy numeric code used when the gateway does not report one.
UNKNOWN_GATEWAY_ERROR = 9000

# Discount code amount types as stored by CiviDiscount.
DISCOUNT_PERCENTAGE = 1
DISCOUNT_FIXED = 2
DISCOUNT_GIFTCARD = 3
