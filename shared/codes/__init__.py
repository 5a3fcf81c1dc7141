"""
Business codes shared by the domain, core and API layers.

Generic request/system outcomes live here; gateway and reconciliation
outcomes live in `shared.codes.payment_codes`.
"""
from enum import IntEnum


class BusinessCode(IntEnum):
    SUCCESS = 0

    # Request validation (1xxxx)
    PARAM_VALIDATION_ERROR = 10003

    # Generic business outcomes (2xxxx)
    BUSINESS_ERROR = 20000
    NOT_FOUND = 20006
    CONFLICT = 20007  # unique-key arbitration lost

    # Infrastructure (4xxxx)
    SYSTEM_ERROR = 40000
    SERVICE_UNAVAILABLE = 40003


__all__ = ["BusinessCode"]
