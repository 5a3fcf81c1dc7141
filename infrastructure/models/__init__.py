"""Infrastructure models package exports."""
from .base import Base, metadata
from .payment import (
    StripeCustomerModel,
    StripePlanModel,
    StripeSubscriptionModel,
    StripeEventLogModel,
)

__all__ = [
    "Base",
    "metadata",
    "StripeCustomerModel",
    "StripePlanModel",
    "StripeSubscriptionModel",
    "StripeEventLogModel",
]
