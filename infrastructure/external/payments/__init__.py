"""
Factory for payment gateway clients.
"""
from __future__ import annotations

from application.ports.payment_gateway import PaymentGateway
from domain.payment.entity import GatewayAccountContext


def get_gateway_client(context: GatewayAccountContext) -> PaymentGateway:
    """Build a gateway client bound to one processor's credentials."""
    from .stripe_client import StripeGatewayClient
    return StripeGatewayClient(context)
