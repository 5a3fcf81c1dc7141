"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
Gateway failures are values, never exceptions: every call yields a
GatewayResult holding either the gateway object or a GatewayError.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Protocol, runtime_checkable

from domain.payment.entity import GatewayAccountContext


class GatewayOperation(str, Enum):
    CREATE_CUSTOMER = "create_customer"
    UPDATE_CUSTOMER = "update_customer"
    CREATE_CHARGE = "create_charge"
    CREATE_PLAN = "create_plan"
    CREATE_PRODUCT = "create_product"
    RETRIEVE_CUSTOMER = "retrieve_customer"
    RETRIEVE_BALANCE_TRANSACTION = "retrieve_balance_transaction"
    CREATE_SUBSCRIPTION = "create_subscription"
    RETRIEVE_EVENT = "retrieve_event"

    @property
    def is_read_only(self) -> bool:
        return self in _READ_ONLY


_READ_ONLY = frozenset({
    GatewayOperation.RETRIEVE_CUSTOMER,
    GatewayOperation.RETRIEVE_BALANCE_TRANSACTION,
    GatewayOperation.RETRIEVE_EVENT,
})


class GatewayErrorKind(str, Enum):
    TRANSPORT = "transport"  # no response from the gateway
    API = "api"  # structured error body


@dataclass(frozen=True)
class GatewayError:
    kind: GatewayErrorKind
    error_class: str
    type: Optional[str] = None
    code: Optional[str] = None
    message: Optional[str] = None
    raw_body: Optional[dict[str, Any]] = None
    http_status: Optional[int] = None

    @property
    def is_card_error(self) -> bool:
        return self.error_class == "CardError" or self.type == "card_error"

    @property
    def is_transport(self) -> bool:
        return self.kind == GatewayErrorKind.TRANSPORT


@dataclass(frozen=True)
class GatewayResult:
    operation: GatewayOperation
    value: Any = None
    error: Optional[GatewayError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, operation: GatewayOperation, value: Any) -> "GatewayResult":
        return cls(operation=operation, value=value)

    @classmethod
    def failure(cls, operation: GatewayOperation, error: GatewayError) -> "GatewayResult":
        return cls(operation=operation, error=error)


@dataclass(frozen=True)
class IgnoreRule:
    """A gateway error that is safe to swallow; all three fields must match exactly."""

    error_class: str
    type: str
    message: str


PLAN_ALREADY_EXISTS = IgnoreRule(
    error_class="InvalidRequestError",
    type="invalid_request_error",
    message="Plan already exists.",
)


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol scoped to one GatewayAccountContext.

    Implementations must not raise for gateway or transport failures.
    """

    provider: str
    context: GatewayAccountContext

    async def execute(self, operation: GatewayOperation, payload: Any) -> GatewayResult: ...

    def construct_event(self, headers: dict[str, Any], body: bytes) -> dict[str, Any]: ...
