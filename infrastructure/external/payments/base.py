"""
Base gateway client implementing shared concerns: thread offload, retry, logging.

Concrete providers subclass and implement `_dispatch` (one blocking SDK call
per operation) and `_to_gateway_error` (SDK exception -> GatewayError).
"""
from __future__ import annotations

from functools import partial
from typing import Any, Callable, Optional

import anyio
from tenacity import (
    AsyncRetrying,
    stop_after_attempt,
    wait_exponential,
    retry_if_result,
)

from core.logging_config import get_logger
from application.ports.payment_gateway import (
    GatewayError,
    GatewayOperation,
    GatewayResult,
    PaymentGateway,
)
from domain.payment.entity import GatewayAccountContext


logger = get_logger(__name__)


def _is_transport_failure(result: GatewayResult) -> bool:
    return result.error is not None and result.error.is_transport


class BaseGatewayClient(PaymentGateway):
    provider: str = "base"

    def __init__(
        self,
        context: GatewayAccountContext,
        *,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
    ) -> None:
        self.context = context
        self._timeouts_cfg = timeouts or {"connect": 5.0, "read": 30.0, "total": 60.0}
        self._retry_cfg = retry or {"max": 0, "base": 0.2}

    async def execute(self, operation: GatewayOperation, payload: Any) -> GatewayResult:
        if operation.is_read_only and int(self._retry_cfg["max"]) > 0:
            return await self._retry(partial(self._execute_once, operation, payload))
        return await self._execute_once(operation, payload)

    async def _execute_once(self, operation: GatewayOperation, payload: Any) -> GatewayResult:
        self._log("gateway_request", operation=operation.value)
        try:
            value = await anyio.to_thread.run_sync(partial(self._dispatch, operation, payload))
        except Exception as exc:
            error = self._to_gateway_error(exc)
            if error is None:
                raise
            logger.warning(
                "gateway_request_failed",
                provider=self.provider,
                processor_id=self.context.processor_id,
                operation=operation.value,
                kind=error.kind.value,
                error_class=error.error_class,
                error_type=error.type,
                error_code=error.code,
            )
            return GatewayResult.failure(operation, error)
        return GatewayResult.success(operation, value)

    async def _retry(self, fn: Callable[[], Any]) -> GatewayResult:
        # Only transport failures of read-only calls are retried.
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_result(_is_transport_failure),
            retry_error_callback=lambda state: state.outcome.result(),
        ):
            with attempt:
                result = await fn()
            if not attempt.retry_state.outcome.failed:
                attempt.retry_state.set_result(result)
        return result

    def _dispatch(self, operation: GatewayOperation, payload: Any) -> Any:
        raise NotImplementedError

    def _to_gateway_error(self, exc: Exception) -> Optional[GatewayError]:
        """Return None for exceptions that are not gateway failures."""
        raise NotImplementedError

    def construct_event(self, headers: dict[str, Any], body: bytes) -> dict[str, Any]:
        raise NotImplementedError

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            processor_id=self.context.processor_id,
            mode=self.context.mode.value,
            **kwargs,
        )
