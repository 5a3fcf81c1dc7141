"""
Payments API routes.

Keep this thin: services return uniform outcomes, the route only picks the
HTTP status and wraps the envelope. No SDK details here.
"""
from __future__ import annotations

from typing import Union

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.dependencies import get_notification_service, get_payment_service
from application.dtos.payments import (
    PaymentOutcome,
    PaymentRequest,
    RecurringPaymentRequest,
    ReplayOutcome,
    ReplayRequest,
)
from application.services.notification_service import NotificationService
from application.services.payment_service import PaymentService
from core.exceptions import business_code_to_http_status
from core.logging_config import get_logger
from core.response import error_response, success_response


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)


def _respond(outcome: Union[PaymentOutcome, ReplayOutcome], request: Request, message: str):
    if outcome.ok:
        return success_response(data=outcome.model_dump(mode="json"), message=message)
    error = outcome.error
    response = error_response(
        code=error.code,
        message=error.message,
        error_type=error.error_type,
        details={"fatal": error.fatal, "gateway_code": error.gateway_code},
        request_id=getattr(request.state, "request_id", None),
        data=outcome.model_dump(mode="json"),
    )
    return JSONResponse(
        status_code=business_code_to_http_status(error.code),
        content=response.model_dump(mode="json"),
    )


@router.post("/charges", summary="Submit a payment")
async def submit_payment(
    payload: PaymentRequest,
    request: Request,
    service: PaymentService = Depends(get_payment_service),
):
    outcome = await service.submit_payment(payload)
    return _respond(outcome, request, "Payment processed")


@router.post("/subscriptions", summary="Submit a recurring payment")
async def submit_recurring_payment(
    payload: RecurringPaymentRequest,
    request: Request,
    service: PaymentService = Depends(get_payment_service),
):
    outcome = await service.submit_recurring_payment(payload)
    return _respond(outcome, request, "Subscription created")


@router.post("/ipn/replay", summary="Replay a notification")
async def replay_notification(
    payload: ReplayRequest,
    request: Request,
    service: NotificationService = Depends(get_notification_service),
):
    outcome = await service.replay(payload)
    message = "Ipn already processed." if outcome.status == "already_processed" else "Ipn processed"
    return _respond(outcome, request, message)


@router.post("/webhooks/{processor_id}", summary="Receive a Stripe webhook")
async def receive_webhook(
    processor_id: int,
    request: Request,
    service: NotificationService = Depends(get_notification_service),
):
    raw_body = await request.body()
    headers = {k: v for k, v in request.headers.items()}
    outcome = await service.receive_webhook(processor_id, headers, raw_body)
    # 2xx acknowledges receipt; duplicates are acknowledged too
    return _respond(outcome, request, "Webhook received")


@router.get("/processors/{processor_id}/config", summary="Public processor configuration")
async def processor_config(
    processor_id: int,
    service: PaymentService = Depends(get_payment_service),
):
    return success_response(data=service.public_config(processor_id).model_dump(mode="json"))
