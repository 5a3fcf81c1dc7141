"""
API依赖项 - 组装支付应用服务（composition root）
"""
from typing import AsyncIterator, Callable

from fastapi import Depends

from application.ports.payment_gateway import PaymentGateway
from application.services.notification_service import NotificationService
from application.services.payment_service import PaymentService
from core.settings import PaymentSettings, payment_settings
from domain.payment.entity import GatewayAccountContext
from infrastructure.external.api_clients import CiviCRMClient
from infrastructure.external.payments import get_gateway_client
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


def get_payment_settings() -> PaymentSettings:
    return payment_settings


def get_gateway_factory() -> Callable[[GatewayAccountContext], PaymentGateway]:
    return get_gateway_client


async def get_civicrm_client(settings: PaymentSettings = Depends(get_payment_settings)) -> AsyncIterator[CiviCRMClient]:
    """每个请求一个 CRM 客户端，请求结束后关闭连接"""
    async with CiviCRMClient(settings.civicrm) as client:
        yield client


async def get_payment_service(
    settings: PaymentSettings = Depends(get_payment_settings),
    gateway_factory=Depends(get_gateway_factory),
    crm: CiviCRMClient = Depends(get_civicrm_client),
) -> PaymentService:
    return PaymentService(
        settings=settings,
        uow_factory=SQLAlchemyUnitOfWork,
        gateway_factory=gateway_factory,
        contacts=crm,
        discounts=crm,
        prices=crm,
        memberships=crm,
        audit_notes=crm,
    )


async def get_notification_service(
    settings: PaymentSettings = Depends(get_payment_settings),
    gateway_factory=Depends(get_gateway_factory),
    crm: CiviCRMClient = Depends(get_civicrm_client),
) -> NotificationService:
    return NotificationService(
        settings=settings,
        uow_factory=SQLAlchemyUnitOfWork,
        gateway_factory=gateway_factory,
        ledger=crm,
        pipeline=crm,
    )
