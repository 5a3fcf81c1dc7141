"""
镜像表事务边界

一个 UoW 对应一次短事务。服务层不在 UoW 内部调用网关：先读映射、关闭，
调用 Stripe，再开新的 UoW 写映射。
"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.payment.repository import (
    CustomerMappingRepository,
    EventLogRepository,
    PlanMappingRepository,
    SubscriptionMappingRepository,
)


class AbstractUnitOfWork(ABC):
    customers: CustomerMappingRepository
    plans: PlanMappingRepository
    subscriptions: SubscriptionMappingRepository
    event_log: EventLogRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._readonly = readonly
        self._committed = False
        self.customers = self.plans = self.subscriptions = self.event_log = None  # type: ignore[assignment]

    @property
    def readonly(self) -> bool:
        return self._readonly

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        # 异常回滚；正常退出且未显式提交的写事务自动提交
        if exc is not None:
            await self.rollback()
        elif not (self._readonly or self._committed):
            await self.commit()

    @abstractmethod
    async def commit(self) -> None: ...

    @abstractmethod
    async def rollback(self) -> None: ...
