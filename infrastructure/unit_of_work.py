"""SQLAlchemy Unit of Work 实现

One unit of work is one short transaction. Services open a fresh one per
step (read mapping, write mapping) so no transaction spans a gateway call.
"""
from __future__ import annotations

from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.database import AsyncSessionLocal
from infrastructure.repositories.payment_repository import (
    SQLAlchemyCustomerMappingRepository,
    SQLAlchemyEventLogRepository,
    SQLAlchemyPlanMappingRepository,
    SQLAlchemySubscriptionMappingRepository,
)


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        session: Optional[AsyncSession] = None,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        # 外部传入的会话由调用方关闭
        self._owns_session = session is None
        self.session: Optional[AsyncSession] = session

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        if self.session is None:
            self.session = self._session_factory()
        self.customers = SQLAlchemyCustomerMappingRepository(self.session)
        self.plans = SQLAlchemyPlanMappingRepository(self.session)
        self.subscriptions = SQLAlchemySubscriptionMappingRepository(self.session)
        self.event_log = SQLAlchemyEventLogRepository(self.session)
        if not self._readonly and not self.session.in_transaction():
            await self.session.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            if self._owns_session and self.session is not None:
                await self.session.close()
                self.session = None
            self.customers = None  # type: ignore[assignment]
            self.plans = None  # type: ignore[assignment]
            self.subscriptions = None  # type: ignore[assignment]
            self.event_log = None  # type: ignore[assignment]

    async def commit(self) -> None:
        if not self._readonly and self.session is not None and self.session.in_transaction():
            await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        if self.session is not None and self.session.in_transaction():
            await self.session.rollback()
        self._committed = False
