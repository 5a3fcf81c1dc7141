"""
Stripe 镜像仓储实现 - 使用SQLAlchemy实现数据访问

唯一键冲突在 savepoint 内捕获并转换为 MappingConflict，外层事务保持可用。
"""
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func
from sqlalchemy.exc import IntegrityError

from domain.common.exceptions import MappingConflict
from domain.payment.entity import CustomerMapping, PlanMapping, SubscriptionMapping, EventLogEntry
from domain.payment.repository import (
    CustomerMappingRepository,
    PlanMappingRepository,
    SubscriptionMappingRepository,
    EventLogRepository,
)
from infrastructure.models.payment import (
    StripeCustomerModel,
    StripePlanModel,
    StripeSubscriptionModel,
    StripeEventLogModel,
)
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyCustomerMappingRepository(CustomerMappingRepository):
    """客户镜像仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: StripeCustomerModel) -> CustomerMapping:
        """将数据库模型转换为领域实体"""
        return CustomerMapping(
            id=model.id,
            email=model.email,
            customer_id=model.customer_id,
            is_live=bool(model.is_live),
            processor_id=model.processor_id,
        )

    def _to_model(self, entity: CustomerMapping) -> StripeCustomerModel:
        return StripeCustomerModel(
            email=entity.email,
            customer_id=entity.customer_id,
            is_live=entity.is_live,
            processor_id=entity.processor_id,
        )

    async def get(self, email: str, is_live: bool, processor_id: int) -> Optional[CustomerMapping]:
        result = await self.session.execute(
            select(StripeCustomerModel).where(
                StripeCustomerModel.email == email,
                StripeCustomerModel.is_live == is_live,
                StripeCustomerModel.processor_id == processor_id,
            )
        )
        db_customer = result.scalar_one_or_none()
        return self._to_entity(db_customer) if db_customer else None

    async def add(self, mapping: CustomerMapping) -> CustomerMapping:
        """插入客户镜像"""
        db_customer = self._to_model(mapping)
        try:
            async with self.session.begin_nested():
                self.session.add(db_customer)
                await self.session.flush()
        except IntegrityError:
            logger.warning(
                "customer_mapping_conflict",
                email=mapping.email,
                is_live=mapping.is_live,
                processor_id=mapping.processor_id,
            )
            raise MappingConflict(
                "stripe_customers",
                {"email": mapping.email, "is_live": mapping.is_live, "processor_id": mapping.processor_id},
            )
        logger.info(
            "customer_mapping_created",
            mapping_id=db_customer.id,
            customer_id=db_customer.customer_id,
            processor_id=db_customer.processor_id,
        )
        return self._to_entity(db_customer)

    async def replace(self, stale_customer_id: str, mapping: CustomerMapping) -> CustomerMapping:
        """用新行替换本请求读到的旧行；旧行已被其他请求修复时抛出 MappingConflict"""
        key = {"email": mapping.email, "is_live": mapping.is_live, "processor_id": mapping.processor_id}
        db_customer = self._to_model(mapping)
        try:
            async with self.session.begin_nested():
                deleted = await self.session.execute(
                    delete(StripeCustomerModel).where(
                        StripeCustomerModel.email == mapping.email,
                        StripeCustomerModel.is_live == mapping.is_live,
                        StripeCustomerModel.processor_id == mapping.processor_id,
                        StripeCustomerModel.customer_id == stale_customer_id,
                    )
                )
                if deleted.rowcount == 0:
                    raise MappingConflict("stripe_customers", {**key, "stale_customer_id": stale_customer_id})
                self.session.add(db_customer)
                await self.session.flush()
        except IntegrityError:
            logger.warning("customer_mapping_conflict", stale_customer_id=stale_customer_id, **key)
            raise MappingConflict("stripe_customers", {**key, "stale_customer_id": stale_customer_id})
        logger.info(
            "customer_mapping_replaced",
            mapping_id=db_customer.id,
            customer_id=db_customer.customer_id,
            processor_id=db_customer.processor_id,
        )
        return self._to_entity(db_customer)

    async def count(self, email: str, is_live: bool, processor_id: int) -> int:
        result = await self.session.execute(
            select(func.count(StripeCustomerModel.id)).where(
                StripeCustomerModel.email == email,
                StripeCustomerModel.is_live == is_live,
                StripeCustomerModel.processor_id == processor_id,
            )
        )
        return result.scalar_one()


class SQLAlchemyPlanMappingRepository(PlanMappingRepository):
    """计划镜像仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def exists(self, plan_id: str, is_live: bool, processor_id: int) -> bool:
        result = await self.session.execute(
            select(func.count(StripePlanModel.id)).where(
                StripePlanModel.plan_id == plan_id,
                StripePlanModel.is_live == is_live,
                StripePlanModel.processor_id == processor_id,
            )
        )
        return result.scalar_one() > 0

    async def add(self, mapping: PlanMapping) -> PlanMapping:
        db_plan = StripePlanModel(
            plan_id=mapping.plan_id,
            is_live=mapping.is_live,
            processor_id=mapping.processor_id,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(db_plan)
                await self.session.flush()
        except IntegrityError:
            raise MappingConflict(
                "stripe_plans",
                {"plan_id": mapping.plan_id, "is_live": mapping.is_live, "processor_id": mapping.processor_id},
            )
        return PlanMapping(
            id=db_plan.id,
            plan_id=db_plan.plan_id,
            is_live=bool(db_plan.is_live),
            processor_id=db_plan.processor_id,
        )


class SQLAlchemySubscriptionMappingRepository(SubscriptionMappingRepository):
    """订阅镜像仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: StripeSubscriptionModel) -> SubscriptionMapping:
        return SubscriptionMapping(
            id=model.id,
            subscription_id=model.subscription_id,
            customer_id=model.customer_id,
            contribution_recur_id=model.contribution_recur_id,
            processor_id=model.processor_id,
            is_live=bool(model.is_live),
            end_time=model.end_time,
        )

    async def add(self, mapping: SubscriptionMapping) -> SubscriptionMapping:
        db_sub = StripeSubscriptionModel(
            subscription_id=mapping.subscription_id,
            customer_id=mapping.customer_id,
            contribution_recur_id=mapping.contribution_recur_id,
            processor_id=mapping.processor_id,
            is_live=mapping.is_live,
            end_time=mapping.end_time,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(db_sub)
                await self.session.flush()
        except IntegrityError:
            raise MappingConflict("stripe_subscriptions", {"subscription_id": mapping.subscription_id})
        logger.info(
            "subscription_mapping_created",
            subscription_id=db_sub.subscription_id,
            contribution_recur_id=db_sub.contribution_recur_id,
            end_time=db_sub.end_time,
        )
        return self._to_entity(db_sub)

    async def get(self, subscription_id: str) -> Optional[SubscriptionMapping]:
        result = await self.session.execute(
            select(StripeSubscriptionModel).where(StripeSubscriptionModel.subscription_id == subscription_id)
        )
        db_sub = result.scalar_one_or_none()
        return self._to_entity(db_sub) if db_sub else None


class SQLAlchemyEventLogRepository(EventLogRepository):
    """事件日志仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: StripeEventLogModel) -> EventLogEntry:
        return EventLogEntry(
            id=model.id,
            processor_id=model.processor_id,
            event_id=model.event_id,
            event_type=model.event_type,
            payload=model.payload or {},
            created_at=model.created_at,
        )

    async def add(self, entry: EventLogEntry) -> EventLogEntry:
        db_entry = StripeEventLogModel(
            processor_id=entry.processor_id,
            event_id=entry.event_id,
            event_type=entry.event_type,
            payload=entry.payload,
            created_at=entry.created_at,
        )
        self.session.add(db_entry)
        await self.session.flush()
        logger.info(
            "event_logged",
            log_id=db_entry.id,
            event_id=db_entry.event_id,
            event_type=db_entry.event_type,
            processor_id=db_entry.processor_id,
        )
        return self._to_entity(db_entry)

    async def get(self, log_id: int) -> Optional[EventLogEntry]:
        result = await self.session.execute(
            select(StripeEventLogModel).where(StripeEventLogModel.id == log_id)
        )
        db_entry = result.scalar_one_or_none()
        return self._to_entity(db_entry) if db_entry else None
