"""
支付镜像仓储接口 - 定义 Stripe 镜像数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import CustomerMapping, PlanMapping, SubscriptionMapping, EventLogEntry


class CustomerMappingRepository(ABC):
    """客户镜像仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def get(self, email: str, is_live: bool, processor_id: int) -> Optional[CustomerMapping]:
        """按 (email, is_live, processor_id) 查询"""
        pass

    @abstractmethod
    async def add(self, mapping: CustomerMapping) -> CustomerMapping:
        """插入新镜像；唯一键冲突时抛出 MappingConflict"""
        pass

    @abstractmethod
    async def replace(self, stale_customer_id: str, mapping: CustomerMapping) -> CustomerMapping:
        """删除仍指向 stale_customer_id 的旧行并插入新行；旧行已不存在时抛出 MappingConflict"""
        pass

    @abstractmethod
    async def count(self, email: str, is_live: bool, processor_id: int) -> int:
        pass


class PlanMappingRepository(ABC):

    @abstractmethod
    async def exists(self, plan_id: str, is_live: bool, processor_id: int) -> bool:
        pass

    @abstractmethod
    async def add(self, mapping: PlanMapping) -> PlanMapping:
        """插入计划镜像；唯一键冲突时抛出 MappingConflict"""
        pass


class SubscriptionMappingRepository(ABC):

    @abstractmethod
    async def add(self, mapping: SubscriptionMapping) -> SubscriptionMapping:
        pass

    @abstractmethod
    async def get(self, subscription_id: str) -> Optional[SubscriptionMapping]:
        pass


class EventLogRepository(ABC):
    """已验证的网关事件日志"""

    @abstractmethod
    async def add(self, entry: EventLogEntry) -> EventLogEntry:
        pass

    @abstractmethod
    async def get(self, log_id: int) -> Optional[EventLogEntry]:
        pass
