"""
Stripe 镜像表

CRM 侧用这四张表把 Stripe 的 customer / plan / subscription / event 对应回
联系人和定期捐款。唯一约束是并发写入的仲裁点，索引名由 base 的命名约定生成。
"""
from datetime import datetime, timezone

from sqlalchemy import JSON, BigInteger, Boolean, Column, DateTime, Integer, String, UniqueConstraint

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _created_at(**kwargs) -> Column:
    return Column(DateTime(timezone=True), default=_utcnow, nullable=False, **kwargs)


class StripeCustomerModel(Base):
    """(email, is_live, processor_id) 唯一"""
    __tablename__ = "stripe_customers"
    __table_args__ = (
        UniqueConstraint("email", "is_live", "processor_id", name="uq_stripe_customers_email_mode_processor"),
    )

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), nullable=False, comment="付款人邮箱")
    customer_id = Column(String(255), nullable=False, index=True)
    is_live = Column(Boolean, nullable=False, default=False)
    processor_id = Column(Integer, nullable=False, comment="CRM 支付处理器ID")
    created_at = _created_at()

    def __repr__(self):
        return f"<StripeCustomer {self.email} -> {self.customer_id} live={self.is_live}>"


class StripePlanModel(Base):
    __tablename__ = "stripe_plans"
    __table_args__ = (
        UniqueConstraint("plan_id", "is_live", "processor_id", name="uq_stripe_plans_plan_mode_processor"),
    )

    id = Column(Integer, primary_key=True, index=True)
    plan_id = Column(String(255), nullable=False, comment="由金额、币种、周期拼出的计划ID")
    is_live = Column(Boolean, nullable=False, default=False)
    processor_id = Column(Integer, nullable=False)
    created_at = _created_at()

    def __repr__(self):
        return f"<StripePlan {self.plan_id} live={self.is_live}>"


class StripeSubscriptionModel(Base):
    __tablename__ = "stripe_subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    subscription_id = Column(String(255), unique=True, nullable=False)
    customer_id = Column(String(255), nullable=False, index=True)
    contribution_recur_id = Column(Integer, nullable=True, index=True, comment="CRM 定期捐款ID")
    processor_id = Column(Integer, nullable=False)
    is_live = Column(Boolean, nullable=False, default=False)
    # epoch 秒；无限期订阅为空
    end_time = Column(BigInteger, nullable=True)
    created_at = _created_at()

    def __repr__(self):
        return f"<StripeSubscription {self.subscription_id} recur={self.contribution_recur_id}>"


class StripeEventLogModel(Base):
    """签名已验证的 webhook 原文；IPN 重放只信任这里的 payload"""
    __tablename__ = "stripe_event_log"

    id = Column(Integer, primary_key=True, index=True)
    processor_id = Column(Integer, nullable=False)
    event_id = Column(String(255), nullable=True, index=True)
    event_type = Column(String(100), nullable=True)
    payload = Column(JSON, nullable=False)
    created_at = _created_at(index=True)

    def __repr__(self):
        return f"<StripeEvent #{self.id} {self.event_id} {self.event_type}>"
