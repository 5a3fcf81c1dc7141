"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Processors are keyed by their CRM payment processor id, e.g.
``PAYMENT__PROCESSORS__3__SECRET_KEY=sk_test_...``. Each processor entry
becomes one immutable GatewayAccountContext per operation.
"""
from __future__ import annotations

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field

from domain.payment.entity import GatewayAccountContext, GatewayMode
from domain.payment.exceptions import ProcessorNotConfigured


class PaymentTimeouts(BaseModel):
    connect: float = 5.0
    read: float = 30.0
    total: float = 60.0


class PaymentRetry(BaseModel):
    # Applies to read-only retrievals only; mutating calls are never retried.
    max: int = 0
    base_backoff: float = 0.2


class WebhookSettings(BaseModel):
    tolerance_seconds: int = 300


class AppInfo(BaseModel):
    name: str = "CiviCRM"
    version: Optional[str] = None
    url: Optional[str] = None


class CiviCRMSettings(BaseModel):
    base_url: str = "http://localhost/civicrm"
    rest_path: str = "extern/rest.php"
    ipn_path: str = "payment/ipn"
    api_key: Optional[str] = None
    site_key: Optional[str] = None
    timeout: float = 30.0
    max_retries: int = 2


class ProcessorSettings(BaseModel):
    mode: GatewayMode = GatewayMode.TEST
    secret_key: Optional[str] = None
    publishable_key: Optional[str] = None
    webhook_secret: Optional[str] = None

    def check_config(self) -> Optional[str]:
        """Return a readable list of configuration problems, or None."""
        errors = []
        if not self.secret_key:
            errors.append('The "Secret Key" is not set in the Stripe Payment Processor settings.')
        if not self.publishable_key:
            errors.append('The "Publishable Key" is not set in the Stripe Payment Processor settings.')
        return " ".join(errors) if errors else None


class PaymentSettings(BaseSettings):
    processors: dict[int, ProcessorSettings] = Field(default_factory=dict)
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    app_info: AppInfo = Field(default_factory=AppInfo)
    civicrm: CiviCRMSettings = Field(default_factory=CiviCRMSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PAYMENT__",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )

    def processor(self, processor_id: int) -> ProcessorSettings:
        cfg = self.processors.get(int(processor_id))
        if cfg is None:
            raise ProcessorNotConfigured(processor_id)
        return cfg

    def account_context(self, processor_id: int) -> GatewayAccountContext:
        cfg = self.processor(processor_id)
        if not cfg.secret_key:
            raise ProcessorNotConfigured(processor_id, [cfg.check_config() or ""])
        return GatewayAccountContext(
            processor_id=int(processor_id),
            mode=cfg.mode,
            secret_key=cfg.secret_key,
            publishable_key=cfg.publishable_key,
            webhook_secret=cfg.webhook_secret,
        )


payment_settings = PaymentSettings()
