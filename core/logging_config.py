"""
structlog 配置

标准库 logging（uvicorn、sqlalchemy、stripe SDK）与 structlog 共用一条处理链，
最后一步前统一经过 redact_secrets：Stripe 密钥和一次性卡 token 不得进入日志。
"""
import json
import logging
import re
from typing import Any

import structlog
from structlog.contextvars import merge_contextvars
from structlog.stdlib import ProcessorFormatter

from core.config import settings


_SECRET_PATTERN = re.compile(r"\b((?:sk|rk|whsec)_(?:live|test)?_?)[A-Za-z0-9]+")
_TOKEN_PATTERN = re.compile(r"\b(tok_)[A-Za-z0-9]+")
SENSITIVE_KEYS = frozenset(
    {"secret_key", "api_key", "site_key", "webhook_secret", "stripe_token", "card_token", "source", "card"}
)
MASK = "***"


def _scrub(key: Any, value: Any) -> Any:
    if key in SENSITIVE_KEYS and value:
        return MASK
    if isinstance(value, str):
        return _TOKEN_PATTERN.sub(r"\1" + MASK, _SECRET_PATTERN.sub(r"\1" + MASK, value))
    if isinstance(value, dict):
        return {k: _scrub(k, v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(_scrub(None, v) for v in value)
    return value


def redact_secrets(_logger: Any, _method: str, event_dict: dict) -> dict:
    """structlog processor：屏蔽网关凭据与卡 token"""
    return {key: _scrub(key, value) for key, value in event_dict.items()}


def _renderer() -> Any:
    if settings.json_logs:
        return structlog.processors.JSONRenderer(serializer=lambda obj, **kw: json.dumps(obj, ensure_ascii=False, **kw))
    return structlog.dev.ConsoleRenderer(colors=settings.DEBUG)


def configure_logging() -> None:
    pre_chain: list[Any] = [
        merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        redact_secrets,
    ]
    structlog.configure(
        processors=[*pre_chain, ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[ProcessorFormatter.remove_processors_meta, _renderer()],
        )
    )
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(logging.DEBUG if settings.DEBUG else settings.LOG_LEVEL.upper())

    # stripe SDK 在 debug 级别会输出完整请求体
    logging.getLogger("stripe").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if settings.database.echo else logging.WARNING)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
