"""
服务入口

    uvicorn main:app

路由挂在 /api/v1/payments 下；/health 供负载均衡探活。
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware import LoggingMiddleware, RequestIDMiddleware
from api.routes import payments as payments_routes
from core.config import settings
from core.exceptions import register_exception_handlers
from core.logging_config import configure_logging, get_logger
from core.response import success_response
from infrastructure.database import create_tables, engine
from infrastructure.external.payments.stripe_client import configure_stripe_sdk


configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.DEBUG:
        await create_tables()
        logger.info("mirror_tables_created")
    else:
        logger.info("database_migrations_required", hint="alembic upgrade head")
    # 进程级 SDK 配置；密钥按处理器逐次传入
    configure_stripe_sdk()
    yield
    await engine.dispose()
    logger.info("application_shutdown")


async def health_check():
    return success_response(data={"status": "healthy"}, message="OK")


async def service_info():
    return success_response(
        data={"name": settings.PROJECT_NAME, "version": settings.VERSION, "docs": "/docs"},
        message="Welcome",
    )


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
        description="CiviCRM 与 Stripe 之间的支付提交与对账服务",
    )

    # 后添加的先执行：CORS -> RequestID -> Logging
    application.add_middleware(LoggingMiddleware)
    application.add_middleware(RequestIDMiddleware)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    register_exception_handlers(application)
    application.include_router(payments_routes.router, prefix=settings.API_PREFIX)
    application.add_api_route("/", service_info, methods=["GET"], tags=["Root"])
    application.add_api_route("/health", health_check, methods=["GET"], tags=["Health"])
    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
