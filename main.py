"""
FastAPI应用主入口
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError

from api.routes import orders as order_routes
from api.middleware import RequestIDMiddleware, LoggingMiddleware
from core.config import settings
from core.exceptions import register_exception_handlers
from core.response import success_response
from core.logging_config import get_logger, configure_logging
from infrastructure.database import create_tables
from infrastructure.external.cache import (
    init_redis_client,
    peek_redis_client,
    shutdown_redis_client,
)
from infrastructure.external.payments import get_payment_gateway


# 初始化日志：在入口处显式配置
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    # 启动时创建数据库表（仅开发环境）
    if settings.DEBUG:
        await create_tables()
        logger.info("database_initialized", message="Database tables created (development)")
    else:
        logger.info("database_schema_expected", message="No auto-create outside DEBUG")

    # Redis 可选：配置后订单锁升级为分布式锁
    if settings.redis.url:
        try:
            await init_redis_client()
            logger.info("redis_initialized", message="Distributed order locks enabled")
        except (RedisError, OSError) as exc:
            logger.error("redis_init_failed", error=str(exc))

    if getattr(app.state, "payment_gateway", None) is None:
        app.state.payment_gateway = get_payment_gateway()
    logger.info("payment_gateway_ready", provider=app.state.payment_gateway.provider)

    yield

    await app.state.payment_gateway.aclose()
    if peek_redis_client() is not None:
        await shutdown_redis_client()
    logger.info("application_shutdown", message="Application shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="店面结账：订单创建与支付回调校验",
)

# 添加中间件（注意顺序：从下往上执行）
# 1. Request ID中间件（最先执行，为后续中间件提供request_id）
app.add_middleware(RequestIDMiddleware)

# 2. 日志中间件（依赖request_id）
app.add_middleware(LoggingMiddleware)

# 3. CORS中间件（店面前端跨域调用）
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# 注册全局异常处理器
register_exception_handlers(app)

# 注册路由
app.include_router(order_routes.router)


@app.get("/", tags=["Root"])
async def root():
    """API根路径"""
    return success_response(
        data={
            "name": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "docs": "/docs",
        },
        message="Welcome",
    )


@app.get("/health", tags=["Health"])
async def health_check():
    """健康检查端点"""
    redis = peek_redis_client()
    data = {"status": "healthy", "redis": None}
    if redis is not None:
        data["redis"] = "up" if await redis.health_check() else "down"
    return success_response(data=data, message="OK")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=5000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
