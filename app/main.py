from contextlib import asynccontextmanager
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException
from starlette.requests import Request
from starlette.responses import JSONResponse
from sqlalchemy import text

from app.core.config import settings
from app.core.exceptions import (
    CannotFailPaidOrder,
    CheckoutError,
    HoldAlreadyConsumed,
    HoldExpired,
    HoldNotFound,
    IntegrityFailure,
    InvalidHoldState,
    InvalidOrderState,
    InvalidQuantity,
    MissingRequiredField,
    NotEnoughStock,
    OrderNotFound,
    ProductNotFound,
)
from app.core.redis import redis_client
from app.db.session import engine
from app.routers import checkout_router
from app.schemas.checkout_api import HealthCheckResponse

import uvicorn

# 配置日志
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# 业务错误码 -> HTTP 状态码
ERROR_STATUS_CODES = {
    NotEnoughStock: 409,
    HoldAlreadyConsumed: 409,
    CannotFailPaidOrder: 409,
    InvalidOrderState: 409,
    HoldExpired: 410,
    InvalidHoldState: 410,
    ProductNotFound: 404,
    HoldNotFound: 404,
    OrderNotFound: 404,
    InvalidQuantity: 422,
    MissingRequiredField: 422,
}


def status_code_for(exc: CheckoutError) -> int:
    for error_type, code in ERROR_STATUS_CODES.items():
        if isinstance(exc, error_type):
            return code
    return 500 if isinstance(exc, IntegrityFailure) else 400


@asynccontextmanager
async def lifespan(app: FastAPI):
    # 应用启动时的初始化
    logger.info("Starting application...")

    # 数据库连接检查
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        logger.info("✅ Database connection successful")
    except Exception as e:
        logger.error("❌ Database connection failed: %s", e)
        raise

    # Redis 连接检查（任务投递与批处理锁依赖 Redis）
    try:
        redis_client.ping()
        logger.info("✅ Redis connected successfully")
    except Exception as e:
        logger.warning(f"⚠️  Redis connection failed: {e}")
        logger.warning("⚠️  Expiry tasks and webhook processing will be picked up by the periodic sweeps")

    yield

    # 应用关闭时的清理
    logger.info("Shutting down application...")

# 创建 FastAPI 应用
app = FastAPI(
    title="秒杀结算 API",
    description="限量库存预占、下单与支付回调对账，保证不超卖",
    version="1.0.0",
    lifespan=lifespan
)

# 添加 CORS 中间件
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # 生产环境中应该指定具体域名
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册路由
app.include_router(checkout_router.router, prefix="/api/v1")

# 全局异常处理
@app.exception_handler(CheckoutError)
async def checkout_exception_handler(request: Request, exc: CheckoutError):
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"Integrity failure: {exc.code} {exc.context}")
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": exc.to_dict()
        }
    )

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation error: {exc}")
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "message": "请求参数验证失败",
            "details": exc.errors()
        }
    )

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    logger.error(f"HTTP error: {exc.status_code} - {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "message": exc.detail
        }
    )

@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "服务器内部错误"
        }
    )

# 健康检查端点
@app.get("/health", response_model=HealthCheckResponse)
async def health_check():
    """健康检查接口"""
    return HealthCheckResponse()


if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
