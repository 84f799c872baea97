"""结算 API 路由：预占、下单、支付回调"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Header, Path, status
from fastapi.responses import JSONResponse

from app.core.dependencies import (
    HoldManagerDep,
    OrderLifecycleDep,
    WebhookReconcilerDep,
)
from app.schemas.checkout_api import (
    CreateHoldRequest,
    CreateOrderRequest,
    ErrorResponse,
    HoldDetail,
    HoldResponse,
    OrderDetail,
    OrderResponse,
    WebhookAcceptedResponse,
)
from app.services.hold_manager import HoldManager
from app.services.order_lifecycle import OrderLifecycle
from app.services.webhook_reconciler import WebhookReconciler

logger = logging.getLogger(__name__)
router = APIRouter(
    tags=["秒杀结算"],
    responses={
        404: {"model": ErrorResponse, "description": "资源未找到"},
        409: {"model": ErrorResponse, "description": "业务冲突（库存不足、预占已使用等）"},
        410: {"model": ErrorResponse, "description": "预占已过期或不可用"},
        422: {"description": "请求验证失败"},
        500: {"model": ErrorResponse, "description": "服务器内部错误"}
    }
)


@router.post(
    "/holds",
    response_model=HoldResponse,
    status_code=status.HTTP_201_CREATED,
    summary="创建库存预占",
    description="""预占指定商品的库存，防止超卖。

    **特点：**
    - 数据库行级锁 + 条件更新双重保护
    - 默认2分钟后自动过期释放
    - 库存不足返回 409 not_enough_stock
    """,
)
def create_hold(
    request: CreateHoldRequest,
    service: HoldManager = HoldManagerDep,
):
    hold = service.create_hold(request.product_id, request.qty, request.ttl_minutes)
    return HoldResponse(success=True, data=HoldDetail.model_validate(hold))


@router.post(
    "/orders",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="用预占创建订单",
    description="""把 active 预占转为待支付订单。

    同一个预占重复请求返回同一个订单。
    """,
)
def create_order(
    request: CreateOrderRequest,
    service: OrderLifecycle = OrderLifecycleDep,
):
    order = service.create_order_from_hold(request.hold_id, request.external_payment_id)
    return OrderResponse(success=True, data=OrderDetail.model_validate(order))


@router.get(
    "/orders/{order_id}",
    response_model=OrderResponse,
    summary="查询订单状态",
)
def get_order(
    order_id: int = Path(..., gt=0, description="订单ID"),
    service: OrderLifecycle = OrderLifecycleDep,
):
    order = service.get_order(order_id)
    return OrderResponse(success=True, data=OrderDetail.model_validate(order))


@router.post(
    "/webhooks/payments",
    response_model=WebhookAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="接收支付回调",
    description="""接收支付网关回调，按 Idempotency-Key 去重后异步处理。

    幂等键优先取请求头 `Idempotency-Key`，其次取请求体 `idempotency_key`。
    """,
)
def receive_payment_webhook(
    payload: Dict[str, Any] = Body(..., description="支付回调内容"),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    service: WebhookReconciler = WebhookReconcilerDep,
):
    key = idempotency_key or payload.get("idempotency_key")
    if not key:
        logger.warning("Payment webhook rejected: missing idempotency key")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "success": False,
                "error": {"code": "missing_idempotency_key", "message": "missing_idempotency_key"},
            },
        )

    event = service.ingest(str(key), payload)
    return WebhookAcceptedResponse(status="accepted", webhook_id=event.id)
