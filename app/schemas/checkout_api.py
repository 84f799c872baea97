"""结算API专用的Pydantic模型和响应格式"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.order import OrderStatus


# ==================== 请求模型 ====================

class CreateHoldRequest(BaseModel):
    """创建预占请求"""
    product_id: int = Field(
        ...,
        gt=0,
        description="商品ID",
        examples=[1]
    )
    qty: int = Field(
        ...,
        ge=1,
        description="预占数量",
        examples=[2]
    )
    ttl_minutes: Optional[int] = Field(
        None,
        ge=1,
        le=60,
        description="预占有效期（分钟），默认2分钟",
        examples=[2]
    )


class CreateOrderRequest(BaseModel):
    """创建订单请求"""
    hold_id: int = Field(
        ...,
        gt=0,
        description="预占ID",
        examples=[1]
    )
    external_payment_id: Optional[str] = Field(
        None,
        max_length=128,
        description="支付网关流水号",
        examples=["pay_123"]
    )


# ==================== 响应模型 ====================

class BaseResponse(BaseModel):
    """基础响应模型"""
    success: bool = Field(
        ...,
        description="请求是否成功"
    )
    message: Optional[str] = Field(
        None,
        description="响应消息"
    )


class HoldDetail(BaseModel):
    """预占详情"""
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    hold_id: int = Field(..., validation_alias="id")
    expires_at: datetime


class HoldResponse(BaseResponse):
    data: HoldDetail


class OrderDetail(BaseModel):
    """订单详情"""
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    order_id: int = Field(..., validation_alias="id")
    hold_id: int
    status: OrderStatus
    amount: Decimal
    external_payment_id: Optional[str] = None
    created_at: Optional[datetime] = None


class OrderResponse(BaseResponse):
    data: OrderDetail


class WebhookAcceptedResponse(BaseModel):
    """支付回调受理响应"""
    status: str = Field(
        "accepted",
        description="受理状态"
    )
    webhook_id: int = Field(
        ...,
        description="回调事件ID"
    )


class ErrorDetail(BaseModel):
    code: str
    message: str


class ErrorResponse(BaseModel):
    success: bool = False
    error: ErrorDetail


class HealthCheckResponse(BaseModel):
    """健康检查响应"""
    status: str = Field(
        "healthy",
        description="服务状态"
    )
    service: str = Field(
        "flash-sale-checkout",
        description="服务名称"
    )
    version: str = Field(
        "1.0.0",
        description="服务版本"
    )
