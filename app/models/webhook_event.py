import enum

from sqlalchemy import (
    Column,
    BigInteger,
    String,
    Text,
    Boolean,
    Enum,
    ForeignKey,
    Index,
    false,
    func,
)

from app.db.base import Base
from app.db.types import BigIntPK, JSONPayload, UTCDateTime


# 1️ 处理结果枚举：waiting_for_order 是可重试的非终态

class WebhookOutcome(str, enum.Enum):
    APPLIED = "applied"
    FAILED = "failed"
    WAITING_FOR_ORDER = "waiting_for_order"


# 2️ 支付回调事件表（idempotency_key 为唯一去重键）

class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(
        BigIntPK,
        primary_key=True,
        autoincrement=True,
    )

    idempotency_key = Column(
        String(191),
        nullable=False,
        unique=True,
        comment="幂等唯一键",
    )

    order_id = Column(
        BigInteger,
        ForeignKey("orders.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="关联订单ID（解析成功后写入）",
    )

    event_type = Column(
        String(100),
        nullable=True,
        index=True,
        comment="事件类型",
    )

    payload = Column(
        JSONPayload,
        nullable=False,
        comment="原始回调内容",
    )

    processed = Column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
        index=True,
    )

    outcome = Column(
        Enum(
            WebhookOutcome,
            name="webhook_outcome_type",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=True,
        comment="处理结果",
    )

    processed_at = Column(
        UTCDateTime,
        nullable=True,
    )

    last_error = Column(
        Text,
        nullable=True,
        comment="最近一次分发失败原因",
    )

    created_at = Column(
        UTCDateTime,
        server_default=func.now(),
        nullable=False,
    )

    updated_at = Column(
        UTCDateTime,
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


# 3️ 重试扫描索引

Index(
    "idx_webhook_events_outcome_processed",
    WebhookEvent.outcome,
    WebhookEvent.processed,
    WebhookEvent.created_at,
)
