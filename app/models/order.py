import enum

from sqlalchemy import (
    Column,
    BigInteger,
    String,
    Numeric,
    Enum,
    ForeignKey,
    UniqueConstraint,
    Index,
    func,
)

from app.db.base import Base
from app.db.types import BigIntPK, UTCDateTime


class OrderStatus(str, enum.Enum):
    PENDING = "pending"       # 待支付
    PAID = "paid"             # 已支付（终态，库存已售出）
    CANCELLED = "cancelled"   # 已取消（终态，库存已释放）
    FAILED = "failed"         # 支付失败（终态，库存已释放）


class Order(Base):
    __tablename__ = "orders"

    id = Column(
        BigIntPK,
        primary_key=True,
        autoincrement=True,
    )

    hold_id = Column(
        BigInteger,
        ForeignKey("holds.id", ondelete="CASCADE"),
        nullable=False,
        comment="预占ID（一个预占只能生成一个订单）",
    )

    external_payment_id = Column(
        String(128),
        nullable=True,
        index=True,
        comment="支付网关流水号",
    )

    status = Column(
        Enum(
            OrderStatus,
            name="order_status_type",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=OrderStatus.PENDING,
        comment="订单状态",
    )

    amount = Column(
        Numeric(12, 2),
        nullable=False,
        comment="订单金额（创建时快照，之后不可变）",
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

    __table_args__ = (
        UniqueConstraint("hold_id", name="uq_orders_hold_id"),
    )


Index(
    "idx_orders_status_created_at",
    Order.status,
    Order.created_at,
)
