import enum

from sqlalchemy import (
    Column,
    BigInteger,
    String,
    Integer,
    Enum,
    ForeignKey,
    CheckConstraint,
    Index,
    func,
)
from app.db.base import Base
from app.db.types import BigIntPK, UTCDateTime


# 1️ 预占状态枚举：expired / consumed 都是终态

class HoldStatus(str, enum.Enum):
    ACTIVE = "active"       # 预占中
    EXPIRED = "expired"     # 已过期（库存已释放）
    CONSUMED = "consumed"   # 已转为订单（库存仍预占）


# 2️ 预占表

class Hold(Base):
    __tablename__ = "holds"

    id = Column(
        BigIntPK,
        primary_key=True,
        autoincrement=True,
    )

    product_id = Column(
        BigInteger,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="商品ID",
    )

    qty = Column(
        Integer,
        nullable=False,
        comment="预占数量",
    )

    status = Column(
        Enum(
            HoldStatus,
            name="hold_status_type",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=HoldStatus.ACTIVE,
        comment="预占状态",
    )

    expires_at = Column(
        UTCDateTime,
        nullable=False,
        comment="预占过期时间",
    )

    used_at = Column(
        UTCDateTime,
        nullable=True,
        comment="转为订单的时间",
    )

    unique_token = Column(
        String(64),
        nullable=False,
        unique=True,
        comment="预占唯一令牌",
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
        CheckConstraint("qty > 0", name="ck_holds_qty_positive"),
    )


# 3️ 过期扫描索引

Index(
    "idx_holds_status_expires_at",
    Hold.status,
    Hold.expires_at,
)
