from sqlalchemy import (
    Column,
    String,
    Text,
    Integer,
    Numeric,
    CheckConstraint,
    func,
)
from app.db.base import Base
from app.db.types import BigIntPK, UTCDateTime


class Product(Base):
    __tablename__ = "products"

    id = Column(
        BigIntPK,
        primary_key=True,
        autoincrement=True,
    )

    sku = Column(
        String(64),
        nullable=True,
        unique=True,
        comment="商品唯一SKU",
    )

    name = Column(
        String(255),
        nullable=False,
        index=True,
        comment="商品名称",
    )

    description = Column(
        Text,
        nullable=True,
    )

    price = Column(
        Numeric(12, 2),
        nullable=False,
        server_default="0",
        comment="单价",
    )

    stock_total = Column(
        Integer,
        nullable=False,
        server_default="0",
        comment="总库存",
    )

    stock_reserved = Column(
        Integer,
        nullable=False,
        server_default="0",
        comment="已预占库存",
    )

    stock_sold = Column(
        Integer,
        nullable=False,
        server_default="0",
        comment="已售库存",
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
        CheckConstraint("stock_total >= 0", name="ck_products_total_non_negative"),
        CheckConstraint("stock_reserved >= 0", name="ck_products_reserved_non_negative"),
        CheckConstraint("stock_sold >= 0", name="ck_products_sold_non_negative"),
        # 防超卖的最后一道约束
        CheckConstraint(
            "stock_reserved + stock_sold <= stock_total",
            name="ck_products_no_oversell",
        ),
    )

    @property
    def available_stock(self) -> int:
        return self.stock_total - self.stock_reserved - self.stock_sold
