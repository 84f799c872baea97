"""库存账本：total / reserved / sold 三个计数器的原子条件更新

调用方负责先对商品行加锁（SELECT ... FOR UPDATE）；这里的 WHERE 条件是
第二道独立防线，即使调用方加锁有遗漏也不会超卖。
"""

from sqlalchemy import case, select, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.util import identity_key

from app.core.events import EventSink, LoggingEventSink, Severity
from app.models.product import Product

_COUNTERS = ["stock_reserved", "stock_sold"]


class StockLedger:
    """库存计数器服务"""

    def __init__(self, db: Session, events: EventSink = None):
        self.db = db
        self.events = events or LoggingEventSink()

    @staticmethod
    def available(product: Product) -> int:
        return product.stock_total - product.stock_reserved - product.stock_sold

    def reserve(self, product_id: int, qty: int) -> bool:
        """预占库存，仅当可用库存 >= qty 时成功

        库存不足是正常业务结果，返回 False 而不是抛异常。
        """
        return self._apply(
            update(Product)
            .where(
                Product.id == product_id,
                Product.stock_total - Product.stock_reserved - Product.stock_sold >= qty,
            )
            .values(stock_reserved=Product.stock_reserved + qty),
            product_id,
        )

    def commit(self, product_id: int, qty: int) -> bool:
        """预占转已售：同一条 UPDATE 里 reserved -= qty, sold += qty"""
        return self._apply(
            update(Product)
            .where(
                Product.id == product_id,
                Product.stock_reserved >= qty,
            )
            .values(
                stock_reserved=Product.stock_reserved - qty,
                stock_sold=Product.stock_sold + qty,
            ),
            product_id,
        )

    def release(self, product_id: int, qty: int) -> bool:
        """释放预占，reserved 最低减到 0

        Returns:
            商品行是否存在（False 说明商品已丢失）
        """
        reserved = self.db.execute(
            select(Product.stock_reserved).where(Product.id == product_id)
        ).scalar_one_or_none()
        if reserved is not None and reserved < qty:
            # 重复释放或账目漂移
            self.events.emit(
                "stock_release_clamped",
                Severity.WARNING,
                product_id=product_id,
                qty=qty,
                stock_reserved=reserved,
            )

        return self._apply(
            update(Product)
            .where(Product.id == product_id)
            .values(
                stock_reserved=case(
                    (Product.stock_reserved >= qty, Product.stock_reserved - qty),
                    else_=0,
                )
            ),
            product_id,
        )

    def _apply(self, stmt, product_id: int) -> bool:
        result = self.db.execute(stmt.execution_options(synchronize_session=False))

        # 会话里已加载的商品对象计数器作废，下次访问重新读库
        cached = self.db.identity_map.get(identity_key(Product, product_id))
        if cached is not None:
            self.db.expire(cached, _COUNTERS)

        return result.rowcount == 1
