"""订单生命周期服务

pending --> paid（库存转已售）
pending --> failed / cancelled（库存释放）
三个目标状态都是终态。涉及多张表时按 Product -> Hold -> Order 顺序加锁。
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.events import EventSink, LoggingEventSink, Severity
from app.core.exceptions import (
    BusinessConflict,
    CannotFailPaidOrder,
    CommitStockFailed,
    HoldAlreadyConsumed,
    HoldExpired,
    HoldNotFound,
    InvalidHoldState,
    InvalidOrderState,
    MissingHold,
    MissingProduct,
    OrderNotFound,
    ReleaseStockFailed,
)
from app.db.transaction import run_in_transaction
from app.db.types import utcnow
from app.models.hold import Hold, HoldStatus
from app.models.order import Order, OrderStatus
from app.models.product import Product
from app.repositories import HoldRepository, OrderRepository, ProductRepository
from app.services.stock_ledger import StockLedger

FAILED_STATUSES = (OrderStatus.FAILED, OrderStatus.CANCELLED)
CENT = Decimal("0.01")


class OrderLifecycle:
    """订单核心服务类"""

    def __init__(self, db: Session, events: EventSink = None):
        self.db = db
        self.events = events or LoggingEventSink()
        self.ledger = StockLedger(db, self.events)
        self.products = ProductRepository(db)
        self.holds = HoldRepository(db)
        self.orders = OrderRepository(db)

    def get_order(self, order_id: int) -> Order:
        order = self.orders.get(order_id)
        if order is None:
            raise OrderNotFound(order_id=order_id)
        return order

    # ==================== 下单 ====================

    def create_order_from_hold(self, hold_id: int, external_payment_id: Optional[str] = None) -> Order:
        """用预占创建待支付订单（幂等）

        同一个预占重复下单返回同一个订单，hold_id 唯一约束兜底。

        Raises:
            HoldNotFound / InvalidHoldState / HoldExpired / HoldAlreadyConsumed
        """

        def work() -> Order:
            hold = self.holds.lock(hold_id)
            if hold is None:
                raise HoldNotFound(hold_id=hold_id)

            if hold.status == HoldStatus.CONSUMED:
                existing = self.orders.get_by_hold(hold.id)
                if existing is None:
                    raise HoldAlreadyConsumed(hold_id=hold.id)
                return existing

            if hold.status != HoldStatus.ACTIVE:
                raise InvalidHoldState(hold_id=hold.id, status=hold.status.value)

            if hold.expires_at <= utcnow():
                raise HoldExpired(hold_id=hold.id, expires_at=hold.expires_at.isoformat())

            product = self.products.get(hold.product_id)
            if product is None:
                raise MissingProduct(hold_id=hold.id, product_id=hold.product_id)

            hold.status = HoldStatus.CONSUMED
            hold.used_at = utcnow()

            return self.orders.add(
                Order(
                    hold_id=hold.id,
                    external_payment_id=external_payment_id,
                    status=OrderStatus.PENDING,
                    amount=(Decimal(hold.qty) * product.price).quantize(CENT),
                )
            )

        try:
            order = run_in_transaction(self.db, work)
        except IntegrityError:
            # 并发下单撞上 hold_id 唯一约束，返回已存在的订单
            order = self.orders.get_by_hold(hold_id)
            self.db.commit()
            if order is None:
                raise
        except BusinessConflict as e:
            self.events.emit("order_creation_rejected", Severity.WARNING, reason=e.code, **e.context)
            raise

        self.events.emit(
            "order_created",
            order_id=order.id,
            hold_id=order.hold_id,
            amount=order.amount,
        )
        return order

    # ==================== 支付成功 ====================

    def finalize_paid(self, order: Order, external_payment_id: Optional[str] = None) -> bool:
        """支付成功：预占转已售并把订单置为 paid（幂等）

        Raises:
            InvalidOrderState: 订单已失败/取消
            CommitStockFailed / MissingHold / MissingProduct: 库存账目已不一致
        """
        if order.status == OrderStatus.PAID:
            return True

        run_in_transaction(self.db, lambda: self.finalize_paid_locked(order.id, external_payment_id))
        return True

    def finalize_paid_locked(self, order_id: int, external_payment_id: Optional[str] = None) -> bool:
        """在调用方事务内完成支付，不提交"""
        hold, product = self._lock_chain(order_id)
        order = self.orders.lock(order_id)
        if order is None:
            raise OrderNotFound(order_id=order_id)

        if order.status == OrderStatus.PAID:
            return True
        if order.status in FAILED_STATUSES:
            self.events.emit(
                "order_transition_rejected",
                Severity.WARNING,
                order_id=order.id,
                status=order.status.value,
                target=OrderStatus.PAID.value,
            )
            raise InvalidOrderState(order_id=order.id, status=order.status.value)

        if not self.ledger.commit(product.id, hold.qty):
            # reserved < qty：预占账目已经在别处出错
            self.events.emit(
                "stock_commit_failed",
                Severity.ERROR,
                order_id=order.id,
                hold_id=hold.id,
                product_id=product.id,
                qty=hold.qty,
            )
            raise CommitStockFailed(order_id=order.id, product_id=product.id, qty=hold.qty)

        order.status = OrderStatus.PAID
        if external_payment_id:
            order.external_payment_id = external_payment_id

        # 兜底写入，预占此时应已是 consumed
        hold.status = HoldStatus.CONSUMED
        if hold.used_at is None:
            hold.used_at = utcnow()
        self.db.flush()

        self.events.emit(
            "order_finalized_paid",
            order_id=order.id,
            hold_id=hold.id,
            product_id=product.id,
            qty=hold.qty,
            external_payment_id=order.external_payment_id,
        )
        return True

    # ==================== 支付失败 / 取消 ====================

    def mark_as_failed(self, order: Order, status: OrderStatus = OrderStatus.FAILED) -> bool:
        """支付失败或取消：释放库存并关闭订单（幂等）

        Raises:
            CannotFailPaidOrder: 已支付订单不能被失败通知回滚
            ReleaseStockFailed / MissingHold / MissingProduct
        """
        status = OrderStatus(status)
        if status not in FAILED_STATUSES:
            raise ValueError(f"mark_as_failed target must be failed or cancelled, got {status.value}")

        if order.status in FAILED_STATUSES:
            return True
        if order.status == OrderStatus.PAID:
            self._reject_paid(order)

        run_in_transaction(self.db, lambda: self.mark_as_failed_locked(order.id, status))
        return True

    def mark_as_failed_locked(self, order_id: int, status: OrderStatus = OrderStatus.FAILED) -> bool:
        """在调用方事务内关闭订单，不提交"""
        hold, product = self._lock_chain(order_id)
        order = self.orders.lock(order_id)
        if order is None:
            raise OrderNotFound(order_id=order_id)

        if order.status in FAILED_STATUSES:
            return True
        if order.status == OrderStatus.PAID:
            self._reject_paid(order)

        if not self.ledger.release(product.id, hold.qty):
            self.events.emit(
                "stock_release_failed",
                Severity.ERROR,
                order_id=order.id,
                hold_id=hold.id,
                product_id=product.id,
                qty=hold.qty,
            )
            raise ReleaseStockFailed(order_id=order.id, product_id=product.id, qty=hold.qty)

        order.status = status
        hold.status = HoldStatus.EXPIRED
        self.db.flush()

        self.events.emit(
            "order_marked_failed",
            order_id=order.id,
            hold_id=hold.id,
            product_id=product.id,
            qty=hold.qty,
            status=status.value,
        )
        return True

    # ==================== 内部方法 ====================

    def _reject_paid(self, order: Order):
        self.events.emit(
            "order_transition_rejected",
            Severity.WARNING,
            order_id=order.id,
            status=OrderStatus.PAID.value,
            target="failed",
        )
        raise CannotFailPaidOrder(order_id=order.id)

    def _lock_chain(self, order_id: int) -> tuple[Hold, Product]:
        """按 Product -> Hold 顺序锁住订单关联的行，订单行由调用方随后加锁"""
        order = self.orders.get(order_id)
        if order is None:
            raise OrderNotFound(order_id=order_id)

        hold = self.holds.get(order.hold_id)
        if hold is None:
            raise MissingHold(order_id=order_id, hold_id=order.hold_id)

        product = self.products.lock(hold.product_id)
        if product is None:
            raise MissingProduct(order_id=order_id, product_id=hold.product_id)

        hold = self.holds.lock(hold.id)
        if hold is None:
            raise MissingHold(order_id=order_id, hold_id=order.hold_id)
        return hold, product
