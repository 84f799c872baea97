"""订单生命周期单元测试"""
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import delete, update

from app.core.exceptions import (
    CannotFailPaidOrder,
    CommitStockFailed,
    HoldAlreadyConsumed,
    HoldExpired,
    HoldNotFound,
    InvalidHoldState,
    InvalidOrderState,
    MissingHold,
    OrderNotFound,
)
from app.db.types import utcnow
from app.models.hold import Hold, HoldStatus
from app.models.order import Order, OrderStatus
from app.models.product import Product
from app.services.hold_manager import HoldManager
from app.services.order_lifecycle import OrderLifecycle


class TestOrderLifecycle:
    """订单服务测试类"""

    @pytest.fixture
    def holds(self, db_session, scheduler, events):
        return HoldManager(db_session, scheduler=scheduler, events=events)

    @pytest.fixture
    def service(self, db_session, events):
        return OrderLifecycle(db_session, events)

    @pytest.fixture
    def pending_order(self, holds, service, make_product):
        """10件库存，预占3件并下单"""
        product = make_product(stock_total=10, price=Decimal("19.99"))
        hold = holds.create_hold(product.id, 3)
        order = service.create_order_from_hold(hold.id)
        return product, hold, order

    # ==================== 下单 ====================

    def test_create_order_from_hold(self, db_session, events, pending_order):
        """测试用预占下单"""
        product, hold, order = pending_order

        assert order.id is not None
        assert order.status == OrderStatus.PENDING
        assert order.hold_id == hold.id
        assert order.amount == Decimal("59.97")

        db_session.refresh(hold)
        db_session.refresh(product)
        assert hold.status == HoldStatus.CONSUMED
        assert hold.used_at is not None
        # 下单不改变库存计数
        assert product.stock_reserved == 3
        assert product.stock_sold == 0
        assert events.find("order_created")[0].fields["order_id"] == order.id

    def test_create_order_idempotent(self, db_session, service, pending_order):
        """测试同一预占重复下单返回同一订单"""
        _, hold, order = pending_order

        again = service.create_order_from_hold(hold.id)

        assert again.id == order.id
        assert db_session.query(Order).count() == 1

    def test_create_order_with_payment_id(self, holds, service, make_product):
        """测试下单时带支付流水号"""
        product = make_product()
        hold = holds.create_hold(product.id, 1)
        order = service.create_order_from_hold(hold.id, "pay_001")
        assert order.external_payment_id == "pay_001"

    def test_create_order_hold_not_found(self, service, events):
        """测试预占不存在"""
        with pytest.raises(HoldNotFound):
            service.create_order_from_hold(999)
        assert events.find("order_creation_rejected")[0].fields["reason"] == "hold_not_found"

    def test_create_order_hold_expired_by_time(self, db_session, holds, service, make_product):
        """测试预占已过有效期但尚未被扫描"""
        product = make_product()
        hold = holds.create_hold(product.id, 2)
        db_session.execute(
            update(Hold).where(Hold.id == hold.id).values(expires_at=utcnow() - timedelta(seconds=1))
        )
        db_session.commit()

        with pytest.raises(HoldExpired):
            service.create_order_from_hold(hold.id)

        db_session.refresh(hold)
        assert hold.status == HoldStatus.ACTIVE
        assert db_session.query(Order).count() == 0

    def test_create_order_hold_already_expired(self, holds, service, make_product):
        """测试预占已被过期释放"""
        product = make_product()
        hold = holds.create_hold(product.id, 2)
        holds.expire_hold(hold.id)

        with pytest.raises(InvalidHoldState):
            service.create_order_from_hold(hold.id)

    def test_create_order_consumed_without_order(self, db_session, holds, service, make_product):
        """测试预占已使用但找不到订单"""
        product = make_product()
        hold = holds.create_hold(product.id, 2)
        hold.status = HoldStatus.CONSUMED
        db_session.commit()

        with pytest.raises(HoldAlreadyConsumed):
            service.create_order_from_hold(hold.id)

    def test_get_order(self, service, pending_order):
        """测试查询订单"""
        _, _, order = pending_order
        assert service.get_order(order.id).id == order.id

    def test_get_order_not_found(self, service):
        """测试订单不存在"""
        with pytest.raises(OrderNotFound):
            service.get_order(999)

    # ==================== 支付成功 ====================

    def test_finalize_paid(self, db_session, service, events, pending_order):
        """测试支付成功后预占转已售"""
        product, _, order = pending_order

        assert service.finalize_paid(order, "pay_123") is True

        db_session.refresh(product)
        assert order.status == OrderStatus.PAID
        assert order.external_payment_id == "pay_123"
        assert product.stock_reserved == 0
        assert product.stock_sold == 3
        assert product.available_stock == 7
        assert "order_finalized_paid" in events.names()

    def test_finalize_paid_idempotent(self, db_session, service, pending_order):
        """测试重复支付成功只转一次已售"""
        product, _, order = pending_order

        service.finalize_paid(order)
        service.finalize_paid(order)
        service.finalize_paid_locked(order.id)
        db_session.commit()

        db_session.refresh(product)
        assert product.stock_sold == 3
        assert product.stock_reserved == 0

    def test_finalize_paid_rejects_failed_order(self, db_session, service, events, pending_order):
        """测试已失败订单不能再支付成功"""
        product, _, order = pending_order
        service.mark_as_failed(order)

        with pytest.raises(InvalidOrderState):
            service.finalize_paid(order)

        db_session.refresh(product)
        assert order.status == OrderStatus.FAILED
        assert product.stock_sold == 0
        assert events.find("order_transition_rejected")[0].fields["target"] == "paid"

    def test_finalize_paid_reserved_drift(self, db_session, service, events, pending_order):
        """测试预占账目不足时硬失败且不修改订单"""
        product, _, order = pending_order
        db_session.execute(update(Product).where(Product.id == product.id).values(stock_reserved=1))
        db_session.commit()

        with pytest.raises(CommitStockFailed):
            service.finalize_paid(order)

        db_session.refresh(order)
        db_session.refresh(product)
        assert order.status == OrderStatus.PENDING
        assert product.stock_sold == 0
        assert "stock_commit_failed" in events.names()

    def test_finalize_paid_missing_hold(self, db_session, service, pending_order):
        """测试订单关联的预占丢失"""
        _, hold, order = pending_order
        db_session.execute(
            delete(Hold).where(Hold.id == hold.id).execution_options(synchronize_session=False)
        )
        db_session.commit()
        db_session.expunge(hold)

        with pytest.raises(MissingHold):
            service.finalize_paid(order)

    # ==================== 支付失败 / 取消 ====================

    def test_mark_as_failed(self, db_session, service, events, pending_order):
        """测试支付失败释放库存"""
        product, hold, order = pending_order

        assert service.mark_as_failed(order) is True

        db_session.refresh(product)
        db_session.refresh(hold)
        assert order.status == OrderStatus.FAILED
        assert hold.status == HoldStatus.EXPIRED
        assert product.stock_reserved == 0
        assert product.available_stock == 10
        assert events.find("order_marked_failed")[0].fields["status"] == "failed"

    def test_mark_as_cancelled(self, db_session, service, pending_order):
        """测试取消订单"""
        product, _, order = pending_order

        service.mark_as_failed(order, OrderStatus.CANCELLED)

        db_session.refresh(product)
        assert order.status == OrderStatus.CANCELLED
        assert product.stock_reserved == 0

    def test_mark_as_failed_idempotent(self, db_session, service, pending_order):
        """测试重复失败只释放一次"""
        product, _, order = pending_order

        service.mark_as_failed(order)
        service.mark_as_failed(order)
        service.mark_as_failed_locked(order.id)
        db_session.commit()

        db_session.refresh(product)
        assert product.stock_reserved == 0

    def test_mark_as_failed_rejects_paid_order(self, db_session, service, events, pending_order):
        """测试已支付订单不能被标记失败"""
        product, _, order = pending_order
        service.finalize_paid(order)

        with pytest.raises(CannotFailPaidOrder):
            service.mark_as_failed(order)
        with pytest.raises(CannotFailPaidOrder):
            service.mark_as_failed_locked(order.id)
        db_session.rollback()

        db_session.refresh(product)
        assert order.status == OrderStatus.PAID
        assert product.stock_sold == 3
        assert product.stock_reserved == 0

    def test_mark_as_failed_invalid_target(self, service, pending_order):
        """测试非法目标状态"""
        _, _, order = pending_order
        with pytest.raises(ValueError):
            service.mark_as_failed(order, OrderStatus.PAID)
