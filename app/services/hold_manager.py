"""预占服务实现"""

import logging
import secrets
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.events import EventSink, LoggingEventSink, Severity
from app.core.exceptions import (
    InvalidQuantity,
    NotEnoughStock,
    ProductNotFound,
    ReleaseStockFailed,
)
from app.core.scheduler import (
    EXPIRE_HOLD_TASK,
    CeleryTaskScheduler,
    TaskScheduler,
    schedule_after_commit,
)
from app.db.transaction import run_in_transaction
from app.db.types import utcnow
from app.models.hold import Hold, HoldStatus
from app.repositories import HoldRepository, ProductRepository
from app.services.stock_ledger import StockLedger

logger = logging.getLogger(__name__)


class HoldManager:
    """限时库存预占的创建、过期与扫描

    状态机：active --expire--> expired；active --consume--> consumed，
    两个目标状态都是终态，预占不会被重新激活或复用。
    """

    def __init__(
        self,
        db: Session,
        scheduler: TaskScheduler = None,
        events: EventSink = None,
    ):
        self.db = db
        self.events = events or LoggingEventSink()
        self.scheduler = scheduler or CeleryTaskScheduler()
        self.ledger = StockLedger(db, self.events)
        self.products = ProductRepository(db)
        self.holds = HoldRepository(db)

    def create_hold(self, product_id: int, qty: int, ttl_minutes: Optional[int] = None) -> Hold:
        """创建预占（防超卖核心）

        锁商品行 -> 条件预占 -> 写入 active 预占，提交后再投递到期任务。
        库存不足时不做任何写入。

        Args:
            product_id: 商品ID
            qty: 预占数量，必须大于0
            ttl_minutes: 有效期（分钟），默认 settings.HOLD_TTL_MINUTES

        Returns:
            已提交的 Hold

        Raises:
            InvalidQuantity / ProductNotFound / NotEnoughStock
        """
        if qty is None or qty <= 0:
            raise InvalidQuantity("qty must be positive", qty=qty)
        ttl = settings.HOLD_TTL_MINUTES if ttl_minutes is None else ttl_minutes
        if ttl <= 0:
            raise InvalidQuantity("ttl_minutes must be positive", ttl_minutes=ttl_minutes)

        def work() -> Hold:
            product = self.products.lock(product_id)
            if product is None:
                raise ProductNotFound(product_id=product_id)

            available = self.ledger.available(product)
            if available < qty or not self.ledger.reserve(product_id, qty):
                raise NotEnoughStock(
                    product_id=product_id,
                    requested_qty=qty,
                    available_stock=available,
                )

            return self.holds.add(
                Hold(
                    product_id=product_id,
                    qty=qty,
                    status=HoldStatus.ACTIVE,
                    expires_at=utcnow() + timedelta(minutes=ttl),
                    unique_token=secrets.token_hex(16),
                )
            )

        try:
            hold = run_in_transaction(self.db, work, attempts=settings.HOLD_TRANSACTION_ATTEMPTS)
        except (NotEnoughStock, ProductNotFound) as e:
            self.events.emit("hold_rejected", Severity.WARNING, reason=e.code, **e.context)
            raise

        self.events.emit(
            "hold_created",
            hold_id=hold.id,
            product_id=product_id,
            qty=qty,
            expires_at=hold.expires_at,
        )

        # 提交之后再投递，保证任务执行时能读到预占
        schedule_after_commit(
            self.scheduler,
            self.events,
            EXPIRE_HOLD_TASK,
            [hold.id],
            at_time=hold.expires_at + timedelta(seconds=settings.HOLD_EXPIRY_GRACE_SECONDS),
        )
        return hold

    def expire_hold(self, hold_id: int) -> bool:
        """过期预占并释放库存（幂等）

        到期任务和定时扫描可能重复调用，加锁后的状态检查保证库存只释放一次。

        Returns:
            True 表示本次完成了 active -> expired，False 表示无操作
        """

        def work() -> bool:
            # 按 Product -> Hold 的顺序加锁
            snapshot = self.holds.get(hold_id)
            if snapshot is None:
                return False
            self.products.lock(snapshot.product_id)

            hold = self.holds.lock(hold_id)
            if hold is None or hold.status != HoldStatus.ACTIVE:
                return False

            self.release_stock(hold)
            hold.status = HoldStatus.EXPIRED
            self.db.flush()
            return True

        expired = run_in_transaction(self.db, work)
        if expired:
            self.events.emit("hold_expired", hold_id=hold_id)
        else:
            self.events.emit("hold_expire_noop", hold_id=hold_id)
        return expired

    def release_stock(self, hold: Hold) -> None:
        """释放预占对应的库存，调用方已持有商品行锁"""
        if not self.ledger.release(hold.product_id, hold.qty):
            self.events.emit(
                "stock_release_failed",
                Severity.ERROR,
                hold_id=hold.id,
                product_id=hold.product_id,
                qty=hold.qty,
            )
            raise ReleaseStockFailed(hold_id=hold.id, product_id=hold.product_id, qty=hold.qty)

    def expire_due_holds(self, limit: Optional[int] = None) -> int:
        """扫描到期未释放的预占并逐条过期

        单条失败只记录日志，不中断整批。

        Args:
            limit: 本批最多处理条数，默认 settings.HOLD_SWEEP_BATCH_SIZE

        Returns:
            本批实际过期的数量
        """
        limit = settings.HOLD_SWEEP_BATCH_SIZE if limit is None else limit
        hold_ids = self.holds.due_ids(utcnow(), limit)
        # 只读查询也会开启事务，先结束它
        self.db.rollback()

        expired = 0
        for hold_id in hold_ids:
            try:
                if self.expire_hold(hold_id):
                    expired += 1
            except Exception as e:
                logger.error(f"过期预占失败: hold_id={hold_id}, error={e}")

        self.events.emit(
            "hold_sweep_completed",
            total_found=len(hold_ids),
            total_expired=expired,
        )
        return expired
