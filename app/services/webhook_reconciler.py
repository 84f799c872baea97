"""支付回调对账服务

- ingest：按 idempotency_key 去重落库，新记录才投递异步处理
- process：幂等处理，订单尚未创建时标记 waiting_for_order 等待重试
- batch_retry_waiting：定时重试等待订单的回调
"""

import enum
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.events import EventSink, LoggingEventSink, Severity
from app.core.exceptions import (
    CannotFailPaidOrder,
    IntegrityFailure,
    InvalidOrderState,
    MissingRequiredField,
)
from app.core.scheduler import (
    PROCESS_WEBHOOK_TASK,
    CeleryTaskScheduler,
    TaskScheduler,
    schedule_after_commit,
)
from app.db.transaction import run_in_transaction
from app.db.types import utcnow
from app.models.order import OrderStatus
from app.models.webhook_event import WebhookEvent, WebhookOutcome
from app.repositories import OrderRepository, WebhookEventRepository
from app.services.order_lifecycle import OrderLifecycle

logger = logging.getLogger(__name__)

SUCCESS_STATUS = "succeeded"
FAILURE_STATUSES = {
    "failed": OrderStatus.FAILED,
    "declined": OrderStatus.FAILED,
    "cancelled": OrderStatus.CANCELLED,
}
# 终态订单拒绝的转换，重试也不会成功
PERMANENT_REJECTIONS = (CannotFailPaidOrder, InvalidOrderState)


class ProcessResult(str, enum.Enum):
    APPLIED = "applied"
    WAITING_FOR_ORDER = "waiting_for_order"
    SKIPPED = "skipped"
    FAILED = "failed"


def _coerce_order_id(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class WebhookReconciler:
    """支付回调核心服务类"""

    def __init__(
        self,
        db: Session,
        scheduler: TaskScheduler = None,
        events: EventSink = None,
    ):
        self.db = db
        self.events = events or LoggingEventSink()
        self.scheduler = scheduler or CeleryTaskScheduler()
        self.lifecycle = OrderLifecycle(db, self.events)
        self.orders = OrderRepository(db)
        self.webhook_events = WebhookEventRepository(db)

    def ingest(self, idempotency_key: str, payload: Dict[str, Any]) -> WebhookEvent:
        """接收支付回调（幂等）

        同一个 key 只会落一条记录；重复调用直接返回已有记录，
        即使尚未处理也不重复投递，由已有的处理/重试链路负责。

        Raises:
            MissingRequiredField: 缺少 idempotency_key 或 status，不写任何数据
        """
        if not idempotency_key:
            self.events.emit("webhook_rejected", Severity.WARNING, field="idempotency_key")
            raise MissingRequiredField("idempotency_key is required", field="idempotency_key")
        if not isinstance(payload, dict) or payload.get("status") in (None, ""):
            self.events.emit(
                "webhook_rejected",
                Severity.WARNING,
                field="status",
                idempotency_key=idempotency_key,
            )
            raise MissingRequiredField("payload.status is required", field="status")

        def work():
            return self.webhook_events.create_or_get(
                WebhookEvent(
                    idempotency_key=idempotency_key,
                    event_type=payload.get("type"),
                    payload=payload,
                    processed=False,
                )
            )

        event, created = run_in_transaction(self.db, work)

        if not created:
            self.events.emit(
                "webhook_duplicate",
                webhook_id=event.id,
                idempotency_key=idempotency_key,
                processed=event.processed,
            )
            return event

        self.events.emit(
            "webhook_ingested",
            webhook_id=event.id,
            idempotency_key=idempotency_key,
            status=payload.get("status"),
        )
        schedule_after_commit(self.scheduler, self.events, PROCESS_WEBHOOK_TASK, [event.id])
        return event

    def process_by_id(self, event_id: int) -> ProcessResult:
        event = self.webhook_events.get(event_id)
        if event is None:
            return ProcessResult.SKIPPED
        return self.process(event)

    def process(self, event: WebhookEvent) -> ProcessResult:
        """处理一条支付回调（幂等）

        Returns:
            applied / waiting_for_order / skipped / failed
        """
        if event.processed:
            return ProcessResult.SKIPPED

        event_id = event.id
        try:
            result = run_in_transaction(self.db, lambda: self._process_locked(event_id))
        except PERMANENT_REJECTIONS as e:
            run_in_transaction(self.db, lambda: self._close_rejected(event_id, e))
            self.events.emit(
                "webhook_dispatch_rejected",
                Severity.WARNING,
                webhook_id=event_id,
                reason=e.code,
                **e.context,
            )
            return ProcessResult.FAILED
        except Exception as e:
            # 分发失败：保持未处理并记录原因，下游操作都是幂等的
            run_in_transaction(self.db, lambda: self._record_error(event_id, e))
            self.events.emit(
                "webhook_dispatch_error",
                Severity.ERROR,
                webhook_id=event_id,
                error=str(e),
                error_code=getattr(e, "code", type(e).__name__),
            )
            raise

        if result == ProcessResult.APPLIED:
            self.events.emit("webhook_applied", webhook_id=event_id)
        elif result == ProcessResult.WAITING_FOR_ORDER:
            self.events.emit("webhook_waiting_for_order", webhook_id=event_id)
        elif result == ProcessResult.FAILED:
            self.events.emit("webhook_unrecognized_status", Severity.WARNING, webhook_id=event_id)
        return result

    def batch_retry_waiting(self, limit: Optional[int] = None) -> int:
        """重试等待订单的回调，最早的优先

        单条失败记录日志后继续处理下一条。

        Returns:
            本批最终 applied 的数量
        """
        limit = settings.WEBHOOK_RETRY_BATCH_SIZE if limit is None else limit
        event_ids = self.webhook_events.retryable_ids(limit)
        self.db.rollback()

        applied = 0
        for event_id in event_ids:
            try:
                if self.process_by_id(event_id) == ProcessResult.APPLIED:
                    applied += 1
            except Exception as e:
                logger.error(f"重试支付回调失败: webhook_id={event_id}, error={e}")

        self.events.emit(
            "webhook_retry_batch_completed",
            total_found=len(event_ids),
            total_applied=applied,
        )
        return applied

    # ==================== 内部方法 ====================

    def _process_locked(self, event_id: int) -> ProcessResult:
        event = self.webhook_events.lock(event_id)
        if event is None or event.processed:
            return ProcessResult.SKIPPED

        payload = event.payload or {}
        order_id = event.order_id or _coerce_order_id(payload.get("order_id"))
        order = self.orders.get(order_id) if order_id else None

        if order is None:
            # 回调先于下单到达
            event.outcome = WebhookOutcome.WAITING_FOR_ORDER
            self.db.flush()
            return ProcessResult.WAITING_FOR_ORDER

        event.order_id = order.id
        status = payload.get("status")

        if status == SUCCESS_STATUS:
            self.lifecycle.finalize_paid_locked(order.id, payload.get("payment_id"))
        elif status in FAILURE_STATUSES:
            self.lifecycle.mark_as_failed_locked(order.id, FAILURE_STATUSES[status])
        else:
            # 无法识别的状态是永久失败，不再重试
            self._close(event, WebhookOutcome.FAILED)
            return ProcessResult.FAILED

        self._close(event, WebhookOutcome.APPLIED)
        return ProcessResult.APPLIED

    def _close(self, event: WebhookEvent, outcome: WebhookOutcome, error: str = None):
        event.outcome = outcome
        event.processed = True
        event.processed_at = utcnow()
        event.last_error = error
        self.db.flush()

    def _close_rejected(self, event_id: int, error: Exception):
        event = self.webhook_events.lock(event_id)
        if event is None or event.processed:
            return
        if event.order_id is None:
            event.order_id = _coerce_order_id((event.payload or {}).get("order_id"))
        self._close(event, WebhookOutcome.FAILED, error=getattr(error, "code", str(error)))

    def _record_error(self, event_id: int, error: Exception):
        """记录分发失败原因，事件保持未处理

        库存账目故障标记为 failed，退出自动重试；其余错误保留原 outcome，
        由定时重试批次再次尝试。
        """
        event = self.webhook_events.lock(event_id)
        if event is None or event.processed:
            return
        if isinstance(error, IntegrityFailure):
            event.outcome = WebhookOutcome.FAILED
        event.last_error = f"{getattr(error, 'code', type(error).__name__)}: {error}"
        self.db.flush()
