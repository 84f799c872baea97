"""结算相关的 Celery 任务"""

import logging

from sqlalchemy.exc import DBAPIError

from celery_app import app
from app.core.config import settings
from app.core.exceptions import IntegrityFailure
from app.core.events import get_event_sink
from app.core.redis import redlock, single_flight
from app.db.session import SessionLocal
from app.db.transaction import is_transient
from app.services.hold_manager import HoldManager
from app.services.webhook_reconciler import WebhookReconciler

logger = logging.getLogger(__name__)


@app.task(name="tasks.checkout.expire_hold")
def expire_hold(hold_id: int):
    """预占到期的一次性任务（幂等，重复执行无副作用）"""
    db = SessionLocal()
    try:
        service = HoldManager(db, events=get_event_sink())
        expired = service.expire_hold(hold_id)
        return {"hold_id": hold_id, "expired": expired}
    except Exception as e:
        logger.error(f"预占过期任务失败: hold_id={hold_id}, error={e}")
        db.rollback()
        raise
    finally:
        db.close()


@app.task(name="tasks.checkout.sweep_expired_holds")
def sweep_expired_holds(batch_size: int = None):
    """定时扫描到期未释放的预占（一次性任务丢失时的兜底）

    Args:
        batch_size: 批处理大小，默认 settings.HOLD_SWEEP_BATCH_SIZE

    Returns:
        本批过期的数量
    """
    if batch_size is None:
        batch_size = settings.HOLD_SWEEP_BATCH_SIZE
    with single_flight(redlock, "hold_sweep") as acquired:
        if not acquired:
            return 0

        db = SessionLocal()
        try:
            service = HoldManager(db, events=get_event_sink())
            count = service.expire_due_holds(batch_size)
            logger.info(f"过期预占扫描完成: expired={count}")
            return count
        except Exception as e:
            logger.error(f"过期预占扫描失败: {e}")
            db.rollback()
            raise
        finally:
            db.close()


@app.task(
    name="tasks.checkout.process_webhook_event",
    bind=True,
    max_retries=settings.WEBHOOK_PROCESS_MAX_RETRIES,
)
def process_webhook_event(self, event_id: int):
    """处理单条支付回调

    只有瞬时数据库错误按指数退避重试；库存账目故障直接失败，等待人工处理；
    其余异常交给定时重试批次。
    """
    db = SessionLocal()
    try:
        service = WebhookReconciler(db, events=get_event_sink())
        result = service.process_by_id(event_id)
        return {"webhook_id": event_id, "outcome": result.value}
    except DBAPIError as e:
        logger.error(f"支付回调处理失败: webhook_id={event_id}, error={e}")
        db.rollback()
        if not is_transient(e):
            raise
        raise self.retry(exc=e, countdown=2 ** self.request.retries)
    except IntegrityFailure as e:
        logger.error(f"支付回调库存账目故障: webhook_id={event_id}, code={e.code}, context={e.context}")
        db.rollback()
        raise
    except Exception as e:
        logger.error(f"支付回调处理失败: webhook_id={event_id}, error={e}")
        db.rollback()
        raise
    finally:
        db.close()


@app.task(name="tasks.checkout.retry_waiting_webhooks")
def retry_waiting_webhooks(limit: int = None):
    """重试等待订单创建的支付回调

    Returns:
        本批 applied 的数量
    """
    if limit is None:
        limit = settings.WEBHOOK_RETRY_BATCH_SIZE
    with single_flight(redlock, "webhook_retry") as acquired:
        if not acquired:
            return 0

        db = SessionLocal()
        try:
            service = WebhookReconciler(db, events=get_event_sink())
            applied = service.batch_retry_waiting(limit)
            logger.info(f"等待订单的回调重试完成: applied={applied}")
            return applied
        except Exception as e:
            logger.error(f"等待订单的回调重试失败: {e}")
            db.rollback()
            raise
        finally:
            db.close()


# 导出任务
__all__ = [
    "expire_hold",
    "sweep_expired_holds",
    "process_webhook_event",
    "retry_waiting_webhooks",
]
