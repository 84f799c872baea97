"""依赖注入配置模块"""

from fastapi import Depends
from sqlalchemy.orm import Session

# 数据库会话依赖
from app.db.session import SessionLocal

from app.core.events import EventSink, get_event_sink
from app.core.scheduler import CeleryTaskScheduler, TaskScheduler
from app.services.hold_manager import HoldManager
from app.services.order_lifecycle import OrderLifecycle
from app.services.webhook_reconciler import WebhookReconciler


def get_db() -> Session:
    """获取数据库会话"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_events() -> EventSink:
    """获取事件输出"""
    return get_event_sink()


def get_scheduler() -> TaskScheduler:
    """获取延迟任务调度器"""
    return CeleryTaskScheduler()


def get_hold_manager(
    db: Session = Depends(get_db),
    scheduler: TaskScheduler = Depends(get_scheduler),
    events: EventSink = Depends(get_events),
) -> HoldManager:
    """获取预占服务实例（依赖注入）"""
    return HoldManager(db=db, scheduler=scheduler, events=events)


def get_order_lifecycle(
    db: Session = Depends(get_db),
    events: EventSink = Depends(get_events),
) -> OrderLifecycle:
    """获取订单服务实例（依赖注入）"""
    return OrderLifecycle(db=db, events=events)


def get_webhook_reconciler(
    db: Session = Depends(get_db),
    scheduler: TaskScheduler = Depends(get_scheduler),
    events: EventSink = Depends(get_events),
) -> WebhookReconciler:
    """获取支付回调服务实例（依赖注入）"""
    return WebhookReconciler(db=db, scheduler=scheduler, events=events)


# 常用的依赖注入别名
HoldManagerDep = Depends(get_hold_manager)
OrderLifecycleDep = Depends(get_order_lifecycle)
WebhookReconcilerDep = Depends(get_webhook_reconciler)
