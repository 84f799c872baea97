"""延迟任务调度接口

核心只要求"在 at_time 之后最终被调用一次以上"，被调用的动作本身都是幂等的。
"""

from datetime import datetime
from typing import Optional, Protocol

from app.core.events import Severity

EXPIRE_HOLD_TASK = "tasks.checkout.expire_hold"
PROCESS_WEBHOOK_TASK = "tasks.checkout.process_webhook_event"


class TaskScheduler(Protocol):
    def schedule(self, action: str, args: list, at_time: Optional[datetime] = None) -> None:
        ...


class CeleryTaskScheduler:
    """通过 Celery 按任务名投递，eta 为空表示立即执行"""

    def __init__(self, celery=None):
        if celery is None:
            from celery_app import app as celery

        self.celery = celery

    def schedule(self, action: str, args: list, at_time: Optional[datetime] = None) -> None:
        self.celery.send_task(action, args=args, eta=at_time)


def schedule_after_commit(scheduler, events, action: str, args: list, at_time: Optional[datetime] = None) -> bool:
    """提交之后投递任务

    投递失败不回滚已提交的数据，记录 task_schedule_failed 事件，
    由定时扫描兜底执行。

    Returns:
        是否投递成功
    """
    try:
        scheduler.schedule(action, args, at_time=at_time)
        return True
    except Exception as e:
        events.emit(
            "task_schedule_failed",
            Severity.WARNING,
            action=action,
            args=args,
            error=str(e),
        )
        return False
