"""Celery 配置文件"""

from celery import Celery

from app.core.config import settings

# 创建 Celery 应用实例
app = Celery("checkout_worker", include=["tasks.checkout_tasks"])

# 配置 Redis 作为 broker 和 backend
app.conf.broker_url = settings.celery_url(settings.CELERY_BROKER_DB)
app.conf.result_backend = settings.celery_url(settings.CELERY_RESULT_DB)

# 任务序列化配置
app.conf.task_serializer = "json"
app.conf.result_serializer = "json"
app.conf.accept_content = ["json"]

# 时区配置
app.conf.timezone = "UTC"
app.conf.enable_utc = True

# 任务路由配置
app.conf.task_routes = {
    "tasks.checkout.*": {"queue": "checkout"},
}

# Worker 配置：任务执行完才 ack，worker 崩溃时任务会被重新投递
app.conf.worker_prefetch_multiplier = 1
app.conf.task_acks_late = True

# 定时兜底：到期预占扫描 + 等待订单的回调重试
app.conf.beat_schedule = {
    "sweep-expired-holds": {
        "task": "tasks.checkout.sweep_expired_holds",
        "schedule": float(settings.SWEEP_INTERVAL_SECONDS),
        "args": (settings.HOLD_SWEEP_BATCH_SIZE,),
    },
    "retry-waiting-webhooks": {
        "task": "tasks.checkout.retry_waiting_webhooks",
        "schedule": float(settings.SWEEP_INTERVAL_SECONDS),
        "args": (settings.WEBHOOK_RETRY_BATCH_SIZE,),
    },
}

# 导出应用实例
__all__ = ["app"]
