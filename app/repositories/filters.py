"""查询谓词

纯函数，返回可直接放进 select().where() 的 SQL 表达式。
"""

from datetime import datetime

from app.models.hold import Hold, HoldStatus
from app.models.webhook_event import WebhookEvent, WebhookOutcome


def hold_is_active():
    return Hold.status == HoldStatus.ACTIVE


def hold_is_due(now: datetime):
    """仍处于 active 但已到期、等待释放的预占"""
    return hold_is_active() & (Hold.expires_at <= now)


def webhook_is_waiting_for_order():
    return (WebhookEvent.outcome == WebhookOutcome.WAITING_FOR_ORDER) & (
        WebhookEvent.processed.is_(False)
    )


def webhook_is_retryable():
    """定时重试的范围：等待订单的回调，以及落库后投递丢失、从未分发过的回调"""
    never_dispatched = WebhookEvent.outcome.is_(None) & WebhookEvent.processed.is_(False)
    return webhook_is_waiting_for_order() | never_dispatched
