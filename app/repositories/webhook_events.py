from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.webhook_event import WebhookEvent
from app.repositories.filters import webhook_is_retryable


class WebhookEventRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, event_id: int) -> Optional[WebhookEvent]:
        return self.db.get(WebhookEvent, event_id)

    def lock(self, event_id: int) -> Optional[WebhookEvent]:
        return self.db.execute(
            select(WebhookEvent)
            .where(WebhookEvent.id == event_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get_by_key(self, idempotency_key: str) -> Optional[WebhookEvent]:
        return self.db.execute(
            select(WebhookEvent)
            .where(WebhookEvent.idempotency_key == idempotency_key)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def create_or_get(self, event: WebhookEvent) -> tuple[WebhookEvent, bool]:
        """按 idempotency_key 插入或取回已有记录

        插入放在 SAVEPOINT 里，唯一键冲突只回滚这一步。

        Returns:
            (记录, 是否新建)
        """
        existing = self.get_by_key(event.idempotency_key)
        if existing is not None:
            return existing, False

        try:
            with self.db.begin_nested():
                self.db.add(event)
            return event, True
        except IntegrityError:
            # 并发插入同一个 key，对方已提交
            existing = self.get_by_key(event.idempotency_key)
            if existing is None:
                raise
            return existing, False

    def retryable_ids(self, limit: int) -> List[int]:
        """需要定时重试的回调事件，最早的在前"""
        return list(
            self.db.execute(
                select(WebhookEvent.id)
                .where(webhook_is_retryable())
                .order_by(WebhookEvent.created_at, WebhookEvent.id)
                .limit(limit)
            ).scalars()
        )
