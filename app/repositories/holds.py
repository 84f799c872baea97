from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.hold import Hold
from app.repositories.filters import hold_is_due


class HoldRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, hold_id: int) -> Optional[Hold]:
        return self.db.get(Hold, hold_id)

    def lock(self, hold_id: int) -> Optional[Hold]:
        return self.db.execute(
            select(Hold)
            .where(Hold.id == hold_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def add(self, hold: Hold) -> Hold:
        self.db.add(hold)
        self.db.flush()
        return hold

    def due_ids(self, now: datetime, limit: int) -> List[int]:
        """到期未释放的预占ID，最早到期的在前"""
        return list(
            self.db.execute(
                select(Hold.id)
                .where(hold_is_due(now))
                .order_by(Hold.expires_at, Hold.id)
                .limit(limit)
            ).scalars()
        )
