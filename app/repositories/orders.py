from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.order import Order


class OrderRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, order_id: int) -> Optional[Order]:
        return self.db.get(Order, order_id)

    def lock(self, order_id: int) -> Optional[Order]:
        return self.db.execute(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get_by_hold(self, hold_id: int) -> Optional[Order]:
        return self.db.execute(
            select(Order)
            .where(Order.hold_id == hold_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def add(self, order: Order) -> Order:
        self.db.add(order)
        self.db.flush()
        return order
