from .products import ProductRepository
from .holds import HoldRepository
from .orders import OrderRepository
from .webhook_events import WebhookEventRepository

__all__ = [
    "ProductRepository",
    "HoldRepository",
    "OrderRepository",
    "WebhookEventRepository",
]
