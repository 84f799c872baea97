# Models
from .product import Product
from .hold import Hold, HoldStatus
from .order import Order, OrderStatus
from .webhook_event import WebhookEvent, WebhookOutcome

__all__ = [
    "Product",
    "Hold",
    "HoldStatus",
    "Order",
    "OrderStatus",
    "WebhookEvent",
    "WebhookOutcome",
]
