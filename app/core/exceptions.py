"""结算领域异常定义

三类错误：
- BusinessConflict：正常业务结果（库存不足、预占过期等），直接返回给调用方
- IntegrityFailure：库存账目已经不一致，必须硬失败并让运维可见
- 瞬时错误（锁超时、序列化冲突）不在这里定义，由事务重试器处理 DBAPIError
"""


class CheckoutError(Exception):
    """结算异常基类，code 为稳定的机器可读错误码"""

    code = "checkout_error"

    def __init__(self, message: str = None, **context):
        self.message = message or self.code
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, **self.context}


# ==================== 业务冲突 ====================

class BusinessConflict(CheckoutError):
    code = "business_conflict"


class NotEnoughStock(BusinessConflict):
    code = "not_enough_stock"


class HoldExpired(BusinessConflict):
    code = "hold_expired"


class InvalidHoldState(BusinessConflict):
    code = "invalid_hold_state"


class HoldAlreadyConsumed(BusinessConflict):
    code = "hold_already_consumed"


class CannotFailPaidOrder(BusinessConflict):
    code = "cannot_fail_paid_order"


class InvalidOrderState(BusinessConflict):
    code = "invalid_order_state"


class ProductNotFound(BusinessConflict):
    code = "product_not_found"


class HoldNotFound(BusinessConflict):
    code = "hold_not_found"


class OrderNotFound(BusinessConflict):
    code = "order_not_found"


class InvalidQuantity(BusinessConflict):
    code = "invalid_quantity"


class MissingRequiredField(BusinessConflict):
    code = "missing_required_field"


# ==================== 完整性故障 ====================

class IntegrityFailure(CheckoutError):
    code = "integrity_failure"


class CommitStockFailed(IntegrityFailure):
    code = "commit_stock_failed"


class ReleaseStockFailed(IntegrityFailure):
    code = "release_stock_failed"


class MissingHold(IntegrityFailure):
    code = "missing_hold"


class MissingProduct(IntegrityFailure):
    code = "missing_product"
