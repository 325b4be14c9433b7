"""
Order Service — 例外定義

クライアント起因のエラー (400/404) と下流サービスの障害 (502/503) を
区別する。PartialApplicationFault は注文の永続化後に在庫減算が
失敗したことを表し、自動補償は行わない（オペレーターによる突合が必要）。
"""


class OrderServiceError(Exception):
    status_code = 500

    def to_dict(self) -> dict:
        return {"error": type(self).__name__, "detail": str(self)}


class InvalidOrder(OrderServiceError):
    status_code = 400


class NotFound(OrderServiceError):
    status_code = 404


class ProductNotFound(NotFound):
    def __init__(self, product_id: int) -> None:
        self.product_id = product_id
        super().__init__(f"Product not found with id: {product_id}")


class OrderNotFound(NotFound):
    def __init__(self, order_id: int) -> None:
        self.order_id = order_id
        super().__init__(f"Order not found with id: {order_id}")


class StockRecordNotFound(NotFound):
    """Stock Service が 404 を返した（在庫経路での not found）"""

    def __init__(self, product_id: int) -> None:
        self.product_id = product_id
        super().__init__(f"Stock not found for product ID: {product_id}")


class InsufficientStock(OrderServiceError):
    status_code = 400

    def __init__(
        self,
        product_id: int,
        available: int | None,
        requested: int,
    ) -> None:
        self.product_id = product_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for product: {product_id}. "
            f"Available: {available}, Requested: {requested}"
        )

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "product_id": self.product_id,
            "available": self.available,
            "requested": self.requested,
        }


class InvalidTransition(OrderServiceError):
    status_code = 400

    def __init__(self, current, requested, message: str | None = None) -> None:
        self.current = current
        self.requested = requested
        super().__init__(
            message
            or f"Invalid status transition from {current.value} to {requested.value}"
        )


class DownstreamUnavailable(OrderServiceError):
    """下流サービスへの呼び出しがインフラ要因で失敗した"""

    def __init__(self, service: str, detail: str, status_code: int = 502) -> None:
        self.service = service
        self.status_code = status_code
        super().__init__(f"{service} unavailable: {detail}")


class PartialApplicationFault(OrderServiceError):
    """
    注文は保存済みだが、在庫減算が途中で失敗した。

    applied の明細だけ在庫が減っている。この注文を CANCELLED にすると
    減算されていない明細も含めて全明細の在庫が戻されるため、
    照合時は applied に含まれない明細の加算分を差し引くこと。
    """

    status_code = 500

    def __init__(
        self,
        order_id: int,
        applied: list[tuple[int, int]],
        failed_product_id: int,
        cause: Exception,
    ) -> None:
        self.order_id = order_id
        self.applied = applied
        self.failed_product_id = failed_product_id
        self.cause = cause
        super().__init__(
            f"Order {order_id} was saved but stock decrement failed for product "
            f"{failed_product_id}: {cause}. Manual reconciliation required."
        )

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "order_id": self.order_id,
            "applied": [
                {"product_id": pid, "quantity": qty} for pid, qty in self.applied
            ],
            "failed_product_id": self.failed_product_id,
        }
