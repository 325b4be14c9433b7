"""
Stock Service — 例外定義

各例外は HTTP ステータスコードを持ち、main.py の例外ハンドラで
JSON レスポンスに変換される。
"""


class StockServiceError(Exception):
    status_code = 500

    def to_dict(self) -> dict:
        return {"error": type(self).__name__, "detail": str(self)}


class StockNotFound(StockServiceError):
    status_code = 404

    def __init__(self, product_id: int) -> None:
        self.product_id = product_id
        super().__init__(f"Stock not found for product ID: {product_id}")

    def to_dict(self) -> dict:
        return {**super().to_dict(), "product_id": self.product_id}


class StockAlreadyExists(StockServiceError):
    status_code = 409

    def __init__(self, product_id: int) -> None:
        self.product_id = product_id
        super().__init__(f"Stock already exists for product ID: {product_id}")


class InsufficientStock(StockServiceError):
    """減算すると在庫がマイナスになる"""
    status_code = 400

    def __init__(self, product_id: int, available: int, requested: int) -> None:
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


class InvalidStockRequest(StockServiceError):
    status_code = 400
