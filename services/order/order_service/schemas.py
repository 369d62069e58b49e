"""
Order Service — リクエスト / レスポンスモデル

値の範囲チェックはここでは行わない。ワークフローの入力検証
(orchestrator.validate_request) が唯一の検証ポイントで、
違反したフィールド名と値を ValidationFailure として返す。
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field


class OrderItemRequest(BaseModel):
    product_id: int
    quantity: int
    unit_price: Decimal


class OrderRequest(BaseModel):
    customer_id: int
    submitting_user: str
    items: list[OrderItemRequest]


class OrderResult(BaseModel):
    order_id: int
    customer_id: int
    created_at: datetime
    total: Decimal
    submitting_user: str
    item_count: int
    message: str = "Order registered successfully"


class ErrorResponse(BaseModel):
    status_code: int
    message: str
    error_code: str
    timestamp: datetime
    details: dict[str, Any] = Field(default_factory=dict)
