"""
Order Service — 注文登録オーケストレーター

1 件の注文登録を、順番に実行するステップの列として制御する。
どのステップで失敗しても補償 (ロールバック) を行い、元の失敗をそのまま返す。

  フロー:
  ┌──────────────────────────────────────────────────────────────┐
  │  1. 入力検証                (失敗 → トランザクションを開かずに終了) │
  │  ┌─ 一時的なストレージ障害なら 2〜8 を丸ごとリトライ ─────────┐    │
  │  │ 2. トランザクション開始                                  │    │
  │  │ 3. 監査: ORDER_STARTED      (ベストエフォート)           │    │
  │  │ 4. 合計金額の計算           (Decimal・オーバーフロー検出) │    │
  │  │ 5. 顧客ディレクトリで検証                                │    │
  │  │ 6. ヘッダ + 明細を保存 → flush → 採番を確認              │    │
  │  │ 7. 監査: ORDER_CREATED      (ベストエフォート)           │    │
  │  │ 8. コミット                                              │    │
  │  │    └─ 失敗 → ロールバック (補償)                         │    │
  │  └──────────────────────────────────────────────────────────┘    │
  │  失敗時: 別トランザクションで ORDER_REJECTED / ORDER_ERROR を記録 │
  │  成功時: OrderCreated を発行                 (ベストエフォート)   │
  └──────────────────────────────────────────────────────────────┘

キャンセル (asyncio.CancelledError) はロールバックだけ行い、そのまま伝播させる。
"""

import asyncio
import decimal
import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import exc as sa_exc

from .directory import CustomerValidator
from .errors import FailureKind, OrderFailure, StorageFailure, TransactionFailure, ValidationFailure
from .events import OrderCreated, OrderEventPublisher
from .models import (
    SUBMITTING_USER_MAX_LENGTH,
    AuditEventName,
    OrderHeader,
    OrderLine,
)
from .schemas import OrderItemRequest, OrderRequest, OrderResult
from .store import OrderStore

logger = logging.getLogger(__name__)

MIN_SUBMITTING_USER_LENGTH = 3
MAX_ITEMS = 100
MAX_QUANTITY = 10_000
MIN_UNIT_PRICE = Decimal("0.01")
MAX_UNIT_PRICE = Decimal("999999.99")
MAX_ORDER_TOTAL = Decimal("999999999.99")
CENTS = Decimal("0.01")

# 丸めやオーバーフローが起きたら例外にする (黙って値を変えない)
_EXACT = decimal.Context(
    prec=28,
    traps=[decimal.Overflow, decimal.Inexact, decimal.InvalidOperation],
)


# ── 入力検証と合計計算 ─────────────────────────

def validate_request(request: OrderRequest | None) -> None:
    """最初に見つかった違反を ValidationFailure として送出する。"""
    if request is None:
        raise ValidationFailure("Order request is required", "request")

    if request.customer_id <= 0:
        raise ValidationFailure("customer_id must be greater than 0", "customer_id", request.customer_id)

    user = request.submitting_user
    if not (MIN_SUBMITTING_USER_LENGTH <= len(user) <= SUBMITTING_USER_MAX_LENGTH) or not user.strip():
        raise ValidationFailure(
            f"submitting_user must be between {MIN_SUBMITTING_USER_LENGTH} and "
            f"{SUBMITTING_USER_MAX_LENGTH} characters",
            "submitting_user",
            user,
        )

    if not 1 <= len(request.items) <= MAX_ITEMS:
        raise ValidationFailure(
            f"An order must contain between 1 and {MAX_ITEMS} items", "items", len(request.items)
        )

    for index, item in enumerate(request.items):
        _validate_item(index, item)


def _validate_item(index: int, item: OrderItemRequest) -> None:
    field = f"items[{index}]"
    if item.product_id <= 0:
        raise ValidationFailure("product_id must be greater than 0", f"{field}.product_id", item.product_id)
    if not 1 <= item.quantity <= MAX_QUANTITY:
        raise ValidationFailure(
            f"quantity must be between 1 and {MAX_QUANTITY}", f"{field}.quantity", item.quantity
        )
    price = item.unit_price
    if not price.is_finite() or not MIN_UNIT_PRICE <= price <= MAX_UNIT_PRICE:
        raise ValidationFailure(
            f"unit_price must be between {MIN_UNIT_PRICE} and {MAX_UNIT_PRICE}",
            f"{field}.unit_price",
            str(price),
        )
    if price != price.quantize(CENTS):
        raise ValidationFailure(
            "unit_price must not have more than 2 decimal places", f"{field}.unit_price", str(price)
        )


def compute_total(items: Sequence[OrderItemRequest]) -> Decimal:
    """Σ quantity × unit_price を厳密な Decimal 演算で求める。"""
    try:
        with decimal.localcontext(_EXACT):
            total = sum((Decimal(item.quantity) * item.unit_price for item in items), Decimal("0"))
    except decimal.DecimalException as e:
        raise ValidationFailure("Order total cannot be represented exactly", "total") from e

    if total > MAX_ORDER_TOTAL:
        raise ValidationFailure(
            f"Order total exceeds the maximum representable amount ({MAX_ORDER_TOTAL})",
            "total",
            str(total),
        )
    if total <= 0:
        raise ValidationFailure("Order total must be greater than 0", "total", str(total))
    return total.quantize(CENTS)


def build_header(request: OrderRequest, total: Decimal) -> OrderHeader:
    return OrderHeader(
        customer_id=request.customer_id,
        created_at=datetime.now(timezone.utc),
        total=total,
        submitting_user=request.submitting_user,
        lines=[
            OrderLine(product_id=item.product_id, quantity=item.quantity, unit_price=item.unit_price)
            for item in request.items
        ],
    )


def translate_storage_error(error: Exception) -> OrderFailure | None:
    """SQLAlchemy の例外を失敗の分類に翻訳する。対象外なら None。"""
    if isinstance(error, sa_exc.InvalidRequestError):
        return TransactionFailure(f"Transaction lifecycle error: {error}")
    if isinstance(error, sa_exc.SQLAlchemyError):
        return StorageFailure(f"Storage error: {error}", error_type=type(error).__name__)
    return None


# ── オーケストレーター ─────────────────────────

class OrderRegistrationOrchestrator:
    """注文登録ワークフロー (1 リクエストにつき 1 インスタンス)"""

    def __init__(
        self,
        store: OrderStore,
        validator: CustomerValidator,
        publisher: OrderEventPublisher | None = None,
    ):
        self.store = store
        self.validator = validator
        self.publisher = publisher

    async def register_order(self, request: OrderRequest) -> OrderResult:
        try:
            validate_request(request)
        except ValidationFailure as e:
            self._log_failure(request, e)
            raise

        logger.info(
            "Registering order - customer: %s, user: %s, items: %d",
            request.customer_id,
            request.submitting_user,
            len(request.items),
        )

        try:
            header = await self.store.execute_with_retry(lambda: self._register_once(request))
        except asyncio.CancelledError:
            logger.log(
                FailureKind.CANCELLED.log_level,
                "Order registration cancelled - customer: %s",
                request.customer_id,
            )
            raise
        except OrderFailure as e:
            self._log_failure(request, e)
            await self._record_failure(request, e.kind.value, e.message, e.kind.is_business)
            raise
        except Exception as e:
            failure = translate_storage_error(e)
            if failure is None:
                logger.exception("Unexpected error registering order - customer: %s", request.customer_id)
                await self._record_failure(request, type(e).__name__, str(e), False)
                raise
            self._log_failure(request, failure)
            await self._record_failure(request, failure.kind.value, failure.message, False)
            raise failure from e

        logger.info(
            "Order registered - order_id: %s, customer: %s, total: %s",
            header.id,
            header.customer_id,
            header.total,
        )
        result = OrderResult(
            order_id=header.id,
            customer_id=header.customer_id,
            created_at=header.created_at,
            total=header.total,
            submitting_user=header.submitting_user,
            item_count=len(request.items),
        )
        if self.publisher is not None:
            await self.publisher.publish_order_created(OrderCreated(
                order_id=result.order_id,
                customer_id=result.customer_id,
                submitting_user=result.submitting_user,
                total=result.total,
                item_count=result.item_count,
                timestamp=result.created_at,
            ))
        return result

    async def _register_once(self, request: OrderRequest) -> OrderHeader:
        """1 回分のトランザクション (begin..commit)。リトライ時はここが丸ごと再実行される。"""
        await self.store.begin_transaction()
        try:
            # ── Step 3: 開始を監査 ─────────────────
            self.store.audit.record_event(
                AuditEventName.ORDER_STARTED,
                f"Registering order for customer {request.customer_id} by {request.submitting_user}",
            )

            # ── Step 4: 合計金額 ────────────────────
            total = compute_total(request.items)
            logger.info("Computed total %s for %d items", total, len(request.items))

            # ── Step 5: 顧客ディレクトリで検証 ─────
            await self.validator.validate(request.customer_id, total)

            # ── Step 6: 保存 ────────────────────────
            header = self.store.orders.add(build_header(request, total))
            await self.store.flush()
            if header.id is None or header.id <= 0:
                raise StorageFailure("Order store did not assign an identity to the order", order_id=header.id)

            # ── Step 7: 完了を監査 ─────────────────
            self.store.audit.record_event(
                AuditEventName.ORDER_CREATED,
                f"Order {header.id} created for customer {request.customer_id}, total {total}, "
                f"items {len(request.items)}, user {request.submitting_user}",
            )

            # ── Step 8: コミット ────────────────────
            await self.store.commit()
            return header
        except BaseException:
            # 補償: このトランザクションで書いたものをすべて取り消す
            await self._rollback_quietly()
            raise

    async def _rollback_quietly(self) -> None:
        try:
            await self.store.rollback()
        except Exception:
            logger.exception("Rollback failed")

    async def _record_failure(self, request: OrderRequest, category: str, message: str, business: bool) -> None:
        """ロールバック後、独立した短いトランザクションで失敗を監査に残す (ベストエフォート)。"""
        event_name = AuditEventName.ORDER_REJECTED if business else AuditEventName.ORDER_ERROR
        began = False
        try:
            await self.store.begin_transaction()
            began = True
            self.store.audit.record_event(
                event_name,
                f"Order registration failed [{category}] for customer {request.customer_id}, "
                f"user {request.submitting_user}: {message}",
            )
            await self.store.commit()
        except Exception:
            logger.exception("Could not record %s audit event", event_name.value)
            if began:
                await self._rollback_quietly()

    def _log_failure(self, request: OrderRequest | None, failure: OrderFailure) -> None:
        logger.log(
            failure.kind.log_level,
            "Order registration failed [%s] - customer: %s, user: %s: %s",
            failure.code,
            getattr(request, "customer_id", None),
            getattr(request, "submitting_user", None),
            failure.message,
            exc_info=not failure.kind.is_business,
        )
