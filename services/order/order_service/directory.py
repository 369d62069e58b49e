"""
Order Service — 顧客ディレクトリによる検証

  1. 業務ルール (顧客 ID・合計金額の範囲) をローカルで検査
  2. 外部の顧客ディレクトリに GET users/{id} で顧客の存在を問い合わせる

結果は bool ではなく例外で返す。呼び出し元が「なぜ失敗したか」を
推測し直す必要がないように、HTTP ステータスや通信エラーを
ここで失敗の分類 (errors.py) に翻訳する。

  ┌──────────────┬──────────────────────────────────────────┐
  │ 2xx + 正しい本文 │ 成功                                  │
  │ 404          │ BusinessRuleFailure (CUSTOMER_NOT_FOUND) │
  │ 401 / 403    │ ConfigurationFailure (資格情報の問題)    │
  │ 400/429/5xx  │ ExternalServiceFailure                   │
  │ タイムアウト等 │ ExternalServiceFailure                   │
  └──────────────┴──────────────────────────────────────────┘
"""

import logging
from decimal import Decimal

import httpx
from pydantic import BaseModel, ValidationError

from .errors import BusinessRuleFailure, ConfigurationFailure, ExternalServiceFailure

logger = logging.getLogger(__name__)

SERVICE_NAME = "customer-directory"
USERS_ENDPOINT = "users"
MIN_CUSTOMER_ID = 1
MIN_TOTAL = Decimal("0")


class DirectoryUser(BaseModel):
    id: int
    name: str
    email: str


class CustomerValidator:
    def __init__(
        self,
        base_url: str,
        total_ceiling: Decimal,
        timeout_seconds: float,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url
        self.total_ceiling = total_ceiling
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def validate(self, customer_id: int, total: Decimal) -> None:
        logger.info("Validating order for customer %s, total %s", customer_id, total)
        self._check_business_rules(customer_id, total)
        await self._check_customer_exists(customer_id)
        logger.info("Order validated for customer %s, total %s", customer_id, total)

    # ── 業務ルール ────────────────────────────────

    def _check_business_rules(self, customer_id: int, total: Decimal) -> None:
        if customer_id < MIN_CUSTOMER_ID:
            logger.warning("Invalid customer id: %s", customer_id)
            raise BusinessRuleFailure(
                f"Customer id must be at least {MIN_CUSTOMER_ID}",
                "CUSTOMER_ID_INVALID",
                customer_id=customer_id,
                minimum=MIN_CUSTOMER_ID,
            )
        if total <= MIN_TOTAL:
            logger.warning("Invalid order total: %s", total)
            raise BusinessRuleFailure(
                f"Order total must be greater than {MIN_TOTAL}",
                "TOTAL_INVALID",
                total=str(total),
            )
        if total > self.total_ceiling:
            logger.warning("Order total %s exceeds ceiling %s", total, self.total_ceiling)
            raise BusinessRuleFailure(
                f"Order total ({total}) exceeds the maximum allowed ({self.total_ceiling})",
                "TOTAL_LIMIT_EXCEEDED",
                total=str(total),
                ceiling=str(self.total_ceiling),
            )

    # ── 外部ディレクトリ ──────────────────────────

    async def _check_customer_exists(self, customer_id: int) -> None:
        logger.info("Looking up customer %s at %s", customer_id, self.base_url)
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout_seconds,
                transport=self._transport,
            ) as client:
                resp = await client.get(f"{USERS_ENDPOINT}/{customer_id}")
        except httpx.TimeoutException as e:
            logger.error(
                "Directory lookup for customer %s timed out (limit %ss)", customer_id, self.timeout_seconds
            )
            raise ExternalServiceFailure(
                f"Customer directory did not respond within {self.timeout_seconds}s",
                SERVICE_NAME,
                customer_id=customer_id,
                timeout_seconds=self.timeout_seconds,
            ) from e
        except httpx.HTTPError as e:
            logger.error("Could not reach customer directory for customer %s: %s", customer_id, e)
            raise ExternalServiceFailure(
                "Could not connect to the customer directory",
                SERVICE_NAME,
                customer_id=customer_id,
            ) from e
        except Exception as e:
            logger.exception("Unexpected error during directory lookup for customer %s", customer_id)
            raise ExternalServiceFailure(
                "Unexpected error while contacting the customer directory",
                SERVICE_NAME,
                customer_id=customer_id,
                error_type=type(e).__name__,
            ) from e

        self._raise_for_status(resp, customer_id)
        user = self._parse_user(resp, customer_id)
        logger.info("Customer %s verified: name=%s email=%s", user.id, user.name, user.email)

    def _raise_for_status(self, resp: httpx.Response, customer_id: int) -> None:
        status = resp.status_code
        if resp.is_success:
            return

        if status == 404:
            logger.warning("Customer %s not found in directory", customer_id)
            raise BusinessRuleFailure(
                f"Customer {customer_id} does not exist",
                "CUSTOMER_NOT_FOUND",
                customer_id=customer_id,
                status_code=status,
            )

        if status in (401, 403):
            logger.error("Directory rejected our credentials (%s) for customer %s", status, customer_id)
            raise ConfigurationFailure(
                "Authentication with the customer directory failed; check the service credentials",
                "DIRECTORY_AUTH",
                status_code=status,
            )

        if status == 400:
            logger.warning("Directory rejected the lookup request (400) for customer %s", customer_id)
            message = "Customer directory rejected the request as malformed"
            raise ExternalServiceFailure(message, SERVICE_NAME, status_code=status, customer_id=customer_id)

        if status == 429:
            retry_after = resp.headers.get("Retry-After")
            logger.warning(
                "Directory rate limit hit (429) for customer %s, retry-after=%s", customer_id, retry_after
            )
            raise ExternalServiceFailure(
                "Customer directory is rate limiting requests; try again later",
                SERVICE_NAME,
                status_code=status,
                retry_after=retry_after,
                customer_id=customer_id,
            )

        if resp.is_server_error:
            logger.error("Customer directory unavailable (%s) for customer %s", status, customer_id)
            raise ExternalServiceFailure(
                f"Customer directory is temporarily unavailable (status {status})",
                SERVICE_NAME,
                status_code=status,
                customer_id=customer_id,
            )

        logger.error("Unexpected directory status %s for customer %s", status, customer_id)
        raise ExternalServiceFailure(
            f"Customer directory answered with an unexpected status ({status})",
            SERVICE_NAME,
            status_code=status,
            customer_id=customer_id,
        )

    def _parse_user(self, resp: httpx.Response, customer_id: int) -> DirectoryUser:
        try:
            user = DirectoryUser.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            logger.error("Malformed directory response for customer %s: %s", customer_id, e)
            raise ExternalServiceFailure(
                "Customer directory returned a malformed response",
                SERVICE_NAME,
                status_code=resp.status_code,
                customer_id=customer_id,
            ) from e
        if user.id == 0:
            logger.warning("Directory returned an empty record for customer %s", customer_id)
            raise ExternalServiceFailure(
                "Customer directory returned an incomplete record",
                SERVICE_NAME,
                status_code=resp.status_code,
                customer_id=customer_id,
                received_id=user.id,
            )
        return user
