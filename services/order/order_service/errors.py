"""
Order Service — 失敗の分類 (Failure Taxonomy)

注文登録ワークフローが呼び出し元に返す失敗はすべて OrderFailure のサブクラス。
各失敗は FailureKind (種別タグ) と metadata (構造化された付加情報) を持つ。

  業務レベル (想定内・WARNING):
    ValidationFailure      入力値が不正
    BusinessRuleFailure    業務ルールによる拒否 (顧客不在・上限超過など)

  システムレベル (ERROR / CRITICAL):
    ExternalServiceFailure 顧客ディレクトリが利用不可・エラー・タイムアウト
    StorageFailure         永続化層のエラー
    TransactionFailure     トランザクションの誤用・失敗
    ConfigurationFailure   設定の欠落・不正 (運用者の対応が必要)

キャンセルは asyncio.CancelledError のまま伝播させる。
OrderFailure ではないので、業務失敗ともシステム失敗とも区別できる。
"""

import enum
import logging
from typing import Any


class FailureKind(str, enum.Enum):
    VALIDATION = "VALIDATION"
    BUSINESS_RULE = "BUSINESS_RULE"
    EXTERNAL_SERVICE = "EXTERNAL_SERVICE"
    STORAGE = "STORAGE"
    TRANSACTION = "TRANSACTION"
    CONFIGURATION = "CONFIGURATION"
    CANCELLED = "CANCELLED"

    @property
    def is_business(self) -> bool:
        """呼び出し元が入力を直せば解決する失敗かどうか。"""
        return self in (FailureKind.VALIDATION, FailureKind.BUSINESS_RULE)

    @property
    def log_level(self) -> int:
        if self is FailureKind.CONFIGURATION:
            return logging.CRITICAL
        if self.is_business or self is FailureKind.CANCELLED:
            return logging.WARNING
        return logging.ERROR


class OrderFailure(Exception):
    """注文登録の失敗の基底クラス。"""

    kind: FailureKind

    def __init__(self, message: str, code: str, **metadata: Any) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.metadata: dict[str, Any] = dict(metadata)

    def add_metadata(self, key: str, value: Any) -> None:
        self.metadata[key] = value

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class ValidationFailure(OrderFailure):
    """入力値が構造的に不正。最初に見つかった違反のフィールドと値を持つ。"""

    kind = FailureKind.VALIDATION

    def __init__(self, message: str, field: str, value: Any = None, **metadata: Any) -> None:
        super().__init__(message, "VALIDATION_ERROR", field=field, value=value, **metadata)
        self.field = field
        self.value = value


class BusinessRuleFailure(OrderFailure):
    kind = FailureKind.BUSINESS_RULE

    def __init__(self, message: str, rule: str, **metadata: Any) -> None:
        super().__init__(message, rule, rule=rule, **metadata)
        self.rule = rule


class ExternalServiceFailure(OrderFailure):
    """外部サービスの失敗。呼び出し元は時間をおいて再試行してよい。"""

    kind = FailureKind.EXTERNAL_SERVICE

    def __init__(
        self,
        message: str,
        service: str,
        status_code: int | None = None,
        retry_after: str | None = None,
        **metadata: Any,
    ) -> None:
        super().__init__(message, f"SERVICE_{service.upper().replace('-', '_')}_ERROR", service=service, **metadata)
        self.service = service
        self.status_code = status_code
        self.retry_after = retry_after
        if status_code is not None:
            self.metadata["status_code"] = status_code
        if retry_after is not None:
            self.metadata["retry_after"] = retry_after


class StorageFailure(OrderFailure):
    kind = FailureKind.STORAGE

    def __init__(self, message: str, **metadata: Any) -> None:
        super().__init__(message, "STORAGE_ERROR", **metadata)


class TransactionFailure(OrderFailure):
    kind = FailureKind.TRANSACTION

    def __init__(self, message: str, **metadata: Any) -> None:
        super().__init__(message, "TRANSACTION_ERROR", **metadata)


class ConfigurationFailure(OrderFailure):
    """設定の欠落・不正。自動再試行はせず、運用者の対応を求める。"""

    kind = FailureKind.CONFIGURATION

    def __init__(self, message: str, config_key: str, **metadata: Any) -> None:
        super().__init__(message, f"CONFIG_{config_key}", config_key=config_key, **metadata)
        self.config_key = config_key
