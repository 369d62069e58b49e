"""
Order Service — 注文ストア (Unit of Work)

1 リクエスト = 1 セッション = 1 ストア。
リポジトリ (orders / audit) はストア生成時に同じセッションで組み立てる。

トランザクション境界は明示的に扱う:
    begin_transaction → (add / flush ...) → commit
                                          ↘ rollback  (何度呼んでもよい)
"""

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction

from .audit import AuditRecorder
from .errors import TransactionFailure
from .models import OrderHeader
from .retry import RetryPolicy, retry_async

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OrderRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    def add(self, header: OrderHeader) -> OrderHeader:
        """ヘッダを追加する。明細は relationship の cascade で一緒に追加される。"""
        self._session.add(header)
        return header


class OrderStore:
    def __init__(self, session: AsyncSession, retry_policy: RetryPolicy | None = None) -> None:
        self._session = session
        self._transaction: AsyncSessionTransaction | None = None
        self._retry_policy = retry_policy or RetryPolicy()
        self.orders = OrderRepository(session)
        self.audit = AuditRecorder(session)

    @property
    def in_transaction(self) -> bool:
        return self._transaction is not None

    async def begin_transaction(self) -> None:
        if self._transaction is not None:
            raise TransactionFailure("A transaction is already open for this order store")
        self._transaction = await self._session.begin()

    async def flush(self) -> int:
        """保留中の変更を書き込み、書き込んだ行数を返す。"""
        pending = len(self._session.new) + len(self._session.dirty) + len(self._session.deleted)
        await self._session.flush()
        return pending

    async def commit(self) -> None:
        """
        flush してからコミットする。
        失敗したらロールバックして元の例外を再送出する。
        成否にかかわらずトランザクションハンドルは解放する。
        """
        if self._transaction is None:
            raise TransactionFailure("No open transaction to commit")
        try:
            await self._session.flush()
            await self._transaction.commit()
        except BaseException:
            try:
                await self.rollback()
            except Exception:
                logger.exception("Rollback after failed commit also failed")
            raise
        finally:
            self._transaction = None

    async def rollback(self) -> None:
        if self._transaction is None:
            return
        transaction, self._transaction = self._transaction, None
        await transaction.rollback()

    async def execute_with_retry(self, operation: Callable[[], Awaitable[T]]) -> T:
        """一時的なストレージ障害に限り、operation 全体を再実行する。"""
        return await retry_async(operation, self._retry_policy)
