"""
Order Service — 一時的な障害のリトライ

デッドロックや一時的な接続断のように「もう一度やれば成功する」障害だけを対象に、
固定回数・固定間隔で操作全体をやり直す。

部分的なステップだけを再実行すると原子性が壊れるため、
渡す operation は必ず begin..commit のトランザクション全体にすること。
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from sqlalchemy import exc as sa_exc

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    delay_seconds: float = 5.0


# 40P01 deadlock_detected, 40001 serialization_failure, 08xxx connection_exception
TRANSIENT_SQLSTATES = frozenset({"40P01", "40001"})
TRANSIENT_SQLSTATE_CLASSES = frozenset({"08"})


def _sqlstate(error: sa_exc.DBAPIError) -> str | None:
    """ドライバ例外から SQLSTATE を取り出す。

    asyncpg の例外は SQLAlchemy のアダプタ例外に包まれて DBAPIError.orig に入り、
    元の例外は orig.__cause__ に残る。psycopg 系は orig.pgcode / orig.sqlstate に持つ。
    """
    for candidate in (error.orig, getattr(error.orig, "__cause__", None)):
        if candidate is None:
            continue
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if isinstance(code, str) and code:
            return code
    return None


def is_transient_storage_error(error: BaseException) -> bool:
    """再試行で回復しうるストレージ障害かどうか。"""
    if isinstance(error, sa_exc.DBAPIError):
        if error.connection_invalidated:
            return True
        code = _sqlstate(error)
        if code is not None and (code in TRANSIENT_SQLSTATES or code[:2] in TRANSIENT_SQLSTATE_CLASSES):
            return True
    # OperationalError: デッドロック・直列化失敗・接続断など
    # TimeoutError: コネクションプールの取得待ちタイムアウト
    return isinstance(error, (sa_exc.OperationalError, sa_exc.TimeoutError))


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    is_transient: Callable[[BaseException], bool] = is_transient_storage_error,
) -> T:
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as e:
            if attempt >= policy.max_attempts or not is_transient(e):
                raise
            logger.warning(
                "Transient failure on attempt %d/%d (%s); retrying in %ss",
                attempt,
                policy.max_attempts,
                e,
                policy.delay_seconds,
            )
            await asyncio.sleep(policy.delay_seconds)
