"""
Order Service — 監査ログ記録

呼び出し元のセッション (= 開いているトランザクション) に監査行を追加するだけ。
コミットはしない。呼び出し元の flush / commit で注文と一緒に永続化される
(トランザクショナル・アウトボックスと同じ考え方)。

監査の失敗で業務トランザクションを止めてはいけないので、
record_event は決して例外を投げない。
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from .models import DESCRIPTION_MAX_LENGTH, AuditEvent, AuditEventName

logger = logging.getLogger(__name__)


class AuditRecorder:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    def record_event(self, name: AuditEventName | str, description: str) -> None:
        try:
            event_name = AuditEventName(name).value
            if len(description) > DESCRIPTION_MAX_LENGTH:
                description = description[: DESCRIPTION_MAX_LENGTH - 3] + "..."
            self._session.add(
                AuditEvent(
                    event_name=event_name,
                    description=description,
                    created_at=datetime.now(timezone.utc),
                )
            )
            logger.debug("Queued audit event %s", event_name)
        except Exception:
            logger.exception("Failed to queue audit event %s", name)
