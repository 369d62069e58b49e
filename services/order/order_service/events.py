"""
Order Service — イベント定義と発行

注文のコミット後に OrderCreated を Redis Pub/Sub の order_events チャネルへ発行する。
注文はすでにコミット済みなので、発行の失敗はログに残すだけで呼び出し元には伝えない。
"""

import json
import logging
from datetime import datetime
from decimal import Decimal

import redis.asyncio as aioredis
from pydantic import BaseModel

logger = logging.getLogger(__name__)

ORDER_EVENTS_CHANNEL = "order_events"


class OrderCreated(BaseModel):
    """注文が登録された"""
    order_id: int
    customer_id: int
    submitting_user: str
    total: Decimal
    item_count: int
    timestamp: datetime


class OrderEventPublisher:
    def __init__(self, redis: aioredis.Redis) -> None:
        self.redis = redis

    async def publish_order_created(self, event: OrderCreated) -> None:
        try:
            await self.redis.publish(ORDER_EVENTS_CHANNEL, json.dumps({
                "event_type": "OrderCreated",
                "data": event.model_dump(mode="json"),
            }, default=str))
            logger.info("Published OrderCreated for order %s", event.order_id)
        except Exception:
            logger.exception("Failed to publish OrderCreated for order %s", event.order_id)
