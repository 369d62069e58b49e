import json
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from order_service.events import ORDER_EVENTS_CHANNEL, OrderCreated, OrderEventPublisher


def _event():
    return OrderCreated(
        order_id=7,
        customer_id=1,
        submitting_user="qa.agent",
        total=Decimal("120.00"),
        item_count=2,
        timestamp=datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
    )


@pytest.mark.asyncio
async def test_publishes_to_order_events_channel():
    redis = AsyncMock()
    await OrderEventPublisher(redis).publish_order_created(_event())

    channel, message = redis.publish.await_args.args
    assert channel == ORDER_EVENTS_CHANNEL
    payload = json.loads(message)
    assert payload["event_type"] == "OrderCreated"
    assert payload["data"]["order_id"] == 7
    assert Decimal(payload["data"]["total"]) == Decimal("120.00")


@pytest.mark.asyncio
async def test_publish_failure_is_logged_not_raised(caplog):
    redis = AsyncMock()
    redis.publish.side_effect = ConnectionError("redis down")

    await OrderEventPublisher(redis).publish_order_created(_event())

    assert "Failed to publish OrderCreated for order 7" in caplog.text
