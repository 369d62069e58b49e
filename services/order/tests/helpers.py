"""Test helpers: a fake customer directory, request builders and row counters."""

from decimal import Decimal

import httpx
from sqlalchemy import func, select

from order_service.directory import CustomerValidator
from order_service.models import AuditEvent
from order_service.schemas import OrderItemRequest, OrderRequest

DIRECTORY_URL = "http://directory.test"
TOTAL_CEILING = Decimal("10000.00")


def directory_returning(status_code=200, json=None, headers=None, text=None):
    """MockTransport answering every lookup with the same response."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if text is not None:
            return httpx.Response(status_code, text=text, headers=headers)
        return httpx.Response(status_code, json=json, headers=headers)

    transport = httpx.MockTransport(handler)
    transport.seen = seen
    return transport


def known_customer(customer_id=1):
    return directory_returning(200, {"id": customer_id, "name": "Leanne Graham", "email": "sincere@april.biz"})


def make_validator(transport, ceiling=TOTAL_CEILING, timeout=5.0):
    return CustomerValidator(DIRECTORY_URL, ceiling, timeout, transport=transport)


def make_request(customer_id=1, submitting_user="qa.agent", items=None):
    if items is None:
        items = [(1, 2, "50.00"), (2, 1, "20.00")]
    return OrderRequest(
        customer_id=customer_id,
        submitting_user=submitting_user,
        items=[
            OrderItemRequest(product_id=p, quantity=q, unit_price=Decimal(price))
            for p, q, price in items
        ],
    )


async def count_rows(session_factory, model) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


async def audit_names(session_factory) -> list[str]:
    async with session_factory() as session:
        result = await session.execute(select(AuditEvent.event_name).order_by(AuditEvent.id))
        return list(result.scalars().all())
