"""Tests for CustomerValidator: local business rules and directory status translation."""

from decimal import Decimal

import httpx
import pytest

from helpers import directory_returning, known_customer, make_validator
from order_service.directory import SERVICE_NAME
from order_service.errors import BusinessRuleFailure, ConfigurationFailure, ExternalServiceFailure


# ============================================================================
# Business rules (checked before the directory is called)
# ============================================================================

class TestBusinessRules:

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "customer_id, total, rule",
        [
            (0, Decimal("10.00"), "CUSTOMER_ID_INVALID"),
            (-3, Decimal("10.00"), "CUSTOMER_ID_INVALID"),
            (1, Decimal("0"), "TOTAL_INVALID"),
            (1, Decimal("-1.00"), "TOTAL_INVALID"),
            (1, Decimal("10000.01"), "TOTAL_LIMIT_EXCEEDED"),
        ],
    )
    async def test_rule_violations(self, customer_id, total, rule):
        transport = known_customer()
        with pytest.raises(BusinessRuleFailure) as exc_info:
            await make_validator(transport).validate(customer_id, total)
        assert exc_info.value.rule == rule
        assert transport.seen == []

    @pytest.mark.asyncio
    async def test_total_equal_to_ceiling_is_allowed(self):
        await make_validator(known_customer()).validate(1, Decimal("10000.00"))


# ============================================================================
# Directory lookup
# ============================================================================

class TestDirectoryLookup:

    @pytest.mark.asyncio
    async def test_known_customer_passes(self):
        transport = known_customer(5)
        await make_validator(transport).validate(5, Decimal("120.00"))
        assert [str(r.url) for r in transport.seen] == ["http://directory.test/users/5"]
        assert transport.seen[0].method == "GET"

    @pytest.mark.asyncio
    async def test_404_is_a_business_rejection(self):
        with pytest.raises(BusinessRuleFailure) as exc_info:
            await make_validator(directory_returning(404, {})).validate(99, Decimal("10.00"))
        assert exc_info.value.rule == "CUSTOMER_NOT_FOUND"
        assert exc_info.value.metadata["customer_id"] == 99

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_errors_are_configuration_failures(self, status):
        with pytest.raises(ConfigurationFailure) as exc_info:
            await make_validator(directory_returning(status, {})).validate(1, Decimal("10.00"))
        assert exc_info.value.metadata["status_code"] == status

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 500, 502, 503, 504, 418, 302])
    async def test_other_statuses_are_external_service_failures(self, status):
        with pytest.raises(ExternalServiceFailure) as exc_info:
            await make_validator(directory_returning(status, {})).validate(1, Decimal("10.00"))
        assert exc_info.value.service == SERVICE_NAME
        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_429_carries_retry_after_hint(self):
        transport = directory_returning(429, {}, headers={"Retry-After": "30"})
        with pytest.raises(ExternalServiceFailure) as exc_info:
            await make_validator(transport).validate(1, Decimal("10.00"))
        assert exc_info.value.retry_after == "30"

    @pytest.mark.asyncio
    async def test_timeout_names_the_bound(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        validator = make_validator(httpx.MockTransport(handler), timeout=2.5)
        with pytest.raises(ExternalServiceFailure) as exc_info:
            await validator.validate(1, Decimal("10.00"))
        assert "2.5s" in exc_info.value.message
        assert exc_info.value.metadata["timeout_seconds"] == 2.5

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ExternalServiceFailure) as exc_info:
            await make_validator(httpx.MockTransport(handler)).validate(1, Decimal("10.00"))
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_unexpected_client_error_is_an_external_service_failure(self):
        def handler(request):
            raise ValueError("unexpected payload")

        with pytest.raises(ExternalServiceFailure) as exc_info:
            await make_validator(httpx.MockTransport(handler)).validate(1, Decimal("10.00"))
        assert exc_info.value.service == SERVICE_NAME
        assert exc_info.value.metadata["error_type"] == "ValueError"
        assert isinstance(exc_info.value.__cause__, ValueError)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "transport",
        [
            directory_returning(200, text="<html>not json</html>"),
            directory_returning(200, {"name": "no id"}),
            directory_returning(200, [1, 2, 3]),
            directory_returning(200, {"id": 0, "name": "", "email": ""}),
        ],
        ids=["not-json", "missing-id", "wrong-shape", "zero-id"],
    )
    async def test_malformed_success_body(self, transport):
        with pytest.raises(ExternalServiceFailure) as exc_info:
            await make_validator(transport).validate(1, Decimal("10.00"))
        assert exc_info.value.status_code == 200
