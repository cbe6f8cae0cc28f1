"""Unit tests for LedgerApiClient error mapping (httpx.MockTransport)."""

import httpx
import pytest

from hostel_ledger.client.transport import LedgerApiClient
from hostel_ledger.services.errors import (
    LedgerError,
    NetworkFailureError,
    NoOpenPeriodsError,
    UnknownStudentError,
)

pytestmark = pytest.mark.unit


def api_with(handler) -> LedgerApiClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://ledger.test/api")
    return LedgerApiClient(http_client=http_client)


class TestSuccess:
    @pytest.mark.asyncio
    async def test_unwraps_data_and_builds_url(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url)
            return httpx.Response(200, json={"success": True, "data": {"fees": []}})

        api = api_with(handler)
        assert await api.fetch_month(3, "2024-03") == {"fees": []}
        assert seen[0].path == "/api/monthly-fees/summary"
        assert seen[0].params["fee_month"] == "2024-03"
        assert seen[0].params["hostel_id"] == "3"


class TestErrorMapping:
    @pytest.mark.asyncio
    async def test_error_envelope_maps_to_class(self):
        def handler(request):
            return httpx.Response(404, json={"success": False, "error": "Student 9 not found", "code": "unknown_student"})

        with pytest.raises(UnknownStudentError, match="Student 9 not found"):
            await api_with(handler).fetch_student(9)

    @pytest.mark.asyncio
    async def test_conflict_envelope(self):
        def handler(request):
            return httpx.Response(409, json={"success": False, "error": "nowhere", "code": "no_open_periods"})

        with pytest.raises(NoOpenPeriodsError):
            await api_with(handler).record_payment({"student_id": 1})

    @pytest.mark.asyncio
    async def test_unknown_code_is_generic_ledger_error(self):
        def handler(request):
            return httpx.Response(422, json={"success": False, "error": "bad", "code": "invalid_request"})

        with pytest.raises(LedgerError) as exc_info:
            await api_with(handler).fetch_payment_modes()
        assert exc_info.value.code == "invalid_request"
        assert exc_info.value.http_status == 422

    @pytest.mark.asyncio
    async def test_non_envelope_error(self):
        def handler(request):
            return httpx.Response(404, json={"detail": "Not Found"})

        with pytest.raises(LedgerError) as exc_info:
            await api_with(handler).fetch_payment_modes()
        assert exc_info.value.code == "api_error"

    @pytest.mark.asyncio
    async def test_server_error_is_network_failure(self):
        def handler(request):
            return httpx.Response(502, text="Bad Gateway")

        with pytest.raises(NetworkFailureError):
            await api_with(handler).record_payment({"student_id": 1})

    @pytest.mark.asyncio
    async def test_timeout_is_network_failure(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(NetworkFailureError, match="timed out"):
            await api_with(handler).record_payment({"student_id": 1})

    @pytest.mark.asyncio
    async def test_connection_error_is_network_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(NetworkFailureError):
            await api_with(handler).fetch_month(1, "2024-03")

    @pytest.mark.asyncio
    async def test_malformed_body(self):
        def handler(request):
            return httpx.Response(200, text="<html>")

        with pytest.raises(LedgerError) as exc_info:
            await api_with(handler).fetch_payment_modes()
        assert exc_info.value.code == "malformed_response"
