"""
Unit tests for the DHIS2 HTTP client.
"""
import json
import httpx
import pytest

from dhis2_gateway.core.dhis2_client import DHIS2Client
from dhis2_gateway.core.exceptions import DeliveryError


PAYLOAD = {
    "dataSet": "ds1",
    "period": "202401",
    "orgUnit": "ou1",
    "completeDate": "2024-02-15",
    "dataValues": [{"dataElement": "de1", "value": "10", "categoryOptionCombo": "coc1"}],
}


def _client(handler) -> DHIS2Client:
    return DHIS2Client(
        base_url="https://dhis2.example.org/",
        username="admin",
        password="district",
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


class TestDHIS2Client:
    """Test cases for DHIS2Client."""

    @pytest.mark.asyncio
    async def test_posts_data_value_set(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"status": "SUCCESS", "importCount": {"imported": 1}})

        summary = await _client(handler).send_aggregate_data_values(PAYLOAD)

        assert seen["url"] == "https://dhis2.example.org/api/dataValueSets"
        assert seen["auth"].startswith("Basic ")
        assert seen["body"] == PAYLOAD
        assert summary["status"] == "SUCCESS"
        assert summary["importCount"] == {"imported": 1}

    @pytest.mark.asyncio
    async def test_web_message_envelope_status(self):
        def handler(request):
            return httpx.Response(200, json={
                "httpStatus": "OK",
                "status": "OK",
                "response": {"status": "WARNING", "conflicts": []},
            })

        summary = await _client(handler).send_aggregate_data_values(PAYLOAD)

        assert summary["status"] == "WARNING"

    @pytest.mark.asyncio
    async def test_empty_body_defaults_to_success(self):
        summary = await _client(lambda request: httpx.Response(204)).send_aggregate_data_values(PAYLOAD)

        assert summary == {"status": "SUCCESS"}

    @pytest.mark.asyncio
    async def test_conflict_raises_delivery_error(self):
        def handler(request):
            return httpx.Response(409, json={"status": "ERROR", "message": "Period not open"})

        with pytest.raises(DeliveryError) as exc_info:
            await _client(handler).send_aggregate_data_values(PAYLOAD)

        assert exc_info.value.status_code == 409
        assert "Period not open" in exc_info.value.body

    @pytest.mark.asyncio
    async def test_connection_error_raises_delivery_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(DeliveryError) as exc_info:
            await _client(handler).send_aggregate_data_values(PAYLOAD)

        assert "connection refused" in str(exc_info.value)
