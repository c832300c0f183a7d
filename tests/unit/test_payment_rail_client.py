"""Unit tests for the payment rail client retry behaviour"""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from returns_engine.domain.exceptions import ExternalRailError
from returns_engine.infrastructure.clients.payment_rail import PaymentRailClient

URL = "http://rail.test/rail/transfers"


def rail_response(status_code: int, payload: dict | None = None) -> httpx.Response:
    return httpx.Response(status_code, json=payload or {}, request=httpx.Request("POST", URL))


@pytest.fixture
def rail() -> PaymentRailClient:
    return PaymentRailClient(base_url="http://rail.test", timeout=1.0, max_retries=3, backoff_base=0)


@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_successful_transfer(mock_post: AsyncMock, rail: PaymentRailClient):
    mock_post.return_value = rail_response(200, {"rrn": "RRN123", "gateway": "mock-imps"})

    transfer = await rail.submit_transfer("wd-1", "user_1", 995_000)

    assert transfer.rrn == "RRN123"
    assert transfer.gateway == "mock-imps"
    _, kwargs = mock_post.call_args
    assert kwargs["headers"]["Idempotency-Key"] == "wd-1"
    assert kwargs["json"]["amount_paise"] == 995_000


@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_retries_server_errors_then_succeeds(mock_post: AsyncMock, rail: PaymentRailClient):
    mock_post.side_effect = [rail_response(503), rail_response(200, {"rrn": "R2", "gateway": "g"})]

    transfer = await rail.submit_transfer("wd-2", "user_1", 10_000)

    assert transfer.rrn == "R2"
    assert mock_post.call_count == 2


@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_gives_up_after_max_retries(mock_post: AsyncMock, rail: PaymentRailClient):
    mock_post.side_effect = httpx.ConnectError("connection refused")

    with pytest.raises(ExternalRailError):
        await rail.submit_transfer("wd-3", "user_1", 10_000)
    assert mock_post.call_count == 3


@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_client_errors_are_not_retried(mock_post: AsyncMock, rail: PaymentRailClient):
    mock_post.return_value = rail_response(422, {"detail": "beneficiary rejected"})

    with pytest.raises(ExternalRailError):
        await rail.submit_transfer("wd-4", "user_1", 10_000)
    assert mock_post.call_count == 1


@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_malformed_response(mock_post: AsyncMock, rail: PaymentRailClient):
    mock_post.return_value = rail_response(200, {"status": "ok"})

    with pytest.raises(ExternalRailError):
        await rail.submit_transfer("wd-5", "user_1", 10_000)
