"""Payment rail client against the in-process mock rail server"""

import httpx
import pytest

from mocks.payment_rail import main as rail_server
from returns_engine.domain.exceptions import ExternalRailError
from returns_engine.infrastructure.clients.payment_rail import PaymentRailClient


@pytest.fixture
def rail(monkeypatch) -> PaymentRailClient:
    monkeypatch.setattr(rail_server, "TRANSFERS", {})
    monkeypatch.setattr(rail_server, "FAILING_USERS", {"user_blocked"})
    return PaymentRailClient(
        base_url="http://rail.test",
        max_retries=2,
        backoff_base=0,
        transport=httpx.ASGITransport(app=rail_server.app),
    )


async def test_transfer_is_idempotent_on_reference(rail: PaymentRailClient):
    first = await rail.submit_transfer("wd-1", "user_1", 495_000)
    again = await rail.submit_transfer("wd-1", "user_1", 495_000)
    other = await rail.submit_transfer("wd-2", "user_1", 495_000)

    assert first.gateway == "mock-imps"
    assert first.rrn == again.rrn
    assert other.rrn != first.rrn


async def test_rejected_beneficiary_raises(rail: PaymentRailClient):
    with pytest.raises(ExternalRailError, match="422"):
        await rail.submit_transfer("wd-3", "user_blocked", 10_000)
