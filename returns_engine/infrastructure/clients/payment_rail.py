"""Payment rail HTTP client with exponential backoff retry logic"""

import asyncio
from dataclasses import dataclass

import httpx

from returns_engine.config import settings
from returns_engine.domain.exceptions import ExternalRailError
from returns_engine.infrastructure.observability.metrics import rail_failure_counter, rail_latency_histogram


@dataclass
class RailTransfer:
    """Confirmation returned by the rail for a completed transfer"""

    rrn: str
    gateway: str


class PaymentRailClient:
    """Client for the external payout rail (bank transfer / UPI gateway)"""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_base: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.payment_rail_base
        self.timeout = timeout or settings.http_timeout_seconds
        self.max_retries = max_retries or settings.rail_max_retries
        self.backoff_base = settings.rail_backoff_base if backoff_base is None else backoff_base
        self.transport = transport

    async def submit_transfer(
        self,
        withdrawal_id: str,
        user_id: str,
        amount_paise: int,
        currency: str = "INR",
    ) -> RailTransfer:
        """
        Send a payout transfer to the rail.

        The withdrawal id is sent as the idempotency key so retries after a
        lost response cannot pay twice.

        Retry strategy:
        - Exponential backoff: 1s, 2s, 4s, 8s (base * 2^(attempt-1))
        - Retries on 5xx errors and network failures; 4xx fails immediately

        Raises:
            ExternalRailError: After final failure, or on an invalid response
        """
        attempt = 0
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            while True:
                try:
                    with rail_latency_histogram.time():
                        response = await client.post(
                            f"{self.base_url}/rail/transfers",
                            json={
                                "reference": withdrawal_id,
                                "user_id": user_id,
                                "amount_paise": amount_paise,
                                "currency": currency,
                            },
                            headers={"Idempotency-Key": withdrawal_id},
                        )
                        response.raise_for_status()
                    data = response.json()
                    return RailTransfer(rrn=str(data["rrn"]), gateway=str(data["gateway"]))

                except httpx.HTTPStatusError as e:
                    rail_failure_counter.inc()
                    if e.response.status_code < 500:
                        raise ExternalRailError(f"Payment rail rejected transfer: {e.response.status_code}") from e
                    attempt += 1
                    if attempt >= self.max_retries:
                        raise ExternalRailError(f"Payment rail error: {e.response.status_code}") from e

                except httpx.RequestError as e:
                    rail_failure_counter.inc()
                    attempt += 1
                    if attempt >= self.max_retries:
                        raise ExternalRailError(f"Payment rail unreachable: {e}") from e

                except (KeyError, ValueError, TypeError) as e:
                    raise ExternalRailError(f"Invalid response from payment rail: {e}") from e

                backoff = self.backoff_base * (2 ** (attempt - 1))
                await asyncio.sleep(backoff)
