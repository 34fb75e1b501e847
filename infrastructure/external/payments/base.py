"""
Shared plumbing for gateway API clients: one pooled httpx client, bounded
retries on transport errors and provider-tagged logging.

Webhook verification and entity parsing are pure and live in the subclasses.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Optional

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.logging_config import get_logger
from domain.payment.entity import GatewayPayment


logger = get_logger(__name__)

_TRANSIENT = (httpx.TimeoutException, httpx.TransportError)


class BasePaymentClient:
    provider: str = "base"

    def __init__(
        self,
        *,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
        auth: Optional[tuple[str, str]] = None,
    ) -> None:
        self._timeouts_cfg = timeouts or {"connect": 1.0, "read": 3.0, "write": 3.0, "total": 5.0}
        self._retry_cfg = retry or {"max": 2, "base": 0.2}
        self._auth = auth
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def timeouts(self) -> httpx.Timeout:
        cfg = self._timeouts_cfg
        return httpx.Timeout(cfg["total"], connect=cfg["connect"], read=cfg["read"], write=cfg["write"])

    @asynccontextmanager
    async def client(self):
        # the pooled client stays open until aclose()
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeouts, auth=self._auth)
        yield self._client

    async def aclose(self) -> None:
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    def _before_sleep(self, state: RetryCallState) -> None:
        logger.warning(
            "gateway_request_retry",
            provider=self.provider,
            attempt=state.attempt_number,
            error=str(state.outcome.exception()) if state.outcome else None,
        )

    async def _retry(self, fn: Callable[[], Awaitable[Any]]) -> Any:
        """Run ``fn`` again on timeouts and transport errors only."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception_type(_TRANSIENT),
            before_sleep=self._before_sleep,
            reraise=True,
        ):
            with attempt:
                return await fn()

    def verify_signature(self, body: bytes, signature: Optional[str]) -> bool:
        raise NotImplementedError

    def to_gateway_payment(self, entity: dict[str, Any]) -> GatewayPayment:
        raise NotImplementedError

    async def fetch_payment(self, gateway_payment_id: str) -> Optional[dict[str, Any]]:
        return None

    def _log(self, event: str, **kwargs) -> None:
        logger.info(event, provider=self.provider, **kwargs)
