"""Rate limiting transport for httpx, tuned for CT log endpoints."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

STATS_EVERY = 1_000
DEFAULT_RETRY_AFTER = 5.0
MAX_LEARNED_RETRY_AFTER = 10.0


@dataclass
class HostData:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    window_start: Optional[float] = None
    request_count: int = 0
    rate_limit: Optional[float] = None  # req/s learned from the last 429


class RateLimitedTransport(httpx.AsyncHTTPTransport):
    """
    httpx transport that pools connections and backs off on 429 responses.

    The first 429 from a host turns the request rate observed since the last
    reset into a learned limit. Retry-After is honoured when present,
    otherwise the wait is derived from the learned limit.
    """

    def __init__(
        self,
        max_connections: int = 100,
        max_keepalive_connections: int = 10,
        keepalive_expiry: float = 90.0,
        max_rate_limit_retries: int = 10,
        **kwargs
    ):
        super().__init__(
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_keepalive_connections,
                keepalive_expiry=keepalive_expiry,
            ),
            **kwargs
        )
        self.max_rate_limit_retries = max_rate_limit_retries
        self._host_data: dict[str, HostData] = {}

    def _get_host_data(self, host: str) -> HostData:
        if host not in self._host_data:
            self._host_data[host] = HostData()
        return self._host_data[host]

    async def _count_request(self, host: str) -> None:
        host_data = self._get_host_data(host)
        async with host_data.lock:
            if host_data.window_start is None:
                host_data.window_start = time.monotonic()
            host_data.request_count += 1

            if host_data.request_count % STATS_EVERY == 0:
                elapsed = time.monotonic() - host_data.window_start
                if elapsed > 0:
                    logger.info(
                        f"[{host}] Rate stats: {host_data.request_count} reqs "
                        f"in {elapsed:.2f}s ({host_data.request_count / elapsed:.2f} req/s)"
                    )
                host_data.window_start = None
                host_data.request_count = 0

    async def _learn_retry_after(self, host: str, response: httpx.Response) -> float:
        host_data = self._get_host_data(host)
        async with host_data.lock:
            default_retry_after = DEFAULT_RETRY_AFTER
            if host_data.window_start:
                elapsed = time.monotonic() - host_data.window_start
                if elapsed > 0 and host_data.request_count > 1:
                    host_data.rate_limit = (host_data.request_count - 1) / elapsed
                    logger.info(f"[{host}] Rate limit learned: {host_data.rate_limit:.2f} req/s")
                    default_retry_after = min(
                        1.0 / host_data.rate_limit, MAX_LEARNED_RETRY_AFTER
                    )

            host_data.window_start = None
            host_data.request_count = 0

        retry_after = response.headers.get("Retry-After", default_retry_after)
        try:
            return float(retry_after)
        except ValueError:
            return default_retry_after

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        attempt = 0

        while True:
            attempt += 1
            await self._count_request(host)

            response = await super().handle_async_request(request)
            if response.status_code != 429 or attempt > self.max_rate_limit_retries:
                return response

            wait_time = await self._learn_retry_after(host, response)
            await response.aclose()

            log = logger.warning if attempt > 1 else logger.info
            log(f"[{host}] Rate limited (429): attempt {attempt}, retrying after {wait_time}s")
            await asyncio.sleep(wait_time)
