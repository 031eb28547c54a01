"""
HTTP client for the upstream services (scrape engine, AI backend).
Idempotent GETs are retried on connect errors and timeouts; everything else is sent once.
"""
import json
import time
import logging
from typing import Optional, Dict, Tuple, Any
import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

logger = logging.getLogger(__name__)

DEFAULT_UA = "ArachneRelay/1.0"
DEFAULT_TIMEOUT = 30.0
MAX_RETRIES = 2


class HTTPClient:
    """Thin async wrapper around httpx bound to one upstream base URL"""

    def __init__(
        self,
        base_url: str,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        user_agent: Optional[str] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = httpx.Timeout(timeout or DEFAULT_TIMEOUT)
        self.transport = transport
        self.user_agent = user_agent or DEFAULT_UA

    def client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        """Build a client for one exchange; callers own it via `async with`."""
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout) if timeout else self.timeout,
            transport=self.transport,
            headers={"User-Agent": self.user_agent},
        )

    @retry(
        stop=stop_after_attempt(MAX_RETRIES + 1),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.ConnectError)),
        reraise=True
    )
    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        """
        GET an upstream path without caching.

        Returns the response whatever its status; raises httpx errors
        for transport failures once retries are exhausted.
        """
        async with self.client() as client:
            start_time = time.time()
            try:
                response = await client.get(
                    path,
                    params=params,
                    headers={"Cache-Control": "no-store", "Accept": "application/json"},
                )
            except httpx.TimeoutException as e:
                logger.error(f"[net] Timeout fetching {self.base_url}{path}: {e}")
                raise
            except httpx.ConnectError as e:
                logger.error(f"[net] Connection error fetching {self.base_url}{path}: {e}")
                raise

            elapsed_ms = int((time.time() - start_time) * 1000)
            logger.info(f"[net] GET {response.status_code} {self.base_url}{path} ({elapsed_ms}ms)")
            return response

    async def post_json(self, path: str, payload: Any, timeout: Optional[float] = None) -> httpx.Response:
        """POST a JSON body once (submissions are not idempotent)."""
        async with self.client(timeout=timeout) as client:
            response = await client.post(path, json=payload)
            logger.info(f"[net] POST {response.status_code} {self.base_url}{path}")
            return response

    async def check_health(self, path: str = "/health") -> Tuple[bool, int]:
        """
        Probe an upstream health endpoint.

        Returns:
            (ok, status_code); status_code is 503 when the upstream is unreachable
        """
        try:
            async with self.client(timeout=5.0) as client:
                response = await client.get(path, headers={"Cache-Control": "no-store"})
                return (response.is_success, response.status_code)
        except httpx.HTTPError as e:
            logger.warning(f"[net] Health check failed for {self.base_url}{path}: {e}")
            return (False, 503)


def read_json(response: httpx.Response) -> Dict[str, Any]:
    """Decode a JSON object body, returning {} for empty or non-object bodies."""
    try:
        data = response.json()
    except (json.JSONDecodeError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}
