import requests
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from studio_sync import config
from studio_sync.clients.sse import SSEEvent, SSEStreamReader
from studio_sync.errors import FetchError

logger = logging.getLogger(__name__)


class DashboardApiClient:
    """HTTP access to the order service for the sync client."""

    def __init__(self, base_url: str = None, max_retries: int = 3, timeout: float = 5.0,
                 session: Optional[requests.Session] = None):
        self.base_url = (base_url or config.STUDIO_SYNC_URL).rstrip("/")
        self.max_retries = max_retries
        self.timeout = timeout
        self.session = session or requests.Session()
        logger.debug("DashboardApiClient initialized with base_url=%s max_retries=%s", self.base_url, self.max_retries)

    @property
    def orders_url(self) -> str:
        return self.base_url + "/orders"

    @property
    def stream_url(self) -> str:
        return self.base_url + "/orders/stream"

    def fetch_orders(self) -> List[Dict[str, Any]]:
        """Full order list. Retries with a short linear backoff, then raises FetchError."""
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                resp = self.session.get(self.orders_url, timeout=self.timeout)
                resp.raise_for_status()
                return list(resp.json().get("orders") or [])
            except (requests.RequestException, ValueError) as e:
                last_error = e
                logger.warning("Attempt %s: failed to fetch orders from %s: %s", attempt, self.orders_url, e)
            if attempt < self.max_retries:
                time.sleep(0.5 * attempt)
        raise FetchError(f"could not fetch orders after {self.max_retries} attempts") from last_error

    def open_stream(self, on_event: Callable[[SSEEvent], None], on_error: Callable[[Exception], None]) -> SSEStreamReader:
        return SSEStreamReader(self.stream_url, on_event, on_error, session=self.session).start()
