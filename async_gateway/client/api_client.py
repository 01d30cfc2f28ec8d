"""HTTP client for gateway job routes.

Wraps an ``httpx.Client`` and runs every call through an
``AsyncRequestPoller`` whose policy is resolved from the route, so a
caller gets one ``PollOutcome`` per logical request.

Usage::

    with AsyncApiClient("https://gateway.example.net/api", token=token) as api:
        outcome = api.request("GET", "/upstream/query", params={"vrn": "123"})
        if outcome.kind is PollOutcomeKind.COMPLETED:
            data = outcome.response.json()
"""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING, Any

import httpx

from async_gateway.client.backoff import PollPolicyTable, default_policy_table
from async_gateway.client.poller import AsyncRequestPoller, event_wait
from async_gateway.core.constants import HEADER_WAIT_TIME_MS

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from async_gateway.client.poller import PollOutcome

logger = logging.getLogger("async_gateway.client.api_client")

DEFAULT_HTTP_TIMEOUT_SECONDS = 30.0


class AsyncApiClient:
    """Submit/poll client for one gateway.

    Args:
        base_url: Gateway base URL (e.g. ``https://host/api``).
        token: Optional bearer token sent as ``Authorization``.
        policies: Route-to-policy table (default: ``default_policy_table()``).
        client: Pre-built ``httpx.Client`` (tests inject a ``MockTransport``).
        clock: Monotonic clock forwarded to the poller.
        wait: Wait function forwarded to the poller.
    """

    def __init__(
        self,
        base_url: str = "",
        *,
        token: str | None = None,
        policies: PollPolicyTable | None = None,
        client: httpx.Client | None = None,
        clock: Callable[[], float] = time.monotonic,
        wait: Callable[[float, threading.Event], bool] = event_wait,
    ) -> None:
        self._client = client or httpx.Client(
            base_url=base_url, timeout=DEFAULT_HTTP_TIMEOUT_SECONDS
        )
        self._owns_client = client is None
        self._token = token
        self._policies = policies or default_policy_table()
        self._clock = clock
        self._wait = wait

    def __enter__(self) -> AsyncApiClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        fire_and_forget: bool = False,
        cancel: threading.Event | None = None,
    ) -> PollOutcome:
        """Submit a request and poll it to an outcome.

        Raises:
            httpx.HTTPError: On transport failures.
        """
        method = method.upper()
        call_headers = dict(headers or {})
        if self._token:
            call_headers["Authorization"] = f"Bearer {self._token}"
        if fire_and_forget:
            call_headers[HEADER_WAIT_TIME_MS] = "0"

        policy = self._policies.resolve(method, path)
        poller = AsyncRequestPoller(policy, clock=self._clock, wait=self._wait)

        def send(request_headers: dict[str, str]) -> httpx.Response:
            return self._client.request(
                method, path, json=json, params=params, headers=request_headers
            )

        description = f"{method} {path}"
        logger.debug(
            "Async request started | request=%s | timeout_ms=%d | fire_and_forget=%s",
            description,
            policy.timeout_ms,
            fire_and_forget,
        )
        return poller.run(
            send,
            call_headers,
            fire_and_forget=fire_and_forget,
            cancel=cancel,
            description=description,
        )

    def get(self, path: str, **kwargs: Any) -> PollOutcome:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs: Any) -> PollOutcome:
        return self.request("POST", path, **kwargs)
