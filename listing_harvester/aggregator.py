"""Intercepted API response reassembly.

Playwright delivers ``response`` events concurrently while the session is
still scrolling and clicking. Each matching response is turned into a
fragment by a short-lived producer task and pushed onto a bounded per-run
queue; a single consumer task owns the payload dict and applies
``deep_merge`` so merges into the same endpoint key never interleave.

The reviews endpoint intermittently returns unusable bodies under the
intercepted flow, so its fragments come from an out-of-band re-fetch that
reuses the captured request headers.
"""

import asyncio
import json
from enum import StrEnum
from typing import Any, NamedTuple

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, Request, Response
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from config.settings import GlobalConfig, get_config
from listing_harvester.exceptions import EndpointFetchFailedError
from listing_harvester.logger import get_logger

log = get_logger(__name__)

RawApiPayload = dict[str, Any]


class Endpoint(StrEnum):
    """The fixed endpoint keys matched against intercepted response URLs."""

    DATA_LAYER = "/api/v2/get-data-layer-variables"
    SECTIONS = "/api/v3/StaysPdpSections"
    AVAILABILITY = "/api/v3/PdpAvailabilityCalendar"
    REVIEWS = "/api/v3/StaysPdpReviewsQuery"


REFETCHED_ENDPOINTS: frozenset[Endpoint] = frozenset({Endpoint.REVIEWS})


def match_endpoint(url: str) -> Endpoint | None:
    """Return the endpoint key contained in ``url``, if any."""
    for endpoint in Endpoint:
        if endpoint.value in url:
            return endpoint
    return None


def deep_merge(existing: Any, incoming: Any) -> Any:
    """Merge two JSON values.

    Objects merge key by key recursively, arrays concatenate, and any other
    incoming value replaces the existing one. Neither argument is mutated.
    """
    if isinstance(existing, dict) and isinstance(incoming, dict):
        merged = dict(existing)
        for key, value in incoming.items():
            merged[key] = deep_merge(existing[key], value) if key in existing else value
        return merged
    if isinstance(incoming, list):
        return [*existing, *incoming] if isinstance(existing, list) else list(incoming)
    return incoming


class Fragment(NamedTuple):
    endpoint: Endpoint
    body: Any


class RefetchError(Exception):
    """A single re-fetch attempt produced no usable body."""


class ResponseAggregator:
    """Collects and merges endpoint responses observed during one session.

    Usage:
        aggregator = ResponseAggregator(config)
        aggregator.attach(page)
        ... drive the page ...
        payload = await aggregator.drain()
    """

    def __init__(self, config: GlobalConfig | None = None) -> None:
        self.config = config or get_config()
        self._queue: asyncio.Queue[Fragment] = asyncio.Queue(
            maxsize=self.config.aggregator_queue_size
        )
        self._payload: RawApiPayload = {}
        self._request_headers: dict[Endpoint, dict[str, str]] = {}
        self._producers: list[asyncio.Task[None]] = []
        self._consumer: asyncio.Task[None] | None = None
        self._page: Page | None = None
        self._attached = False
        self.failures: list[EndpointFetchFailedError] = []

    def attach(self, page: Page) -> None:
        """Register the network listeners on ``page`` and start the consumer."""
        self._page = page
        page.on("request", self.on_request)
        page.on("response", self.on_response)
        self._attached = True
        if self._consumer is None:
            self._consumer = asyncio.create_task(self._consume())

    def detach(self) -> None:
        """Stop observing the page; responses arriving afterwards are ignored."""
        if self._page is None or not self._attached:
            return
        self._attached = False
        self._page.remove_listener("request", self.on_request)
        self._page.remove_listener("response", self.on_response)

    def on_request(self, request: Request) -> None:
        endpoint = match_endpoint(request.url)
        if endpoint is not None:
            self._request_headers[endpoint] = dict(request.headers)

    def on_response(self, response: Response) -> None:
        endpoint = match_endpoint(response.url)
        if endpoint is None:
            return
        task = asyncio.create_task(self._produce(endpoint, response))
        self._producers.append(task)

    def has(self, endpoint: Endpoint) -> bool:
        """True when at least one fragment for ``endpoint`` was merged."""
        return endpoint.value in self._payload

    @property
    def payload(self) -> RawApiPayload:
        return self._payload

    async def _produce(self, endpoint: Endpoint, response: Response) -> None:
        if endpoint in REFETCHED_ENDPOINTS:
            body = await self._refetch(endpoint, response.url)
        else:
            body = await self._parse(endpoint, response)
        if body is not None:
            await self._queue.put(Fragment(endpoint, body))

    async def _parse(self, endpoint: Endpoint, response: Response) -> Any:
        try:
            body = await response.json()
        except (PlaywrightError, ValueError) as exc:
            log.warning(
                "Failed to parse endpoint response, skipping",
                endpoint=endpoint.value,
                status=response.status,
                error=str(exc),
            )
            return None
        if not body:
            log.warning("Empty endpoint response, skipping", endpoint=endpoint.value)
            return None
        return body

    async def _refetch(self, endpoint: Endpoint, url: str) -> Any:
        if self._page is None:
            raise RuntimeError("Aggregator is not attached to a page")

        headers = self._request_headers.get(endpoint, {})
        attempts = self.config.refetch_max_attempts

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(attempts),
                wait=wait_exponential(
                    multiplier=self.config.refetch_base_delay_sec,
                    max=self.config.refetch_max_delay_sec,
                )
                + wait_random(0, self.config.refetch_jitter_sec),
                retry=retry_if_exception_type((PlaywrightError, ValueError, RefetchError)),
            ):
                with attempt:
                    api_response = await self._page.request.get(url, headers=headers)
                    body = json.loads(await api_response.text())
                    if not body:
                        raise RefetchError(f"empty body with status {api_response.status}")
                    log.debug(
                        "Endpoint re-fetched",
                        endpoint=endpoint.value,
                        attempt=attempt.retry_state.attempt_number,
                    )
                    return body
        except RetryError as exc:
            failure = EndpointFetchFailedError(
                endpoint=endpoint.value,
                attempts=attempts,
                reason=str(exc.last_attempt.exception()),
            )
            self.failures.append(failure)
            log.error(
                "Endpoint re-fetch exhausted",
                error_type=failure.label,
                endpoint=endpoint.value,
                attempts=attempts,
            )
        return None

    async def _consume(self) -> None:
        while True:
            fragment = await self._queue.get()
            try:
                key = fragment.endpoint.value
                if key in self._payload:
                    self._payload[key] = deep_merge(self._payload[key], fragment.body)
                else:
                    self._payload[key] = fragment.body
                log.debug("Endpoint fragment merged", endpoint=key)
            finally:
                self._queue.task_done()

    async def drain(self) -> RawApiPayload:
        """Wait for in-flight producers and queued merges, then stop the consumer.

        Returns:
            The assembled raw payload keyed by endpoint.
        """
        self.detach()
        gathered = 0
        while gathered < len(self._producers):
            batch = self._producers[gathered:]
            gathered = len(self._producers)
            results = await asyncio.gather(*batch, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    log.error("Response producer failed", error=str(result))
        await self._queue.join()

        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None

        log.info(
            "Response aggregation drained",
            endpoints=sorted(self._payload),
            refetch_failures=len(self.failures),
        )
        return self._payload

    async def aclose(self) -> None:
        """Cancel outstanding producers and the consumer without merging."""
        self.detach()
        tasks = [task for task in self._producers if not task.done()]
        if self._consumer is not None:
            tasks.append(self._consumer)
            self._consumer = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            log.debug("Response aggregation aborted", cancelled=len(tasks))
