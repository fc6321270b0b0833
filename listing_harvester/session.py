"""Listing browsing session.

Drives one listing page the way a visitor would (navigate, wait for content,
dismiss overlays, scroll, open the full reviews list) while the response
aggregator collects the API traffic the page produces. The product of a
session is the raw payload; the page DOM itself is never scraped for data.
"""

import asyncio
import random
import re
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Locator, Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from config.settings import GlobalConfig, get_config
from listing_harvester.aggregator import Endpoint, RawApiPayload, ResponseAggregator
from listing_harvester.browser import BrowserManager
from listing_harvester.exceptions import (
    ContentNotReadyError,
    ReviewsUnresolvedError,
    SessionInterruptedError,
)
from listing_harvester.locators import (
    OVERLAY_CLOSE,
    OVERLAY_DISMISS,
    REVIEW_ITEM,
    REVIEWS_BUTTON,
    REVIEWS_MODAL,
    first_match,
)
from listing_harvester.logger import get_logger
from listing_harvester.proxy import ProxyDescriptor

log = get_logger(__name__)

BrowserFactory = Callable[
    [GlobalConfig, ProxyDescriptor | None], AbstractAsyncContextManager[BrowserManager]
]

SCROLL_STEPS = 6
OVERLAY_MARKER = "data-harvester-overlay"

REVIEW_COUNT_PATTERN = re.compile(r"(\d[\d,]*)\s+reviews?\b", re.IGNORECASE)
NO_REVIEWS_PATTERN = re.compile(r"\bno reviews(?: yet)?\b", re.IGNORECASE)

READINESS_SCRIPT = """() => {
    const images = document.querySelectorAll('img').length;
    const headings = document.querySelectorAll('h1, h2, h3').length;
    const text = document.body ? document.body.textContent || '' : '';
    const hasPrice = /[$€£¥₹]/.test(text);
    return images > 5 && headings > 2 && hasPrice && text.length > 5000;
}"""

MARK_OVERLAYS_SCRIPT = """(marker) => {
    const candidates = document.querySelectorAll(
        '[style*="position: fixed"], [style*="position: absolute"]'
    );
    let marked = 0;
    for (const el of candidates) {
        el.removeAttribute(marker);
        const style = window.getComputedStyle(el);
        if (style.display === 'none' || style.visibility === 'hidden') continue;
        if ((parseInt(style.zIndex, 10) || 0) < 1000) continue;
        const rect = el.getBoundingClientRect();
        const w = window.innerWidth;
        const h = window.innerHeight;
        const centered = rect.left >= w * 0.1 && rect.right <= w * 0.9
            && rect.top >= h * 0.1 && rect.bottom <= h * 0.9;
        const modalSized = rect.width >= w * 0.3 && rect.width <= w * 0.7
            && rect.height >= h * 0.2 && rect.height <= h * 0.7;
        if (centered && modalSized) {
            el.setAttribute(marker, '1');
            marked += 1;
        }
    }
    return marked;
}"""

SCROLL_STEP_SCRIPT = """(fraction) => {
    const total = document.body.scrollHeight;
    const viewport = window.innerHeight;
    window.scrollTo({ top: fraction * Math.max(total - viewport, 0), behavior: 'smooth' });
}"""

SCROLL_BOTTOM_SCRIPT = "() => window.scrollTo(0, document.body.scrollHeight)"


async def human_delay(min_sec: float, max_sec: float) -> None:
    """Sleep for a random duration in ``[min_sec, max_sec]``."""
    await asyncio.sleep(random.uniform(min_sec, max_sec))


def parse_review_count(text: str) -> int | None:
    """Total review count shown on the page.

    ``"123 reviews"`` gives 123, ``"No reviews yet"`` gives 0; None when
    neither form is present.
    """
    match = REVIEW_COUNT_PATTERN.search(text)
    if match:
        return int(match.group(1).replace(",", ""))
    if NO_REVIEWS_PATTERN.search(text):
        return 0
    return None


class ListingSession:
    """One browsing session for one listing URL.

    Args:
        config: Runtime configuration; the cached singleton when omitted.
        proxy: Proxy the browser context is routed through.
        browser_factory: Async context manager factory yielding a BrowserManager.
    """

    def __init__(
        self,
        config: GlobalConfig | None = None,
        proxy: ProxyDescriptor | None = None,
        browser_factory: BrowserFactory | None = None,
    ) -> None:
        self.config = config or get_config()
        self.proxy = proxy
        self.browser_factory = browser_factory or BrowserManager.create

    async def run(self, url: str) -> RawApiPayload:
        """Drive the listing page and return the aggregated API payload.

        Raises:
            BrowserInitializationError: Browser could not be launched.
            NavigationTimeoutError: The listing page did not load.
            ReviewsUnresolvedError: Review count or the reviews data could not be obtained.
            SessionInterruptedError: The browser failed mid-session.
        """
        log.info("Listing session started", url=url)

        async with self.browser_factory(self.config, self.proxy) as browser:
            try:
                payload, review_count = await self._drive(browser, url)
            except PlaywrightError as exc:
                raise SessionInterruptedError(url=url, reason=str(exc)) from exc

        log.info(
            "Listing session finished",
            url=url,
            review_count=review_count,
            endpoints=sorted(payload),
        )
        return payload

    async def _drive(self, browser: BrowserManager, url: str) -> tuple[RawApiPayload, int]:
        page = await browser.new_page()
        aggregator = ResponseAggregator(self.config)
        aggregator.attach(page)

        try:
            await browser.navigate(page, url)
            await self.wait_until_ready(page, url)

            await human_delay(3.0, 5.0)
            await self.dismiss_overlays(page)
            await human_delay(2.0, 3.0)

            await self.scroll_to_bottom(page)
            review_count = await self.detect_review_count(page)

            needs_modal = review_count > self.config.reviews_inline_threshold
            if needs_modal:
                await self.open_all_reviews(page, review_count)
        except BaseException:
            await aggregator.aclose()
            raise

        payload = await aggregator.drain()
        if needs_modal and not aggregator.has(Endpoint.REVIEWS):
            reason = "no reviews data recorded"
            if aggregator.failures:
                reason = f"{reason} ({aggregator.failures[-1].message})"
            raise ReviewsUnresolvedError(reason=reason, review_count=review_count)

        await human_delay(2.0, 4.0)
        return payload, review_count

    async def wait_until_ready(self, page: Page, url: str) -> bool:
        """Wait for the content heuristic; a timeout is logged and tolerated."""
        timeout_ms = self.config.readiness_timeout_ms
        try:
            await page.wait_for_function(READINESS_SCRIPT, timeout=timeout_ms)
        except PlaywrightTimeoutError:
            error = ContentNotReadyError(url=url, timeout_ms=timeout_ms)
            log.warning("Content not ready, continuing", error_type=error.label, url=url)
            return False
        log.debug("Content ready", url=url)
        return True

    async def dismiss_overlays(self, page: Page) -> int:
        """Close modal-like overlays covering the page.

        Returns:
            The number of overlays that were handled.
        """
        try:
            await page.wait_for_load_state("networkidle", timeout=10000)
        except PlaywrightTimeoutError:
            log.debug("Network not idle before overlay check")

        try:
            marked = await page.evaluate(MARK_OVERLAYS_SCRIPT, OVERLAY_MARKER)
        except PlaywrightError as exc:
            log.warning("Overlay detection failed", error=str(exc))
            return 0

        if not marked:
            log.debug("No overlays detected")
            return 0

        log.info("Overlays detected", count=marked)
        handled = 0
        overlays = page.locator(f"[{OVERLAY_MARKER}]")
        # Dismissed overlays leave the DOM, so always work on the first marked one.
        for attempt in range(marked):
            if not await overlays.count():
                break
            try:
                await self._dismiss_overlay(page, overlays.first)
                handled += 1
            except PlaywrightError as exc:
                log.warning("Overlay could not be dismissed", attempt=attempt, error=str(exc))
        return handled

    async def _dismiss_overlay(self, page: Page, overlay: Locator) -> None:
        button = await first_match(overlay, OVERLAY_CLOSE)
        action = "close"
        if button is None:
            button = await first_match(overlay, OVERLAY_DISMISS)
            action = "dismiss"

        if button is None:
            await page.keyboard.press("Escape")
            action = "escape"
        else:
            await button.click(timeout=self.config.click_timeout_ms)

        await page.wait_for_timeout(500)
        log.debug("Overlay handled", action=action)

    async def scroll_to_bottom(self, page: Page) -> None:
        """Smooth multi-step scroll so lazily loaded sections fire their requests."""
        for step in range(1, SCROLL_STEPS + 1):
            await page.evaluate(SCROLL_STEP_SCRIPT, step / SCROLL_STEPS)
            await human_delay(0.5, 1.0)
        await page.evaluate(SCROLL_BOTTOM_SCRIPT)
        await human_delay(2.0, 3.0)

    async def detect_review_count(self, page: Page) -> int:
        """Read the total review count from the page text.

        Raises:
            ReviewsUnresolvedError: When no count can be determined.
        """
        try:
            text = await page.inner_text("body")
        except PlaywrightError as exc:
            raise ReviewsUnresolvedError(reason=f"page text unavailable: {exc}") from exc

        count = parse_review_count(text)
        if count is None:
            raise ReviewsUnresolvedError(reason="review count not found on page")
        log.info("Review count detected", review_count=count)
        return count

    async def open_all_reviews(self, page: Page, review_count: int) -> int:
        """Open the reviews modal and page through it.

        Returns:
            The number of review items rendered in the modal.

        Raises:
            ReviewsUnresolvedError: When the control is missing or cannot be clicked.
        """
        button = await first_match(page, REVIEWS_BUTTON, timeout_ms=self.config.click_timeout_ms)
        if button is None:
            raise ReviewsUnresolvedError(
                reason="show-all-reviews control not found", review_count=review_count
            )

        try:
            await button.scroll_into_view_if_needed(timeout=self.config.click_timeout_ms)
            await button.click(timeout=self.config.click_timeout_ms)
        except PlaywrightError as exc:
            raise ReviewsUnresolvedError(
                reason=f"show-all-reviews control not clickable: {exc}",
                review_count=review_count,
            ) from exc

        await human_delay(1.5, 2.5)
        return await self.paginate_reviews(page, review_count)

    async def paginate_reviews(self, page: Page, review_count: int) -> int:
        """Scroll the modal's last review into view until the list stops growing."""
        items = page.locator(REVIEWS_MODAL).last.locator(REVIEW_ITEM)
        loaded = await items.count()
        no_growth = 0

        for round_number in range(1, self.config.reviews_max_rounds + 1):
            if loaded >= review_count or no_growth >= self.config.reviews_no_growth_limit:
                break

            if loaded:
                try:
                    await items.nth(loaded - 1).scroll_into_view_if_needed(
                        timeout=self.config.click_timeout_ms
                    )
                except PlaywrightError as exc:
                    log.debug("Review scroll failed", round=round_number, error=str(exc))
            await human_delay(1.0, 2.0)

            current = await items.count()
            if current > loaded:
                loaded = current
                no_growth = 0
            else:
                no_growth += 1

        log.info("Reviews modal paginated", loaded=loaded, review_count=review_count)
        return loaded
