"""Browser orchestration module with stealth capabilities.

This module provides the Playwright wrapper used by a listing session:
- Firefox launched behind the session's residential proxy
- Context locale, timezone and Accept-Language aligned with the proxy country
- Stealth init script masking common automation fingerprints
- Async context manager pattern for resource lifecycle management

Anti-Bot Measures:
    - Disables navigator.webdriver flag
    - Presents non-empty plugins and proxy-consistent languages
    - Sends the navigation headers of a regular desktop browser
    - Picks the user-agent from a configurable pool
"""

import json
import random
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Self

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    async_playwright,
)
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from config.settings import GlobalConfig, get_config
from listing_harvester.exceptions import (
    BrowserInitializationError,
    NavigationTimeoutError,
)
from listing_harvester.logger import get_logger
from listing_harvester.proxy import ProxyDescriptor

log = get_logger(__name__)

BROWSER_TYPE = "firefox"
VIEWPORT = {"width": 1280, "height": 720}

NAVIGATION_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "DNT": "1",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
    "Upgrade-Insecure-Requests": "1",
}


class BrowserManager:
    """Manages the Playwright browser lifecycle for one proxied session.

    Attributes:
        config: GlobalConfig instance for runtime configuration.
        proxy: Proxy descriptor the context is bound to (None runs direct).
        _playwright: Playwright instance (initialized on context entry).
        _browser: Firefox browser instance.
        _context: BrowserContext with stealth settings applied.

    Example:
        async with BrowserManager.create(config, proxy) as browser:
            page = await browser.new_page()
            await browser.navigate(page, "https://www.airbnb.com/rooms/30397973")
    """

    def __init__(self, config: GlobalConfig, proxy: ProxyDescriptor | None = None) -> None:
        """Initialize BrowserManager with configuration.

        Args:
            config: GlobalConfig instance containing browser settings.
            proxy: Proxy descriptor for the session.

        Note:
            Do not instantiate directly. Use the `create()` class method
            for proper lifecycle management.
        """
        self.config = config
        self.proxy = proxy
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._current_user_agent: str = self._select_user_agent()

    @classmethod
    @asynccontextmanager
    async def create(
        cls,
        config: GlobalConfig | None = None,
        proxy: ProxyDescriptor | None = None,
    ) -> AsyncGenerator[Self, None]:
        """Factory method with async context manager for lifecycle management.

        Creates a fully initialized BrowserManager instance with browser
        launched and context configured. Playwright, browser and context are
        released on every exit path.

        Args:
            config: Optional GlobalConfig. Uses singleton if not provided.
            proxy: Proxy descriptor the context is routed through.

        Yields:
            Initialized BrowserManager instance.

        Raises:
            BrowserInitializationError: If browser launch fails.
        """
        if config is None:
            config = get_config()

        instance = cls(config, proxy)
        try:
            await instance._initialize()
            yield instance
        finally:
            await instance._cleanup()

    def _select_user_agent(self) -> str:
        """Select a random user-agent from the configured pool."""
        return random.choice(self.config.user_agents)

    async def _initialize(self) -> None:
        """Initialize Playwright, browser, and context with stealth settings.

        Raises:
            BrowserInitializationError: If any initialization step fails.
        """
        log.info(
            "Initializing browser with stealth settings",
            browser_type=BROWSER_TYPE,
            country=self.proxy.country_code if self.proxy else None,
        )

        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.firefox.launch(headless=self.config.headless)
            await self._create_stealth_context()

            log.info(
                "Browser initialized successfully",
                user_agent=self._current_user_agent[:50] + "...",
            )

        except Exception as exc:
            await self._cleanup()
            raise BrowserInitializationError(reason=str(exc), browser_type=BROWSER_TYPE) from exc

    def context_options(self) -> dict[str, Any]:
        """Context keyword arguments for the current proxy and user-agent."""
        headers = dict(NAVIGATION_HEADERS)
        options: dict[str, Any] = {
            "viewport": dict(VIEWPORT),
            "user_agent": self._current_user_agent,
            "bypass_csp": True,
            "ignore_https_errors": True,
            "java_script_enabled": True,
        }

        if self.proxy is not None:
            headers["Accept-Language"] = self.proxy.accept_language
            options.update(
                proxy={
                    "server": self.proxy.server,
                    "username": self.proxy.username,
                    "password": self.proxy.password,
                },
                http_credentials={
                    "username": self.proxy.username,
                    "password": self.proxy.password,
                },
                locale=self.proxy.locale,
                timezone_id=self.proxy.timezone,
            )

        options["extra_http_headers"] = headers
        return options

    async def _create_stealth_context(self) -> None:
        """Create a browser context with stealth settings applied."""
        if self._browser is None:
            raise BrowserInitializationError(
                reason="Browser not initialized", browser_type=BROWSER_TYPE
            )

        self._context = await self._browser.new_context(**self.context_options())
        await self._inject_stealth_scripts()

    def stealth_script(self) -> str:
        languages = ["en-US", "en"]
        if self.proxy is not None:
            languages = list(dict.fromkeys([self.proxy.locale, self.proxy.language]))

        return f"""
        Object.defineProperty(navigator, 'webdriver', {{
            get: () => undefined,
        }});

        Object.defineProperty(navigator, 'plugins', {{
            get: () => [1, 2, 3, 4, 5],
        }});

        Object.defineProperty(navigator, 'languages', {{
            get: () => {json.dumps(languages)},
        }});

        const originalQuery = window.navigator.permissions.query;
        window.navigator.permissions.query = (parameters) => (
            parameters.name === 'notifications' ?
                Promise.resolve({{ state: Notification.permission }}) :
                originalQuery(parameters)
        );
        """

    async def _inject_stealth_scripts(self) -> None:
        """Inject JavaScript to mask Playwright automation indicators.

        These scripts run before any page content loads, modifying
        browser APIs that are commonly checked by anti-bot systems.
        """
        if self._context is None:
            return

        await self._context.add_init_script(self.stealth_script())
        log.debug("Stealth scripts injected")

    async def new_page(self) -> Page:
        """Create a new page within the current browser context.

        Raises:
            BrowserInitializationError: If context is not initialized.
        """
        if self._context is None:
            raise BrowserInitializationError(
                reason="Browser context not initialized", browser_type=BROWSER_TYPE
            )

        page = await self._context.new_page()
        page.set_default_timeout(self.config.navigation_timeout_ms)
        page.set_default_navigation_timeout(self.config.navigation_timeout_ms)

        log.debug("New page created")
        return page

    async def navigate(self, page: Page, url: str, wait_until: str = "networkidle") -> None:
        """Navigate to the listing and wait for the DOM to settle.

        Args:
            page: Playwright Page instance.
            url: Target URL to navigate to.
            wait_until: Navigation wait condition (load, domcontentloaded, networkidle).

        Raises:
            NavigationTimeoutError: If navigation fails, times out or returns an HTTP error.
        """
        timeout_ms = self.config.navigation_timeout_ms
        log.debug("Navigating to URL", url=url, wait_until=wait_until)

        try:
            response = await page.goto(url, wait_until=wait_until, timeout=timeout_ms)
            await page.wait_for_load_state("domcontentloaded")
        except PlaywrightTimeoutError as exc:
            raise NavigationTimeoutError(
                url=url, reason=f"Navigation timeout after {timeout_ms}ms"
            ) from exc
        except PlaywrightError as exc:
            raise NavigationTimeoutError(url=url, reason=str(exc)) from exc

        if response is None:
            raise NavigationTimeoutError(url=url, reason="No response received")

        if response.status >= 400:
            raise NavigationTimeoutError(
                url=url, reason=f"HTTP {response.status}", status_code=response.status
            )

        log.info("Navigation successful", url=url, status_code=response.status)

    async def _cleanup(self) -> None:
        """Clean up browser resources in reverse initialization order."""
        if self._context is not None:
            try:
                await self._context.close()
            except Exception as exc:
                log.warning("Error closing context", error=str(exc))
            self._context = None

        if self._browser is not None:
            try:
                await self._browser.close()
            except Exception as exc:
                log.warning("Error closing browser", error=str(exc))
            self._browser = None

        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as exc:
                log.warning("Error stopping playwright", error=str(exc))
            self._playwright = None

        log.info("Browser resources cleaned up")

    @property
    def context(self) -> BrowserContext | None:
        """Access the current browser context (for advanced operations)."""
        return self._context

    @property
    def is_initialized(self) -> bool:
        """Check if browser is fully initialized and ready."""
        return all([
            self._playwright is not None,
            self._browser is not None,
            self._context is not None,
        ])
