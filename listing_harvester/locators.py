"""Pluggable element-locating strategies for page interactions.

Each interaction (the "show all reviews" control, overlay close and dismiss
buttons) is described by an ordered list of strategies; the first one that
yields a visible element wins. Markup changes are handled by editing the
lists, not the session code.
"""

import re
from abc import ABC, abstractmethod
from collections.abc import Sequence

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Locator, Page

from listing_harvester.logger import get_logger

log = get_logger(__name__)

Scope = Page | Locator


class LocatorStrategy(ABC):
    """Finds at most one visible element inside a page or element scope."""

    @property
    @abstractmethod
    def description(self) -> str: ...

    @abstractmethod
    def candidates(self, scope: Scope) -> Locator:
        """Return the (possibly empty) set of matching elements."""

    async def locate(self, scope: Scope, timeout_ms: int = 1200) -> Locator | None:
        locator = self.candidates(scope).first
        try:
            await locator.wait_for(state="visible", timeout=timeout_ms)
        except PlaywrightError:
            return None
        return locator


class CssStrategy(LocatorStrategy):
    def __init__(self, selector: str) -> None:
        self.selector = selector

    @property
    def description(self) -> str:
        return f"css:{self.selector}"

    def candidates(self, scope: Scope) -> Locator:
        return scope.locator(self.selector)


class RoleStrategy(LocatorStrategy):
    """Accessible role with a name matching ``pattern`` (case-insensitive)."""

    def __init__(self, role: str, pattern: str) -> None:
        self.role = role
        self.pattern = re.compile(pattern, re.IGNORECASE)

    @property
    def description(self) -> str:
        return f"role:{self.role}:{self.pattern.pattern}"

    def candidates(self, scope: Scope) -> Locator:
        return scope.get_by_role(self.role, name=self.pattern)


async def first_match(
    scope: Scope,
    strategies: Sequence[LocatorStrategy],
    timeout_ms: int = 1200,
) -> Locator | None:
    """Try ``strategies`` in order and return the first visible element."""
    for strategy in strategies:
        locator = await strategy.locate(scope, timeout_ms)
        if locator is not None:
            log.debug("Element located", strategy=strategy.description)
            return locator
    return None


REVIEWS_BUTTON = (
    CssStrategy('button[data-testid="pdp-show-all-reviews-button"]'),
    RoleStrategy("button", r"show all \d[\d,]* reviews"),
    RoleStrategy("link", r"show all \d[\d,]* reviews"),
    CssStrategy('a[href*="/reviews"]'),
)

OVERLAY_CLOSE = (
    CssStrategy('button[aria-label="Close"]'),
    CssStrategy('button:has(svg[viewBox="0 0 32 32"])'),
    RoleStrategy("button", r"^(close|x)$"),
)

OVERLAY_DISMISS = (
    CssStrategy('button:has-text("Accept")'),
    CssStrategy('button:has-text("Only necessary")'),
    CssStrategy('button:has-text("Dismiss")'),
)

REVIEWS_MODAL = '[role="dialog"]'
REVIEW_ITEM = "[data-review-id]"
