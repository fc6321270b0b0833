"""Custom exception hierarchy for ListingHarvester.

Each exception maps to one label of the extraction error taxonomy and carries
contextual information for the run-boundary log record. Components raise
these; only the run boundary (pipeline and persistence entry points) converts
them into ``None``/``False`` results.
"""

from datetime import UTC, datetime
from typing import Any


class HarvesterError(Exception):
    """Base exception for all ListingHarvester errors.

    Attributes:
        message: Human-readable error description.
        context: Optional dictionary with additional debugging information.
        timestamp: UTC timestamp when the exception was raised.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        self.message = message
        self.context = context or {}
        self.timestamp = datetime.now(UTC)
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format exception message with context for logging."""
        base = f"[{self.timestamp.isoformat()}] {self.message}"
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{base} | Context: {context_str}"
        return base

    @property
    def label(self) -> str:
        """Taxonomy label used in log records (class name without the suffix)."""
        return type(self).__name__.removesuffix("Error")


class ProxyUnavailableError(HarvesterError):
    """Raised when no usable proxy could be provisioned."""

    def __init__(self, reason: str, country_code: str | None = None) -> None:
        super().__init__(
            message=f"No usable proxy available: {reason}",
            context={"reason": reason, "country_code": country_code},
        )


class BrowserInitializationError(HarvesterError):
    """Raised when the browser instance fails to initialize.

    Common causes include missing Playwright browsers, resource constraints,
    or conflicting browser processes.
    """

    def __init__(self, reason: str, browser_type: str = "firefox") -> None:
        super().__init__(
            message=f"Failed to initialize {browser_type} browser: {reason}",
            context={"browser_type": browser_type, "reason": reason},
        )


class NavigationTimeoutError(HarvesterError):
    """Raised when navigating to the listing page fails or times out."""

    def __init__(self, url: str, reason: str, status_code: int | None = None) -> None:
        super().__init__(
            message=f"Navigation to '{url}' failed: {reason}",
            context={"url": url, "reason": reason, "status_code": status_code},
        )


class ContentNotReadyError(HarvesterError):
    """Raised when the content readiness heuristic times out.

    Soft: the session logs it and continues.
    """

    def __init__(self, url: str, timeout_ms: int) -> None:
        super().__init__(
            message=f"Content readiness check timed out after {timeout_ms}ms",
            context={"url": url, "timeout_ms": timeout_ms},
        )


class ReviewsUnresolvedError(HarvesterError):
    """Raised when the reviews sub-resource cannot be resolved."""

    def __init__(self, reason: str, review_count: int | None = None) -> None:
        super().__init__(
            message=f"Reviews could not be resolved: {reason}",
            context={"reason": reason, "review_count": review_count},
        )


class SessionInterruptedError(HarvesterError):
    """Raised when the browser fails mid-session, e.g. a destroyed execution context."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(
            message=f"Session on '{url}' was interrupted: {reason}",
            context={"url": url, "reason": reason},
        )


class EndpointFetchFailedError(HarvesterError):
    """Raised when the out-of-band re-fetch of an endpoint exhausts its retries."""

    def __init__(self, endpoint: str, attempts: int, reason: str) -> None:
        super().__init__(
            message=f"Re-fetch of '{endpoint}' failed after {attempts} attempts: {reason}",
            context={"endpoint": endpoint, "attempts": attempts, "reason": reason},
        )


class RequiredSectionMissingError(HarvesterError):
    """Raised when a mandatory payload section matches nothing."""

    def __init__(self, section: str, selector: str) -> None:
        super().__init__(
            message=f"Required section '{section}' not found",
            context={"section": section, "selector": selector},
        )
        self.section = section


class MappingFailedError(HarvesterError):
    """Raised when a domain mapper cannot map its section."""

    def __init__(self, part: str) -> None:
        super().__init__(
            message=f"Failed to map '{part}' data",
            context={"part": part},
        )
        self.part = part


class PersistenceWriteFailedError(HarvesterError):
    """Raised when a write against a storage table fails."""

    def __init__(self, table: str, listing_id: str, reason: str) -> None:
        super().__init__(
            message=f"Write to '{table}' failed: {reason}",
            context={"table": table, "listing_id": listing_id, "reason": reason},
        )
        self.table = table


class RollbackFailedError(HarvesterError):
    """Raised when compensation itself fails.

    Left as an unresolved inconsistency; never retried automatically.
    """

    def __init__(self, table: str, listing_id: str, reason: str) -> None:
        super().__init__(
            message=f"Rollback of '{table}' failed: {reason}",
            context={"table": table, "listing_id": listing_id, "reason": reason},
        )
        self.table = table


class LoggingInitializationError(HarvesterError):
    """Raised when the logging system fails to initialize.

    This is a startup-blocking error - the application cannot proceed
    without a functioning logging infrastructure.
    """

    def __init__(self, log_dir: str, reason: str) -> None:
        super().__init__(
            message=f"Failed to initialize logging at '{log_dir}': {reason}",
            context={"log_dir": log_dir, "reason": reason},
        )


class EnrichmentFailedError(HarvesterError):
    """Raised when an enrichment collaborator (text generation, POI lookup) fails.

    Enrichment never aborts extraction; callers log it and fall back.
    """

    def __init__(self, collaborator: str, reason: str) -> None:
        super().__init__(
            message=f"Enrichment via '{collaborator}' failed: {reason}",
            context={"collaborator": collaborator, "reason": reason},
        )
