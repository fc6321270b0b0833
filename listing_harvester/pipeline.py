"""Run boundary for one listing.

Orchestrates proxy acquisition, the browsing session, section extraction,
domain mapping, enrichment and persistence. Components raise
``HarvesterError`` subclasses; this module is where they are logged with
their ``error_type`` and turned into ``None``/``False`` results.
"""

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from config.settings import GlobalConfig, get_config
from listing_harvester.aggregator import RawApiPayload
from listing_harvester.collaborators import (
    AttractionsLookup,
    TextGenerator,
    build_attractions_lookup,
    build_text_generator,
)
from listing_harvester.exceptions import (
    BrowserInitializationError,
    EnrichmentFailedError,
    HarvesterError,
    NavigationTimeoutError,
    ProxyUnavailableError,
    ReviewsUnresolvedError,
    SessionInterruptedError,
)
from listing_harvester.extractor import extract_sections
from listing_harvester.logger import get_logger
from listing_harvester.mapper import map_listing_data
from listing_harvester.models import Attraction, Extra, ListingData
from listing_harvester.persistence import ListingPersister, create_store_client
from listing_harvester.proxy import ProxyBroker
from listing_harvester.refine import generate_intro_text, get_refined_data
from listing_harvester.session import BrowserFactory, ListingSession

log = get_logger(__name__)

API_DATA_FILE = "api_data.json"
LISTING_DATA_FILE = "listing_data.json"

RUN_RETRYABLE_ERRORS = (
    ProxyUnavailableError,
    BrowserInitializationError,
    NavigationTimeoutError,
    ReviewsUnresolvedError,
    SessionInterruptedError,
)


def write_artifact(path: Path, data: Any) -> Path:
    """Write ``data`` as indented JSON, creating the parent directory."""
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
    log.debug("Artifact written", path=str(path))
    return path


async def _run_session(
    url: str,
    config: GlobalConfig,
    broker: ProxyBroker,
    browser_factory: BrowserFactory | None,
) -> RawApiPayload:
    proxy = await broker.acquire_proxy()
    session = ListingSession(config, proxy, browser_factory)
    return await session.run(url)


def _log_run_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    log.warning(
        "Retrying listing run",
        attempt=retry_state.attempt_number,
        error_type=error.label if isinstance(error, HarvesterError) else type(error).__name__,
    )


async def harvest_payload(
    url: str,
    config: GlobalConfig,
    broker: ProxyBroker,
    browser_factory: BrowserFactory | None = None,
) -> RawApiPayload:
    """Acquire a proxy and run the browsing session, retrying the pair as a whole.

    Each attempt gets a fresh proxy. The last error is re-raised once the
    attempts are exhausted.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(config.run_retry_attempts),
        wait=wait_fixed(config.proxy_retry_wait_sec),
        retry=retry_if_exception_type(RUN_RETRYABLE_ERRORS),
        before_sleep=_log_run_retry,
        reraise=True,
    )
    return await retrying(_run_session, url, config, broker, browser_factory)


async def find_attractions(
    listing_data: ListingData, lookup: AttractionsLookup | None
) -> list[Attraction]:
    if lookup is None:
        return []
    try:
        location = listing_data.location
        attractions = await lookup.nearby(location.latitude, location.longitude)
    except (ValueError, IndexError) as exc:
        log.warning(
            "Listing coordinates unusable",
            coordinates=listing_data.location.coordinates,
            error=str(exc),
        )
        return []
    except EnrichmentFailedError as exc:
        log.warning("Attractions lookup failed", error_type=exc.label, error=exc.message)
        return []
    log.info("Attractions found", listing_id=listing_data.listing_id, count=len(attractions))
    return attractions


async def extract_listing(
    url: str,
    config: GlobalConfig | None = None,
    *,
    broker: ProxyBroker | None = None,
    browser_factory: BrowserFactory | None = None,
    text_generator: TextGenerator | None = None,
    attractions_lookup: AttractionsLookup | None = None,
) -> ListingData | None:
    """Extract one listing end to end.

    Collaborators not passed explicitly are built from configuration and
    skipped when their credentials are absent.

    Returns:
        The mapped listing, or None when any fatal step failed.
    """
    config = config or get_config()
    broker = broker or ProxyBroker(config)
    text_generator = text_generator or build_text_generator(config)
    attractions_lookup = attractions_lookup or build_attractions_lookup(config)

    log.info("Listing extraction started", url=url)
    try:
        payload = await harvest_payload(url, config, broker, browser_factory)
        write_artifact(config.data_dir / API_DATA_FILE, payload)

        bundle = extract_sections(payload)
        listing_data = map_listing_data(bundle)

        attractions = await find_attractions(listing_data, attractions_lookup)
        intro_text = await generate_intro_text(listing_data.listing, text_generator)
        listing_data = listing_data.model_copy(
            update={
                "attractions": attractions,
                "extra": Extra(intro_title=listing_data.extra.intro_title, intro_text=intro_text),
            }
        )
        write_artifact(config.data_dir / LISTING_DATA_FILE, listing_data)

    except HarvesterError as exc:
        log.error(
            "Listing extraction failed",
            error_type=exc.label,
            url=url,
            error=exc.message,
            context=exc.context,
        )
        return None
    except OSError as exc:
        log.error("Artifact write failed", url=url, error=str(exc))
        return None
    except Exception as exc:
        log.exception(
            "Unexpected error during listing extraction",
            error_type=type(exc).__name__,
            url=url,
        )
        return None

    log.info(
        "Listing extraction completed",
        url=url,
        listing_id=listing_data.listing_id,
        reviews=len(listing_data.reviews),
        attractions=len(listing_data.attractions),
    )
    return listing_data


async def _persister(config: GlobalConfig, persister: ListingPersister | None) -> ListingPersister | None:
    if persister is not None:
        return persister
    if not config.persistence_enabled:
        log.warning("Persistence not configured, skipping", setting="SUPABASE_URL/SUPABASE_KEY")
        return None
    return ListingPersister(await create_store_client(config))


async def persist_listing(
    listing_data: ListingData,
    config: GlobalConfig | None = None,
    persister: ListingPersister | None = None,
) -> bool:
    config = config or get_config()
    persister = await _persister(config, persister)
    if persister is None:
        return False
    return await persister.persist(listing_data)


async def refine_listing(
    listing_data: ListingData,
    config: GlobalConfig | None = None,
    *,
    text_generator: TextGenerator | None = None,
    persister: ListingPersister | None = None,
) -> bool:
    """Generate and persist the refined record of an already persisted listing.

    On a failed refine write the whole listing graph is compensated.
    """
    config = config or get_config()
    text_generator = text_generator or build_text_generator(config)
    if text_generator is None:
        log.warning("Refinement requires a text generator, skipping", listing_id=listing_data.listing_id)
        return False

    refined = await get_refined_data(listing_data, text_generator)
    if refined is None:
        return False

    persister = await _persister(config, persister)
    if persister is None:
        return False
    return await persister.persist_refined(refined, listing_data.listing_id)


async def run(url: str, *, refine: bool = False, config: GlobalConfig | None = None) -> bool:
    """Extract, persist and optionally refine one listing.

    Returns:
        True when every requested stage succeeded.
    """
    config = config or get_config()
    text_generator = build_text_generator(config)

    listing_data = await extract_listing(url, config, text_generator=text_generator)
    if listing_data is None:
        return False

    persister = await _persister(config, None)
    if persister is None:
        return False
    if not await persister.persist(listing_data):
        return False

    if refine:
        return await refine_listing(
            listing_data, config, text_generator=text_generator, persister=persister
        )
    return True
