"""Multi-table persistence with explicit compensation.

Supabase offers no multi-table transaction, so ``ListingPersister`` writes
the entity graph as a saga: an ordered list of steps, each appending an undo
descriptor to an in-memory compensation log once it succeeds. The first
failing step switches the transaction to ``ROLLING_BACK`` and the log is
replayed in reverse.

Child tables use delete-by-listing-id followed by insert, which makes
repeated runs for the same listing idempotent.
"""

from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any, NamedTuple

import httpx
from postgrest.exceptions import APIError
from supabase import AsyncClient, acreate_client

from config.settings import GlobalConfig, get_config
from listing_harvester.exceptions import (
    HarvesterError,
    PersistenceWriteFailedError,
    RollbackFailedError,
)
from listing_harvester.logger import get_logger
from listing_harvester.models import ListingData, RefinedData

log = get_logger(__name__)

STORE_ERRORS = (APIError, httpx.HTTPError)

CHILD_TABLES = (
    "location_details",
    "amenities",
    "photos",
    "tour",
    "availability",
    "house_rules",
    "safety_property",
    "reviews",
    "attractions",
    "accessibility",
)


class PersistenceState(StrEnum):
    PENDING = "pending"
    WRITING = "writing"
    ROLLING_BACK = "rolling_back"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"


class UndoStep(NamedTuple):
    """Delete rows of ``table`` where ``column`` equals ``value``."""

    table: str
    column: str
    value: str


class PersistenceTransaction:
    """Compensation log and state for one ``persist`` call. Never stored."""

    def __init__(self, listing_id: str) -> None:
        self.listing_id = listing_id
        self.state = PersistenceState.PENDING
        self.current_step: str | None = None
        self.undo_log: list[UndoStep] = []
        self.failure: HarvesterError | None = None

    def begin(self, step: str) -> None:
        self.state = PersistenceState.WRITING
        self.current_step = step

    def record(self, undo: UndoStep) -> None:
        self.undo_log.append(undo)

    @property
    def completed_tables(self) -> list[str]:
        return [step.table for step in self.undo_log]


Step = tuple[str, Callable[[], Awaitable[UndoStep]]]


def host_row(data: ListingData) -> dict[str, Any]:
    host = data.host
    return {
        "id": host.id,
        "user_id": data.listing.id,
        "name": host.name,
        "superhost": host.superhost,
        "photo": host.photo,
        "review_count": host.reviews,
        "rating": host.rating,
        "years_hosting": host.years_hosting,
        "about": host.about,
        "highlights": host.highlights,
        "details": host.details,
    }


def listing_row(data: ListingData, site_id: Any) -> dict[str, Any]:
    listing, location = data.listing, data.location
    return {
        "id": listing.id,
        "site_id": site_id,
        "url": listing.url,
        "type": listing.type,
        "privacy": listing.privacy,
        "title": listing.title,
        "subtitle": listing.subtitle,
        "description": listing.description,
        "highlights": [item.model_dump(mode="json") for item in listing.highlights],
        "hero": listing.hero,
        "intro_title": data.extra.intro_title,
        "intro_text": data.extra.intro_text,
        "average_daily_rate": listing.average_daily_rate,
        "min_nights": data.availability.min_nights,
        "capacity_summary": listing.capacity,
        "house_rules_summary": data.house_rules.house_rules_summary,
        "sleeping": [item.model_dump(mode="json") for item in listing.sleeping],
        "safety_features_summary": data.safety_property.safety_features_summary,
        "pets": data.pets,
        "tags": listing.tags,
        "city": location.city,
        "state": location.state,
        "country": location.country,
        "latitude": location.latitude,
        "longitude": location.longitude,
        "location_disclaimer": location.disclaimer,
        "ratings": data.category_ratings.model_dump(mode="json"),
    }


def child_rows(data: ListingData) -> dict[str, list[dict[str, Any]]]:
    """Rows for every child table, keyed in write order."""
    listing_id = data.listing.id

    def rules(sections: list[Any]) -> list[dict[str, Any]]:
        return [
            {
                "listing_id": listing_id,
                "section": section.section,
                "title": rule.title,
                "subtitle": rule.subtitle,
                "html": rule.html,
            }
            for section in sections
            for rule in section.rules
        ]

    rows = {
        "location_details": [
            {"listing_id": listing_id, "title": detail.title, "content": detail.content}
            for detail in data.location.details
        ],
        "amenities": [
            {
                "listing_id": listing_id,
                "category": category.category,
                **amenity.model_dump(mode="json"),
            }
            for category in data.amenities
            for amenity in category.amenities
        ],
        "photos": [
            {
                "id": photo.id,
                "listing_id": listing_id,
                "url": photo.base_url,
                "aspect_ratio": photo.aspect_ratio,
                "orientation": photo.orientation,
                "accessibility_label": photo.accessibility_label,
                "caption": photo.caption,
            }
            for photo in data.gallery.photos
        ],
        "tour": [
            {
                "listing_id": listing_id,
                "title": item.title,
                "photos": item.photos,
                "highlights": item.highlights,
                "position": position,
            }
            for position, item in enumerate(data.gallery.tour)
        ],
        "availability": [
            {
                "listing_id": listing_id,
                "start_date": booked.start.isoformat(),
                "end_date": booked.end.isoformat(),
                "checkin": booked.checkin,
                "checkout": booked.checkout,
            }
            for booked in data.availability.booked
        ],
        "house_rules": rules(data.house_rules.sections),
        "safety_property": rules(data.safety_property.sections),
        "reviews": [
            {
                "id": review.id,
                "listing_id": listing_id,
                "reviewer_id": review.reviewer.id,
                "name": review.reviewer.name,
                "photo": review.reviewer.photo,
                "language": review.language,
                "comments": review.comments,
                "rating": review.rating,
                "highlight": review.highlight or None,
                "period": review.period,
                "response": review.response or None,
                "created_at": review.created_at,
            }
            for review in data.reviews
        ],
        "attractions": [
            {
                "listing_id": listing_id,
                "name": attraction.name,
                "types": attraction.types,
                "location": attraction.location.model_dump(mode="json"),
                "description": attraction.description,
                "photos": attraction.photos,
            }
            for attraction in data.attractions
        ],
        "accessibility": [
            {"listing_id": listing_id, **feature.model_dump(mode="json")}
            for feature in data.accessibility
        ],
    }
    return {table: rows[table] for table in CHILD_TABLES}


async def create_store_client(config: GlobalConfig | None = None) -> AsyncClient:
    """Create the async Supabase client from configuration."""
    config = config or get_config()
    return await acreate_client(config.supabase_url, config.supabase_key)


class ListingPersister:
    """Writes ``ListingData`` and ``RefinedData`` all-or-nothing.

    Args:
        client: Async Supabase client (or any object exposing the same
            ``table(...)`` query builder).
    """

    def __init__(self, client: AsyncClient) -> None:
        self.client = client
        self.last_transaction: PersistenceTransaction | None = None

    async def persist(self, listing_data: ListingData) -> bool:
        """Persist the full entity graph. Never raises.

        Returns:
            True when committed; False when rolled back or rollback failed.
        """
        listing_id = listing_data.listing.id
        host_id = listing_data.host.id
        transaction = PersistenceTransaction(listing_id)
        self.last_transaction = transaction
        site: dict[str, Any] = {}

        async def write_host() -> UndoStep:
            await self._upsert("hosts", host_row(listing_data), "id", listing_id)
            return UndoStep("hosts", "id", host_id)

        async def write_site() -> UndoStep:
            rows = await self._upsert(
                "sites",
                {"host_id": host_id, "cohosts": [c.model_dump() for c in listing_data.host.cohosts]},
                "host_id",
                listing_id,
            )
            if not rows or rows[0].get("id") is None:
                raise PersistenceWriteFailedError("sites", listing_id, "upsert returned no site id")
            site["id"] = rows[0]["id"]
            return UndoStep("sites", "host_id", host_id)

        async def write_listing() -> UndoStep:
            await self._upsert("listings", listing_row(listing_data, site["id"]), "id", listing_id)
            return UndoStep("listings", "id", listing_id)

        def write_child(table: str, rows: list[dict[str, Any]]) -> Callable[[], Awaitable[UndoStep]]:
            async def step() -> UndoStep:
                await self._replace(table, rows, listing_id)
                return UndoStep(table, "listing_id", listing_id)

            return step

        steps: list[Step] = [
            ("hosts", write_host),
            ("sites", write_site),
            ("listings", write_listing),
            *((table, write_child(table, rows)) for table, rows in child_rows(listing_data).items()),
        ]
        return await self._run(transaction, steps, self._compensate)

    async def persist_refined(self, refined: RefinedData, listing_id: str) -> bool:
        """Upsert the refines row for ``listing_id``. Never raises.

        On failure the whole listing graph is removed, resolving the site and
        host through the stored listing row.
        """
        transaction = PersistenceTransaction(listing_id)
        self.last_transaction = transaction

        async def write_refine() -> UndoStep:
            await self._upsert(
                "refines",
                {
                    "listing_id": listing_id,
                    "branding": refined.branding.model_dump(mode="json"),
                    "top_reviews": [review.model_dump(mode="json") for review in refined.top_reviews],
                    "description": refined.description,
                },
                "listing_id",
                listing_id,
            )
            return UndoStep("refines", "listing_id", listing_id)

        return await self._run(transaction, [("refines", write_refine)], self._compensate_refined)

    async def _run(
        self,
        transaction: PersistenceTransaction,
        steps: list[Step],
        compensate: Callable[[PersistenceTransaction], Awaitable[None]],
    ) -> bool:
        for name, step in steps:
            transaction.begin(name)
            try:
                transaction.record(await step())
            except PersistenceWriteFailedError as exc:
                transaction.failure = exc
                log.error(
                    "Persistence step failed, rolling back",
                    error_type=exc.label,
                    listing_id=transaction.listing_id,
                    table=name,
                    completed=transaction.completed_tables,
                    error=exc.message,
                )
                transaction.state = PersistenceState.ROLLING_BACK
                try:
                    await compensate(transaction)
                except RollbackFailedError as rollback_exc:
                    transaction.state = PersistenceState.ROLLBACK_FAILED
                    transaction.failure = rollback_exc
                    log.critical(
                        "Rollback failed, unresolved inconsistency",
                        error_type=rollback_exc.label,
                        listing_id=transaction.listing_id,
                        table=rollback_exc.table,
                        error=rollback_exc.message,
                    )
                else:
                    transaction.state = PersistenceState.ROLLED_BACK
                    log.warning(
                        "Rolled back persisted rows",
                        listing_id=transaction.listing_id,
                        tables=list(reversed(transaction.completed_tables)),
                    )
                return False

        transaction.state = PersistenceState.COMMITTED
        log.info(
            "Persistence committed",
            listing_id=transaction.listing_id,
            tables=transaction.completed_tables,
        )
        return True

    async def _compensate(self, transaction: PersistenceTransaction) -> None:
        for undo in reversed(transaction.undo_log):
            await self._undo(undo, transaction.listing_id)

    async def _compensate_refined(self, transaction: PersistenceTransaction) -> None:
        listing_id = transaction.listing_id
        await self._undo(UndoStep("refines", "listing_id", listing_id), listing_id)
        for table in reversed(CHILD_TABLES):
            await self._undo(UndoStep(table, "listing_id", listing_id), listing_id)

        site_id = await self._lookup("listings", "site_id", "id", listing_id, listing_id)
        if site_id is None:
            return
        host_id = await self._lookup("sites", "host_id", "id", site_id, listing_id)
        await self._undo(UndoStep("listings", "id", listing_id), listing_id)
        if host_id is not None:
            await self._undo(UndoStep("sites", "host_id", str(host_id)), listing_id)
            await self._undo(UndoStep("hosts", "id", str(host_id)), listing_id)

    async def _upsert(
        self, table: str, row: dict[str, Any], on_conflict: str, listing_id: str
    ) -> list[dict[str, Any]]:
        try:
            response = await self.client.table(table).upsert(row, on_conflict=on_conflict).execute()
        except STORE_ERRORS as exc:
            raise PersistenceWriteFailedError(table, listing_id, str(exc)) from exc
        return response.data or []

    async def _replace(self, table: str, rows: list[dict[str, Any]], listing_id: str) -> None:
        try:
            await self.client.table(table).delete().eq("listing_id", listing_id).execute()
            if rows:
                await self.client.table(table).insert(rows).execute()
        except STORE_ERRORS as exc:
            raise PersistenceWriteFailedError(table, listing_id, str(exc)) from exc
        log.debug("Child table replaced", table=table, listing_id=listing_id, rows=len(rows))

    async def _undo(self, undo: UndoStep, listing_id: str) -> None:
        try:
            await self.client.table(undo.table).delete().eq(undo.column, undo.value).execute()
        except STORE_ERRORS as exc:
            raise RollbackFailedError(undo.table, listing_id, str(exc)) from exc

    async def _lookup(
        self, table: str, column: str, key: str, value: Any, listing_id: str
    ) -> Any:
        try:
            response = await self.client.table(table).select(column).eq(key, value).execute()
        except STORE_ERRORS as exc:
            raise RollbackFailedError(table, listing_id, str(exc)) from exc
        rows = response.data or []
        return rows[0].get(column) if rows else None
