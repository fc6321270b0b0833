"""Pytest configuration and shared fixtures for the ListingHarvester test suite.

This module provides hermetic test infrastructure with the following guarantees:
- No external network requests (Playwright, httpx and Supabase are faked)
- Deterministic execution (no real delays, fixed dates in fixtures)
- Isolated state (no cross-test contamination of the config singleton)
"""

import copy
from collections import defaultdict
from pathlib import Path
from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest
from postgrest.exceptions import APIError
from pytest_mock import MockerFixture

from config.settings import GlobalConfig
from listing_harvester.aggregator import Endpoint
from listing_harvester.extractor import extract_sections
from listing_harvester.mapper import map_listing_data
from listing_harvester.models import ListingData

LISTING_URL = "https://www.airbnb.com/rooms/30397973"


@pytest.fixture
def mock_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> GlobalConfig:
    """Provide isolated GlobalConfig with safe test defaults.

    Overrides the lru_cache singleton to prevent state leakage between tests.
    Uses tmp_path for all file operations to avoid polluting the filesystem.
    """
    from config.settings import get_config

    get_config.cache_clear()

    log_dir = tmp_path / "logs"
    data_dir = tmp_path / "data"
    log_dir.mkdir()

    test_env = {
        "APP_NAME": "ListingHarvester-Test",
        "ENVIRONMENT": "test",
        "DEBUG": "false",
        "HEADLESS": "true",
        "LOG_LEVEL": "DEBUG",
        "LOG_DIR": str(log_dir),
        "LOG_ROTATION": "1 day",
        "LOG_RETENTION": "1 day",
        "DATA_DIR": str(data_dir),
        "PROXY_API_URL": "https://proxy.test/generate",
        "PROXY_API_TOKEN": "token-123",
        "PROXY_HOSTNAME": "geo.proxy.test",
        "PROXY_USERNAME": "user",
        "PROXY_PASSWORD": "secret",
        "PROXY_RETRY_ATTEMPTS": "2",
        "PROXY_RETRY_WAIT_SEC": "0",
        "REFETCH_MAX_ATTEMPTS": "3",
        "REFETCH_BASE_DELAY_SEC": "0",
        "REFETCH_MAX_DELAY_SEC": "0",
        "REFETCH_JITTER_SEC": "0",
        "RUN_RETRY_ATTEMPTS": "2",
        "SUPABASE_URL": "",
        "SUPABASE_KEY": "",
        "OPENAI_API_KEY": "",
        "GOOGLE_PLACES_API_KEY": "",
    }

    for key, value in test_env.items():
        monkeypatch.setenv(key, value)

    config = get_config()

    yield config

    get_config.cache_clear()


def _review(
    review_id: str,
    language: str = "en",
    rating: int = 5,
    comments: str = "Wonderful stay, spotless villa.",
    date: str = "March 2025",
) -> dict[str, Any]:
    item: dict[str, Any] = {
        "id": review_id,
        "language": language,
        "rating": rating,
        "reviewHighlight": "",
        "localizedDate": date,
        "createdAt": "2025-03-03T10:00:00Z",
        "reviewer": {"id": f"u-{review_id}", "firstName": f"Guest {review_id}", "pictureUrl": "https://img.test/g.jpg"},
    }
    if language == "en":
        item.update(comments=comments, response="Thanks for staying!")
    else:
        item.update(
            comments="Séjour merveilleux.",
            localizedReview={"comments": comments, "response": ""},
        )
    return item


def _calendar_days() -> list[dict[str, Any]]:
    """June 2025: 3rd-5th and 28th-30th are unavailable."""
    days = []
    for day in range(1, 31):
        unavailable = 3 <= day <= 5 or day >= 28
        days.append(
            {
                "calendarDate": f"2025-06-{day:02d}",
                "available": not unavailable,
                "availableForCheckin": not unavailable,
                "availableForCheckout": True,
            }
        )
    return days


@pytest.fixture
def payload_factory() -> Callable[..., dict[str, Any]]:
    """Factory fixture for a merged raw payload shaped like the listing API traffic.

    Keyword overrides:
        reviews: List of review items (defaults to one English, one French).
        ratings: Category ratings object.
        drop: Top-level ``section`` typenames to remove.
        extra_sections: Additional ``{"section": ...}`` entries.
        days: Calendar day records for the single month.
    """

    def _build(
        reviews: list[dict[str, Any]] | None = None,
        ratings: dict[str, Any] | None = None,
        drop: tuple[str, ...] = (),
        extra_sections: list[dict[str, Any]] | None = None,
        days: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        if reviews is None:
            reviews = [_review("r1"), _review("r2", language="fr", rating=4, date="2 weeks ago")]
        if ratings is None:
            ratings = {
                "accuracyRating": 4.9,
                "checkinRating": 5.0,
                "cleanlinessRating": 4.8,
                "communicationRating": 5.0,
                "locationRating": 4.7,
                "valueRating": 4.6,
                "guestSatisfactionOverall": 4.85,
            }

        sections = [
            {"__typename": "HeroSection", "previewImages": [{"id": "hero-1", "baseUrl": "https://img.test/hero.jpg"}]},
            {
                "__typename": "MeetYourHostSection",
                "cardData": {
                    "userId": "host-42",
                    "name": "Ana",
                    "isSuperhost": True,
                    "profilePictureUrl": "https://img.test/ana.jpg",
                    "ratingCount": 120,
                    "ratingAverage": 4.9,
                    "timeAsHost": {"years": 5},
                },
                "about": "Architect and surfer.",
                "hostHighlights": [{"title": "Speaks English and Spanish"}],
                "hostDetails": ["Response rate: 100%"],
                "cohosts": [{"userId": "c-1", "name": "Ben", "profilePictureUrl": "https://img.test/ben.jpg"}],
            },
            {
                "__typename": "PdpHighlightsSection",
                "highlights": [{"title": "Self check-in", "subtitle": "Check yourself in with the keypad."}],
            },
            {
                "__typename": "PdpDescriptionSection",
                "htmlDescription": {"htmlText": "A sunny villa two blocks from the beach."},
            },
            {
                "__typename": "LocationSection",
                "lat": 25.7617,
                "lng": -80.1918,
                "address": "Miami, Florida, United States",
                "addressTitle": "Where you'll be",
                "seeAllLocationDetails": [{"title": "Neighborhood", "content": {"htmlText": "Quiet street."}}],
                "locationDisclaimer": "Exact location provided after booking.",
            },
            {
                "__typename": "PhotoTourModalSection",
                "mediaItems": [
                    {
                        "__typename": "Image",
                        "id": "p1",
                        "baseUrl": "https://img.test/p1.jpg",
                        "aspectRatio": 1.5,
                        "orientation": "LANDSCAPE",
                        "accessibilityLabel": "Living room",
                        "imageMetadata": {"caption": "Living room"},
                    },
                    {"__typename": "Video", "id": "v1"},
                ],
                "roomTours": [{"title": "Living room", "imageIds": ["p1"], "highlights": [{"title": "Sofa bed"}]}],
            },
            {
                "__typename": "PoliciesSection",
                "houseRules": [{"title": "Check-in after 3:00 PM"}, {"title": "6 guests maximum"}],
                "houseRulesSections": [
                    {
                        "title": "Checking in and out",
                        "items": [{"title": "Check-in after 3:00 PM", "subtitle": "", "html": {"htmlText": "<b>3 PM</b>"}}],
                    }
                ],
                "previewSafetyAndProperties": [{"title": "Smoke alarm"}],
                "safetyAndPropertiesSections": [
                    {"title": "Safety devices", "items": [{"title": "Smoke alarm", "subtitle": "Installed"}]}
                ],
            },
            {
                "__typename": "AmenitiesSection",
                "previewAmenitiesGroups": [{"amenities": [{"title": "Wifi"}]}],
                "seeAllAmenitiesGroups": [
                    {
                        "title": "Internet and office",
                        "amenities": [
                            {"title": "Wifi", "subtitle": "300 Mbps", "icon": "SYSTEM_WI_FI", "available": True},
                            {"title": "Dedicated workspace", "icon": "SYSTEM_WORKSPACE", "available": True},
                        ],
                    }
                ],
            },
            {"__typename": "StayPdpReviewsSection", "categoryRatings": ratings},
            {"__typename": "BookItSection", "petsAllowed": True},
            {
                "__typename": "SleepingArrangementSection",
                "arrangementDetails": [{"title": "Bedroom 1", "subtitle": "1 king bed", "images": [{"id": "s1"}]}],
            },
            {
                "__typename": "AccessibilityFeaturesSection",
                "accessibilityFeatureGroups": [
                    {
                        "title": "Entrance",
                        "accessibilityFeatures": [
                            {"title": "Step-free access", "available": True, "images": [{"baseUrl": "https://img.test/a.jpg"}]}
                        ],
                    }
                ],
            },
        ]
        sections = [section for section in sections if section["__typename"] not in drop]
        sections.extend(extra_sections or [])

        return copy.deepcopy(
            {
                Endpoint.DATA_LAYER.value: {
                    "data": {
                        "stayListingData": {
                            "city": "Miami",
                            "state": "FL",
                            "country": "US",
                            "roomType": "Entire home/apt",
                            "propertyType": "villa",
                            "averageDailyRateInUSD": 245.5,
                            "categoryTags": ["Beachfront", "Amazing pools"],
                        }
                    }
                },
                Endpoint.SECTIONS.value: {
                    "data": {
                        "presentation": {
                            "stayProductDetailPage": {
                                "sections": {
                                    "metadata": {
                                        "listingTitle": "Sunny Villa near South Beach",
                                        "seoFeatures": {"canonicalUrl": LISTING_URL},
                                        "sbuiData": {
                                            "sectionConfiguration": {
                                                "root": {
                                                    "sections": [
                                                        {
                                                            "sectionData": {
                                                                "title": "Entire villa in Miami, Florida",
                                                                "overviewItems": [{"title": "6 guests"}, {"title": "3 bedrooms"}],
                                                            }
                                                        }
                                                    ]
                                                }
                                            }
                                        },
                                        "bookingPrefetchData": {"minNights": 2},
                                    },
                                    "sections": [{"section": section} for section in sections],
                                }
                            }
                        }
                    }
                },
                Endpoint.AVAILABILITY.value: {
                    "data": {
                        "merlin": {
                            "pdpAvailabilityCalendar": {
                                "calendarMonths": [{"month": 6, "year": 2025, "days": days or _calendar_days()}]
                            }
                        }
                    }
                },
                Endpoint.REVIEWS.value: {
                    "data": {
                        "presentation": {
                            "stayProductDetailPage": {
                                "reviews": {"__typename": "PdpReviews", "reviews": reviews}
                            }
                        }
                    }
                },
            }
        )

    return _build


@pytest.fixture
def review_factory() -> Callable[..., dict[str, Any]]:
    return _review


@pytest.fixture
def listing_data(payload_factory: Callable[..., dict[str, Any]]) -> ListingData:
    """A fully mapped listing built from the default payload."""
    return map_listing_data(extract_sections(payload_factory()))


class FakeResponse:
    def __init__(self, data: list[dict[str, Any]]) -> None:
        self.data = data


class FakeQuery:
    """Chainable stand-in for the postgrest async query builder."""

    def __init__(self, store: "FakeSupabase", table: str) -> None:
        self.store = store
        self.table = table
        self.operation = "select"
        self.payload: Any = None
        self.on_conflict = "id"
        self.columns = "*"
        self.filters: list[tuple[str, Any]] = []

    def upsert(self, row: dict[str, Any], on_conflict: str = "id") -> "FakeQuery":
        self.operation, self.payload, self.on_conflict = "upsert", row, on_conflict
        return self

    def insert(self, rows: list[dict[str, Any]]) -> "FakeQuery":
        self.operation, self.payload = "insert", rows
        return self

    def delete(self) -> "FakeQuery":
        self.operation = "delete"
        return self

    def select(self, columns: str = "*") -> "FakeQuery":
        self.operation, self.columns = "select", columns
        return self

    def eq(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append((column, value))
        return self

    def _matches(self, row: dict[str, Any]) -> bool:
        return all(str(row.get(column)) == str(value) for column, value in self.filters)

    async def execute(self) -> FakeResponse:
        return self.store.apply(self)


class FakeSupabase:
    """In-memory async Supabase client with per-operation failure injection.

    ``fail_on`` holds ``(table, operation)`` pairs that raise ``APIError``.
    """

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.fail_on: set[tuple[str, str]] = set()
        self.calls: list[tuple[str, str]] = []
        self._next_site = 0

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rows(self, table: str) -> list[dict[str, Any]]:
        return self.tables.get(table, [])

    def populated(self) -> dict[str, int]:
        return {table: len(rows) for table, rows in self.tables.items() if rows}

    def apply(self, query: FakeQuery) -> FakeResponse:
        self.calls.append((query.table, query.operation))
        if (query.table, query.operation) in self.fail_on:
            raise APIError({"message": f"{query.operation} on {query.table} failed", "code": "500"})

        rows = self.tables[query.table]
        if query.operation == "upsert":
            row = dict(query.payload)
            key = query.on_conflict
            existing = next((r for r in rows if r.get(key) == row.get(key)), None)
            if existing is not None:
                existing.update(row)
                return FakeResponse([dict(existing)])
            if query.table == "sites" and "id" not in row:
                self._next_site += 1
                row["id"] = f"site-{self._next_site}"
            rows.append(row)
            return FakeResponse([dict(row)])

        if query.operation == "insert":
            inserted = [dict(row) for row in query.payload]
            rows.extend(inserted)
            return FakeResponse(inserted)

        if query.operation == "delete":
            removed = [row for row in rows if query._matches(row)]
            self.tables[query.table] = [row for row in rows if not query._matches(row)]
            return FakeResponse(removed)

        return FakeResponse([dict(row) for row in rows if query._matches(row)])


@pytest.fixture
def fake_supabase() -> FakeSupabase:
    return FakeSupabase()


def create_playwright_mock() -> tuple[MagicMock, MagicMock, MagicMock, MagicMock]:
    """Create a Playwright mock chain for the ``async_playwright().start()`` pattern.

    Returns:
        Tuple of (async_playwright_instance, playwright_mock, browser_mock, context_mock)
    """
    context_mock = MagicMock()
    context_mock.add_init_script = AsyncMock()
    context_mock.new_page = AsyncMock()
    context_mock.close = AsyncMock()

    browser_mock = MagicMock()
    browser_mock.new_context = AsyncMock(return_value=context_mock)
    browser_mock.close = AsyncMock()

    playwright_mock = MagicMock()
    playwright_mock.firefox.launch = AsyncMock(return_value=browser_mock)
    playwright_mock.stop = AsyncMock()

    async_playwright_instance = MagicMock()
    async_playwright_instance.start = AsyncMock(return_value=playwright_mock)

    return async_playwright_instance, playwright_mock, browser_mock, context_mock


@pytest.fixture
def no_delays(mocker: MockerFixture) -> AsyncMock:
    """Replace human-like delays in the session with an instant coroutine."""
    return mocker.patch("listing_harvester.session.human_delay", new=AsyncMock())


# Pytest configuration
def pytest_configure(config: Any) -> None:
    """Configure pytest with custom markers and settings."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests requiring full stack",
    )
