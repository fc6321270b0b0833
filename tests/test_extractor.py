"""Tests for section extraction from the aggregated payload.

Validates extract_sections including:
- Every catalogued section located in a realistic payload
- Fail-fast on the first missing required section
- Optional sections degrading to their defaults

Testing Philosophy:
    Test the extractor against realistic but controlled payload fixtures.
    Use the factory pattern to inject boundary conditions without duplication.
"""

from typing import Any, Callable

import pytest

from listing_harvester.aggregator import Endpoint
from listing_harvester.exceptions import RequiredSectionMissingError
from listing_harvester.extractor import extract_sections
from listing_harvester.selectors import SECTION_CATALOGUE, Section


class TestExtractSections:
    """Test suite for extract_sections."""

    def test_complete_payload_locates_every_section(
        self, payload_factory: Callable[..., dict[str, Any]]
    ) -> None:
        """Verify all sections are found and nothing is defaulted."""
        bundle = extract_sections(payload_factory())

        assert set(bundle.sections) == set(Section)
        assert bundle.missing_optional == []
        assert bundle[Section.TITLE] == "Sunny Villa near South Beach"
        assert bundle[Section.HERO] == {"id": "hero-1", "baseUrl": "https://img.test/hero.jpg"}
        assert bundle[Section.MIN_NIGHTS] == 2
        assert bundle[Section.HOST]["cardData"]["userId"] == "host-42"

    def test_missing_required_section_raises(
        self, payload_factory: Callable[..., dict[str, Any]]
    ) -> None:
        """Verify the error names the mandatory section that was not found."""
        payload = payload_factory(drop=("LocationSection",))

        with pytest.raises(RequiredSectionMissingError) as exc_info:
            extract_sections(payload)

        assert exc_info.value.section == Section.LOCATION.value
        assert exc_info.value.context["selector"] == "tag:section:LocationSection"
        assert exc_info.value.label == "RequiredSectionMissing"

    def test_first_missing_section_in_catalogue_order_is_reported(
        self, payload_factory: Callable[..., dict[str, Any]]
    ) -> None:
        """Verify fail-fast reports the earliest catalogue entry."""
        payload = payload_factory(drop=("LocationSection", "MeetYourHostSection"))

        with pytest.raises(RequiredSectionMissingError) as exc_info:
            extract_sections(payload)

        order = [spec.section for spec in SECTION_CATALOGUE]
        assert order.index(Section.HOST) < order.index(Section.LOCATION)
        assert exc_info.value.section == Section.HOST.value

    def test_missing_reviews_endpoint_is_required(
        self, payload_factory: Callable[..., dict[str, Any]]
    ) -> None:
        payload = payload_factory()
        del payload[Endpoint.REVIEWS.value]

        with pytest.raises(RequiredSectionMissingError) as exc_info:
            extract_sections(payload)

        assert exc_info.value.section == Section.REVIEWS.value

    def test_optional_sections_fall_back_to_defaults(
        self, payload_factory: Callable[..., dict[str, Any]]
    ) -> None:
        """Verify optional sections degrade without raising."""
        payload = payload_factory(drop=("SleepingArrangementSection", "AccessibilityFeaturesSection"))
        sections = payload[Endpoint.SECTIONS.value]["data"]["presentation"]["stayProductDetailPage"]
        del sections["sections"]["metadata"]["bookingPrefetchData"]

        bundle = extract_sections(payload)

        assert set(bundle.missing_optional) == {
            Section.SLEEPING,
            Section.ACCESSIBILITY,
            Section.MIN_NIGHTS,
        }
        assert bundle[Section.SLEEPING] == {}
        assert bundle[Section.ACCESSIBILITY] == []
        assert bundle[Section.MIN_NIGHTS] is None

    def test_wrong_shape_counts_as_missing(
        self, payload_factory: Callable[..., dict[str, Any]]
    ) -> None:
        """Verify a section of the wrong JSON type is treated as not found."""
        payload = payload_factory()
        metadata = payload[Endpoint.SECTIONS.value]["data"]["presentation"]["stayProductDetailPage"][
            "sections"
        ]["metadata"]
        metadata["listingTitle"] = {"unexpected": "object"}

        with pytest.raises(RequiredSectionMissingError) as exc_info:
            extract_sections(payload)

        assert exc_info.value.section == Section.TITLE.value

    def test_bundle_keeps_raw_payload(
        self, payload_factory: Callable[..., dict[str, Any]]
    ) -> None:
        payload = payload_factory()
        assert extract_sections(payload).raw == payload
