"""Tests for PATH and TAG selector resolution."""

import pytest

from listing_harvester.selectors import (
    SECTION_CATALOGUE,
    Section,
    SectionSpec,
    find_key,
    find_tagged,
    path,
    resolve_segments,
    tag,
)

PAYLOAD = {
    "data": {
        "meta": {"listingTitle": None},
        "deep": [{"listingTitle": "Found"}, {"listingTitle": "Second"}],
        "previewImages": [{"id": "a"}, {"id": "b"}],
        "sections": [
            {"section": {"__typename": "Other", "value": 0}},
            {"section": {"__typename": "LocationSection", "lat": 1.0}},
            {"section": {"__typename": "LocationSection", "lat": 2.0}},
        ],
    }
}


class TestSearchHelpers:
    """Test suite for the depth-first search helpers."""

    def test_find_key_skips_null_values(self) -> None:
        assert find_key(PAYLOAD, "listingTitle") == "Found"

    def test_find_key_missing(self) -> None:
        assert find_key(PAYLOAD, "nope") is None

    def test_find_tagged_returns_first_match(self) -> None:
        assert find_tagged(PAYLOAD, "section", "LocationSection") == {
            "__typename": "LocationSection",
            "lat": 1.0,
        }

    def test_resolve_segments_indexes_lists(self) -> None:
        assert resolve_segments({"a": [{"b": 1}]}, ["a", "0", "b"]) == 1
        assert resolve_segments({"a": [{"b": 1}]}, ["a", "5", "b"]) is None
        assert resolve_segments({"a": "scalar"}, ["a", "b"]) is None


class TestSelector:
    """Test suite for Selector.resolve."""

    def test_path_with_index(self) -> None:
        assert path("previewImages.1").resolve(PAYLOAD) == {"id": "b"}

    def test_tag_in_custom_container(self) -> None:
        payload = {"x": {"reviews": {"__typename": "PdpReviews", "reviews": []}}}
        assert tag("PdpReviews", container="reviews").resolve(payload) == {
            "__typename": "PdpReviews",
            "reviews": [],
        }

    def test_unmatched_selectors_resolve_to_none(self) -> None:
        assert path("missing.path").resolve(PAYLOAD) is None
        assert tag("MissingSection").resolve(PAYLOAD) is None

    def test_string_form(self) -> None:
        assert str(path("a.b")) == "path:a.b"
        assert str(tag("HeroSection")) == "tag:section:HeroSection"

    def test_selectors_are_immutable(self) -> None:
        selector = path("a")
        with pytest.raises(Exception):
            selector.operand = "b"  # type: ignore[misc]


class TestSectionCatalogue:
    """Test suite for the section catalogue."""

    def test_every_section_is_catalogued_once(self) -> None:
        names = [spec.section for spec in SECTION_CATALOGUE]
        assert sorted(names) == sorted(Section)

    def test_only_enrichment_sections_are_optional(self) -> None:
        optional = {spec.section for spec in SECTION_CATALOGUE if not spec.required}
        assert optional == {Section.SLEEPING, Section.ACCESSIBILITY, Section.MIN_NIGHTS}

    @pytest.mark.parametrize(
        ("expects", "value", "accepted"),
        [
            ("object", {}, True),
            ("object", [], False),
            ("array", [], True),
            ("string", "", False),
            ("string", "title", True),
            ("number", 2, True),
            ("number", True, False),
        ],
    )
    def test_shape_check(self, expects: str, value: object, accepted: bool) -> None:
        spec = SectionSpec(section=Section.TITLE, selector=path("x"), expects=expects)
        assert spec.accepts(value) is accepted
