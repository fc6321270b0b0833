"""Typed selectors for the undocumented listing payload.

A selector is either a PATH (dotted key path whose first segment is located
anywhere in the payload) or a TAG (the first object stored under a container
key whose ``__typename`` equals the tag). The section catalogue below is the
single place to update when the upstream payload shape changes.
"""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict

TYPENAME_KEY = "__typename"


class SelectorKind(StrEnum):
    PATH = "path"
    TAG = "tag"


def find_key(data: Any, key: str) -> Any:
    """Depth-first search for the first non-null value stored under ``key``."""
    if isinstance(data, dict):
        if data.get(key) is not None:
            return data[key]
        for value in data.values():
            found = find_key(value, key)
            if found is not None:
                return found
    elif isinstance(data, list):
        for item in data:
            found = find_key(item, key)
            if found is not None:
                return found
    return None


def find_tagged(data: Any, container: str, typename: str) -> dict[str, Any] | None:
    """Depth-first search for the first ``container`` object with a matching ``__typename``."""
    if isinstance(data, dict):
        candidate = data.get(container)
        if isinstance(candidate, dict) and candidate.get(TYPENAME_KEY) == typename:
            return candidate
        for value in data.values():
            found = find_tagged(value, container, typename)
            if found is not None:
                return found
    elif isinstance(data, list):
        for item in data:
            found = find_tagged(item, container, typename)
            if found is not None:
                return found
    return None


def resolve_segments(data: Any, segments: list[str]) -> Any:
    """Resolve segments directly; integer segments index into lists."""
    current = data
    for segment in segments:
        if isinstance(current, dict):
            current = current.get(segment)
        elif isinstance(current, list) and segment.isdigit():
            index = int(segment)
            current = current[index] if index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


class Selector(BaseModel):
    """A declarative locator for one payload section."""

    model_config = ConfigDict(frozen=True)

    kind: SelectorKind
    operand: str
    container: str = "section"

    def resolve(self, payload: Any) -> Any:
        """Return the located value or None when any part is absent."""
        match self.kind:
            case SelectorKind.PATH:
                first, *rest = self.operand.split(".")
                return resolve_segments(find_key(payload, first), rest)
            case SelectorKind.TAG:
                return find_tagged(payload, self.container, self.operand)

    def __str__(self) -> str:
        if self.kind is SelectorKind.TAG:
            return f"tag:{self.container}:{self.operand}"
        return f"path:{self.operand}"


def path(expression: str) -> Selector:
    return Selector(kind=SelectorKind.PATH, operand=expression)


def tag(typename: str, container: str = "section") -> Selector:
    return Selector(kind=SelectorKind.TAG, operand=typename, container=container)


class Section(StrEnum):
    """Named payload sections consumed by the domain mapper."""

    TITLE = "title"
    SEO_FEATURES = "seo_features"
    SUBTITLE = "subtitle"
    HERO = "hero"
    DATA_LAYER = "data_layer"
    HOUSE_RULES_SUMMARY = "house_rules_summary"
    HOUSE_RULES_SECTIONS = "house_rules_sections"
    SAFETY_SUMMARY = "safety_summary"
    SAFETY_SECTIONS = "safety_sections"
    AMENITIES_HIGHLIGHTS = "amenities_highlights"
    AMENITIES_ALL = "amenities_all"
    GALLERY_TOUR = "gallery_tour"
    CATEGORY_RATINGS = "category_ratings"
    AVAILABILITY = "availability"
    HOST = "host"
    HIGHLIGHTS = "highlights"
    DESCRIPTION = "description"
    LOCATION = "location"
    GALLERY_PHOTOS = "gallery_photos"
    REVIEWS = "reviews"
    SLEEPING = "sleeping"
    ACCESSIBILITY = "accessibility"
    MIN_NIGHTS = "min_nights"


class SectionSpec(BaseModel):
    """Catalogue entry: where a section lives, its JSON type, and whether it is mandatory.

    ``default`` is used for optional sections that are absent.
    """

    model_config = ConfigDict(frozen=True)

    section: Section
    selector: Selector
    expects: str = "object"
    required: bool = True
    default: Any = None

    def accepts(self, value: Any) -> bool:
        match self.expects:
            case "object":
                return isinstance(value, dict)
            case "array":
                return isinstance(value, list)
            case "string":
                return isinstance(value, str) and bool(value)
            case "number":
                return isinstance(value, int | float) and not isinstance(value, bool)
        return value is not None


SECTION_CATALOGUE: tuple[SectionSpec, ...] = (
    SectionSpec(section=Section.TITLE, selector=path("listingTitle"), expects="string"),
    SectionSpec(section=Section.SEO_FEATURES, selector=path("seoFeatures")),
    SectionSpec(section=Section.SUBTITLE, selector=path("sbuiData")),
    SectionSpec(section=Section.HERO, selector=path("previewImages.0")),
    SectionSpec(section=Section.DATA_LAYER, selector=path("stayListingData")),
    SectionSpec(section=Section.HOUSE_RULES_SUMMARY, selector=path("houseRules"), expects="array"),
    SectionSpec(
        section=Section.HOUSE_RULES_SECTIONS, selector=path("houseRulesSections"), expects="array"
    ),
    SectionSpec(
        section=Section.SAFETY_SUMMARY, selector=path("previewSafetyAndProperties"), expects="array"
    ),
    SectionSpec(
        section=Section.SAFETY_SECTIONS,
        selector=path("safetyAndPropertiesSections"),
        expects="array",
    ),
    SectionSpec(
        section=Section.AMENITIES_HIGHLIGHTS,
        selector=path("previewAmenitiesGroups.0.amenities"),
        expects="array",
    ),
    SectionSpec(
        section=Section.AMENITIES_ALL, selector=path("seeAllAmenitiesGroups"), expects="array"
    ),
    SectionSpec(section=Section.GALLERY_TOUR, selector=path("roomTours"), expects="array"),
    SectionSpec(section=Section.CATEGORY_RATINGS, selector=path("categoryRatings")),
    SectionSpec(section=Section.AVAILABILITY, selector=path("calendarMonths"), expects="array"),
    SectionSpec(section=Section.HOST, selector=tag("MeetYourHostSection")),
    SectionSpec(section=Section.HIGHLIGHTS, selector=tag("PdpHighlightsSection")),
    SectionSpec(section=Section.DESCRIPTION, selector=tag("PdpDescriptionSection")),
    SectionSpec(section=Section.LOCATION, selector=tag("LocationSection")),
    SectionSpec(section=Section.GALLERY_PHOTOS, selector=tag("PhotoTourModalSection")),
    SectionSpec(section=Section.REVIEWS, selector=tag("PdpReviews", container="reviews")),
    SectionSpec(
        section=Section.SLEEPING,
        selector=tag("SleepingArrangementSection"),
        required=False,
        default={},
    ),
    SectionSpec(
        section=Section.ACCESSIBILITY,
        selector=path("accessibilityFeatureGroups"),
        expects="array",
        required=False,
        default=[],
    ),
    SectionSpec(
        section=Section.MIN_NIGHTS,
        selector=path("minNights"),
        expects="number",
        required=False,
        default=None,
    ),
)
