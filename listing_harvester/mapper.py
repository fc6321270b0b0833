"""Domain mapping from located payload sections to ``ListingData``.

Every ``map_*`` function is total: it returns ``None`` when the section
shape cannot be mapped and never raises. ``map_listing_data`` assembles the
result and converts the first ``None`` into ``MappingFailedError``.
"""

import functools
import random
import re
from collections.abc import Callable, Iterable
from datetime import date, timedelta
from typing import Any, ParamSpec, TypeVar
from urllib.parse import urlparse

from pydantic import ValidationError

from listing_harvester.exceptions import MappingFailedError
from listing_harvester.extractor import SectionBundle
from listing_harvester.logger import get_logger
from listing_harvester.models import (
    AccessibilityFeature,
    Amenity,
    AmenityCategory,
    Attraction,
    Availability,
    CategoryRatings,
    CoHost,
    Extra,
    Gallery,
    GalleryPhoto,
    Highlight,
    Host,
    HouseRules,
    ListingData,
    ListingMain,
    Location,
    LocationDetail,
    Review,
    Reviewer,
    RuleItem,
    RulesSection,
    SafetyProperty,
    SleepingArrangement,
    TourItem,
    UnavailableRange,
)
from listing_harvester.selectors import TYPENAME_KEY, Section, find_key

log = get_logger(__name__)

P = ParamSpec("P")
R = TypeVar("R")

MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)
PERIOD_PATTERN = re.compile(rf"^({'|'.join(MONTH_NAMES)}) \d{{4}}$")

CATEGORY_RATING_FIELDS = {
    "accuracy": "accuracyRating",
    "check_in": "checkinRating",
    "cleanliness": "cleanlinessRating",
    "communication": "communicationRating",
    "location": "locationRating",
    "value": "valueRating",
    "guest_satisfaction": "guestSatisfactionOverall",
}

INTRO_ADJECTIVES = (
    "Stunning", "Cozy", "Charming", "Modern", "Elegant", "Beautiful", "Inviting",
    "Stylish", "Comfortable", "Luxurious", "Welcoming", "Gorgeous", "Lovely",
    "Vibrant", "Delightful", "Sleek", "Chic", "Classy", "Trendy", "Exquisite",
    "Refined", "Attractive", "Enchanting", "Polished", "Captivating", "Fabulous",
    "Alluring", "Sophisticated", "Splendid", "Ravishing",
)

US_STATES = {
    "AL": "Alabama", "AK": "Alaska", "AZ": "Arizona", "AR": "Arkansas",
    "CA": "California", "CO": "Colorado", "CT": "Connecticut", "DE": "Delaware",
    "DC": "District of Columbia", "FL": "Florida", "GA": "Georgia", "HI": "Hawaii",
    "ID": "Idaho", "IL": "Illinois", "IN": "Indiana", "IA": "Iowa", "KS": "Kansas",
    "KY": "Kentucky", "LA": "Louisiana", "ME": "Maine", "MD": "Maryland",
    "MA": "Massachusetts", "MI": "Michigan", "MN": "Minnesota", "MS": "Mississippi",
    "MO": "Missouri", "MT": "Montana", "NE": "Nebraska", "NV": "Nevada",
    "NH": "New Hampshire", "NJ": "New Jersey", "NM": "New Mexico", "NY": "New York",
    "NC": "North Carolina", "ND": "North Dakota", "OH": "Ohio", "OK": "Oklahoma",
    "OR": "Oregon", "PA": "Pennsylvania", "RI": "Rhode Island", "SC": "South Carolina",
    "SD": "South Dakota", "TN": "Tennessee", "TX": "Texas", "UT": "Utah",
    "VT": "Vermont", "VA": "Virginia", "WA": "Washington", "WV": "West Virginia",
    "WI": "Wisconsin", "WY": "Wyoming", "PR": "Puerto Rico",
}

COUNTRY_NAMES = {
    "AE": "United Arab Emirates", "AR": "Argentina", "AT": "Austria", "AU": "Australia",
    "BE": "Belgium", "BG": "Bulgaria", "BR": "Brazil", "CA": "Canada",
    "CH": "Switzerland", "CL": "Chile", "CN": "China", "CO": "Colombia",
    "CR": "Costa Rica", "CY": "Cyprus", "CZ": "Czechia", "DE": "Germany",
    "DK": "Denmark", "EE": "Estonia", "EG": "Egypt", "ES": "Spain", "FI": "Finland",
    "FR": "France", "GB": "United Kingdom", "GR": "Greece", "HR": "Croatia",
    "HU": "Hungary", "ID": "Indonesia", "IE": "Ireland", "IL": "Israel", "IN": "India",
    "IS": "Iceland", "IT": "Italy", "JP": "Japan", "KE": "Kenya", "KR": "South Korea",
    "LT": "Lithuania", "LU": "Luxembourg", "LV": "Latvia", "MA": "Morocco",
    "ME": "Montenegro", "MT": "Malta", "MX": "Mexico", "MY": "Malaysia",
    "NL": "Netherlands", "NO": "Norway", "NZ": "New Zealand", "PE": "Peru",
    "PH": "Philippines", "PL": "Poland", "PT": "Portugal", "RO": "Romania",
    "RS": "Serbia", "SE": "Sweden", "SG": "Singapore", "SI": "Slovenia",
    "SK": "Slovakia", "TH": "Thailand", "TR": "Turkey", "UA": "Ukraine",
    "US": "United States", "VN": "Vietnam", "ZA": "South Africa",
}


def total(part: str) -> Callable[[Callable[P, R]], Callable[P, R | None]]:
    """Make a mapper return ``None`` instead of raising on malformed input."""

    def decorator(func: Callable[P, R]) -> Callable[P, R | None]:
        @functools.wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R | None:
            try:
                return func(*args, **kwargs)
            except (ValidationError, ValueError, TypeError, KeyError, AttributeError) as exc:
                log.warning("Section could not be mapped", part=part, error=str(exc))
                return None

        return wrapper

    return decorator


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return 0.0
    return float(value)


def _titles(items: Iterable[Any]) -> list[str]:
    return [_str(_dict(item).get("title")) for item in items]


@total("host")
def map_host(section: dict[str, Any]) -> Host | None:
    card = section.get("cardData")
    if not isinstance(card, dict):
        return None

    host_id = card.get("userId")
    name = _str(card.get("name"))
    if not host_id or not name:
        return None

    years = _dict(card.get("timeAsHost")).get("years")
    return Host(
        id=str(host_id),
        name=name,
        superhost=bool(card.get("isSuperhost")),
        photo=_str(card.get("profilePictureUrl")),
        reviews=int(_number(card.get("ratingCount"))),
        rating=_number(card.get("ratingAverage")),
        years_hosting=int(years) if isinstance(years, int | float) and years else None,
        about=_str(section.get("about")),
        highlights=_titles(_list(section.get("hostHighlights"))),
        details=[detail for detail in _list(section.get("hostDetails")) if isinstance(detail, str)],
        cohosts=[
            CoHost(
                id=str(cohost.get("userId") or ""),
                name=_str(cohost.get("name")),
                photo=_str(cohost.get("profilePictureUrl")),
            )
            for cohost in map(_dict, _list(section.get("cohosts")))
        ],
    )


def listing_id_from_url(url: str) -> str:
    """Final path segment of the canonical URL (``/rooms/30397973`` -> ``30397973``)."""
    return urlparse(url).path.rstrip("/").rsplit("/", 1)[-1]


@total("listing")
def map_listing(
    *,
    title: str,
    seo_features: dict[str, Any],
    subtitle_block: dict[str, Any],
    hero: dict[str, Any],
    data_layer: dict[str, Any],
    highlights_section: dict[str, Any],
    description_section: dict[str, Any],
    sleeping_section: dict[str, Any] | None = None,
) -> ListingMain | None:
    url = _str(seo_features.get("canonicalUrl"))
    listing_id = listing_id_from_url(url) if url else ""
    listing_type = _str(data_layer.get("propertyType"))
    privacy = _str(data_layer.get("roomType"))
    subtitle = _str(find_key(subtitle_block, "title"))
    hero_id = hero.get("id")
    capacity = _titles(_list(find_key(subtitle_block, "overviewItems")))
    highlights = [
        Highlight(title=_str(item.get("title")), subtitle=_str(item.get("subtitle")))
        for item in map(_dict, _list(highlights_section.get("highlights")))
    ]
    description = _str(_dict(description_section.get("htmlDescription")).get("htmlText"))

    required = {
        "url": url,
        "id": listing_id,
        "type": listing_type,
        "privacy": privacy,
        "subtitle": subtitle,
        "hero": hero_id,
        "capacity": capacity,
        "highlights": highlights,
        "description": description,
    }
    absent = [name for name, value in required.items() if not value]
    if absent:
        log.warning("Listing fields missing", fields=absent)
        return None

    sleeping = [
        SleepingArrangement(
            title=_str(item.get("title")),
            subtitle=_str(item.get("subtitle")),
            images=[str(_dict(image).get("id") or "") for image in _list(item.get("images"))],
        )
        for item in map(_dict, _list(_dict(sleeping_section).get("arrangementDetails")))
    ]

    tags = [tag for tag in _list(data_layer.get("categoryTags")) if isinstance(tag, str)]
    rate = _number(data_layer.get("averageDailyRateInUSD"))
    if not rate:
        log.debug("No average daily rate", listing_id=listing_id)

    return ListingMain(
        id=listing_id,
        url=url,
        type=listing_type,
        privacy=privacy,
        title=title,
        subtitle=subtitle,
        hero=str(hero_id),
        capacity=capacity,
        sleeping=sleeping,
        highlights=highlights,
        description=description,
        average_daily_rate=rate,
        tags=tags,
    )


@total("location")
def map_location(data_layer: dict[str, Any], section: dict[str, Any]) -> Location | None:
    city = _str(data_layer.get("city"))
    country = _str(data_layer.get("country"))
    lat, lng = section.get("lat"), section.get("lng")
    if not city or not country:
        return None
    if not isinstance(lat, int | float) or not isinstance(lng, int | float):
        return None

    details = []
    for item in map(_dict, _list(section.get("seeAllLocationDetails"))):
        title = _str(item.get("title"))
        content = _str(_dict(item.get("content")).get("htmlText"))
        if title and content:
            details.append(LocationDetail(title=title, content=content))

    return Location(
        city=city,
        state=_str(data_layer.get("state")),
        country=country,
        address=_str(section.get("address")) or None,
        address_title=_str(section.get("addressTitle")) or None,
        coordinates=f"{lat},{lng}",
        details=details,
        disclaimer=_str(section.get("locationDisclaimer")) or None,
    )


def _rules_sections(sections: list[Any]) -> list[RulesSection]:
    return [
        RulesSection(
            section=_str(section.get("title")),
            rules=[
                RuleItem(
                    title=_str(rule.get("title")),
                    subtitle=_str(rule.get("subtitle")),
                    html=_str(_dict(rule.get("html")).get("htmlText")) or None,
                )
                for rule in map(_dict, _list(section.get("items")))
            ],
        )
        for section in map(_dict, sections)
    ]


@total("house_rules")
def map_house_rules(summary: list[Any], sections: list[Any]) -> HouseRules | None:
    return HouseRules(house_rules_summary=_titles(summary), sections=_rules_sections(sections))


@total("safety_property")
def map_safety_property(summary: list[Any], sections: list[Any]) -> SafetyProperty | None:
    return SafetyProperty(
        safety_features_summary=_titles(summary), sections=_rules_sections(sections)
    )


@total("amenities")
def map_amenities(highlights: list[Any], groups: list[Any]) -> list[AmenityCategory] | None:
    top_titles = {title for title in _titles(highlights) if title}
    return [
        AmenityCategory(
            category=_str(group.get("title")),
            amenities=[
                Amenity(
                    title=_str(amenity.get("title")),
                    subtitle=_str(amenity.get("subtitle")),
                    top=_str(amenity.get("title")) in top_titles,
                    icon=_str(amenity.get("icon")),
                    available=bool(amenity.get("available")),
                )
                for amenity in map(_dict, _list(group.get("amenities")))
            ],
        )
        for group in map(_dict, groups)
    ]


@total("gallery")
def map_gallery(photos_section: dict[str, Any], tour: list[Any]) -> Gallery | None:
    media = photos_section.get("mediaItems")
    if not isinstance(media, list):
        return None

    photos = []
    for item in map(_dict, media):
        if item.get(TYPENAME_KEY) != "Image":
            continue
        metadata = _dict(item.get("imageMetadata"))
        aspect = item.get("aspectRatio")
        photos.append(
            GalleryPhoto(
                id=str(item.get("id") or ""),
                base_url=_str(item.get("baseUrl")),
                aspect_ratio=float(aspect) if isinstance(aspect, int | float) else None,
                orientation=_str(item.get("orientation")) or None,
                accessibility_label=_str(item.get("accessibilityLabel")) or None,
                caption=_str(metadata.get("localizedCaption")) or _str(metadata.get("caption")) or None,
            )
        )

    tour_items = [
        TourItem(
            title=_str(item.get("title")),
            photos=[str(image_id) for image_id in _list(item.get("imageIds"))],
            highlights=_titles(_list(item.get("highlights"))),
        )
        for item in map(_dict, tour)
    ]
    return Gallery(photos=photos, tour=tour_items)


def _parse_days(days: Iterable[Any]) -> list[tuple[date, dict[str, Any]]]:
    parsed: dict[date, dict[str, Any]] = {}
    for day in days:
        if not isinstance(day, dict):
            continue
        raw = day.get("calendarDate")
        try:
            when = date.fromisoformat(raw) if isinstance(raw, str) else None
        except ValueError:
            when = None
        if when is None:
            log.warning("Skipping day with unparseable date", calendar_date=raw)
            continue
        parsed.setdefault(when, day)
    return sorted(parsed.items())


def compress_availability(days: Iterable[Any]) -> list[UnavailableRange]:
    """Run-length encode unavailable days into ranges.

    Days are sorted chronologically first; duplicated dates keep their first
    record. A day counts as unavailable unless ``available`` is ``True``.
    ``checkout`` comes from the day before a range opens, ``checkin`` from
    the day after it closes; a range still open at the end of the data gets
    ``checkin=False``. Missing dates end a range, which then also gets
    ``checkin=False``, and the next range opens with ``checkout=False``.

    Args:
        days: Day records with ``calendarDate``, ``available``,
            ``availableForCheckin`` and ``availableForCheckout``.

    Returns:
        Ranges sorted by start, pairwise non-overlapping, covering only days
        present in the input.
    """
    ordered = _parse_days(days)
    ranges: list[UnavailableRange] = []
    start: date | None = None
    checkout = False

    for index, (when, day) in enumerate(ordered):
        unavailable = day.get("available") is not True
        follows_previous = index > 0 and ordered[index - 1][0] + timedelta(days=1) == when

        if start is not None and not follows_previous:
            ranges.append(
                UnavailableRange(
                    start=start, end=ordered[index - 1][0], checkout=checkout, checkin=False
                )
            )
            start = None
            checkout = False

        if unavailable and start is None:
            start = when
            checkout = follows_previous and ordered[index - 1][1].get("availableForCheckout") is True
        elif not unavailable and start is not None:
            ranges.append(
                UnavailableRange(
                    start=start,
                    end=ordered[index - 1][0],
                    checkout=checkout,
                    checkin=day.get("availableForCheckin") is True,
                )
            )
            start = None
            checkout = False

    if start is not None:
        ranges.append(
            UnavailableRange(start=start, end=ordered[-1][0], checkout=checkout, checkin=False)
        )

    return ranges


@total("availability")
def map_availability(months: list[Any], min_nights: Any = None) -> Availability | None:
    days: list[Any] = []
    for month in months:
        month_days = _dict(month).get("days")
        if isinstance(month_days, list):
            days.extend(month_days)
        else:
            log.warning("Calendar month without days")

    nights = int(min_nights) if isinstance(min_nights, int | float) and min_nights >= 1 else 1
    return Availability(min_nights=nights, booked=compress_availability(days))


@total("category_ratings")
def map_category_ratings(ratings: dict[str, Any]) -> CategoryRatings | None:
    values = {field: ratings.get(source) for field, source in CATEGORY_RATING_FIELDS.items()}
    missing = [field for field, value in values.items() if not _number(value)]
    if missing:
        log.warning("Category ratings incomplete", fields=missing)
        return None
    return CategoryRatings(**{field: _number(value) for field, value in values.items()})


def normalize_period(period: Any, today: date | None = None) -> str:
    """Keep ``"Month YYYY"`` periods; anything else becomes the current month."""
    if isinstance(period, str) and PERIOD_PATTERN.match(period.strip()):
        return period.strip()
    today = today or date.today()
    return f"{MONTH_NAMES[today.month - 1]} {today.year}"


@total("reviews")
def map_reviews(section: dict[str, Any], today: date | None = None) -> list[Review] | None:
    items = section.get("reviews")
    if not isinstance(items, list):
        return None

    reviews = []
    for item in map(_dict, items):
        language = _str(item.get("language"))
        source = item if language == "en" else _dict(item.get("localizedReview"))
        reviewer = _dict(item.get("reviewer"))
        reviews.append(
            Review(
                id=str(item.get("id") or ""),
                language=language,
                comments=_str(source.get("comments")),
                rating=_number(item.get("rating")),
                highlight=_str(item.get("reviewHighlight")),
                period=normalize_period(item.get("localizedDate"), today),
                reviewer=Reviewer(
                    id=str(reviewer.get("id") or ""),
                    name=_str(reviewer.get("firstName")),
                    photo=_str(reviewer.get("pictureUrl")),
                ),
                response=_str(source.get("response")),
                created_at=_str(item.get("createdAt")),
            )
        )
    return reviews


@total("accessibility")
def map_accessibility(groups: list[Any]) -> list[AccessibilityFeature] | None:
    features = []
    for group in map(_dict, groups):
        for feature in map(_dict, _list(group.get("accessibilityFeatures"))):
            features.append(
                AccessibilityFeature(
                    type=_str(group.get("title")),
                    title=_str(feature.get("title")),
                    subtitle=_str(feature.get("subtitle")),
                    available=feature.get("available") is True,
                    images=[
                        url
                        for url in (_str(_dict(image).get("baseUrl")) for image in _list(feature.get("images")))
                        if url
                    ],
                )
            )
    return features


def find_pets_allowed(data: Any) -> bool | None:
    """Search for a ``petsAllowed`` flag with pet context.

    A flag on a ``BookItSection`` or on an object carrying ``petDetails`` or a
    pet-related ``guestDisclaimer`` is accepted; the first match wins.
    """
    if isinstance(data, list):
        for item in data:
            found = find_pets_allowed(item)
            if found is not None:
                return found
        return None
    if not isinstance(data, dict):
        return None

    flag = data.get("petsAllowed")
    if isinstance(flag, bool):
        disclaimer = data.get("guestDisclaimer")
        if (
            data.get(TYPENAME_KEY) == "BookItSection"
            or "petDetails" in data
            or (isinstance(disclaimer, str) and "pet" in disclaimer.lower())
        ):
            return flag

    for value in data.values():
        found = find_pets_allowed(value)
        if found is not None:
            return found
    return None


def build_intro_title(
    listing_type: str,
    city: str,
    state: str,
    country: str,
    rng: random.Random | None = None,
) -> str | None:
    """``"{Adjective} {Type} in {city}, {state or country name}"``.

    US listings use the full state name; other countries their English name.
    Unknown codes are used as given.
    """
    if not listing_type or not city:
        return None

    adjective = (rng or random).choice(INTRO_ADJECTIVES)
    kind = re.sub(r"\b\w", lambda match: match.group().upper(), listing_type)
    code = country.strip().upper()

    if code == "US":
        region = US_STATES.get(state.strip().upper(), state.strip()) or COUNTRY_NAMES["US"]
    else:
        region = COUNTRY_NAMES.get(code, country.strip())

    if not region:
        return None
    return f"{adjective} {kind} in {city}, {region}"


def _require(part: str, value: R | None) -> R:
    if value is None:
        log.error("Mapping failed", error_type="MappingFailed", part=part)
        raise MappingFailedError(part=part)
    return value


def map_listing_data(
    bundle: SectionBundle,
    attractions: list[Attraction] | None = None,
    intro_text: str = "",
    rng: random.Random | None = None,
) -> ListingData:
    """Assemble ``ListingData`` from located sections.

    Raises:
        MappingFailedError: Names the first part whose mapper returned None.
    """
    host = _require("host", map_host(bundle[Section.HOST]))
    listing = _require(
        "listing",
        map_listing(
            title=bundle[Section.TITLE],
            seo_features=bundle[Section.SEO_FEATURES],
            subtitle_block=bundle[Section.SUBTITLE],
            hero=bundle[Section.HERO],
            data_layer=bundle[Section.DATA_LAYER],
            highlights_section=bundle[Section.HIGHLIGHTS],
            description_section=bundle[Section.DESCRIPTION],
            sleeping_section=bundle.get(Section.SLEEPING),
        ),
    )
    location = _require(
        "location", map_location(bundle[Section.DATA_LAYER], bundle[Section.LOCATION])
    )
    house_rules = _require(
        "house_rules",
        map_house_rules(bundle[Section.HOUSE_RULES_SUMMARY], bundle[Section.HOUSE_RULES_SECTIONS]),
    )
    safety_property = _require(
        "safety_property",
        map_safety_property(bundle[Section.SAFETY_SUMMARY], bundle[Section.SAFETY_SECTIONS]),
    )
    amenities = _require(
        "amenities",
        map_amenities(bundle[Section.AMENITIES_HIGHLIGHTS], bundle[Section.AMENITIES_ALL]),
    )
    gallery = _require(
        "gallery", map_gallery(bundle[Section.GALLERY_PHOTOS], bundle[Section.GALLERY_TOUR])
    )
    availability = _require(
        "availability",
        map_availability(bundle[Section.AVAILABILITY], bundle.get(Section.MIN_NIGHTS)),
    )
    category_ratings = _require(
        "category_ratings", map_category_ratings(bundle[Section.CATEGORY_RATINGS])
    )
    reviews = _require("reviews", map_reviews(bundle[Section.REVIEWS]))
    accessibility = map_accessibility(bundle.get(Section.ACCESSIBILITY) or []) or []

    pets = find_pets_allowed(bundle.raw)
    if pets is None:
        log.warning("No pets-allowed flag found", error_type="OptionalSectionMissing")

    intro_title = _require(
        "extra",
        build_intro_title(listing.type, location.city, location.state, location.country, rng),
    )

    listing_data = ListingData(
        host=host,
        listing=listing,
        location=location,
        house_rules=house_rules,
        safety_property=safety_property,
        amenities=amenities,
        gallery=gallery,
        availability=availability,
        category_ratings=category_ratings,
        reviews=reviews,
        pets=bool(pets),
        attractions=attractions or [],
        accessibility=accessibility,
        extra=Extra(intro_title=intro_title, intro_text=intro_text),
    )
    log.info(
        "Listing mapped",
        listing_id=listing.id,
        reviews=len(reviews),
        booked_ranges=len(availability.booked),
    )
    return listing_data
