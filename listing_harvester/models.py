"""Normalized domain entities produced by the domain mapper.

``ListingData`` is the sole unit handed to persistence; ``listing.id`` is the
correlation key for every downstream table.
"""

from datetime import date

from pydantic import BaseModel, ConfigDict, Field, model_validator


class CoHost(BaseModel):
    id: str = ""
    name: str = ""
    photo: str = ""


class Host(BaseModel):
    """Host profile from the meet-your-host section."""

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    superhost: bool = False
    photo: str = ""
    reviews: int = 0
    rating: float = 0.0
    years_hosting: int | None = None
    about: str = ""
    highlights: list[str] = Field(default_factory=list)
    details: list[str] = Field(default_factory=list)
    cohosts: list[CoHost] = Field(default_factory=list)


class SleepingArrangement(BaseModel):
    title: str = ""
    subtitle: str = ""
    images: list[str] = Field(default_factory=list)


class Highlight(BaseModel):
    title: str = ""
    subtitle: str = ""


class ListingMain(BaseModel):
    """Core listing attributes.

    Attributes:
        id: Final path segment of the canonical URL.
        hero: Id of the first preview image.
        capacity: Overview items such as "4 guests" or "2 bedrooms".
    """

    id: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    type: str
    privacy: str
    title: str
    subtitle: str
    hero: str
    capacity: list[str]
    sleeping: list[SleepingArrangement] = Field(default_factory=list)
    highlights: list[Highlight]
    description: str
    average_daily_rate: float = 0.0
    tags: list[str] = Field(default_factory=list)


class LocationDetail(BaseModel):
    title: str
    content: str


class Location(BaseModel):
    city: str
    state: str = ""
    country: str
    address: str | None = None
    address_title: str | None = None
    coordinates: str
    details: list[LocationDetail] = Field(default_factory=list)
    disclaimer: str | None = None

    @property
    def latitude(self) -> float:
        return float(self.coordinates.split(",")[0])

    @property
    def longitude(self) -> float:
        return float(self.coordinates.split(",")[1])


class RuleItem(BaseModel):
    title: str = ""
    subtitle: str = ""
    html: str | None = None


class RulesSection(BaseModel):
    section: str = ""
    rules: list[RuleItem] = Field(default_factory=list)


class HouseRules(BaseModel):
    house_rules_summary: list[str]
    sections: list[RulesSection]


class SafetyProperty(BaseModel):
    safety_features_summary: list[str]
    sections: list[RulesSection]


class Amenity(BaseModel):
    title: str = ""
    subtitle: str = ""
    top: bool = False
    icon: str = ""
    available: bool = False


class AmenityCategory(BaseModel):
    category: str = ""
    amenities: list[Amenity] = Field(default_factory=list)


class GalleryPhoto(BaseModel):
    id: str
    base_url: str = ""
    aspect_ratio: float | None = None
    orientation: str | None = None
    accessibility_label: str | None = None
    caption: str | None = None


class TourItem(BaseModel):
    title: str = ""
    photos: list[str] = Field(default_factory=list)
    highlights: list[str] = Field(default_factory=list)


class Gallery(BaseModel):
    photos: list[GalleryPhoto]
    tour: list[TourItem]


class UnavailableRange(BaseModel):
    """A maximal run of unavailable days.

    ``checkout`` describes the day before ``start``; ``checkin`` the day after ``end``.
    """

    model_config = ConfigDict(frozen=True)

    start: date
    end: date
    checkin: bool
    checkout: bool

    @model_validator(mode="after")
    def check_order(self) -> "UnavailableRange":
        if self.end < self.start:
            raise ValueError("range end precedes start")
        return self


class Availability(BaseModel):
    min_nights: int = Field(default=1, ge=1)
    booked: list[UnavailableRange] = Field(default_factory=list)


class CategoryRatings(BaseModel):
    accuracy: float = Field(..., gt=0)
    check_in: float = Field(..., gt=0)
    cleanliness: float = Field(..., gt=0)
    communication: float = Field(..., gt=0)
    location: float = Field(..., gt=0)
    value: float = Field(..., gt=0)
    guest_satisfaction: float = Field(..., gt=0)


class Reviewer(BaseModel):
    id: str = ""
    name: str = ""
    photo: str = ""


class Review(BaseModel):
    id: str
    language: str = ""
    comments: str = ""
    rating: float = 0
    highlight: str = ""
    period: str
    reviewer: Reviewer
    response: str = ""
    created_at: str = ""


class AttractionLocation(BaseModel):
    lat: float
    lng: float


class Attraction(BaseModel):
    id: str = ""
    name: str
    types: list[str] = Field(default_factory=list)
    location: AttractionLocation
    description: str = ""
    photos: list[str] = Field(default_factory=list)


class AccessibilityFeature(BaseModel):
    type: str = ""
    title: str = ""
    subtitle: str = ""
    available: bool = False
    images: list[str] = Field(default_factory=list)


class Extra(BaseModel):
    intro_title: str
    intro_text: str = ""


class ListingData(BaseModel):
    """The normalized output of one extraction run."""

    host: Host
    listing: ListingMain
    location: Location
    house_rules: HouseRules
    safety_property: SafetyProperty
    amenities: list[AmenityCategory]
    gallery: Gallery
    availability: Availability
    category_ratings: CategoryRatings
    reviews: list[Review]
    pets: bool = False
    attractions: list[Attraction] = Field(default_factory=list)
    accessibility: list[AccessibilityFeature] = Field(default_factory=list)
    extra: Extra

    @property
    def listing_id(self) -> str:
        return self.listing.id


class BrandingIdentity(BaseModel):
    brand_name: str
    tagline: str
    brand_vibe: str
    keywords: list[str] = Field(default_factory=list)


class TopReview(BaseModel):
    text: str
    name: str = ""
    photo: str = ""


class RefinedData(BaseModel):
    """Secondary enrichment record persisted to ``refines`` keyed by listing id."""

    branding: BrandingIdentity
    top_reviews: list[TopReview] = Field(default_factory=list)
    description: str | None = None
