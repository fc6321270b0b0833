"""External enrichment collaborators.

The core pipeline depends only on the ``TextGenerator`` and
``AttractionsLookup`` protocols. Concrete implementations are built from
configuration; when credentials are absent ``None`` is returned and the
pipeline skips the enrichment.
"""

from typing import Protocol

import httpx
from openai import AsyncOpenAI, OpenAIError

from config.settings import GlobalConfig, get_config
from listing_harvester.exceptions import EnrichmentFailedError
from listing_harvester.logger import get_logger
from listing_harvester.models import Attraction, AttractionLocation

log = get_logger(__name__)


class TextGenerator(Protocol):
    async def generate(self, prompt: str) -> str: ...


class AttractionsLookup(Protocol):
    async def nearby(self, latitude: float, longitude: float) -> list[Attraction]: ...


class OpenAITextGenerator:
    """Text generation through the OpenAI chat completions API."""

    def __init__(self, api_key: str, model: str, client: AsyncOpenAI | None = None) -> None:
        self.model = model
        self.client = client or AsyncOpenAI(api_key=api_key)

    async def generate(self, prompt: str) -> str:
        """Return the model's text for ``prompt``.

        Raises:
            EnrichmentFailedError: On API errors or an empty completion.
        """
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
            )
        except OpenAIError as exc:
            raise EnrichmentFailedError("openai", str(exc)) from exc

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise EnrichmentFailedError("openai", "empty completion")
        log.debug("Text generated", model=self.model, length=len(content))
        return content.strip()


class PlacesAttractionsLookup:
    """Nearby points of interest from the Google Places (New) nearby search.

    Searches a 3km radius first and widens to 10km when fewer than three
    places come back.
    """

    SEARCH_URL = "https://places.googleapis.com/v1/places:searchNearby"
    PHOTO_URL = "https://places.googleapis.com/v1/{name}/media?key={key}&maxHeightPx=400&maxWidthPx=600"
    FIELD_MASK = (
        "places.id,places.displayName,places.types,places.location,"
        "places.photos,places.editorialSummary,places.formattedAddress"
    )
    INCLUDED_TYPES = (
        "tourist_attraction",
        "park",
        "restaurant",
        "cafe",
        "museum",
        "historical_place",
        "shopping_mall",
        "bar",
        "cultural_landmark",
        "art_gallery",
    )
    RADII_METERS = (3000, 10000)
    MIN_RESULTS = 3
    MAX_PHOTOS = 3

    def __init__(
        self,
        api_key: str,
        max_results: int = 5,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.max_results = max_results
        self._client = client

    async def nearby(self, latitude: float, longitude: float) -> list[Attraction]:
        if self._client is not None:
            return await self._search(self._client, latitude, longitude)
        async with httpx.AsyncClient(timeout=15.0) as client:
            return await self._search(client, latitude, longitude)

    async def _search(
        self, client: httpx.AsyncClient, latitude: float, longitude: float
    ) -> list[Attraction]:
        places: list[dict] = []
        for radius in self.RADII_METERS:
            found = await self._fetch(client, latitude, longitude, radius)
            if len(found) > len(places):
                places = found
            if len(places) >= self.MIN_RESULTS:
                break
        return [self._to_attraction(place) for place in places[: self.max_results]]

    async def _fetch(
        self, client: httpx.AsyncClient, latitude: float, longitude: float, radius: int
    ) -> list[dict]:
        body = {
            "locationRestriction": {
                "circle": {"center": {"latitude": latitude, "longitude": longitude}, "radius": radius}
            },
            "includedTypes": list(self.INCLUDED_TYPES),
            "maxResultCount": self.max_results,
            "languageCode": "en",
        }
        headers = {"X-Goog-Api-Key": self.api_key, "X-Goog-FieldMask": self.FIELD_MASK}
        try:
            response = await client.post(self.SEARCH_URL, json=body, headers=headers)
            response.raise_for_status()
            places = response.json().get("places", [])
        except (httpx.HTTPError, ValueError) as exc:
            log.warning("Nearby places search failed", radius=radius, error=str(exc))
            return []
        return [place for place in places if isinstance(place, dict)]

    def _to_attraction(self, place: dict) -> Attraction:
        description = (place.get("editorialSummary") or {}).get("text") or ""
        if not description.strip():
            address = place.get("formattedAddress")
            description = (
                f"Located at {address}. This is a notable place in the area."
                if address
                else "No description available. This is a point of interest near the property."
            )
        location = place.get("location") or {}
        photos = [
            self.PHOTO_URL.format(name=photo["name"], key=self.api_key)
            for photo in (place.get("photos") or [])[: self.MAX_PHOTOS]
            if isinstance(photo, dict) and photo.get("name")
        ]
        return Attraction(
            id=str(place.get("id") or ""),
            name=(place.get("displayName") or {}).get("text") or "Unknown",
            types=list(place.get("types") or []),
            location=AttractionLocation(
                lat=float(location.get("latitude", 0.0)),
                lng=float(location.get("longitude", 0.0)),
            ),
            description=description,
            photos=photos,
        )


def build_text_generator(config: GlobalConfig | None = None) -> TextGenerator | None:
    config = config or get_config()
    if not config.openai_api_key:
        log.info("No text generator configured")
        return None
    return OpenAITextGenerator(api_key=config.openai_api_key, model=config.openai_model)


def build_attractions_lookup(config: GlobalConfig | None = None) -> AttractionsLookup | None:
    config = config or get_config()
    if not config.google_places_api_key:
        log.info("No attractions lookup configured")
        return None
    return PlacesAttractionsLookup(
        api_key=config.google_places_api_key, max_results=config.attractions_max_results
    )
