"""Refined enrichment of a mapped listing.

Produces the branding identity, a short list of top guest reviews and, for
short descriptions, an enriched description. Text generation goes through
the ``TextGenerator`` collaborator.
"""

import json
import re

from pydantic import ValidationError

from listing_harvester.collaborators import TextGenerator
from listing_harvester.exceptions import EnrichmentFailedError
from listing_harvester.logger import get_logger
from listing_harvester.models import (
    BrandingIdentity,
    ListingData,
    ListingMain,
    RefinedData,
    Review,
    TopReview,
)

log = get_logger(__name__)

SHORT_DESCRIPTION_CHARS = 150
TOP_REVIEWS_LIMIT = 5

BRANDING_PROMPT = """You are a hospitality branding expert. Create a branding identity for this vacation rental.

Title: {title}
Subtitle: {subtitle}
Description: {description}
Tags: {tags}

Respond with JSON only, using exactly these keys:
{{"brandName": "...", "tagline": "...", "brandVibe": "...", "keywords": ["...", "..."]}}"""

DESCRIPTION_PROMPT = """You are a vacation rental copywriter. The listing description below is too short.
Rewrite it into an engaging description of at least 300 words, using only facts from the
listing and the guest reviews. Return plain text only.

Title: {title}
Subtitle: {subtitle}
Description: {description}
Highlights: {highlights}
Guest reviews: {reviews}"""

INTRO_PROMPT = """You are a vacation rental copywriter. Write one inviting sentence of 15 to 20 words
introducing this property. Return the sentence only.

Title: {title}
Description: {description}
Tags: {tags}"""

_JSON_BLOCK = re.compile(r"\{.*\}", re.DOTALL)


def parse_branding(text: str) -> BrandingIdentity:
    """Parse the generator's JSON answer, tolerating surrounding prose or fences.

    Raises:
        EnrichmentFailedError: When no valid branding object can be read.
    """
    match = _JSON_BLOCK.search(text)
    if not match:
        raise EnrichmentFailedError("branding", "no JSON object in response")
    try:
        raw = json.loads(match.group())
        return BrandingIdentity(
            brand_name=raw["brandName"],
            tagline=raw["tagline"],
            brand_vibe=raw["brandVibe"],
            keywords=[str(keyword) for keyword in raw.get("keywords") or []],
        )
    except (ValueError, KeyError, TypeError, ValidationError) as exc:
        raise EnrichmentFailedError("branding", str(exc)) from exc


def select_top_reviews(reviews: list[Review], limit: int = TOP_REVIEWS_LIMIT) -> list[TopReview]:
    """Highest rated reviews with text, longer comments first on ties."""
    candidates = [review for review in reviews if review.comments.strip()]
    candidates.sort(key=lambda review: (review.rating, len(review.comments)), reverse=True)
    return [
        TopReview(text=review.comments.strip(), name=review.reviewer.name, photo=review.reviewer.photo)
        for review in candidates[:limit]
    ]


def top_reviews_text(top_reviews: list[TopReview]) -> str:
    return "\n".join(f'"{review.text}"' for review in top_reviews)


async def generate_intro_text(listing: ListingMain, generator: TextGenerator | None) -> str:
    """One-sentence introduction; empty when no generator is configured or it fails."""
    if generator is None:
        return ""
    prompt = INTRO_PROMPT.format(
        title=listing.title, description=listing.description, tags=", ".join(listing.tags)
    )
    try:
        return (await generator.generate(prompt)).strip().strip('"')
    except EnrichmentFailedError as exc:
        log.warning("Intro text generation failed", error_type=exc.label, error=exc.message)
        return ""


async def get_refined_data(listing_data: ListingData, generator: TextGenerator) -> RefinedData | None:
    """Build the refined record for a listing.

    Args:
        listing_data: The mapped listing.
        generator: Text-generation collaborator.

    Returns:
        RefinedData, or None when the branding identity cannot be generated.
    """
    listing = listing_data.listing
    prompt = BRANDING_PROMPT.format(
        title=listing.title,
        subtitle=listing.subtitle,
        description=listing.description,
        tags=", ".join(listing.tags),
    )
    try:
        branding = parse_branding(await generator.generate(prompt))
    except EnrichmentFailedError as exc:
        log.error(
            "Branding identity generation failed",
            error_type=exc.label,
            listing_id=listing.id,
            error=exc.message,
        )
        return None
    log.info("Branding identity generated", listing_id=listing.id, brand_name=branding.brand_name)

    top_reviews = select_top_reviews(listing_data.reviews)

    description = None
    if len(listing.description) < SHORT_DESCRIPTION_CHARS:
        try:
            description = await generator.generate(
                DESCRIPTION_PROMPT.format(
                    title=listing.title,
                    subtitle=listing.subtitle,
                    description=listing.description,
                    highlights=", ".join(highlight.title for highlight in listing.highlights),
                    reviews=top_reviews_text(top_reviews),
                )
            )
        except EnrichmentFailedError as exc:
            log.warning("Description enrichment failed", error_type=exc.label, listing_id=listing.id)

    return RefinedData(branding=branding, top_reviews=top_reviews, description=description or None)
