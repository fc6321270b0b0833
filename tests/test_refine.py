"""Tests for refined enrichment (branding, top reviews, descriptions)."""

import pytest

from listing_harvester.exceptions import EnrichmentFailedError
from listing_harvester.models import ListingData, Review, Reviewer
from listing_harvester.refine import (
    SHORT_DESCRIPTION_CHARS,
    generate_intro_text,
    get_refined_data,
    parse_branding,
    select_top_reviews,
)

BRANDING_JSON = (
    '{"brandName": "Casa Sol", "tagline": "Sun, sand and slow mornings", '
    '"brandVibe": "Relaxed coastal", "keywords": ["beach", "villa"]}'
)


class ScriptedGenerator:
    """TextGenerator returning queued answers; exceptions in the queue are raised."""

    def __init__(self, *answers: str | Exception) -> None:
        self.answers = list(answers)
        self.prompts: list[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        answer = self.answers.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer


def review(review_id: str, rating: float, comments: str) -> Review:
    return Review(
        id=review_id,
        rating=rating,
        comments=comments,
        period="March 2025",
        reviewer=Reviewer(name=f"Guest {review_id}"),
    )


class TestParseBranding:
    """Test suite for parse_branding."""

    def test_plain_json(self) -> None:
        branding = parse_branding(BRANDING_JSON)
        assert branding.brand_name == "Casa Sol"
        assert branding.keywords == ["beach", "villa"]

    def test_fenced_json_with_prose(self) -> None:
        branding = parse_branding(f"Here you go:\n```json\n{BRANDING_JSON}\n```")
        assert branding.brand_vibe == "Relaxed coastal"

    @pytest.mark.parametrize(
        "text",
        ["no json here", '{"brandName": "Only name"}', "{not: valid}"],
    )
    def test_invalid_answers(self, text: str) -> None:
        with pytest.raises(EnrichmentFailedError) as exc_info:
            parse_branding(text)
        assert exc_info.value.context["collaborator"] == "branding"


class TestSelectTopReviews:
    """Test suite for select_top_reviews."""

    def test_orders_by_rating_then_length(self) -> None:
        reviews = [
            review("a", 4, "Good"),
            review("b", 5, "Great"),
            review("c", 5, "Great stay, would return"),
            review("d", 5, "   "),
        ]

        top = select_top_reviews(reviews, limit=2)

        assert [item.text for item in top] == ["Great stay, would return", "Great"]
        assert top[0].name == "Guest c"

    def test_default_limit(self) -> None:
        reviews = [review(str(i), 5, f"Review {i}") for i in range(8)]
        assert len(select_top_reviews(reviews)) == 5


class TestGetRefinedData:
    """Test suite for get_refined_data."""

    @pytest.mark.asyncio
    async def test_short_description_is_enriched(self, listing_data: ListingData) -> None:
        assert len(listing_data.listing.description) < SHORT_DESCRIPTION_CHARS
        generator = ScriptedGenerator(BRANDING_JSON, "A much longer description.")

        refined = await get_refined_data(listing_data, generator)

        assert refined is not None
        assert refined.branding.brand_name == "Casa Sol"
        assert refined.description == "A much longer description."
        assert len(refined.top_reviews) == 2
        assert "Sunny Villa near South Beach" in generator.prompts[0]
        assert "Self check-in" in generator.prompts[1]

    @pytest.mark.asyncio
    async def test_long_description_is_kept(self, listing_data: ListingData) -> None:
        long_listing = listing_data.listing.model_copy(update={"description": "x" * SHORT_DESCRIPTION_CHARS})
        data = listing_data.model_copy(update={"listing": long_listing})
        generator = ScriptedGenerator(BRANDING_JSON)

        refined = await get_refined_data(data, generator)

        assert refined is not None
        assert refined.description is None
        assert len(generator.prompts) == 1

    @pytest.mark.asyncio
    async def test_branding_failure_yields_none(self, listing_data: ListingData) -> None:
        generator = ScriptedGenerator(EnrichmentFailedError("openai", "rate limited"))
        assert await get_refined_data(listing_data, generator) is None

    @pytest.mark.asyncio
    async def test_description_failure_is_tolerated(self, listing_data: ListingData) -> None:
        generator = ScriptedGenerator(BRANDING_JSON, EnrichmentFailedError("openai", "timeout"))

        refined = await get_refined_data(listing_data, generator)

        assert refined is not None
        assert refined.description is None


class TestIntroText:
    """Test suite for generate_intro_text."""

    @pytest.mark.asyncio
    async def test_without_generator(self, listing_data: ListingData) -> None:
        assert await generate_intro_text(listing_data.listing, None) == ""

    @pytest.mark.asyncio
    async def test_quotes_are_stripped(self, listing_data: ListingData) -> None:
        generator = ScriptedGenerator('"Wake up to ocean breezes in a sunny villa steps from the beach."\n')
        text = await generate_intro_text(listing_data.listing, generator)
        assert text == "Wake up to ocean breezes in a sunny villa steps from the beach."

    @pytest.mark.asyncio
    async def test_failure_gives_empty_text(self, listing_data: ListingData) -> None:
        generator = ScriptedGenerator(EnrichmentFailedError("openai", "down"))
        assert await generate_intro_text(listing_data.listing, generator) == ""
