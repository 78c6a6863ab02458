"""Shared fixtures: DataForSEO location rows, a scripted AI service and a mocked gateway."""

from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from seoopportunity.ai import AIResult
from seoopportunity.dataforseo_client import DataForSEOClient


class StubAI:
    """TextService that replays scripted results and records the prompts it got."""

    def __init__(self, *results: AIResult):
        self.results = list(results)
        self.prompts: list[str] = []

    async def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        temperature: float = 0.4,
        json_output: bool = False,
        max_output_tokens: Optional[int] = None,
    ) -> AIResult:
        self.prompts.append(prompt)
        if not self.results:
            return AIResult.failure("no scripted response")
        if len(self.results) == 1:
            return self.results[0]
        return self.results.pop(0)


def _row(name: str, code: int, location_type: str) -> dict:
    return {
        "location_code": code,
        "location_name": name,
        "location_code_parent": 2840,
        "country_iso_code": "US",
        "location_type": location_type,
    }


@pytest.fixture
def location_rows():
    """A slice of /keywords_data/google_ads/locations/us."""
    return [
        _row("United States", 2840, "Country"),
        _row("Texas", 21176, "State"),
        _row("Virginia", 21183, "State"),
        _row("West Virginia", 21185, "State"),
        _row("New York", 21167, "State"),
        _row("New Jersey", 21164, "State"),
        _row("California", 21137, "State"),
        _row("Kansas", 21151, "State"),
        _row("Arkansas", 21135, "State"),
        _row("Austin,Texas,United States", 1026201, "City"),
        _row("Dallas,Texas,United States", 1026339, "City"),
        _row("Richmond,Virginia,United States", 1027236, "City"),
        _row("Charleston,West Virginia,United States", 1027744, "City"),
        _row("New York,New York,United States", 1023191, "City"),
        _row("Los Angeles,California,United States", 1013962, "City"),
        _row("Springfield,Nowhere,United States", 9999999, "City"),
    ]


@pytest.fixture
def failing_ai():
    """AI service that is never available."""
    return StubAI(AIResult.failure("Gemini API key not configured"))


@pytest.fixture
def mock_client():
    """DataForSEOClient with every network method replaced by an AsyncMock."""
    client = MagicMock(spec=DataForSEOClient)
    client.get_locations = AsyncMock(return_value=[])
    client.get_search_volume = AsyncMock(return_value=[])
    client.get_ranked_keywords = AsyncMock(return_value=[])
    client.get_competitor_domains = AsyncMock(return_value=[])
    client.get_local_competitors = AsyncMock(return_value=[])
    client.get_serp_rankings = AsyncMock(return_value=[])
    return client


@pytest.fixture
def make_ai():
    """Factory: make_ai(AIResult.success("..."), ...) -> StubAI."""
    return StubAI
