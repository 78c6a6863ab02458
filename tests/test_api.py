"""Tests for the FastAPI app."""

import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock

from seoopportunity.api import create_app
from seoopportunity.competitors import CompetitorFinder
from seoopportunity.config import Settings
from seoopportunity.errors import GatewayError
from seoopportunity.locations import LocationResolver
from seoopportunity.models import KeywordRecord
from seoopportunity.pipeline import ReportPipeline

REPORT_BODY = {
    "businessUrl": "https://www.joesroofing.com",
    "businessType": "roofing",
    "location": "Austin, Texas",
    "locationCode": 1026201,
    "customerValue": 200,
    "competitors": ["https://acme.com"],
}


@pytest.fixture
def api(mock_client, failing_ai, location_rows):
    mock_client.get_locations.return_value = location_rows
    mock_client.get_search_volume.return_value = [KeywordRecord(keyword="roof repair", search_volume=1000)]
    settings = Settings()
    app = create_app(
        settings=settings,
        pipeline=ReportPipeline(mock_client, failing_ai, settings),
        resolver=LocationResolver(mock_client),
        finder=CompetitorFinder(mock_client),
    )
    return TestClient(app)


class TestHealth:
    """Tests for /health"""

    def test_health(self, api):
        """Test status and configuration flags"""
        data = api.get("/health").json()
        assert data["status"] == "ok"
        assert data["dataforseo_configured"] is False
        assert data["ai_configured"] is False


class TestGenerateReport:
    """Tests for /generate-report"""

    def test_success(self, api):
        """Test a full report in camelCase"""
        response = api.post("/generate-report", json=REPORT_BODY)

        assert response.status_code == 200
        data = response.json()
        assert data["report"]["totalSearchVolume"] == 1000
        assert data["report"]["potentialTraffic"] == 350
        assert data["report"]["conversionRateSource"] == "rule_based"
        assert data["competitors"][0]["source"] == "User provided"

    def test_missing_field(self, api):
        """Test that incomplete requests get a 400 naming the field"""
        body = dict(REPORT_BODY, customerValue=0)
        response = api.post("/generate-report", json=body)

        assert response.status_code == 400
        assert response.json()["field"] == "customerValue"

    def test_invalid_body(self, api):
        """Test that schema errors are 400s in the same error shape"""
        response = api.post("/generate-report", json=dict(REPORT_BODY, analysisScope="global"))

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request body"

    def test_gateway_failure(self, api, mock_client):
        """Test that provider failures are 500s"""
        mock_client.get_search_volume.side_effect = GatewayError("down", status_code=503)

        response = api.post("/generate-report", json=REPORT_BODY)

        assert response.status_code == 500
        assert response.json()["error"] == "Failed to generate report"
        assert "503" in response.json()["details"]


class TestLocationCode:
    """Tests for /location-code"""

    def test_state(self, api):
        """Test a state lookup"""
        response = api.post("/location-code", json={"state": "texas"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["code"] == 21176
        assert data["type"] == "state"

    def test_city(self, api):
        """Test a city lookup"""
        data = api.post("/location-code", json={"state": "Texas", "city": "Dallas"}).json()
        assert data["code"] == 1026339
        assert data["cityName"] == "Dallas,Texas,United States"

    def test_city_fallback(self, api):
        """Test that an unknown city falls back to the state with a warning"""
        data = api.post("/location-code", json={"state": "Texas", "city": "Zzzqq"}).json()
        assert data["code"] == 21176
        assert data["warning"]
        assert "similarCities" in data

    def test_missing_state(self, api):
        """Test that a state is required"""
        response = api.post("/location-code", json={"city": "Austin"})
        assert response.status_code == 400

    def test_unknown_state(self, api):
        """Test the 404 with suggestions"""
        response = api.post("/location-code", json={"state": "Texxxx"})

        assert response.status_code == 404
        data = response.json()
        assert data["searchTerm"] == "Texxxx"
        assert "Texas" in data["similarStates"]

    def test_provider_failure(self, api, mock_client):
        """Test that an unavailable location table is a 500"""
        mock_client.get_locations.side_effect = GatewayError("boom", status_code=500)
        response = api.post("/location-code", json={"state": "Texas"})
        assert response.status_code == 500


class TestLocations:
    """Tests for /locations"""

    def test_states(self, api):
        """Test the state listing"""
        data = api.get("/locations").json()
        assert {"name": "Texas", "code": 21176} in data

    def test_cities(self, api):
        """Test the cities of one state"""
        data = api.get("/locations", params={"state": "Texas"}).json()
        assert [c["code"] for c in data] == [1026201, 1026339]

    def test_failure(self, api, mock_client):
        """Test that a provider failure is a 500"""
        mock_client.get_locations.side_effect = GatewayError("boom", status_code=500)
        assert api.get("/locations").status_code == 500


class TestDetectCompetitors:
    """Tests for /detect-competitors"""

    def test_local(self, api, mock_client):
        """Test Google Maps competitors and the echoed search term"""
        mock_client.get_local_competitors.return_value = [
            {"title": "Acme Roofing", "url": "https://acme.com", "rating": {"value": 4.8, "votes_count": 31}},
        ]

        response = api.post(
            "/detect-competitors",
            json={"businessType": "roofing", "location": "Austin, Texas", "locationCode": 1026201},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["searchTerm"] == "roofing in Austin, Texas"
        assert data["competitors"][0]["reviewCount"] == 31

    def test_local_missing_fields(self, api):
        """Test that local detection needs type and location"""
        response = api.post("/detect-competitors", json={"businessType": "roofing"})
        assert response.status_code == 400

    def test_national(self, api, mock_client):
        """Test Labs competitors"""
        mock_client.get_competitor_domains.return_value = [{"domain": "roofsdirect.com"}]

        response = api.post(
            "/detect-competitors",
            json={"businessUrl": "https://joesroofing.com", "analysisScope": "national"},
        )

        assert response.status_code == 200
        assert response.json()["competitors"][0]["url"] == "https://roofsdirect.com"
        assert "searchTerm" not in response.json()

    def test_national_missing_url(self, api):
        """Test that national detection needs a URL"""
        response = api.post("/detect-competitors", json={"analysisScope": "national"})
        assert response.status_code == 400

    def test_nothing_found(self, api, mock_client):
        """Test that an empty result is a 500"""
        mock_client.get_local_competitors = AsyncMock(return_value=[])

        response = api.post("/detect-competitors", json={"businessType": "roofing", "location": "Austin"})

        assert response.status_code == 500
        assert response.json()["error"] == "Failed to detect local competitors"
