# ABOUTME: Detects a business's competitors: Google Maps listings (local) or
# ABOUTME: DataForSEO Labs organic competitor domains (national)

import logging
from typing import Optional

from .config import US_LOCATION_CODE
from .dataforseo_client import DataForSEOClient
from .errors import CompetitorDiscoveryError, ValidationError
from .models import AnalysisScope, Competitor
from .urls import domain_from_url, normalize_domain, normalize_url

logger = logging.getLogger(__name__)

MAX_COMPETITORS = 3


def parse_local_competitors(items: list[dict], business_url: Optional[str] = None) -> list[Competitor]:
    """Map listings with a website, skipping the client's own site."""
    own_url = normalize_url(business_url) if business_url else None
    competitors = []
    for item in items:
        url = (item.get("url") or "").strip()
        if not url:
            continue
        if own_url and normalize_url(url) == own_url:
            continue

        rating = item.get("rating") or {}
        competitors.append(Competitor(
            name=item.get("title") or domain_from_url(url),
            url=url,
            source="Google Maps",
            rating=rating.get("value") or 0,
            review_count=rating.get("votes_count") or 0,
            address=item.get("address") or "",
        ))
    return competitors


def parse_national_competitors(items: list[dict], domain: str) -> list[Competitor]:
    """Labs competitor domains, skipping the client's own domain."""
    own_domain = normalize_domain(domain)
    competitors = []
    for item in items:
        competitor_domain = item.get("domain") or ""
        if not competitor_domain or normalize_domain(competitor_domain) == own_domain:
            continue

        metrics = item.get("metrics") or {}
        organic = metrics.get("organic") or {}
        competitors.append(Competitor(
            name=competitor_domain,
            url=f"https://{competitor_domain}",
            source="DataForSEO",
            organic_traffic=organic.get("etv") or organic.get("traffic") or 0,
            keyword_count=organic.get("count") or organic.get("keywords") or 0,
            domain_authority=metrics.get("domain_rank") or 0,
        ))
    return competitors


class CompetitorFinder:
    """
    Find up to three competitors for a business.

    Usage:
        finder = CompetitorFinder(DataForSEOClient())
        competitors = await finder.find_local("roofing", "Austin, Texas", "https://joesroofing.com", 1026201)
        competitors = await finder.find_national("https://joesroofing.com")
    """

    def __init__(self, client: DataForSEOClient):
        self.client = client

    async def find_local(
        self,
        business_type: str,
        location: str,
        business_url: Optional[str] = None,
        location_code: Optional[int] = None,
    ) -> list[Competitor]:
        """
        Raises:
            CompetitorDiscoveryError: no listing with a website besides the client
        """
        search_term = f"{business_type} in {location}"
        logger.info(f"🔍 Looking for local competitors: '{search_term}'")

        items = await self.client.get_local_competitors(search_term, location_code)
        competitors = parse_local_competitors(items, business_url)
        if not competitors:
            raise CompetitorDiscoveryError(f"No local competitors found for '{search_term}'")

        logger.info(f"Found {len(competitors)} local competitors, keeping {MAX_COMPETITORS}")
        return competitors[:MAX_COMPETITORS]

    async def find_national(self, business_url: str) -> list[Competitor]:
        """
        Raises:
            ValidationError: no business URL
            CompetitorDiscoveryError: no competitor domains besides the client
        """
        if not business_url or not business_url.strip():
            raise ValidationError("Client URL is required to fetch national competitors", field="businessUrl")

        domain = domain_from_url(business_url)
        logger.info(f"🔍 Looking for national competitors of {domain} (location {US_LOCATION_CODE})")

        items = await self.client.get_competitor_domains(domain, limit=MAX_COMPETITORS + 1)
        competitors = parse_national_competitors(items, domain)
        if not competitors:
            raise CompetitorDiscoveryError(f"No competitors found for {domain}")

        return competitors[:MAX_COMPETITORS]

    async def find(
        self,
        scope: AnalysisScope,
        business_type: str,
        location: str,
        business_url: str,
        location_code: Optional[int] = None,
    ) -> list[Competitor]:
        if scope == "national":
            return await self.find_national(business_url)
        return await self.find_local(business_type, location, business_url, location_code)
