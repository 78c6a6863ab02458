"""
Keyword candidates and the deduplicated, relevance-filtered keyword set.

- KeywordGenerator: AI keyword ideas for a business, with a template fallback
- RelevanceFilter: AI filter that drops off-topic keywords, failing open
- KeywordSetBuilder: competitor-ranked keywords + generated keywords -> filtered set
"""

import asyncio
import json
import logging
from typing import Iterable, Optional

from .ai import AIResult, TextService, parse_json_response
from .dataforseo_client import DataForSEOClient
from .errors import RelevanceFilterError
from .models import AnalysisScope, RankedKeywordRecord
from .urls import business_name_from_domain, domain_from_url

logger = logging.getLogger(__name__)

MIN_AI_KEYWORDS = 10
MAX_KEYWORDS = 50

# Base keywords for common business types (fallback generation)
BASE_KEYWORDS = {
    "roofing": [
        "roof repair", "roof replacement", "roofing company", "roofing contractor",
        "roof installation", "roof inspection", "metal roofing", "shingle roof",
        "commercial roofing", "residential roofing",
    ],
    "plumbing": [
        "plumber", "plumbing services", "plumbing repair", "emergency plumber",
        "water heater installation", "drain cleaning", "pipe repair",
        "bathroom plumbing", "kitchen plumbing", "commercial plumbing",
    ],
    "home improvement": [
        "home renovation", "kitchen remodeling", "bathroom remodeling", "home remodeling",
        "home addition", "basement finishing", "deck building", "interior painting",
        "exterior painting", "flooring installation",
    ],
    "dental": [
        "dentist", "dental clinic", "dental care", "teeth cleaning", "tooth extraction",
        "dental implants", "cosmetic dentistry", "emergency dentist", "family dentist",
        "pediatric dentist",
    ],
    "legal": [
        "lawyer", "attorney", "law firm", "legal services", "personal injury lawyer",
        "family lawyer", "criminal defense attorney", "divorce lawyer", "estate planning",
        "business lawyer",
    ],
}

LONG_TAIL_PREFIXES = [
    "best", "top", "affordable", "professional", "experienced", "trusted", "licensed", "emergency",
]
NATIONAL_PREFIXES = ["nationwide", "online", "remote", "USA", "American"]


def normalize_keyword(keyword: str) -> str:
    return " ".join(keyword.lower().split())


def dedupe_keywords(*sources: Iterable[str]) -> list[str]:
    """Case-insensitive union, first occurrence order, normalized text."""
    seen = set()
    unique = []
    for source in sources:
        for keyword in source:
            normalized = normalize_keyword(keyword or "")
            if normalized and normalized not in seen:
                seen.add(normalized)
                unique.append(normalized)
    return unique


def merge_ranked_keywords(
    per_competitor: list[list[RankedKeywordRecord]],
) -> dict[str, RankedKeywordRecord]:
    """Merge competitor keyword lists by keyword text; the first competitor to report a keyword wins."""
    merged: dict[str, RankedKeywordRecord] = {}
    for records in per_competitor:
        for record in records:
            key = normalize_keyword(record.keyword)
            if key and key not in merged:
                merged[key] = record
    return merged


def passthrough_filter(keywords: list[str]) -> list[str]:
    """Relevance filter fallback: keep every keyword."""
    return list(keywords)


def parse_ai_keywords(raw_text: str) -> list[str]:
    """Parse a comma-separated AI answer into lowercase keywords of 3-59 characters."""
    keywords = [k.strip().strip('"').lower() for k in raw_text.split(",")]
    return dedupe_keywords(k for k in keywords if 2 < len(k) < 60)


def parse_relevance_response(response_text: str, candidates: list[str]) -> list[str]:
    """
    Extract the kept keywords from a relevance filter answer.

    Only keywords present in candidates are returned, in candidate order.

    Raises:
        RelevanceFilterError: unparseable JSON, wrong shape or an empty list
    """
    try:
        data = parse_json_response(response_text)
    except ValueError as e:
        raise RelevanceFilterError(f"Unparseable relevance response: {e}") from e

    kept = data.get("keywords") if isinstance(data, dict) else data
    if not isinstance(kept, list):
        raise RelevanceFilterError("Relevance response has no keyword list")

    kept_normalized = {normalize_keyword(str(k)) for k in kept}
    filtered = [k for k in candidates if normalize_keyword(k) in kept_normalized]
    if not filtered:
        raise RelevanceFilterError("Relevance filter kept no keywords")
    return filtered


def fallback_keywords(business_type: str, location: str, scope: AnalysisScope) -> list[str]:
    """Template keywords for when AI generation is unavailable."""
    lower_type = business_type.lower().strip()

    base = BASE_KEYWORDS.get(lower_type)
    if base is None:
        base = next(
            (keywords for key, keywords in BASE_KEYWORDS.items() if key in lower_type),
            None,
        )
    if base is None:
        base = [
            f"{business_type} services",
            f"{business_type} company",
            f"{business_type} near me",
            f"best {business_type}",
            f"affordable {business_type}",
            f"local {business_type}",
            f"{business_type} prices",
            f"{business_type} cost",
            f"{business_type} quotes",
            f"professional {business_type}",
        ]

    if scope == "local":
        modifiers = [
            f"in {location}", location, "near me", f"best in {location}",
            f"top rated {location}", f"affordable in {location}", f"{location} area",
        ]
    else:
        modifiers = [
            "", "in USA", "nationwide", "best in America", "top rated",
            "professional", "affordable", "near me", "online",
        ]

    keywords = [f"{keyword} {modifier}" if modifier else keyword for keyword in base for modifier in modifiers]

    prefixes = LONG_TAIL_PREFIXES + (NATIONAL_PREFIXES if scope == "national" else [])
    for prefix in prefixes:
        for keyword in base[:3]:
            if scope == "local":
                keywords.append(f"{prefix} {keyword} in {location}")
            else:
                keywords.append(f"{prefix} {keyword}")
                if prefix not in ("nationwide", "online", "USA"):
                    keywords.append(f"{prefix} {keyword} in USA")

    if scope == "local":
        keywords.extend([
            f"{business_type} near me",
            f"best {business_type} in {location}",
            f"{location} {business_type} company",
            f"{business_type} services {location}",
            f"local {business_type} {location}",
            f"{business_type} contractor {location}",
        ])
    else:
        keywords.extend([
            f"{business_type} company USA",
            f"nationwide {business_type} services",
            f"best {business_type} company in America",
            f"top rated {business_type} services",
            f"professional {business_type} nationwide",
            f"{business_type} franchise opportunities",
        ])

    return dedupe_keywords(keywords)[:MAX_KEYWORDS]


class KeywordGenerator:
    """Candidate keywords for a business type and location."""

    SYSTEM_PROMPT = """You are an expert SEO keyword researcher specializing in high-value, conversion-focused keywords for local and national businesses. Your output feeds an SEO opportunity calculator that analyzes ranking potential and revenue impact.

OUTPUT REQUIREMENTS:
- Provide ONLY a comma-separated list of keywords, no other text
- Lowercase keywords with normal spacing (e.g., "roof repair chicago")
- Mix of keyword types:
  * 20 high-intent buyer keywords ("hire [service] in [location]", "best [service] company [location]")
  * 15 problem-solution keywords ("fix leaking roof [location]", "[location] emergency [service]")
  * 10 comparison keywords ("affordable [service] [location]", "[service] cost [location]")
  * 5 informational keywords that lead to conversions ("how to choose [service] in [location]")
- Local analysis: location modifiers in 80% of keywords
- National analysis: broader terms with industry-specific qualifiers
- 2-5 word phrases, prefer 3 words
- Each keyword between 3 and 60 characters
- Clear commercial intent and reasonable search volume"""

    def __init__(self, ai: TextService):
        self.ai = ai

    async def generate(self, business_type: str, location: str, scope: AnalysisScope = "local") -> list[str]:
        logger.info(f"Generating keywords for {business_type} in {location} ({scope} scope)")

        target = f"in {location}" if scope == "local" else "across the United States"
        result = await self.ai.complete(
            f"Generate 50 high-converting SEO keywords for a {business_type} business {target}. "
            "Focus on keywords that potential customers would use when ready to make a purchase "
            "or hire this service.",
            system=self.SYSTEM_PROMPT,
            temperature=0.5,
        )

        keywords = parse_ai_keywords(result.text) if result.ok else []
        if len(keywords) < MIN_AI_KEYWORDS:
            reason = result.error if not result.ok else f"only {len(keywords)} keywords"
            logger.info(f"AI keyword generation insufficient ({reason}), using fallback keywords")
            return fallback_keywords(business_type, location, scope)

        logger.info(f"Generated {len(keywords)} keywords using AI")
        return keywords[:MAX_KEYWORDS]


class RelevanceFilter:
    """AI filter that removes keywords unrelated to the business. Fails open."""

    def __init__(self, ai: TextService):
        self.ai = ai

    def _system_prompt(self, business_type: str, domain: str, scope: AnalysisScope, location: str) -> str:
        location_focus = location if scope == "local" else "National (United States)"
        return f"""You are an AI specializing in SEO keyword relevance analysis for {business_type} businesses. Filter out irrelevant keywords that would contaminate an SEO report.

CONTEXT:
- Business type: {business_type}
- Business domain: {domain}
- Business name: {business_name_from_domain(domain)}
- Location focus: {location_focus}

RELEVANCE CRITERIA:
1. MUST be related to products/services this business type typically offers
2. MUST have commercial or informational intent related to this business
3. MUST NOT be related to:
   - Jobs/careers at this type of business
   - Competing businesses (unless comparing with this business type)
   - Internal business operations unrelated to customer needs
   - Brand names unrelated to this business
   - Similar-sounding but unrelated concepts
   - Irrelevant locations (for local businesses)

Return exactly: {{"keywords": ["keyword1", "keyword2", ...]}}
When in doubt about relevance, include the keyword."""

    async def filter(
        self,
        keywords: list[str],
        business_type: str,
        client_url: str,
        scope: AnalysisScope,
        location: str,
    ) -> list[str]:
        if not keywords:
            return []

        logger.info(f"Filtering {len(keywords)} keywords for relevance...")
        domain = domain_from_url(client_url)
        target = f" in {location}" if scope == "local" else " (national scope)"

        result: AIResult = await self.ai.complete(
            f"Here's the list of keywords to filter for a {business_type} business{target}. "
            f"Return only the relevant keywords.\n\n{json.dumps(keywords)}",
            system=self._system_prompt(business_type, domain, scope, location),
            temperature=0.4,
            json_output=True,
        )
        if not result.ok:
            logger.warning(f"Relevance filter unavailable ({result.error}), keeping all keywords")
            return passthrough_filter(keywords)

        try:
            filtered = parse_relevance_response(result.text, keywords)
        except RelevanceFilterError as e:
            logger.warning(f"{e}; keeping all keywords")
            return passthrough_filter(keywords)

        logger.info(
            f"Filtered {len(keywords) - len(filtered)} irrelevant keywords. {len(filtered)} keywords remain."
        )
        return filtered


class KeywordSetBuilder:
    """
    Build the keyword list sent to the volume lookup.

    Usage:
        builder = KeywordSetBuilder(client, RelevanceFilter(ai))
        keywords = await builder.build(
            "https://joesroofing.com", ["acmeroof.com", "bestroof.com"],
            generated, "roofing", "local", "Austin, Texas",
        )
    """

    def __init__(
        self,
        client: DataForSEOClient,
        relevance_filter: RelevanceFilter,
        competitor_keyword_limit: int = 30,
    ):
        self.client = client
        self.relevance_filter = relevance_filter
        self.competitor_keyword_limit = competitor_keyword_limit

    async def collect_competitor_keywords(
        self, competitor_domains: list[str]
    ) -> tuple[dict[str, RankedKeywordRecord], list[str]]:
        """
        Ranked keywords of all competitors, fetched concurrently and merged.

        A failing competitor is logged and skipped.

        Returns:
            (merged keywords, domains whose lookup failed)
        """
        if not competitor_domains:
            return {}, []

        logger.info(f"Fetching ranked keywords for {len(competitor_domains)} competitors...")
        results = await asyncio.gather(
            *[
                self.client.get_ranked_keywords(domain, self.competitor_keyword_limit)
                for domain in competitor_domains
            ],
            return_exceptions=True,
        )

        succeeded = []
        failed = []
        for domain, result in zip(competitor_domains, results):
            if isinstance(result, Exception):
                logger.warning(f"⚠️  Ranked keywords for {domain} failed: {result}")
                failed.append(domain)
                continue
            succeeded.append(result)

        merged = merge_ranked_keywords(succeeded)
        logger.info(
            f"Collected {len(merged)} competitor keywords "
            f"({len(succeeded)}/{len(competitor_domains)} competitors)"
        )
        return merged, failed

    async def build(
        self,
        client_url: str,
        competitor_domains: list[str],
        generated_keywords: list[str],
        business_type: str,
        scope: AnalysisScope,
        location: str,
    ) -> list[str]:
        competitor_keywords, failed = await self.collect_competitor_keywords(competitor_domains)
        if failed:
            logger.warning(f"Continuing without keywords from: {', '.join(failed)}")
        combined = dedupe_keywords(generated_keywords, competitor_keywords.keys())
        logger.info(f"Combined keywords for analysis: {len(combined)}")

        return await self.relevance_filter.filter(combined, business_type, client_url, scope, location)
