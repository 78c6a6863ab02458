# ABOUTME: Opportunity model: traffic, conversion rate, customers and revenue
# ABOUTME: plus ranking buckets and scope-specific insights for the report

import logging
import math
import re
from typing import Iterable, Optional

from .ai import TextService
from .errors import ConversionRateEstimateError
from .models import (
    AnalysisInsights,
    AnalysisScope,
    CombinedKeywordEntry,
    Competitor,
    CompetitorRanking,
    RankingDistribution,
    Report,
)
from .urls import domain_from_url

logger = logging.getLogger(__name__)

CTR_MULTIPLIERS = {"local": 0.35, "national": 0.30}

MIN_CONVERSION_RATE = 0.1
MAX_CONVERSION_RATE = 15.0
DEFAULT_CONVERSION_RATE = 2.5
LOCAL_CONVERSION_MULTIPLIER = 1.4

# Position used for keywords the domain does not rank for
UNRANKED = 101

# National average conversion rates, first matching pattern wins
FALLBACK_CONVERSION_RATES = [
    (re.compile(r"real estate|property|home|apartment|housing"), 2.2),
    (re.compile(r"restaurant|food|cafe|catering|bakery"), 3.1),
    (re.compile(r"health|medical|doctor|dental|clinic|wellness"), 3.8),
    (re.compile(r"repair|plumbing|electric|roofing|contractor"), 4.5),
    (re.compile(r"law|legal|attorney|lawyer"), 3.2),
    (re.compile(r"retail|shop|store|ecommerce"), 1.8),
    (re.compile(r"tech|software|it|digital"), 1.9),
    (re.compile(r"financial|accounting|tax|insurance"), 2.4),
    (re.compile(r"education|school|training|course|tutor"), 2.7),
    (re.compile(r"beauty|salon|spa|hair|cosmetic"), 3.4),
]

# Plausible ranges (percent) the AI estimate is clamped to, first match wins
CONVERSION_BOUNDS = [
    ("healthcare", re.compile(r"health|medical|doctor|dental|dentist|clinic|wellness|chiropract|therap"), (1.8, 7.0)),
    ("professional services", re.compile(r"law|legal|attorney|lawyer|accounting|accountant|financial|tax|insurance|consult"), (1.0, 9.0)),
    ("e-commerce", re.compile(r"e-?commerce|retail|shop|store|boutique"), (0.5, 4.0)),
    ("b2b", re.compile(r"b2b|saas|software|wholesale|manufactur|industrial|logistics"), (0.2, 3.5)),
    ("service", re.compile(
        r"repair|plumb|electric|roof|contractor|hvac|cleaning|landscap|pest|moving|painting|remodel"
        r"|restaurant|cafe|salon|spa|beauty|fitness|gym|auto|service"
    ), (0.8, 8.0)),
]

LOCAL_ACTIONS = [
    "Optimize Google Business Profile",
    "Build local citations",
    "Get more customer reviews",
    "Create location-specific content",
    "Optimize for 'near me' searches",
]

NATIONAL_ACTIONS = [
    "Create comprehensive content for high-volume keywords",
    "Build a strong backlink profile",
    "Improve technical SEO",
    "Optimize for featured snippets",
    "Develop a content calendar for consistent publishing",
]


def rule_based_conversion_rate(business_type: str, scope: AnalysisScope) -> float:
    """Industry table rate, raised by 40% for local businesses."""
    business = business_type.lower()
    base_rate = next(
        (rate for pattern, rate in FALLBACK_CONVERSION_RATES if pattern.search(business)),
        DEFAULT_CONVERSION_RATE,
    )
    rate = base_rate * LOCAL_CONVERSION_MULTIPLIER if scope == "local" else base_rate
    return round(rate, 2)


def conversion_bounds(business_type: str) -> tuple[float, float]:
    """(min, max) conversion rate for the business category, or the global range."""
    business = business_type.lower()
    for _, pattern, bounds in CONVERSION_BOUNDS:
        if pattern.search(business):
            return bounds
    return MIN_CONVERSION_RATE, MAX_CONVERSION_RATE


def parse_conversion_rate(response_text: str, business_type: str) -> float:
    """
    Read a numeric conversion rate from an AI answer ("3.5", "3.5%", ...).

    The number is clamped to the category range, then to 0.1-15.

    Raises:
        ConversionRateEstimateError: no number in the answer
    """
    cleaned = re.sub(r"[^\d.]", "", response_text or "")
    try:
        rate = float(cleaned)
    except ValueError as e:
        raise ConversionRateEstimateError(f"Invalid numeric response: {response_text!r}") from e
    if math.isnan(rate) or math.isinf(rate):
        raise ConversionRateEstimateError(f"Invalid numeric response: {response_text!r}")

    low, high = conversion_bounds(business_type)
    clamped = min(max(rate, low), high)
    clamped = min(max(clamped, MIN_CONVERSION_RATE), MAX_CONVERSION_RATE)
    if clamped != rate:
        logger.warning(f"Unrealistic conversion rate ({rate}%) from AI, clamped to {clamped}%")
    return clamped


class ConversionRateEstimator:
    """Industry conversion rate from the AI service, with the rule-based table as fallback."""

    SYSTEM_PROMPT = """You are a data-driven SEO analyst specializing in industry-specific conversion rates. You have access to the latest digital marketing benchmarks across all industries. Your task is to provide precise, realistic conversion rates based on industry data.

IMPORTANT GUIDELINES:
- Respond ONLY with a single numeric value (no % symbol, text, or explanations)
- For service businesses: provide rates between 0.8% and 8%
- For e-commerce/retail: provide rates between 0.5% and 4%
- For B2B industries: provide rates between 0.2% and 3.5%
- For professional services: provide rates between 1% and 9%
- For medical/healthcare: provide rates between 1.8% and 7%
- Local businesses consistently convert higher than national averages by 30-50%
- High-ticket services have lower conversion rates than low-ticket services
- Emergency services have higher conversion rates than discretionary services"""

    def __init__(self, ai: TextService):
        self.ai = ai

    async def estimate(self, business_type: str, scope: AnalysisScope) -> tuple[float, str]:
        """
        Returns:
            (rate in percent, "ai" or "rule_based")
        """
        audience = (
            "local customers in specific geographic areas"
            if scope == "local"
            else "customers across the entire United States"
        )
        result = await self.ai.complete(
            "Calculate the most accurate typical website conversion rate "
            f"(visitor-to-customer percentage) for a {business_type.lower().strip()} business "
            f"targeting {audience}. Return only the numeric value without any symbols or text.",
            system=self.SYSTEM_PROMPT,
            temperature=0.1,
            max_output_tokens=10,
        )

        if result.ok:
            try:
                return parse_conversion_rate(result.text, business_type), "ai"
            except ConversionRateEstimateError as e:
                logger.warning(f"{e}; using rule-based conversion rate")
        else:
            logger.info(f"AI conversion rate unavailable ({result.error}), using rule-based rate")

        return rule_based_conversion_rate(business_type, scope), "rule_based"


def _floor(value: float) -> int:
    # rounding first keeps 3499.9999999 (float noise) from flooring to 3499
    return math.floor(round(value, 6))


def _position(rank: Optional[int]) -> int:
    return rank if rank and rank > 0 else UNRANKED


def ranking_distribution(ranks: Iterable[Optional[int]]) -> RankingDistribution:
    """Cumulative top3/top10/top50/top100 counts; None counts as unranked."""
    positions = [_position(rank) for rank in ranks]
    return RankingDistribution(
        top3=sum(1 for p in positions if p <= 3),
        top10=sum(1 for p in positions if p <= 10),
        top50=sum(1 for p in positions if p <= 50),
        top100=sum(1 for p in positions if p <= 100),
        total=len(positions),
    )


def local_insights(keywords: list[CombinedKeywordEntry], current: RankingDistribution) -> AnalysisInsights:
    count = len(keywords)
    near_me = sum(1 for entry in keywords if "near me" in entry.keyword.lower()) or math.floor(count * 0.3)
    return AnalysisInsights(
        local_pack_opportunities=math.floor(count * 0.4),
        google_maps_ranking_factor="High" if near_me > 10 else "Medium",
        near_me_searches=near_me,
        local_competitor_strength="Low" if current.top10 < 10 else "High",
        recommended_actions=list(LOCAL_ACTIONS),
    )


def national_insights(keywords: list[CombinedKeywordEntry], current: RankingDistribution) -> AnalysisInsights:
    count = len(keywords)
    return AnalysisInsights(
        competitive_difficulty="High" if current.top10 < 15 else "Medium",
        content_gaps=math.floor(count * 0.6),
        backlink_opportunities=math.floor(count * 0.4),
        recommended_actions=list(NATIONAL_ACTIONS),
    )


class OpportunityCalculator:
    """
    Turn the combined keyword table into a Report.

    Usage:
        calculator = OpportunityCalculator(ConversionRateEstimator(ai))
        report = await calculator.compute(entries, 200, "roofing", "local", competitors)
    """

    def __init__(self, estimator: ConversionRateEstimator):
        self.estimator = estimator

    async def compute(
        self,
        combined_keywords: list[CombinedKeywordEntry],
        customer_value: float,
        business_type: str,
        scope: AnalysisScope,
        competitors: Optional[list[Competitor]] = None,
    ) -> Report:
        conversion_rate, source = await self.estimator.estimate(business_type, scope)
        logger.info(f"Conversion rate: {conversion_rate}% ({source})")

        total_search_volume = sum(entry.search_volume for entry in combined_keywords)
        potential_traffic = _floor(total_search_volume * CTR_MULTIPLIERS[scope])
        potential_customers = _floor(potential_traffic * conversion_rate / 100)
        potential_revenue = potential_customers * customer_value

        current = ranking_distribution(entry.client_rank for entry in combined_keywords)

        if competitors is None:
            urls = list(dict.fromkeys(url for entry in combined_keywords for url in entry.competitor_ranks))
            competitors = [Competitor(name=domain_from_url(url), url=url) for url in urls]

        competitor_rankings = [
            CompetitorRanking(
                name=competitor.name,
                url=competitor.url,
                source=competitor.source,
                **ranking_distribution(
                    entry.competitor_ranks.get(competitor.url) for entry in combined_keywords
                ).model_dump(),
            )
            for competitor in competitors
        ]

        insights = (
            local_insights(combined_keywords, current)
            if scope == "local"
            else national_insights(combined_keywords, current)
        )

        logger.info(
            f"Opportunity: {total_search_volume} searches -> {potential_traffic} visits -> "
            f"{potential_customers} customers (${potential_revenue:,.2f})"
        )
        return Report(
            total_search_volume=total_search_volume,
            potential_traffic=potential_traffic,
            conversion_rate=conversion_rate,
            conversion_rate_source=source,
            potential_customers=potential_customers,
            potential_revenue=potential_revenue,
            current_rankings=current,
            competitor_rankings=competitor_rankings,
            analysis_scope=scope,
            analysis_insights=insights,
            keyword_data=list(combined_keywords),
        )
