"""
SEO Opportunity - estimate the organic search traffic and revenue a business is missing.

Combines DataForSEO keyword volumes and SERP rankings (for the business and its
competitors) with a Gemini-estimated conversion rate.

Usage:
    from seoopportunity import AnalysisRequest, ReportPipeline, Settings

    pipeline = ReportPipeline.from_settings(Settings.from_env())
    response = await pipeline.run(AnalysisRequest(
        business_url="https://joesroofing.com",
        business_type="roofing",
        location="Austin, Texas",
        customer_value=8000,
    ))

    print(f"{response.report.potential_customers} customers / month")
"""

__version__ = "0.1.0"

from .config import Settings
from .errors import (
    CompetitorDiscoveryError,
    ConfigurationError,
    ConversionRateEstimateError,
    GatewayError,
    LocationDataError,
    OpportunityError,
    RelevanceFilterError,
    TaskTimeoutError,
    ValidationError,
)
from .models import (
    AnalysisInsights,
    AnalysisRequest,
    AnalysisResponse,
    CombinedKeywordEntry,
    Competitor,
    CompetitorRanking,
    LocationMatch,
    RankingDistribution,
    Report,
)
from .ai import AIResult, GeminiTextService
from .dataforseo_client import DataForSEOClient
from .locations import LocationCache, LocationResolver
from .keywords import KeywordGenerator, KeywordSetBuilder, RelevanceFilter
from .competitors import CompetitorFinder
from .rankings import RankingAggregator
from .calculator import ConversionRateEstimator, OpportunityCalculator
from .pipeline import ReportMailer, ReportPipeline, ReportStore

__all__ = [
    # Main API
    "ReportPipeline",
    "AnalysisRequest",
    "AnalysisResponse",
    "Report",
    "Settings",
    # Stages
    "LocationResolver",
    "LocationCache",
    "CompetitorFinder",
    "KeywordGenerator",
    "KeywordSetBuilder",
    "RelevanceFilter",
    "RankingAggregator",
    "ConversionRateEstimator",
    "OpportunityCalculator",
    # Collaborators
    "DataForSEOClient",
    "GeminiTextService",
    "AIResult",
    "ReportStore",
    "ReportMailer",
    # Models
    "AnalysisInsights",
    "CombinedKeywordEntry",
    "Competitor",
    "CompetitorRanking",
    "LocationMatch",
    "RankingDistribution",
    # Errors
    "OpportunityError",
    "ConfigurationError",
    "GatewayError",
    "TaskTimeoutError",
    "LocationDataError",
    "CompetitorDiscoveryError",
    "RelevanceFilterError",
    "ConversionRateEstimateError",
    "ValidationError",
]
