# ABOUTME: End-to-end report computation: validate, find competitors, build keywords,
# ABOUTME: aggregate rankings, compute the opportunity, hand off to store/mailer

import logging
from datetime import datetime, timezone
from typing import Optional, Protocol

from .ai import GeminiTextService, TextService
from .calculator import ConversionRateEstimator, OpportunityCalculator
from .competitors import CompetitorFinder
from .config import Settings
from .dataforseo_client import DataForSEOClient
from .errors import CompetitorDiscoveryError, GatewayError, ValidationError
from .keywords import KeywordGenerator, KeywordSetBuilder, RelevanceFilter
from .models import AnalysisRequest, AnalysisResponse, Competitor, Report
from .rankings import RankingAggregator
from .urls import domain_from_url

logger = logging.getLogger(__name__)


class ReportStore(Protocol):
    """Persists a finished report document and returns its id."""

    async def save(self, document: dict) -> str:
        ...


class ReportMailer(Protocol):
    """Sends a finished report to the business owner."""

    async def send(self, basic_info: dict, report: Report) -> None:
        ...


def validate_request(request: AnalysisRequest) -> None:
    """
    Raises:
        ValidationError: a required field is missing or customer value is not positive
    """
    if not request.business_url or not request.business_url.strip():
        raise ValidationError("Business URL is required", field="businessUrl")
    if not request.business_type or not request.business_type.strip():
        raise ValidationError("Business type is required", field="businessType")
    if not request.location or not request.location.strip():
        raise ValidationError("Location is required", field="location")
    if request.customer_value is None or request.customer_value <= 0:
        raise ValidationError("Customer value must be a positive number", field="customerValue")


class ReportPipeline:
    """
    Run one SEO opportunity analysis.

    Usage:
        pipeline = ReportPipeline.from_settings(Settings.from_env())
        response = await pipeline.run(AnalysisRequest(
            business_url="https://joesroofing.com",
            business_type="roofing",
            location="Austin, Texas",
            location_code=1026201,
            customer_value=8000,
        ))
        print(response.report.potential_revenue)
    """

    def __init__(
        self,
        client: DataForSEOClient,
        ai: TextService,
        settings: Optional[Settings] = None,
        store: Optional[ReportStore] = None,
        mailer: Optional[ReportMailer] = None,
    ):
        self.settings = settings or Settings()
        self.client = client
        self.ai = ai
        self.store = store
        self.mailer = mailer

        self.finder = CompetitorFinder(client)
        self.generator = KeywordGenerator(ai)
        self.keyword_builder = KeywordSetBuilder(
            client,
            RelevanceFilter(ai),
            competitor_keyword_limit=self.settings.competitor_keyword_limit,
        )
        self.aggregator = RankingAggregator(client, self.settings)
        self.calculator = OpportunityCalculator(ConversionRateEstimator(ai))

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: Optional[ReportStore] = None,
        mailer: Optional[ReportMailer] = None,
    ) -> "ReportPipeline":
        client = DataForSEOClient.from_settings(settings)
        ai = GeminiTextService(api_key=settings.gemini_api_key, model=settings.gemini_model)
        return cls(client, ai, settings, store=store, mailer=mailer)

    async def resolve_competitors(self, request: AnalysisRequest) -> list[Competitor]:
        """Caller-supplied competitor URLs, otherwise auto-detected ones (none when detection fails)."""
        urls = [url.strip() for url in request.competitors if url and url.strip()]
        if urls:
            return [Competitor(name=domain_from_url(url), url=url, source="User provided") for url in urls]

        try:
            return await self.finder.find(
                request.analysis_scope,
                request.business_type,
                request.location,
                request.business_url,
                request.location_code,
            )
        except (CompetitorDiscoveryError, GatewayError) as e:
            logger.warning(f"⚠️  Competitor detection failed, continuing without competitors: {e}")
            return []

    async def run(self, request: AnalysisRequest) -> AnalysisResponse:
        """
        Raises:
            ValidationError: incomplete request
            ConfigurationError: DataForSEO credentials missing
            GatewayError: the search volume lookup failed
        """
        validate_request(request)
        scope = request.analysis_scope
        logger.info(
            f"🚀 Analyzing {request.business_url} ({request.business_type}, {request.location}, {scope})"
        )

        competitors = await self.resolve_competitors(request)
        competitor_urls = [competitor.url for competitor in competitors]
        logger.info(f"Using {len(competitors)} competitors: {', '.join(competitor_urls) or 'none'}")

        generated = await self.generator.generate(request.business_type, request.location, scope)

        keywords = await self.keyword_builder.build(
            request.business_url,
            [domain_from_url(url) for url in competitor_urls],
            generated,
            request.business_type,
            scope,
            request.location,
        )

        combined = await self.aggregator.aggregate(
            request.business_url,
            competitor_urls,
            keywords,
            request.location,
            request.location_code,
            scope,
        )

        report = await self.calculator.compute(
            combined,
            request.customer_value,
            request.business_type,
            scope,
            competitors,
        )

        response = AnalysisResponse(
            report=report,
            business_url=request.business_url,
            business_type=request.business_type,
            location=request.location,
            location_code=request.location_code,
            analysis_scope=scope,
            competitors=competitors,
            keywords=keywords,
        )
        await self._hand_off(request, response)

        logger.info(f"✅ Report ready: ${report.potential_revenue:,.2f} potential monthly revenue")
        return response

    async def _hand_off(self, request: AnalysisRequest, response: AnalysisResponse) -> None:
        basic_info = request.to_dict()

        if self.store is not None:
            document = {
                "basicInfo": basic_info,
                "competitors": [competitor.to_dict() for competitor in response.competitors],
                "keywords": response.keywords,
                "report": response.report.to_dict(),
                "createdAt": datetime.now(timezone.utc).isoformat(),
                "emailSent": False,
            }
            try:
                report_id = await self.store.save(document)
                logger.info(f"Report saved ({report_id})")
            except Exception as e:
                logger.error(f"Error saving report: {e}")

        if self.mailer is not None:
            try:
                await self.mailer.send(basic_info, response.report)
                logger.info("Report email sent")
            except Exception as e:
                logger.error(f"Error sending report email: {e}")
