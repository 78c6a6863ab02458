"""
FastAPI app for the SEO opportunity calculator.

Endpoints:
- GET  /health
- POST /generate-report      full analysis (AnalysisRequest -> AnalysisResponse)
- POST /location-code        free-text state/city -> DataForSEO location code
- GET  /locations?state=     states, or the cities of one state
- POST /detect-competitors   local (Google Maps) or national (Labs) competitors

Errors are returned as {"error": ..., "details": ...} with status 400, 404 or 500.
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .competitors import CompetitorFinder
from .config import Settings
from .dataforseo_client import DataForSEOClient
from .errors import OpportunityError, ValidationError
from .locations import LocationCache, LocationResolver
from .models import AnalysisRequest, AnalysisScope, CamelModel
from .pipeline import ReportPipeline

logger = logging.getLogger(__name__)


class LocationCodeRequest(CamelModel):
    state: Optional[str] = None
    city: Optional[str] = None


class DetectCompetitorsRequest(CamelModel):
    business_type: Optional[str] = None
    location: Optional[str] = None
    business_url: Optional[str] = None
    location_code: Optional[int] = None
    analysis_scope: AnalysisScope = "local"


def error_response(status_code: int, error: str, details: Optional[str] = None, **extra) -> JSONResponse:
    content = {"error": error, "details": details}
    content.update({key: value for key, value in extra.items() if value is not None})
    return JSONResponse(status_code=status_code, content=content)


def create_app(
    settings: Optional[Settings] = None,
    pipeline: Optional[ReportPipeline] = None,
    resolver: Optional[LocationResolver] = None,
    finder: Optional[CompetitorFinder] = None,
) -> FastAPI:
    """
    Build the app. Collaborators not passed in are built from settings
    (Settings.from_env() when settings is None).
    """
    settings = settings or Settings.from_env()
    client: Optional[DataForSEOClient] = None
    if pipeline is None or resolver is None or finder is None:
        client = DataForSEOClient.from_settings(settings)

    pipeline = pipeline or ReportPipeline.from_settings(settings)
    resolver = resolver or LocationResolver(
        client,
        cache=LocationCache(settings.location_cache_ttl),
        threshold=settings.location_match_threshold,
    )
    finder = finder or CompetitorFinder(client)

    app = FastAPI(
        title="SEO Opportunity Calculator",
        description="Estimate the traffic and revenue a business is missing from organic search",
        version=__version__,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return error_response(400, "Invalid request body", str(exc.errors()))

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "service": "seo-opportunity",
            "version": __version__,
            "dataforseo_configured": settings.has_dataforseo_credentials(),
            "ai_configured": bool(settings.gemini_api_key),
        }

    @app.post("/generate-report")
    async def generate_report(body: AnalysisRequest):
        try:
            response = await pipeline.run(body)
        except ValidationError as e:
            return error_response(400, str(e), field=e.field)
        except OpportunityError as e:
            logger.error(f"Error generating report: {e}")
            return error_response(500, "Failed to generate report", str(e))
        return response.to_dict()

    @app.post("/location-code")
    async def location_code(body: LocationCodeRequest):
        if not body.state or not body.state.strip():
            return error_response(
                400,
                "State is required in request body",
                'Send JSON: {"state": "StateName"} or {"state": "StateName", "city": "CityName"}',
            )

        logger.info(f"Location code request for state={body.state}, city={body.city or 'n/a'}")
        try:
            match = await resolver.resolve(body.state, body.city)
        except OpportunityError as e:
            logger.error(f"Location lookup failed: {e}")
            return error_response(500, "Internal server error", str(e))

        if not match.found:
            return error_response(
                404,
                f'State "{body.state}" not found',
                "Check spelling or try a different name",
                similarStates=match.suggestions or None,
                searchTerm=body.state,
            )

        content = {"success": True, "source": "DataForSEO", **match.to_dict()}
        if match.warning:
            content["similarCities"] = match.suggestions
        return content

    @app.get("/locations")
    async def locations(state: Optional[str] = None):
        try:
            entries = await resolver.cities(state) if state else await resolver.states()
        except OpportunityError as e:
            logger.error(f"Error fetching locations: {e}")
            return error_response(500, "Failed to fetch locations", str(e))
        return [entry.model_dump() for entry in entries]

    @app.post("/detect-competitors")
    async def detect_competitors(body: DetectCompetitorsRequest):
        if body.analysis_scope == "local" and (not body.business_type or not body.location):
            return error_response(400, "Business type and location are required")
        if body.analysis_scope == "national" and not body.business_url:
            return error_response(400, "Business URL is required")

        try:
            competitors = await finder.find(
                body.analysis_scope,
                body.business_type or "",
                body.location or "",
                body.business_url or "",
                body.location_code,
            )
        except ValidationError as e:
            return error_response(400, str(e), field=e.field)
        except OpportunityError as e:
            logger.error(f"Error detecting {body.analysis_scope} competitors: {e}")
            return error_response(500, f"Failed to detect {body.analysis_scope} competitors", str(e))

        content = {
            "success": True,
            "competitors": [competitor.to_dict() for competitor in competitors],
        }
        if body.analysis_scope == "local":
            content["searchTerm"] = f"{body.business_type} in {body.location}"
        return content

    return app
