"""
Data models for the SEO opportunity calculator
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

AnalysisScope = Literal["local", "national"]
LocationType = Literal["state", "city"]


class CamelModel(BaseModel):
    """Base for models exchanged with the UI layer, storage and email (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> dict:
        """Plain nested data with camelCase keys, ready for JSON/storage."""
        return self.model_dump(mode="json", by_alias=True)


# ========== LOCATIONS ==========


class LocationEntry(BaseModel):
    """A state or city known to DataForSEO"""

    name: str = Field(..., description="Location name as returned by DataForSEO")
    code: int = Field(..., description="DataForSEO location code")


class LocationTable(BaseModel):
    """Canonical US states plus the cities assigned to each state"""

    states: list[LocationEntry] = Field(default_factory=list)
    cities: dict[str, list[LocationEntry]] = Field(default_factory=dict)


class LocationMatch(CamelModel):
    """Result of resolving free-text state/city input"""

    code: Optional[int] = Field(default=None, description="Resolved location code")
    matched_name: Optional[str] = Field(default=None, description="Name of the matched entry")
    type: Optional[LocationType] = Field(default=None, description="state or city")
    score: float = Field(default=0.0, description="Fuzzy match score (0-1)")
    method: str = Field(default="none", description="Matching strategy that produced the score")
    suggestions: list[str] = Field(default_factory=list, description="Close names when no match")
    warning: Optional[str] = Field(default=None, description="Set when a city lookup fell back to the state")

    state_name: Optional[str] = None
    state_code: Optional[int] = None
    city_name: Optional[str] = None
    city_code: Optional[int] = None

    @property
    def found(self) -> bool:
        return self.code is not None


# ========== KEYWORDS & RANKINGS ==========


class KeywordRecord(BaseModel):
    """Search volume data for one keyword"""

    keyword: str = Field(..., description="Lowercased keyword text")
    search_volume: int = Field(default=0, ge=0, description="Monthly search volume")
    cpc: Optional[float] = Field(default=None, description="Cost per click")
    competition: Optional[float] = Field(default=None, description="Ads competition (0-1)")


class RankedKeywordRecord(BaseModel):
    """A keyword a competitor domain is observed to rank for"""

    keyword: str
    search_volume: int = 0
    cpc: Optional[float] = None
    keyword_difficulty: float = 0
    rank: int = 0
    url: str = ""
    domain: str = ""


class Competitor(CamelModel):
    """A competitor found via Google Maps (local) or DataForSEO Labs (national)"""

    name: str
    url: str
    source: str = "DataForSEO"
    organic_traffic: Optional[float] = None
    keyword_count: Optional[int] = None
    domain_authority: Optional[float] = None
    rating: Optional[float] = None
    review_count: Optional[int] = None
    address: Optional[str] = None


# domain -> keyword -> position (None = not in top 100)
DomainRanking = dict[str, dict[str, Optional[int]]]


class CombinedKeywordEntry(CamelModel):
    """One keyword with volume and client/competitor positions"""

    keyword: str
    search_volume: int = Field(..., gt=0)
    client_rank: Optional[int] = None
    competitor_ranks: dict[str, Optional[int]] = Field(
        default_factory=dict, description="Competitor URL -> position"
    )


# ========== REPORT ==========


class RankingDistribution(CamelModel):
    """Cumulative position buckets (a top-3 keyword also counts as top-10, ...)"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    top3: int = 0
    top10: int = 0
    top50: int = 0
    top100: int = 0
    total: int = 0


class CompetitorRanking(RankingDistribution):
    """Position buckets for one competitor"""

    name: str
    url: str
    source: str = "DataForSEO"


class AnalysisInsights(CamelModel):
    """Heuristic, scope-specific labels derived from the keyword set"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    # local
    local_pack_opportunities: Optional[int] = None
    google_maps_ranking_factor: Optional[str] = None
    near_me_searches: Optional[int] = None
    local_competitor_strength: Optional[str] = None
    # national
    competitive_difficulty: Optional[str] = None
    content_gaps: Optional[int] = None
    backlink_opportunities: Optional[int] = None

    recommended_actions: list[str] = Field(default_factory=list)


class Report(CamelModel):
    """SEO opportunity report; immutable once computed"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    total_search_volume: int
    potential_traffic: int
    conversion_rate: float = Field(..., description="Visitor-to-customer rate in percent")
    conversion_rate_source: Literal["ai", "rule_based"] = "rule_based"
    potential_customers: int
    potential_revenue: float
    current_rankings: RankingDistribution
    competitor_rankings: list[CompetitorRanking] = Field(default_factory=list)
    analysis_scope: AnalysisScope
    analysis_insights: AnalysisInsights
    keyword_data: list[CombinedKeywordEntry] = Field(default_factory=list)


# ========== REQUEST / RESPONSE ==========


class AnalysisRequest(CamelModel):
    """Input of one report computation (fields are validated by the pipeline)"""

    business_url: Optional[str] = None
    business_type: Optional[str] = None
    location: Optional[str] = None
    location_code: Optional[int] = None
    customer_value: Optional[float] = None
    analysis_scope: AnalysisScope = "local"
    competitors: list[str] = Field(default_factory=list, description="Competitor URLs (optional)")


class AnalysisResponse(CamelModel):
    """Report plus the echoed request fields"""

    report: Report
    business_url: str
    business_type: str
    location: str
    location_code: Optional[int] = None
    analysis_scope: AnalysisScope
    competitors: list[Competitor] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list, description="Keywords sent to the volume lookup")
