"""
Ranking aggregation: search volumes for the keyword set, then organic
positions of the client and its competitors for the highest-volume keywords.
"""

import logging
from typing import Optional

from .config import US_LOCATION_CODE, Settings
from .dataforseo_client import DataForSEOClient
from .models import AnalysisScope, CombinedKeywordEntry, DomainRanking, KeywordRecord
from .urls import domain_from_url

logger = logging.getLogger(__name__)


def select_top_keywords(records: list[KeywordRecord], top_n: int = 50) -> tuple[list[KeywordRecord], list[str]]:
    """
    Drop zero-volume keywords and order the rest by volume (descending, stable).

    Returns:
        (records with volume, keywords of the top_n highest-volume records)
    """
    with_volume = [record for record in records if record.search_volume > 0]
    with_volume.sort(key=lambda record: record.search_volume, reverse=True)
    return with_volume, [record.keyword for record in with_volume[:top_n]]


def _host(value: str) -> str:
    return domain_from_url(value).lower() if value else ""


def domain_matches(domain: str, item_domain: str, item_url: str) -> bool:
    """True when the item's host is domain or one of its subdomains."""
    for host in (_host(item_domain), _host(item_url)):
        if host and (host == domain or host.endswith("." + domain)):
            return True
    return False


def match_domain_rankings(tasks: list[dict], domains: list[str], rankings: DomainRanking) -> None:
    """
    Record positions from completed SERP tasks into rankings (in place).

    Each organic item goes to the first domain (in domains order) whose host
    matches. A domain keeps the first position it is seen at for a keyword.
    Malformed tasks, results and items are skipped.
    """
    for task in tasks:
        if not isinstance(task, dict):
            continue
        for result in task.get("result") or []:
            if not isinstance(result, dict):
                continue
            keyword = (result.get("keyword") or "").strip().lower()
            if not keyword:
                continue

            for domain in domains:
                rankings[domain].setdefault(keyword, None)

            for item in result.get("items") or []:
                if not isinstance(item, dict) or item.get("type") != "organic":
                    continue
                item_domain = item.get("domain") or ""
                item_url = item.get("url") or ""
                for domain in domains:
                    if domain_matches(domain, item_domain, item_url):
                        if rankings[domain][keyword] is None:
                            rankings[domain][keyword] = item.get("rank_absolute")
                        break


def combine_keyword_data(
    records: list[KeywordRecord],
    ranked_keywords: list[str],
    rankings: DomainRanking,
    client_domain: str,
    competitors: list[str],
) -> list[CombinedKeywordEntry]:
    """Join volumes with positions; keywords outside ranked_keywords get no positions."""
    ranked = set(ranked_keywords)
    competitor_domains = [domain_from_url(url) for url in competitors]
    combined = []

    for record in records:
        if record.search_volume <= 0:
            continue
        in_analysis = record.keyword in ranked

        competitor_ranks: dict[str, Optional[int]] = {}
        for url, domain in zip(competitors, competitor_domains):
            competitor_ranks[url] = rankings.get(domain, {}).get(record.keyword) if in_analysis else None

        combined.append(CombinedKeywordEntry(
            keyword=record.keyword,
            search_volume=record.search_volume,
            client_rank=rankings.get(client_domain, {}).get(record.keyword) if in_analysis else None,
            competitor_ranks=competitor_ranks,
        ))

    return combined


class RankingAggregator:
    """
    Volumes + client/competitor positions for a keyword set.

    Usage:
        aggregator = RankingAggregator(client, Settings.from_env())
        entries = await aggregator.aggregate(
            "joesroofing.com", ["https://acmeroof.com"], keywords,
            "Austin, Texas", 1026201, "local",
        )
    """

    def __init__(self, client: DataForSEOClient, settings: Optional[Settings] = None):
        self.client = client
        self.settings = settings or Settings()

    async def get_domain_rankings(
        self,
        domains: list[str],
        keywords: list[str],
        location_code: int,
    ) -> DomainRanking:
        """
        Top-100 organic position of every domain for every keyword (None = not ranking).

        Keywords are submitted in batches; a failing batch is logged and its
        keywords stay None.
        """
        domains = list(dict.fromkeys(domains))
        rankings: DomainRanking = {domain: {} for domain in domains}
        batch_size = max(self.settings.serp_batch_size, 1)

        for i in range(0, len(keywords), batch_size):
            batch = keywords[i:i + batch_size]
            logger.info(
                f"Submitting batch of {len(batch)} keywords to the SERP API using location code {location_code}"
            )
            try:
                tasks = await self.client.get_serp_rankings(
                    batch,
                    location_code,
                    max_attempts=self.settings.serp_poll_attempts,
                    delay=self.settings.serp_poll_delay,
                )
                logger.info(f"Received results for {len(tasks)} of {len(batch)} SERP tasks")
                match_domain_rankings(tasks, domains, rankings)
            except Exception as e:
                logger.error(f"Error processing batch of {len(batch)} keywords: {e}")
                continue

        for domain in domains:
            for keyword in keywords:
                rankings[domain].setdefault(keyword, None)

        return rankings

    async def aggregate(
        self,
        client_domain: str,
        competitors: list[str],
        keywords: list[str],
        location: str,
        location_code: Optional[int],
        scope: AnalysisScope = "local",
    ) -> list[CombinedKeywordEntry]:
        """
        Build the per-keyword table used by the opportunity calculator.

        Raises:
            GatewayError: the search volume lookup failed
        """
        if scope == "national" or not location_code:
            location_code = US_LOCATION_CODE
        client_domain = domain_from_url(client_domain)
        logger.info(f"Aggregating rankings for {client_domain} in {location} (code: {location_code}, {scope})")

        records = await self.client.get_search_volume(
            keywords,
            location_code,
            max_attempts=self.settings.volume_poll_attempts,
            delay=self.settings.volume_poll_delay,
        )

        with_volume, top_keywords = select_top_keywords(records, self.settings.ranking_top_n)
        logger.info(f"Filtered out {len(records) - len(with_volume)} keywords with zero search volume")
        logger.info(f"Selected top {len(top_keywords)} keywords by search volume for ranking analysis")

        domains = [client_domain] + [domain_from_url(url) for url in competitors]
        rankings = await self.get_domain_rankings(domains, top_keywords, location_code)

        combined = combine_keyword_data(with_volume, top_keywords, rankings, client_domain, competitors)
        logger.info(f"Final keyword data contains {len(combined)} keywords with search volume > 0")
        return combined
