# ABOUTME: DataForSEO v3 gateway: authenticated calls, task submission and polling
# ABOUTME: Used for locations, search volume, ranked keywords, competitors and SERP tasks

import asyncio
import base64
import logging
import os
from typing import Any, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import DATAFORSEO_BASE_URL, US_LOCATION_CODE, Settings
from .errors import ConfigurationError, GatewayError, TaskTimeoutError
from .models import KeywordRecord, RankedKeywordRecord

logger = logging.getLogger(__name__)

# Task status codes returned by DataForSEO
STATUS_OK = 20000
PENDING_STATUS_CODES = frozenset({20100, 40601, 40602})
TERMINAL_STATUS_CODES = frozenset({
    40100, 40200, 40201, 40202, 40203, 40204, 40400, 40401, 40402, 40403, 50000,
})

TASK_GET_ENDPOINTS = {
    "keywords_data": "/keywords_data/google_ads/search_volume/task_get/{task_id}",
    "serp": "/serp/google/organic/task_get/advanced/{task_id}",
}

SEARCH_VOLUME_TASK_POST = "/keywords_data/google_ads/search_volume/task_post"
SERP_TASK_POST = "/serp/google/organic/task_post"
RANKED_KEYWORDS_LIVE = "/dataforseo_labs/google/ranked_keywords/live"
COMPETITORS_DOMAIN_LIVE = "/dataforseo_labs/google/competitors_domain/live"
MAPS_LIVE = "/serp/google/maps/live/advanced"

# Google Ads search volume accepts at most 1000 keywords per task
MAX_KEYWORDS_PER_VOLUME_TASK = 1000

MAX_POLL_DELAY = 30.0


def result_items(data: dict) -> list[dict]:
    """Flatten tasks[].result[].items[] of a live endpoint response."""
    items = []
    for task in data.get("tasks") or []:
        if not isinstance(task, dict):
            continue
        for result in task.get("result") or []:
            if isinstance(result, dict) and isinstance(result.get("items"), list):
                items.extend(result["items"])
    return items


def parse_search_volume(tasks: list[dict], requested: list[str]) -> list[KeywordRecord]:
    """
    Turn completed search volume tasks into one KeywordRecord per distinct keyword.

    Keywords the provider did not return are included with zero volume.
    """
    records: dict[str, KeywordRecord] = {}

    for task in tasks:
        if not isinstance(task, dict):
            continue
        for item in task.get("result") or []:
            if not isinstance(item, dict):
                continue
            keyword = (item.get("keyword") or "").strip().lower()
            if not keyword or keyword in records:
                continue

            competition = item.get("competition")
            if not isinstance(competition, (int, float)):
                index = item.get("competition_index")
                competition = index / 100 if isinstance(index, (int, float)) else None

            cpc = item.get("cpc")
            records[keyword] = KeywordRecord(
                keyword=keyword,
                search_volume=item.get("search_volume") or 0,
                cpc=float(cpc) if cpc else None,
                competition=float(competition) if competition is not None else None,
            )

    for keyword in requested:
        normalized = keyword.strip().lower()
        if normalized and normalized not in records:
            records[normalized] = KeywordRecord(keyword=normalized)

    return list(records.values())


def parse_ranked_keywords(data: dict) -> list[RankedKeywordRecord]:
    """Parse a ranked_keywords/live response."""
    ranked = []
    for item in result_items(data):
        if not isinstance(item, dict):
            continue
        keyword_data = item.get("keyword_data") or {}
        keyword_info = keyword_data.get("keyword_info") or {}
        serp_element = item.get("ranked_serp_element") or {}
        serp_item = serp_element.get("serp_item") or {}

        keyword = (keyword_data.get("keyword") or "").strip()
        if not keyword:
            continue

        cpc = keyword_info.get("cpc")
        ranked.append(RankedKeywordRecord(
            keyword=keyword,
            search_volume=keyword_info.get("search_volume") or 0,
            cpc=round(float(cpc), 2) if cpc else None,
            keyword_difficulty=serp_element.get("keyword_difficulty") or 0,
            rank=serp_item.get("rank_absolute") or 0,
            url=serp_item.get("url") or "",
            domain=serp_item.get("domain") or "",
        ))
    return ranked


class DataForSEOClient:
    """
    Async gateway to the DataForSEO v3 API.

    Two interaction modes:
    - synchronous ("live") endpoints answer immediately via call()
    - task endpoints: submit_tasks() then poll_for_results()

    Usage:
        client = DataForSEOClient()  # Uses env vars
        # Or: client = DataForSEOClient(login="...", password="...")

        task_ids = await client.submit_tasks(SERP_TASK_POST, [{"keyword": "roofer", ...}])
        tasks = await client.poll_for_results(task_ids, 20, 10.0, "serp")
    """

    def __init__(
        self,
        login: Optional[str] = None,
        password: Optional[str] = None,
        base_url: str = DATAFORSEO_BASE_URL,
        timeout: float = 60.0,
        backoff_factor: float = 1.0,
        max_poll_delay: float = MAX_POLL_DELAY,
        max_concurrent_polls: int = 10,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize DataForSEO client.

        Args:
            login: DataForSEO API login (email). Falls back to DATAFORSEO_LOGIN env var.
            password: DataForSEO API password. Falls back to DATAFORSEO_PASSWORD env var.
            base_url: API root
            timeout: Per-request timeout in seconds
            backoff_factor: Polling delay multiplier per round (1.0 keeps the delay fixed)
            max_poll_delay: Polling delay cap in seconds (never above 30)
            max_concurrent_polls: Max task_get requests in flight
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.api_login = login or os.getenv("DATAFORSEO_LOGIN", "")
        self.api_password = password or os.getenv("DATAFORSEO_PASSWORD", "")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.backoff_factor = max(backoff_factor, 1.0)
        self.max_poll_delay = min(max_poll_delay, MAX_POLL_DELAY)
        self.max_concurrent_polls = max_concurrent_polls
        self._transport = transport

        if self.is_configured():
            logger.info("DataForSEO client initialized")
        else:
            logger.warning(
                "DataForSEO not configured. Set DATAFORSEO_LOGIN and DATAFORSEO_PASSWORD "
                "environment variables, or pass login/password to constructor."
            )

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "DataForSEOClient":
        return cls(
            login=settings.dataforseo_login,
            password=settings.dataforseo_password,
            base_url=settings.dataforseo_base_url,
            timeout=settings.request_timeout,
            backoff_factor=settings.poll_backoff_factor,
            max_poll_delay=settings.max_poll_delay,
            **kwargs,
        )

    def is_configured(self) -> bool:
        """Check if client has valid credentials."""
        return bool(self.api_login and self.api_password)

    def _headers(self) -> dict[str, str]:
        credentials = f"{self.api_login}:{self.api_password}"
        encoded_credentials = base64.b64encode(credentials.encode()).decode()
        return {
            "Authorization": f"Basic {encoded_credentials}",
            "Content-Type": "application/json",
        }

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        reraise=True,
    )
    async def _send(self, method: str, url: str, body: Any) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            return await client.request(
                method,
                url,
                json=body if body is not None and method == "POST" else None,
                headers=self._headers(),
            )

    async def call(self, endpoint: str, method: str = "GET", body: Any = None) -> dict:
        """
        Make an authenticated request and return the decoded JSON.

        Raises:
            ConfigurationError: credentials are missing (no request is made)
            GatewayError: non-2xx status, undecodable body or exhausted transport retries
        """
        if not self.is_configured():
            raise ConfigurationError("DataForSEO credentials are not configured")

        url = f"{self.base_url}{endpoint}"
        try:
            response = await self._send(method, url, body)
        except httpx.TransportError as e:
            raise GatewayError(f"{method} {endpoint} failed: {e}") from e

        if not response.is_success:
            message = response.text[:500] or response.reason_phrase
            raise GatewayError(message, status_code=response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise GatewayError(
                f"Invalid JSON from {endpoint}", status_code=response.status_code
            ) from e

    # ========== TASK MODE ==========

    async def submit_tasks(self, endpoint: str, items: list[dict]) -> list[str]:
        """POST a task array and return the ids of the tasks the provider created."""
        if not items:
            return []

        data = await self.call(endpoint, "POST", items)
        task_ids = []
        for task in data.get("tasks") or []:
            task_id = task.get("id")
            status = task.get("status_code")
            if task_id and status not in TERMINAL_STATUS_CODES:
                task_ids.append(task_id)
            else:
                logger.warning(
                    f"Task not created on {endpoint}: {status} - {task.get('status_message')}"
                )

        logger.info(f"Created {len(task_ids)}/{len(items)} tasks on {endpoint}")
        return task_ids

    async def _fetch_task(
        self, endpoint: str, task_id: str, semaphore: asyncio.Semaphore
    ) -> Optional[dict]:
        async with semaphore:
            try:
                data = await self.call(endpoint, "GET")
            except GatewayError as e:
                logger.warning(f"Error fetching results for task {task_id}: {e}")
                return None

        tasks = data.get("tasks") or []
        return tasks[0] if tasks else None

    async def poll_for_results(
        self,
        task_ids: list[str],
        max_attempts: int = 10,
        initial_delay: float = 5.0,
        endpoint_kind: str = "keywords_data",
        raise_on_timeout: bool = False,
    ) -> list[dict]:
        """
        Poll task ids until they complete, fail terminally or attempts run out.

        Every round fetches all pending ids concurrently. One lagging or failing
        task never fails the batch: whatever completed is returned.

        Args:
            task_ids: Ids returned by submit_tasks()
            max_attempts: Polling rounds
            initial_delay: Seconds to wait between rounds
            endpoint_kind: "keywords_data" or "serp"
            raise_on_timeout: Raise TaskTimeoutError (with the partial results)
                instead of returning them when tasks are still pending

        Returns:
            Completed task objects (each with its "result" list)
        """
        template = TASK_GET_ENDPOINTS.get(endpoint_kind)
        if template is None:
            raise ValueError(f"Unknown endpoint type: {endpoint_kind}")

        pending = list(dict.fromkeys(task_ids))
        completed: list[dict] = []
        delay = min(initial_delay, self.max_poll_delay)
        attempts = 0
        semaphore = asyncio.Semaphore(self.max_concurrent_polls)

        logger.info(f"Polling {len(pending)} {endpoint_kind} tasks (max {max_attempts} attempts)")

        while pending and attempts < max_attempts:
            attempts += 1
            logger.debug(f"Polling attempt {attempts}/{max_attempts} for {len(pending)} remaining tasks")

            tasks = await asyncio.gather(
                *[self._fetch_task(template.format(task_id=task_id), task_id, semaphore)
                  for task_id in pending]
            )

            still_pending = []
            for task_id, task in zip(pending, tasks):
                if task is None:
                    still_pending.append(task_id)
                    continue

                status = task.get("status_code")
                if status == STATUS_OK:
                    completed.append(task)
                elif status in PENDING_STATUS_CODES:
                    still_pending.append(task_id)
                elif status in TERMINAL_STATUS_CODES:
                    logger.error(f"Task {task_id} failed: {status} - {task.get('status_message')}")
                else:
                    logger.warning(
                        f"Task {task_id} returned status code {status}: {task.get('status_message')}"
                    )
                    still_pending.append(task_id)

            pending = still_pending
            if pending and attempts < max_attempts:
                await asyncio.sleep(delay)
                delay = min(delay * self.backoff_factor, self.max_poll_delay)

        if pending:
            logger.warning(
                f"Polling finished with {len(completed)}/{len(task_ids)} tasks completed "
                f"after {attempts} attempts"
            )
            if raise_on_timeout:
                raise TaskTimeoutError(pending, completed)
        else:
            logger.info(f"All {len(completed)} completed tasks collected after {attempts} attempts")

        return completed

    # ========== ENDPOINTS ==========

    async def get_locations(self, country: str = "us") -> list[dict]:
        """Raw Google Ads location list for a country."""
        data = await self.call(f"/keywords_data/google_ads/locations/{country}", "GET")
        tasks = data.get("tasks") or []
        if not tasks:
            return []
        return tasks[0].get("result") or []

    async def get_search_volume(
        self,
        keywords: list[str],
        location_code: int,
        max_attempts: int = 20,
        delay: float = 3.0,
    ) -> list[KeywordRecord]:
        """
        Search volume, CPC and competition for keywords (task-based).

        Raises:
            GatewayError: no task could be created
        """
        if not keywords:
            return []

        items = [
            {"location_code": location_code, "keywords": keywords[i:i + MAX_KEYWORDS_PER_VOLUME_TASK]}
            for i in range(0, len(keywords), MAX_KEYWORDS_PER_VOLUME_TASK)
        ]
        logger.info(
            f"Creating search volume task(s) for {len(keywords)} keywords using location code {location_code}"
        )

        task_ids = await self.submit_tasks(SEARCH_VOLUME_TASK_POST, items)
        if not task_ids:
            raise GatewayError("Failed to create search volume task")

        tasks = await self.poll_for_results(task_ids, max_attempts, delay, "keywords_data")
        if not tasks:
            logger.warning("No search volume results returned; task may still be in progress")

        records = parse_search_volume(tasks, keywords)
        logger.info(f"Search volume data fetched for {len(records)} keywords")
        return records

    async def get_ranked_keywords(
        self,
        domain: str,
        limit: int = 30,
        location_code: int = US_LOCATION_CODE,
    ) -> list[RankedKeywordRecord]:
        """Keywords a domain ranks for (DataForSEO Labs works at country level)."""
        data = await self.call(RANKED_KEYWORDS_LIVE, "POST", [{
            "target": domain,
            "location_code": location_code,
            "language_code": "en",
            "limit": limit,
        }])
        ranked = parse_ranked_keywords(data)
        logger.info(f"Got {len(ranked)} ranked keywords for {domain}")
        return ranked

    async def get_competitor_domains(self, domain: str, limit: int = 4) -> list[dict]:
        """Organic competitor domains from DataForSEO Labs."""
        data = await self.call(COMPETITORS_DOMAIN_LIVE, "POST", [{
            "target": domain,
            "location_code": US_LOCATION_CODE,
            "language_code": "en",
            "language_name": "English",
            "limit": limit,
            "exclude_top_domains": True,
        }])
        return result_items(data)

    async def get_local_competitors(self, keyword: str, location_code: Optional[int]) -> list[dict]:
        """Google Maps SERP items for a local query ("roofing in Austin, Texas")."""
        payload: dict[str, Any] = {"keyword": keyword, "language_code": "en"}
        if location_code:
            payload["location_code"] = location_code
        data = await self.call(MAPS_LIVE, "POST", [payload])
        return result_items(data)

    async def get_serp_rankings(
        self,
        keywords: list[str],
        location_code: int,
        max_attempts: int = 20,
        delay: float = 10.0,
    ) -> list[dict]:
        """
        Organic top-100 SERPs, one task per keyword (task-based).

        Returns the completed tasks; tasks that never finish are left out.
        """
        if not keywords:
            return []

        items = [
            {
                "keyword": keyword,
                "location_code": location_code,
                "language_code": "en",
                "depth": 100,
                "priority": 2,
            }
            for keyword in keywords
        ]
        task_ids = await self.submit_tasks(SERP_TASK_POST, items)
        if not task_ids:
            raise GatewayError("Failed to create SERP tasks")

        return await self.poll_for_results(task_ids, max_attempts, delay, "serp")
