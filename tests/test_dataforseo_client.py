"""Tests for the DataForSEO gateway."""

import asyncio
import base64
import json

import httpx
import pytest
from unittest.mock import patch
from tenacity import wait_none

from seoopportunity.config import Settings
from seoopportunity.dataforseo_client import (
    SERP_TASK_POST,
    DataForSEOClient,
    parse_ranked_keywords,
    parse_search_volume,
    result_items,
)
from seoopportunity.errors import ConfigurationError, GatewayError, TaskTimeoutError


def make_client(handler, **kwargs) -> DataForSEOClient:
    return DataForSEOClient(
        login="user@example.com",
        password="secret",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def task_response(task_id: str, status_code: int, result=None) -> dict:
    return {
        "status_code": 20000,
        "tasks": [{
            "id": task_id,
            "status_code": status_code,
            "status_message": "Ok." if status_code == 20000 else "Task In Queue.",
            "result": result,
        }],
    }


class TestClientInit:
    """Tests for client configuration."""

    def test_not_configured_without_credentials(self, monkeypatch):
        """Test that a client without credentials reports so."""
        monkeypatch.delenv("DATAFORSEO_LOGIN", raising=False)
        monkeypatch.delenv("DATAFORSEO_PASSWORD", raising=False)
        assert DataForSEOClient().is_configured() is False

    def test_env_fallback(self, monkeypatch):
        """Test credentials from environment variables."""
        monkeypatch.setenv("DATAFORSEO_LOGIN", "env@example.com")
        monkeypatch.setenv("DATAFORSEO_PASSWORD", "envpass")
        client = DataForSEOClient()
        assert client.is_configured() is True
        assert client.api_login == "env@example.com"

    def test_from_settings(self):
        """Test construction from Settings."""
        settings = Settings(
            dataforseo_login="a", dataforseo_password="b", poll_backoff_factor=2.0, max_poll_delay=120
        )
        client = DataForSEOClient.from_settings(settings)
        assert client.is_configured()
        assert client.backoff_factor == 2.0
        assert client.max_poll_delay == 30.0


class TestCall:
    """Tests for authenticated requests."""

    @pytest.mark.asyncio
    async def test_basic_auth_and_json(self):
        """Test the Authorization header and decoded body."""
        seen = {}

        def handler(request: httpx.Request):
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"status_code": 20000, "tasks": []})

        client = make_client(handler)
        data = await client.call("/serp/google/organic/task_post", "POST", [{"keyword": "roofer"}])

        expected = base64.b64encode(b"user@example.com:secret").decode()
        assert seen["auth"] == f"Basic {expected}"
        assert seen["body"] == [{"keyword": "roofer"}]
        assert data["status_code"] == 20000

    @pytest.mark.asyncio
    async def test_missing_credentials_makes_no_request(self, monkeypatch):
        """Test ConfigurationError before any network traffic."""
        monkeypatch.delenv("DATAFORSEO_LOGIN", raising=False)
        monkeypatch.delenv("DATAFORSEO_PASSWORD", raising=False)
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={})

        client = DataForSEOClient(transport=httpx.MockTransport(handler))
        with pytest.raises(ConfigurationError):
            await client.call("/anything")
        assert calls == []

    @pytest.mark.asyncio
    async def test_http_error(self):
        """Test that a non-2xx status becomes GatewayError with the status code."""
        client = make_client(lambda request: httpx.Response(401, text="Unauthorized"))

        with pytest.raises(GatewayError) as exc_info:
            await client.call("/anything")

        assert exc_info.value.status_code == 401
        assert "401" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        """Test that an undecodable body is a GatewayError."""
        client = make_client(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(GatewayError):
            await client.call("/anything")

    @pytest.mark.asyncio
    async def test_transport_error_retried(self):
        """Test that connection errors are retried, then surface without a status code."""
        attempts = []

        def handler(request):
            attempts.append(request)
            raise httpx.ConnectError("connection reset", request=request)

        client = make_client(handler)
        with patch.object(DataForSEOClient._send.retry, "wait", wait_none()):
            with pytest.raises(GatewayError) as exc_info:
                await client.call("/anything")

        assert len(attempts) == 3
        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_transport_error_recovers(self):
        """Test that a transient failure followed by success returns data."""
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ReadTimeout("timeout", request=request)
            return httpx.Response(200, json={"ok": True})

        client = make_client(handler)
        with patch.object(DataForSEOClient._send.retry, "wait", wait_none()):
            data = await client.call("/anything")

        assert data == {"ok": True}
        assert len(attempts) == 2


class TestSubmitTasks:
    """Tests for task submission."""

    @pytest.mark.asyncio
    async def test_returns_created_ids(self):
        """Test that only created tasks are returned."""
        def handler(request):
            return httpx.Response(200, json={"tasks": [
                {"id": "t1", "status_code": 20100},
                {"id": "t2", "status_code": 40200, "status_message": "Payment Required."},
                {"id": None, "status_code": 20100},
            ]})

        client = make_client(handler)
        ids = await client.submit_tasks(SERP_TASK_POST, [{"keyword": "a"}, {"keyword": "b"}, {"keyword": "c"}])
        assert ids == ["t1"]

    @pytest.mark.asyncio
    async def test_empty_items(self):
        """Test that nothing is sent for an empty task list."""
        calls = []
        client = make_client(lambda request: calls.append(request) or httpx.Response(200, json={}))
        assert await client.submit_tasks(SERP_TASK_POST, []) == []
        assert calls == []


class TestPollForResults:
    """Tests for task polling."""

    @pytest.mark.asyncio
    async def test_collects_completed_tasks(self):
        """Test completed, pending and failed tasks."""
        polls = {"done": 0, "slow": 0, "failed": 0}

        def handler(request: httpx.Request):
            task_id = request.url.path.rsplit("/", 1)[-1]
            polls[task_id] += 1
            if task_id == "done":
                return httpx.Response(200, json=task_response("done", 20000, [{"keyword": "roof repair"}]))
            if task_id == "failed":
                return httpx.Response(200, json=task_response("failed", 40400))
            return httpx.Response(200, json=task_response("slow", 20100))

        client = make_client(handler)
        tasks = await client.poll_for_results(["done", "slow", "failed"], max_attempts=3, initial_delay=0)

        assert [t["id"] for t in tasks] == ["done"]
        assert polls == {"done": 1, "slow": 3, "failed": 1}

    @pytest.mark.asyncio
    async def test_single_attempt_never_sleeps(self):
        """Test that polling stops after max_attempts rounds without a trailing wait."""
        client = make_client(lambda request: httpx.Response(200, json=task_response("x", 20100)))

        tasks = await asyncio.wait_for(
            client.poll_for_results(["x"], max_attempts=1, initial_delay=100), timeout=5
        )
        assert tasks == []

    @pytest.mark.asyncio
    async def test_task_finishing_late(self):
        """Test that a task completing on a later round is collected."""
        polls = []

        def handler(request):
            polls.append(request)
            status = 20000 if len(polls) >= 3 else 40602
            return httpx.Response(200, json=task_response("t", status, []))

        client = make_client(handler)
        tasks = await client.poll_for_results(["t"], max_attempts=5, initial_delay=0, endpoint_kind="serp")

        assert len(tasks) == 1
        assert len(polls) == 3
        assert "/serp/google/organic/task_get/advanced/t" in str(polls[0].url)

    @pytest.mark.asyncio
    async def test_request_errors_are_retried(self):
        """Test that a failing task_get request is retried on the next round."""
        polls = []

        def handler(request):
            polls.append(request)
            if len(polls) == 1:
                return httpx.Response(500, text="Internal Server Error")
            return httpx.Response(200, json=task_response("t", 20000, []))

        client = make_client(handler)
        tasks = await client.poll_for_results(["t"], max_attempts=3, initial_delay=0)
        assert len(tasks) == 1

    @pytest.mark.asyncio
    async def test_timeout_error_carries_partial_results(self):
        """Test raise_on_timeout."""
        def handler(request):
            task_id = request.url.path.rsplit("/", 1)[-1]
            status = 20000 if task_id == "done" else 20100
            return httpx.Response(200, json=task_response(task_id, status, []))

        client = make_client(handler)
        with pytest.raises(TaskTimeoutError) as exc_info:
            await client.poll_for_results(["done", "slow"], max_attempts=2, initial_delay=0, raise_on_timeout=True)

        assert exc_info.value.pending_ids == ["slow"]
        assert [t["id"] for t in exc_info.value.partial_results] == ["done"]

    @pytest.mark.asyncio
    async def test_unknown_endpoint_kind(self):
        """Test that an unknown endpoint kind is rejected."""
        client = make_client(lambda request: httpx.Response(200, json={}))
        with pytest.raises(ValueError):
            await client.poll_for_results(["t"], endpoint_kind="maps")

    @pytest.mark.asyncio
    async def test_exponential_backoff_is_capped(self):
        """Test delay growth with a backoff factor and the 30s cap."""
        client = make_client(
            lambda request: httpx.Response(200, json=task_response("t", 20100)),
            backoff_factor=2.0,
        )
        sleeps = []

        async def fake_sleep(delay):
            sleeps.append(delay)

        with patch("seoopportunity.dataforseo_client.asyncio.sleep", side_effect=fake_sleep):
            await client.poll_for_results(["t"], max_attempts=5, initial_delay=10)

        assert sleeps == [10, 20, 30, 30]


class TestParsing:
    """Tests for response parsing helpers."""

    def test_result_items(self):
        """Test flattening of tasks/result/items."""
        data = {"tasks": [
            {"result": [{"items": [{"a": 1}, {"a": 2}]}, None]},
            {"result": None},
            {"result": [{"items": [{"a": 3}]}]},
        ]}
        assert [i["a"] for i in result_items(data)] == [1, 2, 3]

    def test_parse_search_volume(self):
        """Test volume parsing, defaults for missing keywords and duplicates."""
        tasks = [{"result": [
            {"keyword": "Roof Repair", "search_volume": 1900, "cpc": 12.5, "competition": 0.4},
            {"keyword": "roof repair", "search_volume": 5, "cpc": None},
            {"keyword": "roofer", "search_volume": None, "competition_index": 35},
        ]}]

        records = parse_search_volume(tasks, ["roof repair", "roofer", "metal roof"])
        by_keyword = {r.keyword: r for r in records}

        assert by_keyword["roof repair"].search_volume == 1900
        assert by_keyword["roof repair"].cpc == 12.5
        assert by_keyword["roofer"].search_volume == 0
        assert by_keyword["roofer"].competition == pytest.approx(0.35)
        assert by_keyword["metal roof"].search_volume == 0
        assert len(records) == 3

    def test_parse_search_volume_skips_malformed_entries(self):
        """Test that null results and non-dict tasks are ignored."""
        tasks = [
            {"result": [None, {"keyword": "roofer", "search_volume": 880}, "oops"]},
            None,
            {"result": None},
        ]

        records = parse_search_volume(tasks, ["roofer", "roof repair"])

        assert {r.keyword: r.search_volume for r in records} == {"roofer": 880, "roof repair": 0}

    def test_parse_ranked_keywords(self):
        """Test ranked keyword parsing."""
        data = {"tasks": [{"result": [{"items": [{
            "keyword_data": {"keyword": "roof repair austin", "keyword_info": {"search_volume": 320, "cpc": 14.237}},
            "ranked_serp_element": {
                "keyword_difficulty": 21,
                "serp_item": {"rank_absolute": 4, "url": "https://acme.com/repair", "domain": "acme.com"},
            },
        }]}]}]}

        ranked = parse_ranked_keywords(data)

        assert len(ranked) == 1
        assert ranked[0].keyword == "roof repair austin"
        assert ranked[0].search_volume == 320
        assert ranked[0].cpc == 14.24
        assert ranked[0].rank == 4


class TestEndpoints:
    """Tests for endpoint helpers."""

    @pytest.mark.asyncio
    async def test_get_search_volume(self):
        """Test the task_post -> task_get flow for search volume."""
        def handler(request: httpx.Request):
            if request.url.path.endswith("/task_post"):
                body = json.loads(request.content)
                assert body[0]["location_code"] == 1026201
                return httpx.Response(200, json={"tasks": [{"id": "v1", "status_code": 20100}]})
            return httpx.Response(200, json=task_response("v1", 20000, [
                {"keyword": "roof repair", "search_volume": 1900},
            ]))

        client = make_client(handler)
        records = await client.get_search_volume(["roof repair", "roofer"], 1026201, max_attempts=2, delay=0)

        assert {r.keyword: r.search_volume for r in records} == {"roof repair": 1900, "roofer": 0}

    @pytest.mark.asyncio
    async def test_get_search_volume_no_task(self):
        """Test that a failed task creation raises GatewayError."""
        client = make_client(lambda request: httpx.Response(200, json={"tasks": [
            {"id": "x", "status_code": 40200, "status_message": "Payment Required."},
        ]}))
        with pytest.raises(GatewayError):
            await client.get_search_volume(["roof repair"], 2840, delay=0)

    @pytest.mark.asyncio
    async def test_get_serp_rankings_payload(self):
        """Test one SERP task per keyword with depth 100 and priority 2."""
        posted = {}

        def handler(request: httpx.Request):
            if request.url.path.endswith("/task_post"):
                posted["body"] = json.loads(request.content)
                return httpx.Response(200, json={"tasks": [
                    {"id": f"s{i}", "status_code": 20100} for i in range(len(posted["body"]))
                ]})
            task_id = request.url.path.rsplit("/", 1)[-1]
            return httpx.Response(200, json=task_response(task_id, 20000, []))

        client = make_client(handler)
        tasks = await client.get_serp_rankings(["a", "b"], 1026201, max_attempts=1, delay=0)

        assert len(tasks) == 2
        assert posted["body"][0] == {
            "keyword": "a", "location_code": 1026201, "language_code": "en", "depth": 100, "priority": 2,
        }
