import json

import pytest
import respx
from httpx import ConnectError, Response

from oas_agent.tavily import TavilyClient


@pytest.mark.asyncio
async def test_tavily_search_payload_and_headers():
    client = TavilyClient("test-key")
    captured = {}
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            def handler(request):
                captured["json"] = json.loads(request.content.decode("utf-8"))
                captured["headers"] = request.headers
                return Response(200, json={"results": []})

            respx_mock.post("https://api.tavily.com/search").mock(side_effect=handler)
            resp = await client.search("stripe refunds API documentation", max_results=3)
            assert resp == {"results": []}
            assert captured["json"] == {
                "query": "stripe refunds API documentation",
                "search_depth": "basic",
                "max_results": 3,
            }
            assert captured["headers"]["Authorization"] == "Bearer test-key"
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_tavily_extract_requests_markdown():
    client = TavilyClient("test-key")
    captured = {}
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            def handler(request):
                captured["json"] = json.loads(request.content.decode("utf-8"))
                return Response(200, json={"results": [{"url": "https://a", "raw_content": "# Refunds"}]})

            respx_mock.post("https://api.tavily.com/extract").mock(side_effect=handler)
            resp = await client.extract(["https://a"])
            assert resp["results"][0]["raw_content"] == "# Refunds"
            assert captured["json"] == {"urls": ["https://a"], "extract_depth": "basic", "format": "markdown"}
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_tavily_extract_handles_http_error():
    client = TavilyClient("test-key")
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.post("https://api.tavily.com/extract").mock(
                return_value=Response(500, json={"error": "boom"})
            )
            resp = await client.extract(["http://example.com"], extract_depth="basic")
            assert resp["error"] == "http_status"
            assert resp["status_code"] == 500
            assert resp["detail"] == {"error": "boom"}
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_tavily_request_failure_is_returned_not_raised():
    client = TavilyClient("test-key")
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.post("https://api.tavily.com/search").mock(side_effect=ConnectError("dns"))
            resp = await client.search("anything")
            assert resp["error"] == "request_failed"
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_tavily_without_key_makes_no_request():
    client = TavilyClient(None)
    try:
        with respx.mock(assert_all_called=False) as respx_mock:
            route = respx_mock.post("https://api.tavily.com/search")
            assert await client.search("anything") == {"error": "missing_api_key"}
            assert await client.extract(["https://a"]) == {"error": "missing_api_key"}
            assert route.called is False
    finally:
        await client.close()
