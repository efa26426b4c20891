import json

import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient

from oas_agent.main import INTERNAL_ERROR_MESSAGE, INVALID_QUERY_MESSAGE, parse_generate_request
from oas_agent.errors import CallerError
from tests.fakes import STRIPE_REFUNDS_SPEC, FakeLLMClient

ENDPOINT = "/api/generate-openapi"


async def _post(app, body=None, content=None):
    async with LifespanManager(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            if content is not None:
                return await client.post(ENDPOINT, content=content, headers={"Content-Type": "application/json"})
            return await client.post(ENDPOINT, json=body)


@pytest.mark.asyncio
async def test_health_is_plain_ok(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.text == "OK"


@pytest.mark.asyncio
async def test_generates_spec_for_a_single_operation(client):
    resp = await client.post(ENDPOINT, json={"query": "Generate OAS for listing Stripe refunds"})
    assert resp.status_code == 200
    assert resp.json() == {"generated_spec": STRIPE_REFUNDS_SPEC}
    assert client.fake_docs.search_calls == ["List all Stripe refunds"]


@pytest.mark.asyncio
async def test_not_a_spec_request_returns_empty_object(app_factory):
    app, llm, docs, _ = app_factory(fake_llm=FakeLLMClient(replies={"intent": json.dumps({"intent": "no"})}))
    resp = await _post(app, {"query": "What is the weather today?"})
    assert resp.status_code == 200
    assert resp.json() == {}
    assert llm.roles() == ["intent"]
    assert docs.search_calls == []


@pytest.mark.asyncio
async def test_unidentifiable_operation_is_a_bad_request(app_factory):
    app, llm, _, _ = app_factory(fake_llm=FakeLLMClient(replies={"decompose": json.dumps({"operations": []})}))
    resp = await _post(app, {"query": "Generate OAS for the thing"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Could not understand the specific API operations requested in the query."}
    assert "gather" not in llm.roles()


@pytest.mark.asyncio
async def test_processing_failure_names_the_operation(app_factory):
    app, llm, _, validator = app_factory(fake_llm=FakeLLMClient(replies={"gather": [""]}))
    resp = await _post(app, {"query": "Generate OAS for listing Stripe refunds"})
    assert resp.status_code == 500
    assert resp.json() == {
        "error": "Failed to generate OpenAPI specification for operation: List all Stripe refunds",
        "details": "Information Gathering Failed: Agent failed to produce a text summary.",
    }
    assert llm.count("synthesize") == 0
    assert validator.calls == []


@pytest.mark.parametrize("body", [{}, {"query": ""}, {"query": "   "}, {"query": 42}, {"q": "refunds"}, ["query"]])
@pytest.mark.asyncio
async def test_missing_or_invalid_query_is_rejected(app_factory, body):
    app, llm, _, _ = app_factory()
    resp = await _post(app, body)
    assert resp.status_code == 400
    assert resp.json() == {"error": INVALID_QUERY_MESSAGE}
    assert llm.calls == []


@pytest.mark.asyncio
async def test_non_json_body_is_rejected(app_factory):
    app, llm, _, _ = app_factory()
    resp = await _post(app, content=b"query=refunds")
    assert resp.status_code == 400
    assert resp.json() == {"error": INVALID_QUERY_MESSAGE}
    assert llm.calls == []


@pytest.mark.asyncio
async def test_missing_configuration_hides_details(app_factory):
    app, llm, _, _ = app_factory(tavily_api_key=None)
    resp = await _post(app, {"query": "Generate OAS for listing Stripe refunds"})
    assert resp.status_code == 500
    assert resp.json() == {"error": "Service is not configured."}
    assert "tavily" not in resp.text.lower()
    assert llm.calls == []


@pytest.mark.asyncio
async def test_unexpected_exception_becomes_generic_500(app_factory):
    app, _, _, _ = app_factory(fake_llm=FakeLLMClient(errors={"gather": KeyError("choices")}))
    resp = await _post(app, {"query": "Generate OAS for listing Stripe refunds"})
    assert resp.status_code == 500
    assert resp.json() == {"error": INTERNAL_ERROR_MESSAGE}


@pytest.mark.asyncio
async def test_slow_pipeline_times_out(app_factory):
    app, _, _, _ = app_factory(fake_llm=FakeLLMClient(delay_seconds=0.5), request_timeout_s=0.05)
    resp = await _post(app, {"query": "Generate OAS for listing Stripe refunds"})
    assert resp.status_code == 504
    data = resp.json()
    assert data["error"] == "Failed to generate OpenAPI specification for operation: Generate OAS for listing Stripe refunds"
    assert "timed out" in data["details"]


@pytest.mark.asyncio
async def test_lifespan_closes_clients(app_factory):
    app, llm, _, _ = app_factory()
    async with LifespanManager(app):
        assert llm.closed is False
    assert llm.closed is True


def test_parse_generate_request_trims_query():
    assert parse_generate_request({"query": "  List invoices  "}).query == "List invoices"
    with pytest.raises(CallerError):
        parse_generate_request(None)
