from typing import Optional

import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient

from oas_agent.main import create_app
from tests.fakes import CountingValidator, FakeDocs, FakeLLMClient, FakeTavilyClient, make_settings, make_toolkit


@pytest.fixture
def app_factory():
    def _factory(
        *,
        fake_llm: Optional[FakeLLMClient] = None,
        fake_docs: Optional[FakeDocs] = None,
        validator: Optional[CountingValidator] = None,
        **settings_overrides,
    ):
        settings = make_settings(**settings_overrides)
        llm = fake_llm or FakeLLMClient()
        docs = fake_docs or FakeDocs()
        validator = validator or CountingValidator()
        app = create_app(
            settings,
            llm_client=llm,
            tavily_client=FakeTavilyClient(api_key=settings.tavily_api_key),
            toolkit=make_toolkit(docs, validator),
        )
        return app, llm, docs, validator

    return _factory


@pytest.fixture
async def client(app_factory):
    app, llm, docs, validator = app_factory()
    async with LifespanManager(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as http_client:
            http_client.app = app  # type: ignore[attr-defined]
            http_client.fake_llm = llm  # type: ignore[attr-defined]
            http_client.fake_docs = docs  # type: ignore[attr-defined]
            http_client.validator = validator  # type: ignore[attr-defined]
            yield http_client
