import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from .config import AppSettings, load_settings
from .errors import CallerError, ConfigurationError
from .llm import LLMClient
from .pipeline import SpecPipeline
from .schemas import GenerateSpecRequest, NotSpecRequest, PipelineResult, SpecFailure, SpecSuccess
from .tavily import TavilyClient
from .tools import Toolkit
from .validator import validate_openapi_schema
from .web import DocumentationTools

logger = logging.getLogger("uvicorn.error")

INVALID_QUERY_MESSAGE = "Missing or invalid 'query' in request body"
INTERNAL_ERROR_MESSAGE = "Internal Server Error during API processing."


def get_settings(request: Request) -> AppSettings:
    return request.app.state.settings


def get_pipeline(request: Request) -> SpecPipeline:
    return request.app.state.pipeline


def parse_generate_request(payload: Any) -> GenerateSpecRequest:
    query = payload.get("query") if isinstance(payload, dict) else None
    if not isinstance(query, str) or not query.strip():
        raise CallerError(INVALID_QUERY_MESSAGE)
    return GenerateSpecRequest(query=query.strip())


def render_result(result: PipelineResult) -> JSONResponse:
    if isinstance(result, NotSpecRequest):
        return JSONResponse(status_code=200, content={})
    if isinstance(result, SpecSuccess):
        return JSONResponse(status_code=200, content={"generated_spec": result.spec})
    if isinstance(result, SpecFailure) and result.is_caller_error:
        return JSONResponse(status_code=400, content={"error": result.reason})
    return JSONResponse(
        status_code=500,
        content={
            "error": f"Failed to generate OpenAPI specification for operation: {result.operation}",
            "details": result.reason,
        },
    )


def ensure_configured(settings: AppSettings) -> None:
    missing = settings.missing_configuration()
    if missing:
        raise ConfigurationError(missing)


router = APIRouter()


@router.get("/health")
async def health():
    return PlainTextResponse("OK")


@router.post("/api/generate-openapi")
async def generate_openapi(
    request: Request,
    settings: AppSettings = Depends(get_settings),
    pipeline: SpecPipeline = Depends(get_pipeline),
):
    try:
        payload = await request.json()
    except ValueError:
        payload = None
    spec_request = parse_generate_request(payload)
    ensure_configured(settings)
    try:
        result = await asyncio.wait_for(pipeline.run(spec_request.query), timeout=settings.request_timeout_s)
    except asyncio.TimeoutError:
        logger.error("Spec run timed out after %.0fs: %s", settings.request_timeout_s, spec_request.query)
        return JSONResponse(
            status_code=504,
            content={
                "error": f"Failed to generate OpenAPI specification for operation: {spec_request.query}",
                "details": f"Processing timed out after {settings.request_timeout_s:g} seconds.",
            },
        )
    except Exception:
        logger.exception("Error in /api/generate-openapi handler")
        return JSONResponse(status_code=500, content={"error": INTERNAL_ERROR_MESSAGE})
    return render_result(result)


async def caller_error_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": str(exc) or INVALID_QUERY_MESSAGE})


async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    logger.error("Service misconfigured; missing settings: %s", ", ".join(exc.missing))
    return JSONResponse(status_code=500, content={"error": str(exc)})


def build_toolkit(docs: DocumentationTools) -> Toolkit:
    return Toolkit(search=docs.search, fetch=docs.fetch, validate=validate_openapi_schema)


def create_app(
    settings: AppSettings,
    *,
    llm_client: Optional[Any] = None,
    tavily_client: Optional[Any] = None,
    toolkit: Optional[Toolkit] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting OAS agent with settings: %s", app.state.settings.to_safe_dict())
        try:
            yield
        finally:
            await app.state.llm_client.close()
            await app.state.docs.close()
            await app.state.tavily_client.close()

    app = FastAPI(title="OAS Agent", lifespan=lifespan)
    app.state.settings = settings
    app.state.llm_client = llm_client or LLMClient(
        settings.llm_base_url,
        api_key=settings.llm_api_key,
        max_output_tokens=settings.llm_max_output_tokens,
    )
    app.state.tavily_client = tavily_client or TavilyClient(settings.tavily_api_key)
    app.state.docs = DocumentationTools(
        app.state.tavily_client,
        max_results=settings.search_max_results,
        extract_depth=settings.extract_depth,
        max_chars=settings.fetch_max_chars,
    )
    app.state.toolkit = toolkit or build_toolkit(app.state.docs)
    app.state.pipeline = SpecPipeline(app.state.llm_client, app.state.toolkit, settings)

    app.add_exception_handler(CallerError, caller_error_handler)
    app.add_exception_handler(ConfigurationError, configuration_error_handler)
    app.include_router(router)
    return app


app = create_app(load_settings())


if __name__ == "__main__":
    import os
    import uvicorn

    settings = app.state.settings
    logging.basicConfig(level=settings.log_level.upper())
    reload_enabled = os.getenv("OAS_AGENT_RELOAD", "").lower() in ("1", "true", "yes", "on")
    try:
        uvicorn.run(
            "oas_agent.main:app",
            host=settings.host,
            port=settings.port,
            reload=reload_enabled,
            log_level=settings.log_level.lower(),
        )
    except KeyboardInterrupt:
        pass
