import json
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from dotenv import load_dotenv

CONFIG_PATH = Path("config.json")
ENV_OVERRIDE_KEY = "OAS_AGENT_ENV_OVERRIDES_CONFIG"
ENV_OVERRIDE_TRUE = {"1", "true", "yes", "on"}
SECRET_FIELDS = ("llm_api_key", "tavily_api_key")

SynthesisMode = Literal["iterative", "structured"]


class EndpointConfig(BaseModel):
    base_url: str = ""
    model_id: str
    api_key: Optional[str] = None

    model_config = {"protected_namespaces": ()}


class AppSettings(BaseModel):
    # Shared OpenAI-compatible provider; endpoints fall back to these when blank.
    llm_base_url: str = "https://api.openai.com/v1"
    llm_api_key: Optional[str] = None
    llm_max_output_tokens: Optional[int] = None

    # Per-role endpoints/models
    generator_endpoint: EndpointConfig = Field(default_factory=lambda: EndpointConfig(model_id="gpt-4o"))
    evaluator_endpoint: EndpointConfig = Field(default_factory=lambda: EndpointConfig(model_id="gpt-4o-mini"))

    tavily_api_key: Optional[str] = None
    search_max_results: int = 5
    extract_depth: str = "basic"
    fetch_max_chars: int = 20000

    gather_max_rounds: int = Field(default=5, ge=1)
    synthesis_max_rounds: int = Field(default=10, ge=1)
    synthesis_mode: SynthesisMode = "iterative"
    evaluation_enabled: bool = False
    evaluation_max_cycles: int = Field(default=4, ge=1)
    alignment_threshold: float = Field(default=4.0, ge=0.0, le=5.0)
    veracity_max_rounds: int = Field(default=5, ge=1)

    request_timeout_s: float = 300.0
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    def endpoint(self, role: str) -> EndpointConfig:
        """Return the endpoint for a role with the shared base URL and key filled in."""
        cfg: EndpointConfig = getattr(self, f"{role}_endpoint")
        return cfg.model_copy(
            update={
                "base_url": (cfg.base_url or self.llm_base_url).rstrip("/"),
                "api_key": cfg.api_key or self.llm_api_key,
            }
        )

    def missing_configuration(self) -> List[str]:
        missing: List[str] = []
        if not self.tavily_api_key:
            missing.append("tavily_api_key")
        for role in ("generator", "evaluator"):
            cfg = self.endpoint(role)
            if not cfg.base_url:
                missing.append(f"{role}_endpoint.base_url")
            if not cfg.model_id:
                missing.append(f"{role}_endpoint.model_id")
        return missing

    def to_safe_dict(self) -> dict:
        data = self.model_dump()
        for key in SECRET_FIELDS:
            if data.get(key):
                data[key] = "********"
        for role in ("generator_endpoint", "evaluator_endpoint"):
            if data[role].get("api_key"):
                data[role]["api_key"] = "********"
        return data

    model_config = {"protected_namespaces": ()}


def _load_from_env() -> dict:
    load_dotenv()
    env_map = {
        "llm_base_url": os.getenv("LLM_BASE_URL"),
        "llm_api_key": os.getenv("LLM_API_KEY") or os.getenv("OPENAI_API_KEY"),
        "llm_max_output_tokens": os.getenv("LLM_MAX_OUTPUT_TOKENS"),
        "generator_model": os.getenv("GENERATOR_MODEL"),
        "evaluator_model": os.getenv("EVALUATOR_MODEL"),
        "tavily_api_key": os.getenv("TAVILY_API_KEY"),
        "search_max_results": os.getenv("SEARCH_MAX_RESULTS"),
        "extract_depth": os.getenv("EXTRACT_DEPTH"),
        "fetch_max_chars": os.getenv("FETCH_MAX_CHARS"),
        "gather_max_rounds": os.getenv("GATHER_MAX_ROUNDS"),
        "synthesis_max_rounds": os.getenv("SYNTHESIS_MAX_ROUNDS"),
        "synthesis_mode": os.getenv("SYNTHESIS_MODE"),
        "evaluation_enabled": os.getenv("EVALUATION_ENABLED"),
        "evaluation_max_cycles": os.getenv("EVALUATION_MAX_CYCLES"),
        "alignment_threshold": os.getenv("ALIGNMENT_THRESHOLD"),
        "veracity_max_rounds": os.getenv("VERACITY_MAX_ROUNDS"),
        "request_timeout_s": os.getenv("REQUEST_TIMEOUT_S"),
        "host": os.getenv("HOST"),
        "port": os.getenv("PORT"),
        "log_level": os.getenv("LOG_LEVEL"),
    }
    cleaned = {k: v for k, v in env_map.items() if v not in (None, "")}
    for key in (
        "llm_max_output_tokens",
        "search_max_results",
        "fetch_max_chars",
        "gather_max_rounds",
        "synthesis_max_rounds",
        "evaluation_max_cycles",
        "veracity_max_rounds",
        "port",
    ):
        if key in cleaned:
            cleaned[key] = int(cleaned[key])
    for key in ("alignment_threshold", "request_timeout_s"):
        if key in cleaned:
            cleaned[key] = float(cleaned[key])
    if "evaluation_enabled" in cleaned:
        cleaned["evaluation_enabled"] = str(cleaned["evaluation_enabled"]).lower() in ENV_OVERRIDE_TRUE
    return cleaned


def _env_overrides_config() -> bool:
    return str(os.getenv(ENV_OVERRIDE_KEY, "")).strip().lower() in ENV_OVERRIDE_TRUE


def _apply_model_overrides(merged: Dict[str, Any], allow_env_overrides: bool) -> None:
    """Fold GENERATOR_MODEL/EVALUATOR_MODEL into the endpoint blocks."""
    for role in ("generator", "evaluator"):
        env_model = merged.pop(f"{role}_model", None)
        if not env_model:
            continue
        key = f"{role}_endpoint"
        endpoint = merged.get(key)
        if not isinstance(endpoint, dict):
            endpoint = {}
        if allow_env_overrides or not endpoint.get("model_id"):
            endpoint = {**endpoint, "model_id": env_model}
        merged[key] = endpoint


def load_settings(config_path: Optional[Path] = None) -> AppSettings:
    env_data = _load_from_env()
    path = config_path or CONFIG_PATH
    file_data: Dict[str, Any] = {}
    if path.exists():
        try:
            file_data = json.loads(path.read_text())
        except ValueError:
            file_data = {}
    allow_env_overrides = _env_overrides_config()
    # Config wins by default; allow env overrides only when explicitly enabled.
    if allow_env_overrides:
        merged = {**file_data, **env_data}
    else:
        merged = {**env_data, **file_data}
    for key in SECRET_FIELDS:
        if not merged.get(key) and env_data.get(key):
            merged[key] = env_data[key]
    _apply_model_overrides(merged, allow_env_overrides)
    return AppSettings(**merged)
