import copy
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class GenerateSpecRequest(BaseModel):
    query: str

    model_config = {"frozen": True}


class IntentDecision(BaseModel):
    is_spec_request: bool = False


class OperationList(BaseModel):
    operations: List[str] = Field(default_factory=list)

    @property
    def selected(self) -> Optional[str]:
        return self.operations[0] if self.operations else None

    @property
    def skipped(self) -> List[str]:
        return self.operations[1:]


class EvidenceSource(BaseModel):
    url: str
    extracted_text: str = ""

    model_config = {"frozen": True}


class EvidenceBundle(BaseModel):
    operation: str
    summary: str
    sources: List[EvidenceSource] = Field(default_factory=list)
    search_urls: List[str] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def source_urls(self) -> List[str]:
        """URLs actually read, falling back to search hits when nothing was read."""
        urls = [src.url for src in self.sources]
        if not urls:
            urls = list(self.search_urls)
        return list(dict.fromkeys(urls))


class CandidateSpec(BaseModel):
    document: Dict[str, Any]
    version: int = 1

    model_config = {"frozen": True}

    @classmethod
    def first(cls, document: Dict[str, Any]) -> "CandidateSpec":
        return cls(document=copy.deepcopy(document), version=1)

    def revise(self, document: Dict[str, Any]) -> "CandidateSpec":
        return CandidateSpec(document=copy.deepcopy(document), version=self.version + 1)


class ValidationVerdict(BaseModel):
    is_valid: bool
    error: Optional[str] = None


class AlignmentVerdict(BaseModel):
    score: float = Field(ge=0.0, le=5.0)


class VeracityVerdict(BaseModel):
    is_accurate: bool


class NotSpecRequest(BaseModel):
    kind: Literal["not_spec_request"] = "not_spec_request"


class SpecSuccess(BaseModel):
    kind: Literal["success"] = "success"
    operation: str
    spec: Dict[str, Any]


class SpecFailure(BaseModel):
    kind: Literal["caller_error", "processing_error"] = "processing_error"
    operation: str
    reason: str

    @property
    def is_caller_error(self) -> bool:
        return self.kind == "caller_error"


PipelineResult = Union[NotSpecRequest, SpecSuccess, SpecFailure]


_PASSTHROUGH = {"type": "object", "additionalProperties": True}

# JSON schema handed to providers that support constrained output.
OAS_FRAGMENT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "description": (
        "A valid OpenAPI 3.x JSON object fragment describing a single API operation, "
        "constructed from the provided text summary."
    ),
    "properties": {
        "openapi": {"type": "string", "description": "OpenAPI version string, e.g. '3.0.0' or '3.1.0'"},
        "info": {
            "type": "object",
            "properties": {
                "title": {"type": "string"},
                "version": {"type": "string"},
            },
            "additionalProperties": True,
        },
        "paths": {
            "type": "object",
            "description": "One path and one method for the target operation.",
            "additionalProperties": {
                "type": "object",
                "additionalProperties": {
                    "type": "object",
                    "properties": {
                        "summary": {"type": "string"},
                        "description": {"type": "string"},
                        "operationId": {"type": "string"},
                        "parameters": {"type": "array", "items": _PASSTHROUGH},
                        "requestBody": _PASSTHROUGH,
                        "responses": {"type": "object", "additionalProperties": _PASSTHROUGH},
                        "security": {
                            "type": "array",
                            "items": {
                                "type": "object",
                                "additionalProperties": {"type": "array", "items": {"type": "string"}},
                            },
                        },
                    },
                    "additionalProperties": True,
                },
            },
        },
        "components": {
            "type": "object",
            "properties": {
                "schemas": {"type": "object", "additionalProperties": _PASSTHROUGH},
                "securitySchemes": {"type": "object", "additionalProperties": _PASSTHROUGH},
            },
            "additionalProperties": True,
        },
    },
    "additionalProperties": True,
}

INTENT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {"intent": {"type": "string", "enum": ["yes", "no"]}},
    "required": ["intent"],
    "additionalProperties": False,
}

OPERATIONS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {"operations": {"type": "array", "items": {"type": "string"}}},
    "required": ["operations"],
    "additionalProperties": False,
}
