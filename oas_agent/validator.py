"""Syntactic OpenAPI validation of candidate JSON text."""

import json
from typing import Any, Iterator

from openapi_spec_validator import validate
from openapi_spec_validator.validation.exceptions import OpenAPIValidationError

from .schemas import ValidationVerdict

NOT_JSON_ERROR = "Input string is not valid JSON."
EXTERNAL_REF_ERROR = "OAS validation failed: external $ref not allowed"


def _refs(node: Any) -> Iterator[Any]:
    if isinstance(node, dict):
        for key, value in node.items():
            if key == "$ref":
                yield value
            else:
                yield from _refs(value)
    elif isinstance(node, list):
        for item in node:
            yield from _refs(item)


def validate_openapi_schema(oas_json_string: str) -> ValidationVerdict:
    """Validate an OAS document given as JSON text.

    Non-JSON input (or JSON that is not an object) is reported with NOT_JSON_ERROR so callers
    can tell it apart from a well-formed document that violates the OpenAPI schema. Only
    local ``#/...`` references are accepted; the validator never reads files or URLs.
    """
    try:
        parsed = json.loads(oas_json_string)
    except (TypeError, ValueError):
        return ValidationVerdict(is_valid=False, error=NOT_JSON_ERROR)
    if not isinstance(parsed, dict):
        return ValidationVerdict(is_valid=False, error=NOT_JSON_ERROR)
    for ref in _refs(parsed):
        if not isinstance(ref, str) or not ref.startswith("#"):
            return ValidationVerdict(is_valid=False, error=f"{EXTERNAL_REF_ERROR}: {ref}")
    try:
        validate(parsed)
    except OpenAPIValidationError as exc:
        return ValidationVerdict(is_valid=False, error=f"OAS validation failed: {exc.message}")
    except Exception as exc:
        # Version detection and $ref resolution raise their own exception types.
        return ValidationVerdict(is_valid=False, error=f"OAS validation failed: {exc}")
    return ValidationVerdict(is_valid=True, error=None)
