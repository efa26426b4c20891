import copy
import json

import pytest

from oas_agent.validator import EXTERNAL_REF_ERROR, NOT_JSON_ERROR, validate_openapi_schema
from tests.fakes import STRIPE_REFUNDS_SPEC


def test_valid_document_passes():
    verdict = validate_openapi_schema(json.dumps(STRIPE_REFUNDS_SPEC))
    assert verdict.is_valid is True
    assert verdict.error is None


def test_non_json_is_reported_distinctly():
    verdict = validate_openapi_schema("openapi: 3.0.0\ninfo: {}")
    assert verdict.is_valid is False
    assert verdict.error == NOT_JSON_ERROR


def test_json_array_is_not_an_oas_document():
    verdict = validate_openapi_schema("[1, 2, 3]")
    assert verdict.is_valid is False
    assert verdict.error == NOT_JSON_ERROR


def test_schema_violation_is_reported_as_oas_failure():
    broken = {"openapi": "3.0.0", "paths": {"/v1/refunds": {"get": {"responses": {"200": {"description": "ok"}}}}}}
    verdict = validate_openapi_schema(json.dumps(broken))
    assert verdict.is_valid is False
    assert verdict.error.startswith("OAS validation failed:")
    assert verdict.error != NOT_JSON_ERROR


def test_missing_version_field_is_invalid():
    fragment = {k: v for k, v in STRIPE_REFUNDS_SPEC.items() if k != "openapi"}
    verdict = validate_openapi_schema(json.dumps(fragment))
    assert verdict.is_valid is False
    assert verdict.error.startswith("OAS validation failed:")


def test_validation_is_idempotent():
    valid_text = json.dumps(STRIPE_REFUNDS_SPEC)
    invalid_text = json.dumps({"openapi": "3.0.0", "info": {"title": "x"}, "paths": {}})
    assert validate_openapi_schema(valid_text) == validate_openapi_schema(valid_text)
    first = validate_openapi_schema(invalid_text)
    second = validate_openapi_schema(invalid_text)
    assert first.is_valid is False
    assert first == second


@pytest.mark.parametrize(
    "ref",
    ["file:///etc/passwd", "file:///tmp/missing-schema.json", "http://10.255.255.1/x.json", "common.json#/Refund"],
)
def test_external_refs_are_rejected_without_resolution(ref):
    document = copy.deepcopy(STRIPE_REFUNDS_SPEC)
    document["paths"]["/v1/refunds"]["get"]["responses"]["200"] = {"$ref": ref}
    verdict = validate_openapi_schema(json.dumps(document))
    assert verdict.is_valid is False
    assert verdict.error == f"{EXTERNAL_REF_ERROR}: {ref}"


def test_external_ref_verdict_does_not_depend_on_the_filesystem(tmp_path):
    existing = tmp_path / "refund.json"
    existing.write_text(json.dumps({"description": "A refund"}))
    document = copy.deepcopy(STRIPE_REFUNDS_SPEC)
    document["paths"]["/v1/refunds"]["get"]["responses"]["200"] = {"$ref": existing.as_uri()}
    present = validate_openapi_schema(json.dumps(document))
    existing.unlink()
    absent = validate_openapi_schema(json.dumps(document))
    assert present == absent
    assert present.is_valid is False


def test_local_refs_still_resolve():
    document = copy.deepcopy(STRIPE_REFUNDS_SPEC)
    document["components"]["schemas"] = {"RefundList": {"type": "object"}}
    content = document["paths"]["/v1/refunds"]["get"]["responses"]["200"]["content"]
    content["application/json"]["schema"] = {"$ref": "#/components/schemas/RefundList"}
    verdict = validate_openapi_schema(json.dumps(document))
    assert verdict.is_valid is True
