import json

import respx
from httpx import ConnectError, Response

from oas_cli import main
from tests.fakes import STRIPE_REFUNDS_SPEC

BASE = "http://agent.test"


def test_generate_prints_spec(capsys):
    with respx.mock(assert_all_called=True) as respx_mock:
        route = respx_mock.post(f"{BASE}/api/generate-openapi").mock(
            return_value=Response(200, json={"generated_spec": STRIPE_REFUNDS_SPEC})
        )
        code = main(["--base-url", BASE, "generate", "List Stripe refunds"])
    assert code == 0
    assert json.loads(route.calls[0].request.content) == {"query": "List Stripe refunds"}
    assert json.loads(capsys.readouterr().out) == STRIPE_REFUNDS_SPEC


def test_generate_writes_out_file(tmp_path):
    out = tmp_path / "refunds.json"
    with respx.mock(assert_all_called=True) as respx_mock:
        respx_mock.post(f"{BASE}/api/generate-openapi").mock(
            return_value=Response(200, json={"generated_spec": STRIPE_REFUNDS_SPEC})
        )
        code = main(["--base-url", BASE, "generate", "List Stripe refunds", "--out", str(out)])
    assert code == 0
    assert json.loads(out.read_text()) == STRIPE_REFUNDS_SPEC


def test_generate_reports_not_a_spec_request(capsys):
    with respx.mock(assert_all_called=True) as respx_mock:
        respx_mock.post(f"{BASE}/api/generate-openapi").mock(return_value=Response(200, json={}))
        code = main(["--base-url", BASE, "generate", "What is the weather?"])
    assert code == 0
    assert "not recognized" in capsys.readouterr().out


def test_generate_failure_prints_error_and_details(capsys):
    body = {
        "error": "Failed to generate OpenAPI specification for operation: List all Stripe refunds",
        "details": "Information Gathering Failed: Agent failed to produce a text summary.",
    }
    with respx.mock(assert_all_called=True) as respx_mock:
        respx_mock.post(f"{BASE}/api/generate-openapi").mock(return_value=Response(500, json=body))
        code = main(["--base-url", BASE, "generate", "List Stripe refunds"])
    assert code == 1
    err = capsys.readouterr().err
    assert "HTTP 500" in err
    assert "Information Gathering Failed" in err


def test_unreachable_service(capsys):
    with respx.mock(assert_all_called=True) as respx_mock:
        respx_mock.get(f"{BASE}/health").mock(side_effect=ConnectError("refused"))
        code = main(["--base-url", BASE, "health"])
    assert code == 1
    assert "Could not reach" in capsys.readouterr().err


def test_health_ok(capsys):
    with respx.mock(assert_all_called=True) as respx_mock:
        respx_mock.get(f"{BASE}/health").mock(return_value=Response(200, text="OK"))
        code = main(["--base-url", BASE, "health"])
    assert code == 0
    assert capsys.readouterr().out.strip() == "OK"


def test_no_command_prints_help():
    assert main([]) == 1
