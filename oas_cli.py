import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

import httpx


DEFAULT_API_BASE = "http://127.0.0.1:8000"


def _join_url(base: str, path: str) -> str:
    return base.rstrip("/") + path


def _print_error(status: int, data: dict) -> None:
    print(f"Request failed: HTTP {status}", file=sys.stderr)
    if data.get("error"):
        print(f"Error: {data['error']}", file=sys.stderr)
    if data.get("details"):
        print(f"Details: {data['details']}", file=sys.stderr)


def run_generate(args: argparse.Namespace) -> int:
    base = args.base_url or DEFAULT_API_BASE
    with httpx.Client() as client:
        try:
            resp = client.post(
                _join_url(base, "/api/generate-openapi"),
                json={"query": args.query},
                timeout=args.timeout,
            )
        except httpx.RequestError as exc:
            print(f"Could not reach {base}: {exc}", file=sys.stderr)
            return 1
    try:
        data = resp.json()
    except ValueError:
        data = {"error": resp.text}
    if resp.status_code >= 400:
        _print_error(resp.status_code, data if isinstance(data, dict) else {})
        return 1
    spec = data.get("generated_spec") if isinstance(data, dict) else None
    if not spec:
        print("The query was not recognized as a request for an API specification.")
        return 0
    text = json.dumps(spec, indent=2)
    if args.out:
        Path(args.out).write_text(text + "\n")
        print(f"Wrote OpenAPI fragment to {args.out}")
    else:
        print(text)
    return 0


def run_health(args: argparse.Namespace) -> int:
    base = args.base_url or DEFAULT_API_BASE
    with httpx.Client() as client:
        try:
            resp = client.get(_join_url(base, "/health"), timeout=10)
        except httpx.RequestError as exc:
            print(f"Could not reach {base}: {exc}", file=sys.stderr)
            return 1
    if resp.status_code >= 400:
        print(f"Unhealthy: HTTP {resp.status_code}", file=sys.stderr)
        return 1
    print(resp.text.strip() or "OK")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="OAS Agent CLI")
    parser.add_argument("--base-url", default=DEFAULT_API_BASE, help="API base URL")
    subparsers = parser.add_subparsers(dest="command")

    generate = subparsers.add_parser("generate", help="Generate an OpenAPI fragment for a request")
    generate.add_argument("query", help="Natural-language request, e.g. 'List my Stripe refunds'")
    generate.add_argument("--out", help="Write the spec to this file instead of stdout")
    generate.add_argument("--timeout", type=float, default=600, help="Max wait seconds")

    subparsers.add_parser("health", help="Check that the service is up")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "generate":
        return run_generate(args)
    if args.command == "health":
        return run_health(args)
    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
