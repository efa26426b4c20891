"""Tool declarations and the bounded model-driven tool session.

A tool session alternates model calls and tool executions: each reply may request tool
calls, which are executed and fed back before the next call. The loop stops when the model
answers without requesting tools or when ``max_rounds`` model calls have been made.
"""

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from .config import EndpointConfig
from .llm import completion_message, message_text, parse_tool_calls
from .schemas import ValidationVerdict
from .validator import validate_openapi_schema

logger = logging.getLogger("uvicorn.error")

TOOL_RESULT_MAX_CHARS = 24000

ToolCallback = Callable[..., Union[Any, Awaitable[Any]]]


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    parameters: Dict[str, Any]
    execute: ToolCallback

    def to_openai(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass
class ToolInvocation:
    call_id: str
    name: str
    arguments: Dict[str, Any]
    result: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def payload(self) -> str:
        if self.error is not None:
            return json.dumps({"error": self.error}, ensure_ascii=True)
        if isinstance(self.result, str):
            text = self.result
        elif hasattr(self.result, "model_dump"):
            text = json.dumps(self.result.model_dump(), ensure_ascii=True)
        else:
            text = json.dumps(self.result, ensure_ascii=True, default=str)
        if len(text) > TOOL_RESULT_MAX_CHARS:
            text = text[: TOOL_RESULT_MAX_CHARS - 3] + "..."
        return text


@dataclass
class ToolSessionResult:
    text: str
    rounds: int
    exhausted: bool = False
    invocations: List[ToolInvocation] = field(default_factory=list)

    def invocations_of(self, name: str) -> List[ToolInvocation]:
        return [inv for inv in self.invocations if inv.name == name]


async def _invoke(tool: Optional[ToolSpec], call: Dict[str, Any]) -> ToolInvocation:
    args = call.get("arguments")
    invocation = ToolInvocation(
        call_id=call["id"],
        name=call["name"],
        arguments=args if isinstance(args, dict) else {"value": args},
    )
    if tool is None:
        invocation.error = f"Unknown tool: {call['name']}"
        return invocation
    if "raw" in invocation.arguments and len(invocation.arguments) == 1:
        invocation.error = "Tool arguments were not valid JSON."
        return invocation
    try:
        result = tool.execute(**invocation.arguments)
        if inspect.isawaitable(result):
            result = await result
        invocation.result = result
    except TypeError as exc:
        invocation.error = f"Invalid arguments for {tool.name}: {exc}"
    except Exception as exc:
        invocation.error = str(exc) or exc.__class__.__name__
    if invocation.error:
        logger.warning("Tool %s failed: %s", invocation.name, invocation.error)
    return invocation


async def run_tool_session(
    llm: Any,
    endpoint: EndpointConfig,
    *,
    system: str,
    prompt: str,
    tools: List[ToolSpec],
    max_rounds: int,
    temperature: float = 0.2,
    max_tokens: int = 4096,
) -> ToolSessionResult:
    if max_rounds < 1:
        raise ValueError("max_rounds must be at least 1")
    registry = {tool.name: tool for tool in tools}
    declared = [tool.to_openai() for tool in tools]
    messages: List[Dict[str, Any]] = [
        {"role": "system", "content": system},
        {"role": "user", "content": prompt},
    ]
    invocations: List[ToolInvocation] = []
    text = ""
    for round_no in range(1, max_rounds + 1):
        data = await llm.chat_completion(
            model=endpoint.model_id,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            tools=declared or None,
            base_url=endpoint.base_url,
            api_key=endpoint.api_key,
        )
        message = completion_message(data)
        text = message_text(message)
        calls = parse_tool_calls(message)
        if not calls:
            return ToolSessionResult(text=text, rounds=round_no, invocations=invocations)
        messages.append(
            {
                "role": "assistant",
                "content": text or None,
                "tool_calls": [
                    {
                        "id": call["id"],
                        "type": "function",
                        "function": {"name": call["name"], "arguments": json.dumps(call["arguments"])},
                    }
                    for call in calls
                ],
            }
        )
        # gather keeps request order, so results line up with the calls above.
        results = await asyncio.gather(*(_invoke(registry.get(call["name"]), call) for call in calls))
        for inv in results:
            invocations.append(inv)
            messages.append({"role": "tool", "tool_call_id": inv.call_id, "content": inv.payload()})
    logger.warning("Tool session exhausted its budget of %d round(s)", max_rounds)
    return ToolSessionResult(text=text, rounds=max_rounds, exhausted=True, invocations=invocations)


@dataclass(frozen=True)
class Toolkit:
    """Binds tool names to implementations for one pipeline instance."""

    search: Callable[[str], Awaitable[List[str]]]
    fetch: Callable[[str], Awaitable[str]]
    validate: Callable[[str], ValidationVerdict] = validate_openapi_schema

    def gathering_tools(self) -> List[ToolSpec]:
        return [
            ToolSpec(
                name="search_api_documentation",
                description="Search the web for relevant API documentation URLs based on a query.",
                parameters={
                    "type": "object",
                    "properties": {
                        "query": {"type": "string", "description": "The query to search documentation for"}
                    },
                    "required": ["query"],
                },
                execute=lambda query: self.search(query),
            ),
            ToolSpec(
                name="read_webpage_content",
                description="Read the text content of a webpage given its URL. Returns raw markup if markdown fails.",
                parameters={
                    "type": "object",
                    "properties": {"url": {"type": "string"}},
                    "required": ["url"],
                },
                execute=lambda url: self.fetch(url),
            ),
        ]

    def validation_tools(self) -> List[ToolSpec]:
        return [
            ToolSpec(
                name="validate_openapi_schema",
                description="Validate if a given string is a syntactically correct OpenAPI Specification (JSON).",
                parameters={
                    "type": "object",
                    "properties": {
                        "oas_json_string": {
                            "type": "string",
                            "description": "The potential OpenAPI specification as a JSON string",
                        }
                    },
                    "required": ["oas_json_string"],
                },
                execute=lambda oas_json_string: self.validate(oas_json_string),
            )
        ]

    def veracity_tools(self) -> List[ToolSpec]:
        return [
            ToolSpec(
                name="search_docs",
                description="Search for API documentation URLs using a query.",
                parameters={"type": "object", "properties": {"query": {"type": "string"}}, "required": ["query"]},
                execute=lambda query: self.search(query),
            ),
            ToolSpec(
                name="read_page",
                description="Read the content of a webpage from a URL.",
                parameters={"type": "object", "properties": {"url": {"type": "string"}}, "required": ["url"]},
                execute=lambda url: self.fetch(url),
            ),
        ]
