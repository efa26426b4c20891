import json
from typing import Any, Dict, List, Optional

import httpx

from .errors import LLMError


ALLOWED_ROLES = {"system", "user", "assistant", "tool"}


def completion_message(data: Any) -> Dict[str, Any]:
    """First choice's message, with reasoning text promoted when content is empty."""
    if not isinstance(data, dict):
        return {}
    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return {}
    message = dict(choices[0].get("message") or {})
    content = message.get("content")
    if (content is None or content == "") and not message.get("tool_calls"):
        fallback = message.get("reasoning") or message.get("reasoning_content")
        if fallback:
            message["content"] = fallback
    return message


def message_text(message: Dict[str, Any]) -> str:
    content = message.get("content")
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(str(item.get("text") or "") for item in content if isinstance(item, dict))
    return str(content)


def completion_text(data: Any) -> str:
    return message_text(completion_message(data))


def parse_tool_calls(message: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Normalize tool calls to {"id", "name", "arguments"}; unparseable arguments stay raw."""
    tool_calls = message.get("tool_calls") if isinstance(message, dict) else None
    if not isinstance(tool_calls, list):
        return []
    parsed: List[Dict[str, Any]] = []
    for idx, call in enumerate(tool_calls):
        if not isinstance(call, dict):
            continue
        func = call.get("function") or {}
        args = func.get("arguments")
        if isinstance(args, str):
            try:
                args = json.loads(args) if args.strip() else {}
            except ValueError:
                args = {"raw": args}
        if args is None:
            args = {}
        parsed.append(
            {
                "id": str(call.get("id") or f"call_{idx}"),
                "name": func.get("name") or "",
                "arguments": args,
            }
        )
    return parsed


def json_schema_format(name: str, schema: Dict[str, Any], strict: bool = False) -> Dict[str, Any]:
    return {"type": "json_schema", "json_schema": {"name": name, "schema": schema, "strict": strict}}


class LLMClient:
    """Thin async client for OpenAI-compatible /chat/completions endpoints."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        max_output_tokens: Optional[int] = None,
        timeout: float = 120.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.max_output_tokens = max_output_tokens
        self.client = httpx.AsyncClient(timeout=timeout)

    def _normalize_error_text(self, detail: str) -> str:
        text = detail or ""
        for _ in range(2):
            try:
                parsed = json.loads(text)
            except ValueError:
                break
            if isinstance(parsed, dict):
                found = False
                for key in ("error", "detail", "message"):
                    val = parsed.get(key)
                    if isinstance(val, dict):
                        val = val.get("message")
                    if isinstance(val, str) and val.strip():
                        text = val
                        found = True
                        break
                if not found:
                    break
            elif isinstance(parsed, str):
                text = parsed
            else:
                break
        return text

    def _sanitize_messages(self, messages: Any) -> List[Dict[str, Any]]:
        if not isinstance(messages, list):
            return []
        sanitized: List[Dict[str, Any]] = []
        for msg in messages:
            if not isinstance(msg, dict):
                continue
            role = msg.get("role")
            if role not in ALLOWED_ROLES:
                continue
            content = msg.get("content")
            if role == "assistant" and msg.get("tool_calls"):
                sanitized.append({"role": role, "content": content or None, "tool_calls": msg["tool_calls"]})
                continue
            if role == "tool":
                if not msg.get("tool_call_id"):
                    continue
                text = content if isinstance(content, str) else json.dumps(content, ensure_ascii=True)
                sanitized.append({"role": role, "tool_call_id": msg["tool_call_id"], "content": text})
                continue
            if content is None:
                continue
            cleaned_content: Any
            if isinstance(content, str):
                if not content.strip():
                    continue
                cleaned_content = content
            else:
                cleaned_content = json.dumps(content, ensure_ascii=True)
            sanitized.append({"role": role, "content": cleaned_content})
        return sanitized

    def _extract_error_detail(self, response: httpx.Response) -> str:
        try:
            data = response.json()
            if isinstance(data, dict):
                return json.dumps(data, ensure_ascii=True)
        except ValueError:
            pass
        return response.text

    def _headers(self, api_key: Optional[str]) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        key = api_key or self.api_key
        if key:
            headers["Authorization"] = f"Bearer {key}"
        return headers

    async def chat_completion(
        self,
        model: str,
        messages: List[Dict[str, Any]],
        temperature: float = 0.2,
        max_tokens: int = 1024,
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[Any] = None,
        response_format: Optional[dict] = None,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not str(model or "").strip():
            raise ValueError("model is required")
        final_max_tokens = max_tokens
        if self.max_output_tokens:
            final_max_tokens = min(max_tokens, self.max_output_tokens)
        cleaned_messages = self._sanitize_messages(messages)
        if not cleaned_messages:
            raise ValueError("messages must include at least one non-empty entry")
        target_base = (base_url or self.base_url).rstrip("/")
        url = f"{target_base}/chat/completions"
        payload: Dict[str, Any] = {
            "model": model,
            "messages": cleaned_messages,
            "temperature": temperature,
            "max_tokens": final_max_tokens,
            "stream": False,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = tool_choice or "auto"
        if response_format:
            payload["response_format"] = response_format
        try:
            resp = await self.client.post(url, json=payload, headers=self._headers(api_key))
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            detail = self._normalize_error_text(self._extract_error_detail(exc.response))
            raise LLMError(
                f"Model provider returned HTTP {exc.response.status_code}: {detail}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.RequestError as exc:
            raise LLMError(f"Model provider request failed: {exc}") from exc
        try:
            data = resp.json()
        except ValueError as exc:
            raise LLMError("Model provider returned a non-JSON body") from exc
        if isinstance(data, dict):
            data["_model_used"] = model
        return data

    async def close(self) -> None:
        if not self.client.is_closed:
            await self.client.aclose()
