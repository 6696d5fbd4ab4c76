import json
import logging
from typing import Any

import httpx

from gtd_agent.config import settings

logger = logging.getLogger(__name__)


class LLMResponseError(ValueError):
    """Model returned a response that does not contain what was asked for."""


def _agent_params(
    *,
    base_url: str | None = None,
    model: str | None = None,
    api_key: str | None = None,
    temperature: float | None = None,
    max_tokens: int | None = None,
    timeout: float | None = None,
) -> dict[str, Any]:
    """Build LLM request params from overrides or config defaults."""
    return {
        "base_url": base_url or settings.llm_base_url,
        "model": model or settings.llm_model,
        "api_key": api_key if api_key is not None else settings.llm_api_key,
        "temperature": temperature if temperature is not None else settings.llm_temperature,
        "max_tokens": max_tokens if max_tokens is not None else settings.llm_max_tokens,
        "timeout": timeout if timeout is not None else settings.llm_timeout_seconds,
    }


async def chat_completion(
    messages: list[dict[str, Any]],
    tools: list[dict[str, Any]] | None = None,
    *,
    tool_choice: str | dict[str, Any] | None = None,
    base_url: str | None = None,
    model: str | None = None,
    api_key: str | None = None,
    temperature: float | None = None,
    max_tokens: int | None = None,
    timeout: float | None = None,
) -> dict[str, Any]:
    params = _agent_params(
        base_url=base_url,
        model=model,
        api_key=api_key,
        temperature=temperature,
        max_tokens=max_tokens,
        timeout=timeout,
    )
    payload: dict[str, Any] = {
        "model": params["model"],
        "messages": messages,
        "max_tokens": params["max_tokens"],
        "temperature": params["temperature"],
    }
    if tools:
        payload["tools"] = tools
        payload["tool_choice"] = tool_choice or "auto"

    headers: dict[str, str] = {"Content-Type": "application/json"}
    if params["api_key"]:
        headers["Authorization"] = f"Bearer {params['api_key']}"

    async with httpx.AsyncClient(timeout=params["timeout"]) as client:
        resp = await client.post(
            f"{params['base_url'].rstrip('/')}/chat/completions",
            json=payload,
            headers=headers,
        )
        resp.raise_for_status()
        data = resp.json()
        choice = data.get("choices")
        if not choice:
            raise LLMResponseError("No choices in LLM response")
        return choice[0]


class LLMClient:
    """Model inference boundary. Holds per-role defaults; one instance per model role."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        model: str | None = None,
        api_key: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        timeout: float | None = None,
    ):
        self._params = _agent_params(
            base_url=base_url,
            model=model,
            api_key=api_key,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
        )

    @property
    def timeout(self) -> float:
        return self._params["timeout"]

    async def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        """One chat round. Returns the first choice (`{"message": {...}, ...}`)."""
        return await chat_completion(messages, tools=tools, **self._params)

    async def generate_structured(
        self,
        messages: list[dict[str, Any]],
        schema_name: str,
        schema: dict[str, Any],
        description: str = "",
    ) -> dict[str, Any]:
        """Force a single function call whose parameters follow `schema`; return its arguments."""
        tool = {
            "type": "function",
            "function": {"name": schema_name, "description": description, "parameters": schema},
        }
        response = await chat_completion(
            messages,
            tools=[tool],
            tool_choice={"type": "function", "function": {"name": schema_name}},
            **self._params,
        )
        message = response.get("message", response)
        if not isinstance(message, dict):
            raise LLMResponseError("message is not an object")

        tool_calls = message.get("tool_calls") or []
        if tool_calls:
            fn = tool_calls[0].get("function", {})
            if fn.get("name") != schema_name:
                raise LLMResponseError(f"unexpected tool {fn.get('name')!r}")
            args = fn.get("arguments", "{}")
        else:
            # Some servers ignore tool_choice and answer with bare JSON.
            args = (message.get("content") or "").strip()
            if args.startswith("```"):
                args = args.strip("`").removeprefix("json").strip()
            if not args:
                raise LLMResponseError("no tool call and empty content")

        if isinstance(args, dict):
            return args
        try:
            parsed = json.loads(args)
        except json.JSONDecodeError as e:
            raise LLMResponseError(f"invalid JSON arguments: {e}") from e
        if not isinstance(parsed, dict):
            raise LLMResponseError("arguments are not an object")
        return parsed
