"""Provider adapters: translate the canonical conversation to each vendor's wire format.

Each adapter issues exactly one JSON POST per inference call and maps the
reply back into canonical content blocks. All failures (transport, non-2xx
status, unparseable body) surface as ProviderError.
"""

import http.client
import json
import logging
import urllib.error
import urllib.request
import uuid

from .errors import ConfigError, ProviderError
from .messages import (
    ROLE_ASSISTANT,
    ROLE_SYSTEM,
    ModelResponse,
    Text,
    ToolResult,
    ToolUse,
    block_from_dict,
    block_to_dict,
    joined_text,
    tool_names_by_id,
    tool_results,
    tool_uses,
)

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_MESSAGE = "You are a helpful assistant."

_JSON_SCHEMA_TYPES = {"string", "integer", "number", "boolean", "array", "object"}

_GOOGLE_TYPES = {
    "string": "STRING",
    "integer": "NUMBER",
    "number": "NUMBER",
    "boolean": "BOOLEAN",
    "array": "ARRAY",
    "object": "OBJECT",
}


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


def _parse_failure(label: str, detail, raw: str) -> ProviderError:
    return ProviderError(
        f"Failed to parse {label} API response: {detail}\nRaw body: {raw}", body=raw
    )


def post_json(url: str, headers: dict, payload: dict, *, timeout, label: str) -> tuple[dict, str]:
    """POST payload as JSON and return (decoded object, raw body text)."""
    data = json.dumps(payload).encode("utf-8")
    req = urllib.request.Request(
        url,
        data=data,
        headers={"Content-Type": "application/json", **headers},
        method="POST",
    )
    logger.debug("POST %s (%d bytes)", url, len(data))

    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read().decode("utf-8", errors="replace")
    except urllib.error.HTTPError as e:
        try:
            error_body = e.read().decode("utf-8", errors="replace")
        except (OSError, http.client.HTTPException):
            error_body = "Unable to get error details"
        finally:
            e.close()
        raise ProviderError(
            f"{label} API error {e.code}: {error_body}", status=e.code, body=error_body
        ) from e
    except urllib.error.URLError as e:
        raise ProviderError(f"{label} API request failed: {e.reason}") from e
    except http.client.HTTPException as e:
        # truncated bodies and malformed status lines
        raise ProviderError(f"{label} API request failed: {e!r}") from e
    except OSError as e:
        # socket timeouts and resets raised while reading the body
        raise ProviderError(f"{label} API request failed: {e}") from e

    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError as e:
        raise _parse_failure(label, e, raw) from e
    if not isinstance(decoded, dict):
        raise _parse_failure(label, "expected a JSON object", raw)
    return decoded, raw


# ---------------------------------------------------------------------------
# Base adapter
# ---------------------------------------------------------------------------


class Provider:
    """Capability contract shared by every adapter."""

    provider_name = ""
    label = ""

    def __init__(self, settings):
        self.settings = settings

    def name(self) -> str:
        return self.provider_name

    def supports_tools(self) -> bool:
        return bool(self.settings.enable_tools)

    def run_inference(self, conversation, tools=None, system_prompt=None) -> ModelResponse:
        raise NotImplementedError

    def _request_tools(self, tools):
        """Catalogue to attach, or None when tools are off or absent."""
        if tools and self.supports_tools():
            return tools
        return None

    def _post(self, url, headers, payload) -> tuple[dict, str]:
        return post_json(
            url, headers, payload, timeout=self.settings.timeout, label=self.label
        )


def _json_schema_type(t) -> str:
    t = str(t).lower() if t is not None else ""
    return t if t in _JSON_SCHEMA_TYPES else "string"


def _normalized_schema(tool) -> dict:
    """Copy of the tool's input schema with property types coerced to JSON-schema names."""
    properties = {}
    for prop, prop_schema in tool.properties.items():
        prop_schema = dict(prop_schema)
        prop_schema["type"] = _json_schema_type(prop_schema.get("type"))
        properties[prop] = prop_schema
    schema = {"type": "object", "properties": properties}
    if tool.required:
        schema["required"] = list(tool.required)
    return schema


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------


class AnthropicProvider(Provider):
    provider_name = "anthropic"
    label = "Claude"
    endpoint = "https://api.anthropic.com/v1/messages"
    api_version = "2023-06-01"

    @staticmethod
    def block_to_wire(block) -> dict | None:
        """Canonical dict form, with is_error in place of error and empty text dropped."""
        if isinstance(block, Text) and not block.text:
            return None
        d = block_to_dict(block)
        if isinstance(block, ToolUse) and d["input"] is None:
            d["input"] = {}
        elif isinstance(block, ToolResult) and d.pop("error", None):
            d["is_error"] = True
        return d

    def build_request(self, conversation, tools=None, system_prompt=None) -> dict:
        system_parts = [system_prompt] if system_prompt else []
        messages: list[dict] = []
        for msg in conversation:
            if msg.role == ROLE_SYSTEM:
                text = joined_text(msg.content)
                if text:
                    system_parts.append(text)
                continue
            role = "assistant" if msg.role == ROLE_ASSISTANT else "user"
            blocks = [b for b in map(self.block_to_wire, msg.content) if b is not None]
            if not blocks:
                continue
            if messages and messages[-1]["role"] == role:
                messages[-1]["content"].extend(blocks)
            else:
                messages.append({"role": role, "content": blocks})

        payload = {
            "model": self.settings.model,
            "max_tokens": self.settings.max_tokens,
            "messages": messages,
        }
        if system_parts:
            payload["system"] = "\n\n".join(system_parts)
        if self.settings.temperature is not None:
            payload["temperature"] = self.settings.temperature
        tools = self._request_tools(tools)
        if tools:
            payload["tools"] = [
                {
                    "name": t.name,
                    "description": t.description,
                    "input_schema": _normalized_schema(t),
                }
                for t in tools
            ]
        return payload

    def parse_response(self, data: dict, raw: str) -> ModelResponse:
        content = data.get("content")
        if not isinstance(content, list):
            raise _parse_failure(self.label, "missing 'content' array", raw)
        blocks = []
        try:
            for part in content:
                kind = part.get("type")
                if kind in ("text", "tool_use", "tool_result"):
                    blocks.append(block_from_dict(part))
                else:
                    logger.debug("skipping %s content block of type %r", self.label, kind)
        except (ValueError, AttributeError) as e:
            raise _parse_failure(self.label, f"malformed content block: {e}", raw) from e
        return ModelResponse(content=blocks, id=data.get("id"))

    def run_inference(self, conversation, tools=None, system_prompt=None) -> ModelResponse:
        payload = self.build_request(conversation, tools, system_prompt)
        headers = {
            "x-api-key": self.settings.api_key,
            "anthropic-version": self.api_version,
        }
        data, raw = self._post(self.endpoint, headers, payload)
        response = self.parse_response(data, raw)
        logger.debug("%s response id=%s", self.label, response.id)
        return response


# ---------------------------------------------------------------------------
# OpenAI / DeepSeek
# ---------------------------------------------------------------------------


class OpenAIProvider(Provider):
    provider_name = "openai"
    label = "OpenAI"
    endpoint = "https://api.openai.com/v1/chat/completions"
    # Content value for assistant messages that only carry tool calls.
    empty_assistant_content = None

    def build_messages(self, conversation, system_prompt=None) -> list[dict]:
        messages: list[dict] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        elif not any(m.role == ROLE_SYSTEM for m in conversation):
            messages.append({"role": "system", "content": DEFAULT_SYSTEM_MESSAGE})

        for msg in conversation:
            text = joined_text(msg.content)
            if msg.role == ROLE_ASSISTANT:
                calls = tool_uses(msg.content)
                if not text and not calls:
                    continue
                entry = {
                    "role": "assistant",
                    "content": text or self.empty_assistant_content,
                }
                if calls:
                    entry["tool_calls"] = [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {
                                "name": call.name,
                                "arguments": json.dumps(call.input if call.input is not None else {}),
                            },
                        }
                        for call in calls
                    ]
                messages.append(entry)
                continue

            # Results must directly follow the assistant turn that asked for them.
            for result in tool_results(msg.content):
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": result.tool_use_id,
                        "content": result.content,
                    }
                )
            if text:
                role = "system" if msg.role == ROLE_SYSTEM else "user"
                messages.append({"role": role, "content": text})
        return messages

    def build_request(self, conversation, tools=None, system_prompt=None) -> dict:
        payload = {
            "model": self.settings.model,
            "messages": self.build_messages(conversation, system_prompt),
            "max_tokens": self.settings.max_tokens,
            "stream": False,
        }
        if self.settings.temperature is not None:
            payload["temperature"] = self.settings.temperature
        tools = self._request_tools(tools)
        if tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": _normalized_schema(t),
                    },
                }
                for t in tools
            ]
            payload["tool_choice"] = "auto"
        return payload

    def parse_response(self, data: dict, raw: str) -> ModelResponse:
        choices = data.get("choices")
        if not choices:
            raise _parse_failure(self.label, "no choices in response", raw)
        try:
            message = choices[0]["message"]
            blocks = []
            content = message.get("content")
            if content:
                blocks.append(Text(text=content))
            for call in message.get("tool_calls") or []:
                fn = call["function"]
                arguments = fn.get("arguments") or "{}"
                try:
                    args = json.loads(arguments)
                except json.JSONDecodeError as e:
                    raise _parse_failure(
                        self.label, f"invalid tool arguments for {fn['name']}: {e}", raw
                    ) from e
                if not isinstance(args, dict):
                    raise _parse_failure(
                        self.label,
                        f"tool arguments for {fn['name']} are not a JSON object",
                        raw,
                    )
                blocks.append(ToolUse(id=call["id"], name=fn["name"], input=args))
        except (KeyError, TypeError, AttributeError) as e:
            raise _parse_failure(self.label, f"malformed message: {e}", raw) from e
        return ModelResponse(content=blocks, id=data.get("id"))

    def run_inference(self, conversation, tools=None, system_prompt=None) -> ModelResponse:
        payload = self.build_request(conversation, tools, system_prompt)
        headers = {"Authorization": f"Bearer {self.settings.api_key}"}
        data, raw = self._post(self.endpoint, headers, payload)
        response = self.parse_response(data, raw)
        logger.debug("%s response id=%s", self.label, response.id)
        return response


class DeepSeekProvider(OpenAIProvider):
    provider_name = "deepseek"
    label = "DeepSeek"
    endpoint = "https://api.deepseek.com/chat/completions"
    empty_assistant_content = ""


# ---------------------------------------------------------------------------
# Google
# ---------------------------------------------------------------------------


def _google_schema(tool) -> dict:
    properties = {}
    for prop, prop_schema in tool.properties.items():
        entry = {"type": _GOOGLE_TYPES.get(str(prop_schema.get("type", "")).lower(), "STRING")}
        if prop_schema.get("description"):
            entry["description"] = prop_schema["description"]
        properties[prop] = entry
    schema = {"type": "OBJECT", "properties": properties}
    if tool.required:
        schema["required"] = list(tool.required)
    return schema


def _new_google_call_id() -> str:
    return f"google_function_{uuid.uuid4().hex}"


class GoogleProvider(Provider):
    provider_name = "google"
    label = "Google"
    endpoint_template = (
        "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
    )

    def build_request(self, conversation, tools=None, system_prompt=None) -> dict:
        names = tool_names_by_id(conversation)
        system_parts = [system_prompt] if system_prompt else []
        contents: list[dict] = []

        for msg in conversation:
            if msg.role == ROLE_SYSTEM:
                text = joined_text(msg.content)
                if text:
                    system_parts.append(text)
                continue
            parts = []
            for block in msg.content:
                if isinstance(block, Text):
                    if block.text:
                        parts.append({"text": block.text})
                elif isinstance(block, ToolUse):
                    parts.append(
                        {
                            "function_call": {
                                "name": block.name,
                                "args": block.input if block.input is not None else {},
                            }
                        }
                    )
                elif isinstance(block, ToolResult):
                    response = {"result": block.content}
                    if block.error:
                        response["error"] = True
                    parts.append(
                        {
                            "function_response": {
                                "name": names.get(block.tool_use_id, "unknown_function"),
                                "response": response,
                            }
                        }
                    )
            if not parts:
                continue
            role = "model" if msg.role == ROLE_ASSISTANT else "user"
            contents.append({"role": role, "parts": parts})

        if not contents:
            raise ProviderError(f"{self.label} API request has no content to send")

        payload = {
            "contents": contents,
            "generation_config": {"max_output_tokens": self.settings.max_tokens},
        }
        if self.settings.temperature is not None:
            payload["generation_config"]["temperature"] = self.settings.temperature
        if system_parts:
            payload["system_instruction"] = {"parts": [{"text": "\n\n".join(system_parts)}]}
        tools = self._request_tools(tools)
        if tools:
            payload["tools"] = [
                {
                    "function_declarations": [
                        {
                            "name": t.name,
                            "description": t.description,
                            "parameters": _google_schema(t),
                        }
                        for t in tools
                    ]
                }
            ]
        return payload

    def parse_response(self, data: dict, raw: str) -> ModelResponse:
        candidates = data.get("candidates")
        if not candidates:
            raise _parse_failure(self.label, "no candidates in response", raw)
        try:
            content = candidates[0].get("content") or {}
            parts = content.get("parts") or []
            blocks = []
            for part in parts:
                call = part.get("functionCall") or part.get("function_call")
                result = part.get("functionResponse") or part.get("function_response")
                if "text" in part:
                    blocks.append(Text(text=part["text"]))
                elif call is not None:
                    args = call.get("args")
                    if args is None:
                        args = {}
                    if not isinstance(args, dict):
                        raise _parse_failure(
                            self.label,
                            f"arguments for {call.get('name')} are not a JSON object",
                            raw,
                        )
                    blocks.append(
                        ToolUse(
                            id=call.get("id") or _new_google_call_id(),
                            name=call["name"],
                            input=args,
                        )
                    )
                elif result is not None:
                    blocks.append(
                        ToolResult(
                            tool_use_id=result.get("id") or result.get("name", ""),
                            content=json.dumps(result.get("response")),
                        )
                    )
                else:
                    logger.debug("skipping %s part with keys %s", self.label, sorted(part))
        except (KeyError, TypeError, AttributeError) as e:
            raise _parse_failure(self.label, f"malformed candidate: {e}", raw) from e
        return ModelResponse(content=blocks, id=data.get("responseId"))

    def run_inference(self, conversation, tools=None, system_prompt=None) -> ModelResponse:
        payload = self.build_request(conversation, tools, system_prompt)
        url = self.endpoint_template.format(model=self.settings.model)
        headers = {"x-goog-api-key": self.settings.api_key}
        data, raw = self._post(url, headers, payload)
        response = self.parse_response(data, raw)
        logger.debug("%s response id=%s", self.label, response.id)
        return response


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

PROVIDERS = {
    cls.provider_name: cls
    for cls in (AnthropicProvider, OpenAIProvider, GoogleProvider, DeepSeekProvider)
}


def create_provider(settings) -> Provider:
    """Instantiate the adapter named by settings.provider."""
    try:
        cls = PROVIDERS[settings.provider]
    except KeyError:
        raise ConfigError(
            f"unknown provider {settings.provider!r} "
            f"(choose from {', '.join(sorted(PROVIDERS))})"
        )
    return cls(settings)
