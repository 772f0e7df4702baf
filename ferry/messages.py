"""Canonical conversation model shared by every provider adapter.

A conversation is a list of Message objects. Each message holds an ordered
list of content blocks, which are exactly one of Text, ToolUse or ToolResult.
Adapters translate this shape to and from their own wire format; the agent
loop is the only code that appends to a conversation.
"""

from dataclasses import dataclass, field
from typing import Any

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_SYSTEM = "system"
ROLE_TOOL = "tool"

ROLES = (ROLE_USER, ROLE_ASSISTANT, ROLE_SYSTEM, ROLE_TOOL)


@dataclass
class Text:
    text: str


@dataclass
class ToolUse:
    id: str
    name: str
    input: Any = field(default_factory=dict)


@dataclass
class ToolResult:
    tool_use_id: str
    content: str
    error: bool | None = None


ContentBlock = Text | ToolUse | ToolResult


@dataclass
class Message:
    role: str
    content: list = field(default_factory=list)

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"unknown message role {self.role!r}")


@dataclass
class ModelResponse:
    """Normalized result of one inference call."""

    content: list = field(default_factory=list)
    id: str | None = None


@dataclass(frozen=True)
class Tool:
    """Catalogue entry describing one tool to the model.

    input_schema is a JSON-schema object:
    {"type": "object", "properties": {name: {"type", "description"}}, "required": [...]}
    """

    name: str
    description: str
    input_schema: dict

    @property
    def properties(self) -> dict:
        return self.input_schema.get("properties", {})

    @property
    def required(self) -> list[str] | None:
        return self.input_schema.get("required")

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


# ---------------------------------------------------------------------------
# Block helpers
# ---------------------------------------------------------------------------


def text_blocks(blocks: list) -> list[Text]:
    return [b for b in blocks if isinstance(b, Text)]


def tool_uses(blocks: list) -> list[ToolUse]:
    return [b for b in blocks if isinstance(b, ToolUse)]


def tool_results(blocks: list) -> list[ToolResult]:
    return [b for b in blocks if isinstance(b, ToolResult)]


def joined_text(blocks: list, sep: str = "\n") -> str:
    """Concatenate the text blocks of a message, skipping the other variants."""
    return sep.join(b.text for b in text_blocks(blocks))


def tool_names_by_id(conversation: list[Message]) -> dict[str, str]:
    """Map every ToolUse id seen in assistant turns to the tool name."""
    names: dict[str, str] = {}
    for msg in conversation:
        if msg.role != ROLE_ASSISTANT:
            continue
        for block in tool_uses(msg.content):
            names[block.id] = block.name
    return names


# ---------------------------------------------------------------------------
# Canonical dict form (the Anthropic wire shape, minus is_error)
# ---------------------------------------------------------------------------


def block_to_dict(block) -> dict:
    if isinstance(block, Text):
        return {"type": "text", "text": block.text}
    if isinstance(block, ToolUse):
        return {
            "type": "tool_use",
            "id": block.id,
            "name": block.name,
            "input": block.input,
        }
    if isinstance(block, ToolResult):
        d = {
            "type": "tool_result",
            "tool_use_id": block.tool_use_id,
            "content": block.content,
        }
        if block.error is not None:
            d["error"] = block.error
        return d
    raise TypeError(f"not a content block: {block!r}")


def block_from_dict(data: dict):
    """Parse one canonical block dict. Raises ValueError on unknown or malformed input."""
    if not isinstance(data, dict):
        raise ValueError(f"content block must be an object, got {type(data).__name__}")
    kind = data.get("type")
    try:
        if kind == "text":
            return Text(text=data["text"])
        if kind == "tool_use":
            return ToolUse(id=data["id"], name=data["name"], input=data.get("input") or {})
        if kind == "tool_result":
            return ToolResult(
                tool_use_id=data["tool_use_id"],
                content=data.get("content", ""),
                error=data.get("error"),
            )
    except KeyError as e:
        raise ValueError(f"{kind} block is missing field {e.args[0]!r}") from e
    raise ValueError(f"unknown content block type {kind!r}")

