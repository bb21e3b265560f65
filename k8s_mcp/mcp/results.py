"""Result envelopes returned across the MCP boundary."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ContentType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    RESOURCE = "resource"


@dataclass
class ContentPart:
    """One typed piece of content: text, base64 binary, or an entity reference."""

    type: ContentType
    text: str | None = None
    data: str | None = None
    mime_type: str | None = None
    uri: str | None = None

    @classmethod
    def text_part(cls, text: str) -> "ContentPart":
        return cls(type=ContentType.TEXT, text=text)

    def to_dict(self) -> dict[str, Any]:
        if self.type == ContentType.TEXT:
            return {"type": "text", "text": self.text or ""}
        if self.type == ContentType.IMAGE:
            return {"type": "image", "data": self.data or "", "mimeType": self.mime_type or "image/png"}
        resource: dict[str, Any] = {"uri": self.uri or ""}
        if self.mime_type:
            resource["mimeType"] = self.mime_type
        if self.text is not None:
            resource["text"] = self.text
        return {"type": "resource", "resource": resource}


@dataclass
class ToolResult:
    """
    Outcome of a tool call.

    Handlers return one of these for both success and expected failure;
    ``is_error`` is the tag.
    """

    content: list[ContentPart] = field(default_factory=list)
    is_error: bool = False

    @classmethod
    def text(cls, text: str) -> "ToolResult":
        return cls(content=[ContentPart.text_part(text)])

    @classmethod
    def error(cls, message: str) -> "ToolResult":
        return cls(content=[ContentPart.text_part(message)], is_error=True)

    @property
    def first_text(self) -> str:
        for part in self.content:
            if part.type == ContentType.TEXT and part.text is not None:
                return part.text
        return ""

    def to_dict(self) -> dict[str, Any]:
        return {"content": [part.to_dict() for part in self.content], "isError": self.is_error}


@dataclass
class ResourceContent:
    uri: str
    mime_type: str = "application/json"
    text: str | None = None
    blob: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"uri": self.uri, "mimeType": self.mime_type}
        if self.blob is not None:
            result["blob"] = self.blob
        else:
            result["text"] = self.text or ""
        return result


@dataclass
class PromptMessage:
    role: str
    content: ContentPart

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "content": self.content.to_dict()}


@dataclass
class PromptResult:
    description: str
    messages: list[PromptMessage] = field(default_factory=list)
    is_error: bool = False

    @classmethod
    def user_text(cls, description: str, text: str) -> "PromptResult":
        return cls(description=description, messages=[PromptMessage("user", ContentPart.text_part(text))])

    @classmethod
    def error(cls, message: str) -> "PromptResult":
        return cls(
            description=message,
            messages=[PromptMessage("user", ContentPart.text_part(message))],
            is_error=True,
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "description": self.description,
            "messages": [message.to_dict() for message in self.messages],
        }
        if self.is_error:
            result["isError"] = True
        return result
